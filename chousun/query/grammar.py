"""
SQL Grammar for the ClickHouse dialect

Compiles a QueryModel into one SQL string. The grammar is a pure function of
its input: no I/O, no state kept between calls, and the model it reads is
never modified.

Usage:
    grammar = Grammar()
    sql = grammar.compile_select(builder.model)
    # select * from `events` where `id` = ?

Values never appear in the output: every value becomes a "?" placeholder
(raw expressions excepted) and is bound later by the transport layer.
"""

import re
from typing import Any, Callable, Dict, List, Union

from chousun.exceptions import QueryError
from chousun.query.expression import Expression, is_expression
from chousun.query.model import JoinClause, Order, QueryModel
from chousun.query.where import WhereNode, WhereType

_LEADING_BOOLEAN = re.compile(r"^(and|or) ", re.IGNORECASE)
_ALIAS = re.compile(r"\s+as\s+", re.IGNORECASE)


class Grammar:
    """
    Dialect grammar.

    Args:
        table_prefix: Prefix added to every table name (and table alias)
    """

    # Order in which the select components are compiled.
    SELECT_COMPONENTS = (
        "aggregate",
        "columns",
        "from",
        "joins",
        "wheres",
        "groups",
        "having",
        "orders",
        "limit",
        "offset",
    )

    IDENTIFIER_QUOTE = "`"

    def __init__(self, table_prefix: str = ""):
        self.table_prefix = table_prefix
        self._where_compilers: Dict[WhereType, Callable[[Any, WhereNode], str]] = {
            WhereType.RAW: self._where_raw,
            WhereType.BASIC: self._where_basic,
            WhereType.IN: self._where_in,
            WhereType.NOT_IN: self._where_not_in,
            WhereType.IN_SUB: self._where_in_sub,
            WhereType.NOT_IN_SUB: self._where_not_in_sub,
            WhereType.NULL: self._where_null,
            WhereType.NOT_NULL: self._where_not_null,
            WhereType.BETWEEN: self._where_between,
            WhereType.DATE: self._where_date,
            WhereType.NESTED: self._where_nested,
            WhereType.SUB: self._where_sub,
            WhereType.EXISTS: self._where_exists,
            WhereType.NOT_EXISTS: self._where_not_exists,
            WhereType.COLUMN: self._where_column,
        }

    # =========================================================================
    # Statements
    # =========================================================================

    def compile_select(self, query: QueryModel) -> str:
        """
        Compile a select query into SQL.

        Args:
            query: The query model (not modified)

        Returns:
            SQL text with "?" placeholders
        """
        columns = query.columns if query.columns is not None else ["*"]

        sql = self._concatenate(self._compile_components(query, columns)).strip()

        if query.unions:
            sql = f"({sql}) {self._compile_unions(query)}"

        return sql

    def compile_exists(self, query: QueryModel) -> str:
        """Compile an exists check: select exists(<select>) as `exists`."""
        select = self.compile_select(query)
        return f"select exists({select}) as {self.wrap('exists')}"

    def compile_insert(self, query: QueryModel, values: Union[dict, List[dict]]) -> str:
        """
        Compile an insert statement.

        A single row (dict) is promoted to a one-row list. The column list
        comes from the first row; every row must carry the same columns.
        """
        table = self.wrap_table(query.from_)

        rows = [values] if isinstance(values, dict) else list(values)
        if not rows:
            raise QueryError("Insert needs at least one row")

        keys = list(rows[0].keys())
        for row in rows:
            if set(row.keys()) != set(keys):
                raise QueryError("Every inserted row must have the same columns")

        columns = self.columnize(keys)
        parameters = ", ".join(
            f"({self.parameterize([row[key] for key in keys])})" for row in rows
        )

        return f"insert into {table} ({columns}) values {parameters}"

    # =========================================================================
    # Components
    # =========================================================================

    def _compile_components(self, query: QueryModel, columns: List[Any]) -> List[str]:
        sql = []

        for component in self.SELECT_COMPONENTS:
            if component == "aggregate" and query.aggregate is not None:
                sql.append(self._compile_aggregate(query))
            elif component == "columns":
                sql.append(self._compile_columns(query, columns))
            elif component == "from" and query.from_ is not None:
                sql.append(self._compile_from(query))
            elif component == "joins" and query.joins:
                sql.append(self._compile_joins(query))
            elif component == "wheres" and len(query.wheres):
                sql.append(self.compile_wheres(query))
            elif component == "groups" and query.groups:
                sql.append(f"group by {self.columnize(query.groups)}")
            elif component == "having" and query.havings:
                sql.append(self._compile_having(query))
            elif component == "orders" and query.orders:
                sql.append(self._compile_orders(query.orders))
            elif component == "limit" and query.limit is not None:
                sql.append(self._compile_limit(query.limit))
            elif component == "offset" and query.offset is not None:
                sql.append(self._compile_offset(query.offset))

        return sql

    def _compile_aggregate(self, query: QueryModel) -> str:
        column = self.columnize(query.aggregate.columns)

        if query.distinct and column != "*":
            column = f"distinct {column}"

        return f"select {query.aggregate.function}({column}) as aggregate"

    def _compile_columns(self, query: QueryModel, columns: List[Any]) -> str:
        # The aggregate already produced the select list.
        if query.aggregate is not None:
            return ""

        select = "select distinct " if query.distinct else "select "
        return select + self.columnize(columns)

    def _compile_from(self, query: QueryModel) -> str:
        return f"from {self.wrap_table(query.from_)}"

    def _compile_joins(self, query: QueryModel) -> str:
        parts = []
        for join in query.joins:
            table = self.wrap_table(join.table)
            parts.append(f"{join.type} join {table} {self.compile_wheres(join)}".strip())
        return " ".join(parts)

    def _compile_having(self, query: QueryModel) -> str:
        sql = " ".join(
            f"{node.boolean} {self.compile_where(query, node)}" for node in query.havings
        )
        return f"having {self.remove_leading_boolean(sql)}"

    def _compile_orders(self, orders: List[Order]) -> str:
        if not orders:
            return ""

        compiled = [
            order.sql if order.sql is not None else f"{self.wrap(order.column)} {order.direction}"
            for order in orders
        ]
        return "order by " + ", ".join(compiled)

    def _compile_limit(self, limit: int) -> str:
        return f"limit {int(limit)}"

    def _compile_offset(self, offset: int) -> str:
        return f"offset {int(offset)}"

    def _compile_unions(self, query: QueryModel) -> str:
        sql = ""

        for union in query.unions:
            conjunction = " union all " if union.all else " union "
            sql += f"{conjunction}({self.compile_select(union.query)})"

        if query.union_orders:
            sql += " " + self._compile_orders(query.union_orders)

        if query.union_limit is not None:
            sql += " " + self._compile_limit(query.union_limit)

        if query.union_offset is not None:
            sql += " " + self._compile_offset(query.union_offset)

        return sql.lstrip()

    # =========================================================================
    # Where clauses
    # =========================================================================

    def compile_wheres(self, query: Union[QueryModel, JoinClause]) -> str:
        """
        Compile the where (or join ON) conditions of a query.

        The first node's boolean is dropped and the result is prefixed with
        "where " for queries and "on " for join clauses.
        """
        if not len(query.wheres):
            return ""

        sql = [f"{node.boolean} {self.compile_where(query, node)}" for node in query.wheres]

        return f"{self._conjunction(query)} {self.remove_leading_boolean(' '.join(sql))}"

    def compile_where(self, query: Any, node: WhereNode) -> str:
        """Compile one where node by its tag."""
        compiler = self._where_compilers.get(node.kind)
        if compiler is None:
            raise QueryError(f"No compiler for where type: {node.kind}")
        return compiler(query, node)

    @staticmethod
    def _conjunction(query: Any) -> str:
        return "on" if isinstance(query, JoinClause) else "where"

    def _where_raw(self, query: Any, where: WhereNode) -> str:
        return where.sql

    def _where_basic(self, query: Any, where: WhereNode) -> str:
        value = self.parameter(where.value)
        return f"{self.wrap(where.column)} {where.operator} {value}"

    def _where_in(self, query: Any, where: WhereNode) -> str:
        if where.values:
            return f"{self.wrap(where.column)} in ({self.parameterize(where.values)})"
        return "0 = 1"

    def _where_not_in(self, query: Any, where: WhereNode) -> str:
        if where.values:
            return f"{self.wrap(where.column)} not in ({self.parameterize(where.values)})"
        return "1 = 1"

    def _where_in_sub(self, query: Any, where: WhereNode) -> str:
        return f"{self.wrap(where.column)} in ({self.compile_select(where.query)})"

    def _where_not_in_sub(self, query: Any, where: WhereNode) -> str:
        return f"{self.wrap(where.column)} not in ({self.compile_select(where.query)})"

    def _where_null(self, query: Any, where: WhereNode) -> str:
        return f"{self.wrap(where.column)} is null"

    def _where_not_null(self, query: Any, where: WhereNode) -> str:
        return f"{self.wrap(where.column)} is not null"

    def _where_between(self, query: Any, where: WhereNode) -> str:
        between = "not between" if where.negated else "between"
        return f"{self.wrap(where.column)} {between} ? and ?"

    def _where_date(self, query: Any, where: WhereNode) -> str:
        value = self.parameter(where.value)
        return f"{where.function}({self.wrap(where.column)}) {where.operator} {value}"

    def _where_nested(self, query: Any, where: WhereNode) -> str:
        # Drop the "where " / "on " prefix of the nested compilation.
        offset = len(self._conjunction(where.query)) + 1
        return f"({self.compile_wheres(where.query)[offset:]})"

    def _where_sub(self, query: Any, where: WhereNode) -> str:
        select = self.compile_select(where.query)
        return f"{self.wrap(where.column)} {where.operator} ({select})"

    def _where_exists(self, query: Any, where: WhereNode) -> str:
        return f"exists ({self.compile_select(where.query)})"

    def _where_not_exists(self, query: Any, where: WhereNode) -> str:
        return f"not exists ({self.compile_select(where.query)})"

    def _where_column(self, query: Any, where: WhereNode) -> str:
        return f"{self.wrap(where.first)} {where.operator} {self.wrap(where.second)}"

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _concatenate(segments: List[str]) -> str:
        """Join segments with single spaces, dropping empty ones."""
        return " ".join(segment for segment in segments if str(segment) != "")

    @staticmethod
    def remove_leading_boolean(value: str) -> str:
        """Strip exactly one leading "and " / "or " token."""
        return _LEADING_BOOLEAN.sub("", value, count=1)

    def columnize(self, columns: List[Any]) -> str:
        """Convert column names into a comma-delimited, wrapped list."""
        return ", ".join(self.wrap(column) for column in columns)

    def parameter(self, value: Any) -> str:
        """Placeholder for a value; raw expressions render as their text."""
        return value.get_value() if is_expression(value) else "?"

    def parameterize(self, values: List[Any]) -> str:
        return ", ".join(self.parameter(value) for value in values)

    def wrap_table(self, table: Any) -> str:
        """Wrap a table name, applying the table prefix to name and alias."""
        if is_expression(table):
            return table.get_value()
        return self.wrap(self.table_prefix + table, prefix_alias=True)

    def wrap(self, value: Union[Expression, str], prefix_alias: bool = False) -> str:
        """
        Wrap a (possibly qualified or aliased) identifier in quotes.

        "t.name" -> `t`.`name`, "name as n" -> `name` as `n`, "*" stays bare.
        """
        if is_expression(value):
            return value.get_value()

        if " as " in value.lower():
            return self._wrap_aliased_value(value, prefix_alias)

        return self._wrap_segments(value.split("."))

    def _wrap_segments(self, segments: List[str]) -> str:
        wrapped = []
        for index, segment in enumerate(segments):
            if index == 0 and len(segments) > 1:
                wrapped.append(self.wrap_table(segment))
            else:
                wrapped.append(self.wrap_value(segment))
        return ".".join(wrapped)

    def _wrap_aliased_value(self, value: str, prefix_alias: bool = False) -> str:
        segments = _ALIAS.split(value, maxsplit=1)

        # Table aliases carry the table prefix as well; column aliases do not.
        if prefix_alias:
            segments[1] = self.table_prefix + segments[1]

        return f"{self.wrap(segments[0])} as {self.wrap_value(segments[1])}"

    def wrap_value(self, value: str) -> str:
        """Quote a single identifier segment, doubling embedded quotes."""
        if value == "*":
            return value

        if "->" in value:
            return self._wrap_json_selector(value)

        quote = self.IDENTIFIER_QUOTE
        return quote + value.replace(quote, quote * 2) + quote

    def _wrap_json_selector(self, value: str) -> str:
        field, *path = value.split("->")
        json_path = ".".join(f'"{part}"' for part in path)
        return f"{self.wrap_value(field)}->'$.{json_path}'"
