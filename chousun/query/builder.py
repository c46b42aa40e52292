"""
Fluent query builder.

Builder fills a QueryModel and hands it to the Grammar; terminal methods
(get, first, count, exists, insert) run the compiled SQL through the
connection it was created with.

Usage:
    ch = Chousun()
    rows = (
        ch.table("events")
        .select("id", "name")
        .where("id", ">", 5)
        .where_in("type", ["click", "view"])
        .order_by("id", "desc")
        .limit(10)
        .get()
        .rows()
    )
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Union

from chousun.exceptions import QueryError
from chousun.query.expression import Expression, is_expression
from chousun.query.grammar import Grammar
from chousun.query.model import Aggregate, JoinClause, Order, QueryModel, UnionPart
from chousun.query.where import _MISSING, BasicWhere, Conditions, RawWhere
from chousun.transport.bindings import bind

logger = logging.getLogger(__name__)


class Builder:
    """
    Query builder over a QueryModel.

    Args:
        connection: Transport executing the compiled SQL (select / write)
        grammar: Grammar compiling the model (default: Grammar())
        model: Existing model to continue building (default: empty)
    """

    def __init__(self, connection: Any = None, grammar: Optional[Grammar] = None,
                 model: Optional[QueryModel] = None):
        self.connection = connection
        self.grammar = grammar or Grammar()
        self.model = model if model is not None else QueryModel()
        self.model.wheres.nested_factory = self.for_nested_where
        self.model.wheres.query_factory = self.new_query

    def new_query(self) -> "Builder":
        """A fresh builder sharing this builder's connection and grammar."""
        return Builder(self.connection, self.grammar)

    def for_nested_where(self) -> "Builder":
        query = self.new_query()
        query.model.from_ = self.model.from_
        return query

    def clone(self) -> "Builder":
        return Builder(self.connection, self.grammar, self.model.copy())

    @property
    def wheres(self) -> Conditions:
        return self.model.wheres

    # =========================================================================
    # Select / from
    # =========================================================================

    def select(self, *columns: Any) -> "Builder":
        self.model.columns = self._flatten(columns) or ["*"]
        return self

    def add_select(self, *columns: Any) -> "Builder":
        current = self.model.columns or []
        self.model.columns = current + self._flatten(columns)
        return self

    def select_raw(self, expression: str) -> "Builder":
        return self.add_select(Expression(expression))

    def distinct(self, value: bool = True) -> "Builder":
        self.model.distinct = value
        return self

    def from_(self, table: Any) -> "Builder":
        self.model.from_ = table
        return self

    def table(self, table: Any) -> "Builder":
        return self.from_(table)

    @staticmethod
    def _flatten(columns) -> List[Any]:
        flat = []
        for column in columns:
            if isinstance(column, (list, tuple)):
                flat.extend(column)
            else:
                flat.append(column)
        return flat

    # =========================================================================
    # Joins
    # =========================================================================

    def join(self, table: Any, first: Any = None, operator: Any = _MISSING,
             second: Any = _MISSING, type: str = "inner", where: bool = False) -> "Builder":
        """
        Add a join.

        first may be a callback receiving the JoinClause; otherwise
        first/operator/second form one ON condition (or a where condition
        on a value when where=True).
        """
        join = JoinClause(type, table, self.new_query)

        if callable(first) and not is_expression(first):
            first(join)
        elif first is not None:
            if where:
                join.where(first, operator, second)
            else:
                join.on(first, operator, second)

        self.model.joins.append(join)
        return self

    def join_where(self, table: Any, first: Any, operator: Any, second: Any,
                   type: str = "inner") -> "Builder":
        return self.join(table, first, operator, second, type, where=True)

    def inner_join(self, table: Any, first: Any = None, operator: Any = _MISSING,
                   second: Any = _MISSING) -> "Builder":
        return self.join(table, first, operator, second, "inner")

    def left_join(self, table: Any, first: Any = None, operator: Any = _MISSING,
                  second: Any = _MISSING) -> "Builder":
        return self.join(table, first, operator, second, "left")

    def right_join(self, table: Any, first: Any = None, operator: Any = _MISSING,
                   second: Any = _MISSING) -> "Builder":
        return self.join(table, first, operator, second, "right")

    def full_join(self, table: Any, first: Any = None, operator: Any = _MISSING,
                  second: Any = _MISSING) -> "Builder":
        return self.join(table, first, operator, second, "full")

    def cross_join(self, table: Any, first: Any = None, operator: Any = _MISSING,
                   second: Any = _MISSING) -> "Builder":
        return self.join(table, first, operator, second, "cross")

    # =========================================================================
    # Where clauses (delegated to the model's Conditions)
    # =========================================================================

    def where(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING,
              boolean: str = "and") -> "Builder":
        self.wheres.where(column, operator, value, boolean)
        return self

    def or_where(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING) -> "Builder":
        return self.where(column, operator, value, "or")

    def where_raw(self, sql: str, bindings: Optional[List[Any]] = None,
                  boolean: str = "and") -> "Builder":
        self.wheres.where_raw(sql, bindings, boolean)
        return self

    def or_where_raw(self, sql: str, bindings: Optional[List[Any]] = None) -> "Builder":
        return self.where_raw(sql, bindings, "or")

    def where_column(self, first: Any, operator: Any = _MISSING, second: Any = _MISSING,
                     boolean: str = "and") -> "Builder":
        self.wheres.where_column(first, operator, second, boolean)
        return self

    def or_where_column(self, first: Any, operator: Any = _MISSING,
                        second: Any = _MISSING) -> "Builder":
        return self.where_column(first, operator, second, "or")

    def where_in(self, column: Any, values: Any, boolean: str = "and") -> "Builder":
        self.wheres.where_in(column, values, boolean)
        return self

    def or_where_in(self, column: Any, values: Any) -> "Builder":
        return self.where_in(column, values, "or")

    def where_not_in(self, column: Any, values: Any, boolean: str = "and") -> "Builder":
        self.wheres.where_not_in(column, values, boolean)
        return self

    def or_where_not_in(self, column: Any, values: Any) -> "Builder":
        return self.where_not_in(column, values, "or")

    def where_null(self, column: Any, boolean: str = "and") -> "Builder":
        self.wheres.where_null(column, boolean)
        return self

    def or_where_null(self, column: Any) -> "Builder":
        return self.where_null(column, "or")

    def where_not_null(self, column: Any, boolean: str = "and") -> "Builder":
        self.wheres.where_not_null(column, boolean)
        return self

    def or_where_not_null(self, column: Any) -> "Builder":
        return self.where_not_null(column, "or")

    def where_between(self, column: Any, values: List[Any], boolean: str = "and") -> "Builder":
        self.wheres.where_between(column, values, boolean)
        return self

    def or_where_between(self, column: Any, values: List[Any]) -> "Builder":
        return self.where_between(column, values, "or")

    def where_not_between(self, column: Any, values: List[Any], boolean: str = "and") -> "Builder":
        self.wheres.where_not_between(column, values, boolean)
        return self

    def or_where_not_between(self, column: Any, values: List[Any]) -> "Builder":
        return self.where_not_between(column, values, "or")

    def where_date(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING,
                   boolean: str = "and") -> "Builder":
        self.wheres.where_date(column, operator, value, boolean)
        return self

    def where_month(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING,
                    boolean: str = "and") -> "Builder":
        self.wheres.where_month(column, operator, value, boolean)
        return self

    def where_day(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING,
                  boolean: str = "and") -> "Builder":
        self.wheres.where_day(column, operator, value, boolean)
        return self

    def where_year(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING,
                   boolean: str = "and") -> "Builder":
        self.wheres.where_year(column, operator, value, boolean)
        return self

    def where_time(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING,
                   boolean: str = "and") -> "Builder":
        self.wheres.where_time(column, operator, value, boolean)
        return self

    def where_nested(self, callback: Callable[["Builder"], Any], boolean: str = "and") -> "Builder":
        self.wheres.where_nested(callback, boolean)
        return self

    def where_exists(self, query: Any, boolean: str = "and") -> "Builder":
        self.wheres.where_exists(query, boolean)
        return self

    def or_where_exists(self, query: Any) -> "Builder":
        return self.where_exists(query, "or")

    def where_not_exists(self, query: Any, boolean: str = "and") -> "Builder":
        self.wheres.where_not_exists(query, boolean)
        return self

    def or_where_not_exists(self, query: Any) -> "Builder":
        return self.where_not_exists(query, "or")

    # =========================================================================
    # Group / having / order
    # =========================================================================

    def group_by(self, *groups: Any) -> "Builder":
        self.model.groups.extend(self._flatten(groups))
        return self

    def having(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING,
               boolean: str = "and") -> "Builder":
        operator, value = Conditions._prepare(operator, value)
        self.model.havings.append(BasicWhere(boolean, column, operator, value))
        return self

    def or_having(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING) -> "Builder":
        return self.having(column, operator, value, "or")

    def having_raw(self, sql: str, bindings: Optional[List[Any]] = None,
                   boolean: str = "and") -> "Builder":
        self.model.havings.append(RawWhere(boolean, sql, list(bindings or [])))
        return self

    def or_having_raw(self, sql: str, bindings: Optional[List[Any]] = None) -> "Builder":
        return self.having_raw(sql, bindings, "or")

    def _order_target(self) -> List[Order]:
        return self.model.union_orders if self.model.unions else self.model.orders

    def order_by(self, column: Any, direction: str = "asc") -> "Builder":
        direction = direction.lower()
        if direction not in ("asc", "desc"):
            raise QueryError(f"Order direction must be 'asc' or 'desc', got {direction!r}")
        self._order_target().append(Order(column=column, direction=direction))
        return self

    def order_by_desc(self, column: Any) -> "Builder":
        return self.order_by(column, "desc")

    def order_by_raw(self, sql: str) -> "Builder":
        self._order_target().append(Order(sql=sql))
        return self

    def latest(self, column: str = "created_at") -> "Builder":
        return self.order_by(column, "desc")

    def oldest(self, column: str = "created_at") -> "Builder":
        return self.order_by(column, "asc")

    # =========================================================================
    # Pagination / unions
    # =========================================================================

    @staticmethod
    def _non_negative(name: str, value: int) -> int:
        value = int(value)
        if value < 0:
            raise QueryError(f"{name} must be non-negative, got {value}")
        return value

    def limit(self, value: int) -> "Builder":
        value = self._non_negative("limit", value)
        if self.model.unions:
            self.model.union_limit = value
        else:
            self.model.limit = value
        return self

    def take(self, value: int) -> "Builder":
        return self.limit(value)

    def offset(self, value: int) -> "Builder":
        value = self._non_negative("offset", value)
        if self.model.unions:
            self.model.union_offset = value
        else:
            self.model.offset = value
        return self

    def skip(self, value: int) -> "Builder":
        return self.offset(value)

    def for_page(self, page: int, per_page: int = 15) -> "Builder":
        return self.skip((page - 1) * per_page).take(per_page)

    def union(self, query: Any, all: bool = False) -> "Builder":
        if callable(query) and not hasattr(query, "model"):
            sub = self.new_query()
            query(sub)
            query = sub
        self.model.unions.append(UnionPart(getattr(query, "model", query), all))
        return self

    def union_all(self, query: Any) -> "Builder":
        return self.union(query, all=True)

    # =========================================================================
    # Compilation
    # =========================================================================

    def to_sql(self) -> str:
        return self.grammar.compile_select(self.model)

    def get_bindings(self) -> List[Any]:
        return self.model.bindings()

    def to_raw_sql(self) -> str:
        """Compiled SQL with the bindings substituted, for logging and debugging."""
        return bind(self.to_sql(), self.get_bindings())

    # =========================================================================
    # Execution
    # =========================================================================

    def _require_connection(self) -> Any:
        if self.connection is None:
            raise QueryError("Builder has no connection to run the query on")
        return self.connection

    def get(self, columns: Optional[List[Any]] = None):
        """Run the select and return the Statement."""
        query = self
        if columns is not None and self.model.columns is None:
            query = self.clone()
            query.model.columns = list(columns)

        sql = query.to_sql()
        logger.debug(f"Running select: {sql}")
        return self._require_connection().select(sql, query.get_bindings())

    def first(self) -> Optional[Dict[str, Any]]:
        rows = self.clone().take(1).get().rows()
        return rows[0] if rows else None

    def exists(self) -> bool:
        sql = self.grammar.compile_exists(self.model)
        row = self._require_connection().select(sql, self.get_bindings()).fetch_one()
        return bool(_numeric(row["exists"])) if row else False

    def aggregate(self, function: str, columns: Optional[List[Any]] = None) -> Any:
        query = self.clone()
        if not query.model.unions:
            query.model.columns = None
        query.model.orders = []
        query.model.aggregate = Aggregate(function, list(columns or ["*"]))

        row = query.get().fetch_one()
        return _numeric(row["aggregate"]) if row else None

    def count(self, column: Any = "*") -> int:
        return int(self.aggregate("count", [column]) or 0)

    def min(self, column: Any) -> Any:
        return self.aggregate("min", [column])

    def max(self, column: Any) -> Any:
        return self.aggregate("max", [column])

    def sum(self, column: Any) -> Any:
        return self.aggregate("sum", [column]) or 0

    def avg(self, column: Any) -> Any:
        return self.aggregate("avg", [column])

    def insert(self, values: Union[dict, List[dict]]):
        """Insert one row (dict) or many rows (list of dicts); returns the Statement."""
        if not values:
            return None

        rows = [values] if isinstance(values, dict) else list(values)
        sql = self.grammar.compile_insert(self.model, rows)

        keys = list(rows[0].keys())
        bindings = [
            row[key] for row in rows for key in keys if not is_expression(row[key])
        ]
        return self._require_connection().write(sql, bindings)


def _numeric(value: Any) -> Any:
    """JSON output quotes 64-bit integers; turn numeric strings back into numbers."""
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            try:
                return float(value)
            except ValueError:
                return value
    return value
