"""
Structured query model.

QueryModel is plain data: the builder fills it, the grammar reads it. A
JoinClause owns its own ON conditions and exposes only the operations that
build them.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from chousun.query.expression import is_expression
from chousun.query.where import _MISSING, Conditions, WhereNode, collect_bindings


@dataclass
class Aggregate:
    """Aggregate function replacing the column list, e.g. count(*)."""
    function: str
    columns: List[Any] = field(default_factory=lambda: ["*"])


@dataclass
class Order:
    """One ORDER BY entry; raw orders carry sql instead of column/direction."""
    column: Any = None
    direction: str = "asc"
    sql: Optional[str] = None


@dataclass
class UnionPart:
    query: "QueryModel"
    all: bool = False


class JoinClause:
    """
    A join target and its ON conditions.

    Args:
        type: Join type ("inner", "left", "right", "cross", "any left", ...)
        table: Joined table, optionally aliased ("users as u")
        query_factory: Returns a fresh query builder for sub-select callbacks
    """

    def __init__(self, type: str, table: Any, query_factory: Optional[Callable[[], Any]] = None):
        self.type = type
        self.table = table
        self.query_factory = query_factory
        self.wheres = Conditions(nested_factory=self.new_nested, query_factory=query_factory)

    def new_nested(self) -> "JoinClause":
        return JoinClause(self.type, self.table, self.query_factory)

    def __deepcopy__(self, memo):
        clone = JoinClause(self.type, copy.deepcopy(self.table, memo), self.query_factory)
        clone.wheres.nodes = copy.deepcopy(self.wheres.nodes, memo)
        return clone

    def on(self, first: Any, operator: Any = _MISSING, second: Any = _MISSING,
           boolean: str = "and") -> "JoinClause":
        """Add an ON condition comparing two columns, or a nested group from a callback."""
        if callable(first) and not is_expression(first):
            self.wheres.where_nested(first, boolean)
        else:
            self.wheres.where_column(first, operator, second, boolean)
        return self

    def or_on(self, first: Any, operator: Any = _MISSING, second: Any = _MISSING) -> "JoinClause":
        return self.on(first, operator, second, "or")

    def where(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING,
              boolean: str = "and") -> "JoinClause":
        self.wheres.where(column, operator, value, boolean)
        return self

    def or_where(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING) -> "JoinClause":
        return self.where(column, operator, value, "or")

    def where_in(self, column: Any, values: Any, boolean: str = "and") -> "JoinClause":
        self.wheres.where_in(column, values, boolean)
        return self

    def where_not_in(self, column: Any, values: Any, boolean: str = "and") -> "JoinClause":
        self.wheres.where_not_in(column, values, boolean)
        return self

    def where_null(self, column: Any, boolean: str = "and") -> "JoinClause":
        self.wheres.where_null(column, boolean)
        return self

    def where_not_null(self, column: Any, boolean: str = "and") -> "JoinClause":
        self.wheres.where_not_null(column, boolean)
        return self

    def where_raw(self, sql: str, bindings: Optional[List[Any]] = None,
                  boolean: str = "and") -> "JoinClause":
        self.wheres.where_raw(sql, bindings, boolean)
        return self

    def bindings(self) -> List[Any]:
        return self.wheres.bindings()

    def __repr__(self) -> str:
        return f"JoinClause(type={self.type!r}, table={self.table!r}, conditions={len(self.wheres)})"


@dataclass
class QueryModel:
    """
    A SELECT statement as data.

    columns None means "*". When aggregate is set it drives the output
    columns and columns is ignored. Union-level orders and pagination apply to
    the whole union, not to the wrapped first select.
    """
    from_: Any = None
    columns: Optional[List[Any]] = None
    distinct: bool = False
    joins: List[JoinClause] = field(default_factory=list)
    wheres: Conditions = field(default_factory=Conditions)
    groups: List[Any] = field(default_factory=list)
    havings: List[WhereNode] = field(default_factory=list)
    orders: List[Order] = field(default_factory=list)
    limit: Optional[int] = None
    offset: Optional[int] = None
    aggregate: Optional[Aggregate] = None
    unions: List[UnionPart] = field(default_factory=list)
    union_orders: List[Order] = field(default_factory=list)
    union_limit: Optional[int] = None
    union_offset: Optional[int] = None

    def bindings(self) -> List[Any]:
        """Flat list of bound values in the order their placeholders are compiled."""
        bindings: List[Any] = []
        for join in self.joins:
            bindings.extend(join.bindings())
        bindings.extend(self.wheres.bindings())
        bindings.extend(collect_bindings(self.havings))
        for union in self.unions:
            bindings.extend(union.query.bindings())
        return bindings

    def copy(self) -> "QueryModel":
        return copy.deepcopy(self)
