"""
Where-tree nodes and the shared condition builder.

Every filter predicate is one WhereNode variant. The variants form a closed
set tagged by WhereType; the grammar keeps one compiler per tag.

Conditions is the builder both QueryModel (WHERE) and JoinClause (ON) own.
Callbacks (nested groups, sub-selects) need fresh query objects, which the
owner supplies through the nested/query factories.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from chousun.exceptions import QueryError
from chousun.query.expression import is_expression


class WhereType(str, Enum):
    """Tags of the where-node variants."""
    RAW = "raw"
    BASIC = "basic"
    IN = "in"
    NOT_IN = "not_in"
    IN_SUB = "in_sub"
    NOT_IN_SUB = "not_in_sub"
    NULL = "null"
    NOT_NULL = "not_null"
    BETWEEN = "between"
    DATE = "date"
    NESTED = "nested"
    SUB = "sub"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    COLUMN = "column"


OPERATORS = (
    "=", "<", ">", "<=", ">=", "<>", "!=",
    "like", "not like", "ilike", "not ilike",
    "in", "not in", "global in", "global not in",
)

# Date-based predicates map onto the engine's conversion functions.
DATE_FUNCTIONS = {
    "date": "toDate",
    "month": "toMonth",
    "day": "toDayOfMonth",
    "year": "toYear",
    "time": "toTime",
}

_MISSING = object()


# =============================================================================
# Nodes
# =============================================================================

@dataclass
class WhereNode:
    """Base of all where variants; boolean is "and" or "or"."""
    boolean: str

    @property
    def kind(self) -> WhereType:
        raise NotImplementedError


@dataclass
class RawWhere(WhereNode):
    sql: str
    bindings: List[Any] = field(default_factory=list)

    @property
    def kind(self) -> WhereType:
        return WhereType.RAW


@dataclass
class BasicWhere(WhereNode):
    column: Any
    operator: str
    value: Any

    @property
    def kind(self) -> WhereType:
        return WhereType.BASIC


@dataclass
class InWhere(WhereNode):
    column: Any
    values: List[Any]
    negated: bool = False

    @property
    def kind(self) -> WhereType:
        return WhereType.NOT_IN if self.negated else WhereType.IN


@dataclass
class InSubWhere(WhereNode):
    column: Any
    query: Any
    negated: bool = False

    @property
    def kind(self) -> WhereType:
        return WhereType.NOT_IN_SUB if self.negated else WhereType.IN_SUB


@dataclass
class NullWhere(WhereNode):
    column: Any
    negated: bool = False

    @property
    def kind(self) -> WhereType:
        return WhereType.NOT_NULL if self.negated else WhereType.NULL


@dataclass
class BetweenWhere(WhereNode):
    column: Any
    values: List[Any]
    negated: bool = False

    @property
    def kind(self) -> WhereType:
        return WhereType.BETWEEN


@dataclass
class DateWhere(WhereNode):
    function: str
    column: Any
    operator: str
    value: Any

    @property
    def kind(self) -> WhereType:
        return WhereType.DATE


@dataclass
class NestedWhere(WhereNode):
    query: Any

    @property
    def kind(self) -> WhereType:
        return WhereType.NESTED


@dataclass
class SubWhere(WhereNode):
    column: Any
    operator: str
    query: Any

    @property
    def kind(self) -> WhereType:
        return WhereType.SUB


@dataclass
class ExistsWhere(WhereNode):
    query: Any
    negated: bool = False

    @property
    def kind(self) -> WhereType:
        return WhereType.NOT_EXISTS if self.negated else WhereType.EXISTS


@dataclass
class ColumnWhere(WhereNode):
    first: Any
    operator: str
    second: Any

    @property
    def kind(self) -> WhereType:
        return WhereType.COLUMN


# =============================================================================
# Bindings
# =============================================================================

def _model_of(query: Any) -> Any:
    """Builders carry their QueryModel in .model; models are returned as-is."""
    return getattr(query, "model", query)


def collect_bindings(nodes: List[WhereNode]) -> List[Any]:
    """Values for the placeholders of the given nodes, in compile order."""
    bindings: List[Any] = []

    for node in nodes:
        kind = node.kind
        if kind == WhereType.RAW:
            bindings.extend(node.bindings)
        elif kind in (WhereType.BASIC, WhereType.DATE):
            if not is_expression(node.value):
                bindings.append(node.value)
        elif kind in (WhereType.IN, WhereType.NOT_IN):
            bindings.extend(v for v in node.values if not is_expression(v))
        elif kind == WhereType.BETWEEN:
            bindings.extend(node.values)
        elif kind in (
            WhereType.IN_SUB, WhereType.NOT_IN_SUB, WhereType.SUB,
            WhereType.EXISTS, WhereType.NOT_EXISTS, WhereType.NESTED,
        ):
            bindings.extend(node.query.bindings())

    return bindings


# =============================================================================
# Builder
# =============================================================================

class Conditions:
    """
    Ordered list of where nodes with the fluent where-building API.

    Args:
        nested_factory: Returns a fresh object (with this same API) handed to
            nested-group callbacks.
        query_factory: Returns a fresh query builder handed to sub-select
            callbacks (where_in, where_exists, sub comparisons).
    """

    def __init__(
        self,
        nested_factory: Optional[Callable[[], Any]] = None,
        query_factory: Optional[Callable[[], Any]] = None,
    ):
        self.nodes: List[WhereNode] = []
        self.nested_factory = nested_factory
        self.query_factory = query_factory

    def __len__(self) -> int:
        return len(self.nodes)

    def __deepcopy__(self, memo):
        # Factories belong to the owning builder and are shared, not copied.
        clone = Conditions(self.nested_factory, self.query_factory)
        clone.nodes = copy.deepcopy(self.nodes, memo)
        return clone

    def __iter__(self):
        return iter(self.nodes)

    def add(self, node: WhereNode) -> "Conditions":
        self.nodes.append(node)
        return self

    def bindings(self) -> List[Any]:
        return collect_bindings(self.nodes)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _new_nested(self) -> Any:
        if self.nested_factory is None:
            raise QueryError("Nested conditions need a builder-owned condition list")
        return self.nested_factory()

    def _resolve_query(self, query: Any) -> Any:
        """Turn a callback, builder or model into a QueryModel."""
        if callable(query) and not hasattr(query, "model") and not hasattr(query, "wheres"):
            if self.query_factory is None:
                raise QueryError("Sub-select callbacks need a builder-owned condition list")
            sub = self.query_factory()
            query(sub)
            query = sub
        return _model_of(query)

    @staticmethod
    def _is_query(value: Any) -> bool:
        if hasattr(value, "model") or hasattr(value, "wheres"):
            return True
        return callable(value) and not is_expression(value)

    @staticmethod
    def _prepare(operator: Any, value: Any):
        """Two-argument calls mean "=", unknown operators are treated as values."""
        if value is _MISSING:
            return "=", operator
        if not (isinstance(operator, str) and operator.lower() in OPERATORS):
            return "=", operator
        operator = operator.lower()
        if value is None and operator not in ("=", "<>", "!="):
            raise QueryError(f"Illegal operator and value combination: {operator} NULL")
        return operator, value

    # -------------------------------------------------------------------------
    # Basic
    # -------------------------------------------------------------------------

    def where(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING,
              boolean: str = "and") -> "Conditions":
        if isinstance(column, dict):
            return self._where_dict(column, boolean)

        if callable(column) and not is_expression(column) and operator is _MISSING:
            return self.where_nested(column, boolean)

        operator, value = self._prepare(operator, value)

        if self._is_query(value):
            return self.add(SubWhere(boolean, column, operator, self._resolve_query(value)))

        if value is None:
            if operator == "=":
                return self.where_null(column, boolean)
            if operator in ("!=", "<>"):
                return self.where_not_null(column, boolean)

        return self.add(BasicWhere(boolean, column, operator, value))

    def or_where(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING) -> "Conditions":
        return self.where(column, operator, value, "or")

    def _where_dict(self, values: dict, boolean: str) -> "Conditions":
        def add_all(target):
            for key, val in values.items():
                target.where(key, "=", val)

        if self.nested_factory is None:
            add_all(self)
            return self
        return self.where_nested(add_all, boolean)

    def where_raw(self, sql: str, bindings: Optional[List[Any]] = None,
                  boolean: str = "and") -> "Conditions":
        return self.add(RawWhere(boolean, sql, list(bindings or [])))

    def or_where_raw(self, sql: str, bindings: Optional[List[Any]] = None) -> "Conditions":
        return self.where_raw(sql, bindings, "or")

    def where_column(self, first: Any, operator: Any = _MISSING, second: Any = _MISSING,
                     boolean: str = "and") -> "Conditions":
        operator, second = self._prepare(operator, second)
        return self.add(ColumnWhere(boolean, first, operator, second))

    def or_where_column(self, first: Any, operator: Any = _MISSING,
                        second: Any = _MISSING) -> "Conditions":
        return self.where_column(first, operator, second, "or")

    # -------------------------------------------------------------------------
    # In / not in
    # -------------------------------------------------------------------------

    def where_in(self, column: Any, values: Any, boolean: str = "and",
                 negated: bool = False) -> "Conditions":
        if self._is_query(values):
            return self.add(InSubWhere(boolean, column, self._resolve_query(values), negated))
        return self.add(InWhere(boolean, column, list(values), negated))

    def or_where_in(self, column: Any, values: Any) -> "Conditions":
        return self.where_in(column, values, "or")

    def where_not_in(self, column: Any, values: Any, boolean: str = "and") -> "Conditions":
        return self.where_in(column, values, boolean, negated=True)

    def or_where_not_in(self, column: Any, values: Any) -> "Conditions":
        return self.where_in(column, values, "or", negated=True)

    # -------------------------------------------------------------------------
    # Null / between / dates
    # -------------------------------------------------------------------------

    def where_null(self, column: Any, boolean: str = "and", negated: bool = False) -> "Conditions":
        return self.add(NullWhere(boolean, column, negated))

    def or_where_null(self, column: Any) -> "Conditions":
        return self.where_null(column, "or")

    def where_not_null(self, column: Any, boolean: str = "and") -> "Conditions":
        return self.where_null(column, boolean, negated=True)

    def or_where_not_null(self, column: Any) -> "Conditions":
        return self.where_null(column, "or", negated=True)

    def where_between(self, column: Any, values: List[Any], boolean: str = "and",
                      negated: bool = False) -> "Conditions":
        values = list(values)
        if len(values) != 2:
            raise QueryError(f"Between needs exactly two values, got {len(values)}")
        return self.add(BetweenWhere(boolean, column, values, negated))

    def or_where_between(self, column: Any, values: List[Any]) -> "Conditions":
        return self.where_between(column, values, "or")

    def where_not_between(self, column: Any, values: List[Any], boolean: str = "and") -> "Conditions":
        return self.where_between(column, values, boolean, negated=True)

    def or_where_not_between(self, column: Any, values: List[Any]) -> "Conditions":
        return self.where_between(column, values, "or", negated=True)

    def _where_date_based(self, part: str, column: Any, operator: Any, value: Any,
                          boolean: str) -> "Conditions":
        operator, value = self._prepare(operator, value)
        return self.add(DateWhere(boolean, DATE_FUNCTIONS[part], column, operator, value))

    def where_date(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING,
                   boolean: str = "and") -> "Conditions":
        return self._where_date_based("date", column, operator, value, boolean)

    def where_month(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING,
                    boolean: str = "and") -> "Conditions":
        return self._where_date_based("month", column, operator, value, boolean)

    def where_day(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING,
                  boolean: str = "and") -> "Conditions":
        return self._where_date_based("day", column, operator, value, boolean)

    def where_year(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING,
                   boolean: str = "and") -> "Conditions":
        return self._where_date_based("year", column, operator, value, boolean)

    def where_time(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING,
                   boolean: str = "and") -> "Conditions":
        return self._where_date_based("time", column, operator, value, boolean)

    # -------------------------------------------------------------------------
    # Nested / exists
    # -------------------------------------------------------------------------

    def where_nested(self, callback: Callable[[Any], Any], boolean: str = "and") -> "Conditions":
        nested = self._new_nested()
        callback(nested)
        owner = _model_of(nested)
        if len(owner.wheres):
            self.add(NestedWhere(boolean, owner))
        return self

    def where_exists(self, query: Any, boolean: str = "and", negated: bool = False) -> "Conditions":
        return self.add(ExistsWhere(boolean, self._resolve_query(query), negated))

    def or_where_exists(self, query: Any) -> "Conditions":
        return self.where_exists(query, "or")

    def where_not_exists(self, query: Any, boolean: str = "and") -> "Conditions":
        return self.where_exists(query, boolean, negated=True)

    def or_where_not_exists(self, query: Any) -> "Conditions":
        return self.where_exists(query, "or", negated=True)
