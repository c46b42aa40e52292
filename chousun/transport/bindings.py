"""
Value binding for compiled SQL.

The grammar emits "?" placeholders only; this module renders values as
ClickHouse literals and substitutes them right before a request is built.
Placeholders inside string literals and quoted identifiers are left alone.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union
from uuid import UUID

from chousun.exceptions import QueryError
from chousun.query.expression import is_expression

_ESCAPES = {
    "\\": "\\\\",
    "'": "\\'",
    "\n": "\\n",
    "\t": "\\t",
    "\r": "\\r",
    "\0": "\\0",
}


def quote_string(value: str) -> str:
    return "'" + "".join(_ESCAPES.get(char, char) for char in value) + "'"


def quote(value: Any) -> str:
    """Render a Python value as a SQL literal."""
    if is_expression(value):
        return value.get_value()
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, Enum):
        return quote(value.value)
    if isinstance(value, datetime):
        return quote_string(value.strftime("%Y-%m-%d %H:%M:%S"))
    if isinstance(value, date):
        return quote_string(value.isoformat())
    if isinstance(value, (bytes, bytearray)):
        return quote_string(bytes(value).decode("utf-8", errors="replace"))
    if isinstance(value, (list, tuple, set)):
        return "[" + ", ".join(quote(item) for item in value) + "]"
    if isinstance(value, UUID):
        return quote_string(str(value))
    return quote_string(str(value))


def _placeholder_positions(sql: str) -> List[int]:
    """Positions of "?" outside quoted strings and identifiers."""
    positions = []
    quote_char: Optional[str] = None
    index = 0

    while index < len(sql):
        char = sql[index]
        if quote_char:
            if char == "\\":
                index += 2
                continue
            if char == quote_char:
                quote_char = None
        elif char in ("'", '"', "`"):
            quote_char = char
        elif char == "?":
            positions.append(index)
        index += 1

    return positions


def _name_at(sql: str, start: int) -> str:
    """Identifier starting at start, or "" when none does."""
    end = start
    while end < len(sql) and (sql[end].isalnum() or sql[end] == "_"):
        end += 1
    if end == start or sql[start].isdigit():
        return ""
    return sql[start:end]


def _bind_named(sql: str, bindings: Dict[str, Any]) -> str:
    """Fill :name and {name} placeholders outside quotes in a single pass."""
    parts = []
    quote_char: Optional[str] = None
    index = 0

    while index < len(sql):
        char = sql[index]
        if quote_char:
            if char == "\\":
                parts.append(sql[index:index + 2])
                index += 2
                continue
            if char == quote_char:
                quote_char = None
        elif char in ("'", '"', "`"):
            quote_char = char
        elif char == ":" and not sql.startswith("::", index) and sql[index - 1:index] != ":":
            name = _name_at(sql, index + 1)
            if name in bindings:
                parts.append(quote(bindings[name]))
                index += len(name) + 1
                continue
        elif char == "{":
            name = _name_at(sql, index + 1)
            if name in bindings and sql[index + 1 + len(name):index + 2 + len(name)] == "}":
                parts.append(quote(bindings[name]))
                index += len(name) + 2
                continue
        parts.append(char)
        index += 1

    return "".join(parts)


def bind(sql: str, bindings: Optional[Union[Sequence[Any], Dict[str, Any]]] = None) -> str:
    """
    Substitute bindings into SQL.

    A sequence fills "?" placeholders in order; its length must match the
    placeholder count. A dict fills ":name" and "{name}" placeholders; names
    without a binding and "::" casts are left as written.

    Raises:
        QueryError: When a positional binding count does not match
    """
    if not bindings:
        return sql

    if isinstance(bindings, dict):
        return _bind_named(sql, bindings)

    bindings = list(bindings)
    positions = _placeholder_positions(sql)

    if len(positions) != len(bindings):
        raise QueryError(
            f"Query has {len(positions)} placeholders but {len(bindings)} bindings were given"
        )

    parts = []
    last = 0
    for position, value in zip(positions, bindings):
        parts.append(sql[last:position])
        parts.append(quote(value))
        last = position + 1
    parts.append(sql[last:])

    return "".join(parts)
