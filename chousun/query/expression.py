"""
Raw SQL expressions.

An Expression is rendered verbatim by the grammar: it is never wrapped in
identifier quotes, never turned into a placeholder and never bound.
"""

from typing import Any


class Expression:
    """Raw SQL fragment."""

    def __init__(self, value: Any):
        self.value = value

    def get_value(self) -> str:
        return str(self.value)

    def __str__(self) -> str:
        return self.get_value()

    def __repr__(self) -> str:
        return f"Expression({self.value!r})"

    def __eq__(self, other) -> bool:
        return isinstance(other, Expression) and other.value == self.value

    def __hash__(self) -> int:
        return hash(("expression", self.value))


def raw(value: Any) -> Expression:
    """Create a raw expression, e.g. raw("count(*)")."""
    return Expression(value)


def is_expression(value: Any) -> bool:
    return isinstance(value, Expression)
