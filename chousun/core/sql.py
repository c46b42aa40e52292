"""
SQL statement text and output-format negotiation.

A StatementText holds raw or compiled SQL plus the output format the caller
wants. Compiling appends "FORMAT <name>" unless the text already names one
of the recognised formats, in which case the format written in the text wins.
"""

import logging
from typing import Iterator, Optional, Tuple

from chousun.exceptions import QueryError

logger = logging.getLogger(__name__)


SUPPORTED_FORMATS = (
    "TSVRaw",
    "TSVWithNamesAndTypes",
    "TSVWithNames",
    "TSV",
    "Vertical",
    "JSONCompact",
    "JSONEachRow",
    "TSKV",
    "TabSeparatedWithNames",
    "TabSeparatedWithNamesAndTypes",
    "TabSeparatedRaw",
    "BlockTabSeparated",
    "CSVWithNames",
    "CSV",
    "JSON",
    "TabSeparated",
)

_FORMATS_BY_KEY = {name.lower(): name for name in SUPPORTED_FORMATS}


def _tokens(sql: str) -> Iterator[Tuple[str, bool]]:
    """
    Yield (word, adjacent) pairs, skipping string literals, quoted identifiers
    and comments. adjacent is True when only whitespace separates the word
    from the previous one.
    """
    index = 0
    length = len(sql)
    adjacent = False

    while index < length:
        char = sql[index]

        if char in ("'", '"', "`"):
            index += 1
            while index < length and sql[index] != char:
                index += 2 if sql[index] == "\\" else 1
            index += 1
            adjacent = False
        elif sql.startswith("--", index):
            newline = sql.find("\n", index)
            index = length if newline == -1 else newline + 1
            adjacent = False
        elif sql.startswith("/*", index):
            end = sql.find("*/", index + 2)
            index = length if end == -1 else end + 2
            adjacent = False
        elif char.isalnum() or char == "_":
            start = index
            while index < length and (sql[index].isalnum() or sql[index] == "_"):
                index += 1
            yield sql[start:index], adjacent
            adjacent = True
        else:
            if not char.isspace():
                adjacent = False
            index += 1


def find_format(sql: str) -> Optional[str]:
    """
    Return the output format named by a FORMAT clause in the text.

    Only whole tokens separated by whitespace count: "FORMAT JSON" matches,
    an identifier such as `format_json`, a string literal 'FORMAT CSV' or
    columns like "format, json" do not.
    """
    previous = None
    for token, adjacent in _tokens(sql):
        if adjacent and previous is not None and previous.lower() == "format":
            name = _FORMATS_BY_KEY.get(token.lower())
            if name:
                return name
        previous = token
    return None


class StatementText:
    """
    SQL text with an optional output-format directive.

    Resolution is cached: the first to_sql() after set_format() computes the
    final text, later calls return it unchanged. set_format() again resolves
    afresh from the original text.

    Raises:
        QueryError: When the text is empty or whitespace only
    """

    def __init__(self, sql: str):
        if not sql or not str(sql).strip():
            raise QueryError("Empty Query")

        self._sql = str(sql)
        self._format: Optional[str] = None
        self._resolved: Optional[str] = None

    @property
    def text(self) -> str:
        """The SQL as given, before any format clause is applied."""
        return self._sql

    def set_format(self, name: str) -> "StatementText":
        self._format = name
        self._resolved = None
        return self

    @property
    def format(self) -> Optional[str]:
        if self._format is not None and self._resolved is None:
            self.to_sql()
        return self._format

    def get_format(self) -> Optional[str]:
        return self.format

    def to_sql(self) -> str:
        if self._format is None:
            return self._sql

        if self._resolved is None:
            self._resolved = self._apply_format()
        return self._resolved

    def _apply_format(self) -> str:
        sql = self._sql.strip()
        if sql.endswith(";"):
            sql = sql[:-1].rstrip()

        existing = find_format(sql)
        if existing:
            if existing != self._format:
                logger.debug(f"Query text already asks for FORMAT {existing}, keeping it over {self._format}")
            self._format = existing
            return sql

        return f"{sql} FORMAT {self._format}"

    def __str__(self) -> str:
        return self.to_sql()

    def __repr__(self) -> str:
        return f"StatementText({self._sql!r}, format={self._format!r})"
