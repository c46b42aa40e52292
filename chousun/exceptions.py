"""
chousun Exceptions
"""

import re
from typing import Optional


class ChousunError(Exception):
    """Base exception for chousun."""

    def __init__(self, message: str, status_code: int = None, details: dict = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def __str__(self):
        if self.status_code:
            return f"[{self.status_code}] {self.message}"
        return self.message


class ConfigurationError(ChousunError):
    """Raised when the connection configuration is unusable (unknown driver or connection)."""
    pass


class QueryError(ChousunError):
    """Raised when a query cannot be built (empty SQL, bad arguments)."""
    pass


class TransportError(ChousunError):
    """
    Raised when a completed request reports an error state.

    Attributes:
        status_code: HTTP status of the response (0 when no response arrived)
        body: Raw response body as text
        code: Engine error code parsed from the body ("Code: 60. DB::Exception ...")
        sql: SQL text the request carried
    """

    CODE_PATTERN = re.compile(r"Code:\s*(\d+)")

    def __init__(
        self,
        message: str,
        status_code: int = None,
        body: str = "",
        sql: Optional[str] = None,
    ):
        super().__init__(message, status_code=status_code, details={"sql": sql} if sql else None)
        self.body = body
        self.sql = sql
        self.code = self._parse_code(body)

    @classmethod
    def _parse_code(cls, body: str) -> Optional[int]:
        match = cls.CODE_PATTERN.search(body or "")
        return int(match.group(1)) if match else None
