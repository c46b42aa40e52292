"""
Result of one executed request.

A Statement wraps the HttpRequest it was created for. For queued requests it
is handed back before the request finished; every accessor waits for
completion first.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from chousun.exceptions import TransportError
from chousun.transport.request import HttpRequest, HttpResponse

logger = logging.getLogger(__name__)

SUMMARY_HEADER = "X-ClickHouse-Summary"


class Statement:
    """
    Completed (or completing) request/response pair.

    Usage:
        statement = ch.transport.select("SELECT count() AS total FROM events")
        if statement.is_error():
            statement.error()
        print(statement.fetch_one("total"))
    """

    def __init__(self, request: HttpRequest):
        self._request = request
        self._decoded: Optional[Dict[str, Any]] = None
        self._rows: Optional[List[Dict[str, Any]]] = None

    @property
    def request(self) -> HttpRequest:
        return self._request

    def response(self) -> HttpResponse:
        self._request.wait()
        return self._request.response

    # -------------------------------------------------------------------------
    # Error surface
    # -------------------------------------------------------------------------

    def is_error(self) -> bool:
        response = self.response()
        return not response.ok

    def error(self) -> None:
        """
        Raise TransportError for this statement's failure.

        Raises:
            TransportError: Always; carries the status, the body and the SQL
        """
        response = self.response()
        body = response.text()

        if response.error is not None:
            message = f"Transport failure: {response.error}"
        elif body.strip():
            message = body.strip().splitlines()[0]
        else:
            message = f"HTTP {response.status_code} without body"

        raise TransportError(message, status_code=response.status_code, body=body, sql=self.sql())

    # -------------------------------------------------------------------------
    # Request info
    # -------------------------------------------------------------------------

    def sql(self) -> Optional[str]:
        return self._request.extended_info.get("sql")

    @property
    def format(self) -> Optional[str]:
        return self._request.extended_info.get("format")

    def summary(self) -> Optional[Dict[str, Any]]:
        """Decoded X-ClickHouse-Summary header, if the server sent one."""
        return parse_summary(self.response().header(SUMMARY_HEADER))

    # -------------------------------------------------------------------------
    # Result access
    # -------------------------------------------------------------------------

    def raw(self) -> bytes:
        return self.response().body

    def _decode(self) -> Dict[str, Any]:
        if self._decoded is not None:
            return self._decoded

        if self.is_error():
            self.error()

        text = self.response().text()
        if not text.strip():
            self._decoded = {}
        elif self.format == "JSONEachRow":
            self._decoded = {
                "data": [json.loads(line) for line in text.splitlines() if line.strip()]
            }
        else:
            try:
                decoded = json.loads(text)
            except json.JSONDecodeError as e:
                raise TransportError(
                    f"Response is not valid JSON ({self.format} format): {e}",
                    status_code=self.response().status_code,
                    body=text,
                    sql=self.sql(),
                )
            self._decoded = decoded if isinstance(decoded, dict) else {"data": decoded}

        return self._decoded

    def rows(self) -> List[Dict[str, Any]]:
        if self._rows is None:
            self._rows = list(self._decode().get("data", []))
        return self._rows

    def fetch_one(self, key: Optional[str] = None) -> Any:
        """First row, or one column of it when key is given."""
        rows = self.rows()
        if not rows:
            return None
        return rows[0].get(key) if key is not None else rows[0]

    def meta(self) -> List[Dict[str, str]]:
        return self._decode().get("meta", [])

    def totals(self) -> Optional[Dict[str, Any]]:
        return self._decode().get("totals")

    def extremes(self) -> Optional[Dict[str, Any]]:
        return self._decode().get("extremes")

    def statistics(self) -> Optional[Dict[str, Any]]:
        return self._decode().get("statistics")

    def count_rows(self) -> int:
        return int(self._decode().get("rows", len(self.rows())))

    def count_all(self) -> int:
        """Rows the query would return without LIMIT (rows_before_limit_at_least)."""
        decoded = self._decode()
        return int(decoded.get("rows_before_limit_at_least", decoded.get("rows", 0)))

    def __iter__(self):
        return iter(self.rows())

    def __len__(self) -> int:
        return len(self.rows())

    def __repr__(self) -> str:
        return f"Statement(request={self._request!r})"


def parse_summary(header: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Decode a progress summary header value.

    A repeated header arrives joined with ", "; the last JSON object wins.
    Missing or malformed values give None.
    """
    if not header:
        return None

    start = header.rfind("{")
    if start == -1:
        return None

    try:
        data = json.loads(header[start:])
    except ValueError:
        logger.debug(f"Ignoring malformed progress summary: {header!r}")
        return None

    return data if isinstance(data, dict) and data else None
