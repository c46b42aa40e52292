"""
HTTP request snapshot handed to the RequestQueue.

A request is built once by the transport (URL, auth, headers, body and the
optional streaming strategies), then executed exactly once. It moves through
BUILT -> [QUEUED ->] EXECUTING -> COMPLETED; completion hooks run when the
response (or a transport failure) is recorded.
"""

import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

_request_ids = itertools.count(1)


class RequestState(str, Enum):
    """Lifecycle of a request."""
    BUILT = "built"
    QUEUED = "queued"
    EXECUTING = "executing"
    COMPLETED = "completed"


class AuthMethod(str, Enum):
    """
    Ways credentials reach the server.

    HEADER: X-ClickHouse-User / X-ClickHouse-Key headers (default)
    QUERY_STRING: user / password URL parameters
    BASIC_AUTH: HTTP basic authentication
    """
    HEADER = "header"
    QUERY_STRING = "query_string"
    BASIC_AUTH = "basic_auth"


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


@dataclass
class HttpResponse:
    """What came back for a request; status_code 0 means no response arrived."""
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    error: Optional[str] = None
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and is_success(self.status_code)

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        if name in self.headers:
            return self.headers[name]
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default


class HttpRequest:
    """
    One HTTP request to the query endpoint.

    Attributes:
        method: "POST" for queries, "GET" for the liveness probe
        url: Full URL including the settings query string
        headers: Request headers
        body: SQL text sent as body (None when the SQL travels in the URL)
        files: External-data files, table name -> path (multipart upload)
        auth: (user, password) for HTTP basic auth
        verify: TLS verification (True or a CA bundle path)
        read_function: Upload strategy, called with a size, returns bytes (b"" = end)
        write_function: Download strategy, called with each received chunk
        result_sink: Local file sink receiving the response body
        extended_info: sql / query / format the request was built from
    """

    def __init__(self):
        self.id = next(_request_ids)
        self.method = "POST"
        self.url = ""
        self.headers: Dict[str, str] = {}
        self.body: Optional[Union[str, bytes]] = None
        self.files: Dict[str, str] = {}
        self.auth: Optional[Tuple[str, str]] = None
        self.timeout: float = 20
        self.connect_timeout: float = 5
        self.verify: Union[bool, str] = True
        self.persistent = False
        self.verbose = False
        self.read_function: Optional[Callable[[int], bytes]] = None
        self.write_function: Optional[Callable[[bytes], Any]] = None
        self.result_sink: Any = None
        self.progress_function: Optional[Callable[["HttpRequest"], Any]] = None
        self.extended_info: Dict[str, Any] = {}
        self.response: Optional[HttpResponse] = None
        self.state = RequestState.BUILT

        self._callbacks: List[Callable[["HttpRequest"], Any]] = []
        self._done = threading.Event()
        self._started_at: Optional[float] = None

    # -------------------------------------------------------------------------
    # Building
    # -------------------------------------------------------------------------

    def get(self) -> "HttpRequest":
        self.method = "GET"
        return self

    def post(self) -> "HttpRequest":
        self.method = "POST"
        return self

    def set_url(self, url: str) -> "HttpRequest":
        self.url = url
        return self

    def header(self, name: str, value: str) -> "HttpRequest":
        self.headers[name] = value
        return self

    def auth_by_headers(self, username: str, password: Optional[str]) -> "HttpRequest":
        self.headers["X-ClickHouse-User"] = username
        self.headers["X-ClickHouse-Key"] = password or ""
        return self

    def auth_by_basic_auth(self, username: str, password: Optional[str]) -> "HttpRequest":
        self.auth = (username, password or "")
        return self

    def http_compression(self, flag: bool = True) -> "HttpRequest":
        if flag:
            self.headers["Accept-Encoding"] = "gzip"
        else:
            self.headers.pop("Accept-Encoding", None)
        return self

    def set_persistent(self) -> "HttpRequest":
        self.persistent = True
        self.headers["Connection"] = "keep-alive"
        return self

    def set_ssl_ca(self, ca_path: str) -> "HttpRequest":
        self.verify = ca_path
        return self

    def set_timeout(self, seconds: float) -> "HttpRequest":
        self.timeout = seconds
        return self

    def set_connect_timeout(self, seconds: float) -> "HttpRequest":
        self.connect_timeout = seconds
        return self

    def set_body(self, body: Union[str, bytes]) -> "HttpRequest":
        self.body = body
        return self

    def attach_files(self, files: Dict[str, str]) -> "HttpRequest":
        self.files.update(files)
        return self

    def set_result_sink(self, sink: Any) -> "HttpRequest":
        self.result_sink = sink
        return self

    def add_callback(self, callback: Callable[["HttpRequest"], Any]) -> "HttpRequest":
        """Register a completion hook; hooks run once, in order, on every exit path."""
        self._callbacks.append(callback)
        return self

    def set_progress_function(self, function: Callable[["HttpRequest"], Any]) -> "HttpRequest":
        self.progress_function = function
        return self

    def is_chunked(self) -> bool:
        return self.headers.get("Transfer-Encoding", "").lower() == "chunked"

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_completed(self) -> bool:
        return self.state == RequestState.COMPLETED

    def mark_queued(self) -> None:
        self.state = RequestState.QUEUED

    def mark_executing(self) -> None:
        self.state = RequestState.EXECUTING
        self._started_at = time.time()

    def complete(self, response: HttpResponse) -> None:
        """Record the response, run completion hooks and the progress function."""
        if self._started_at and not response.elapsed_ms:
            response.elapsed_ms = (time.time() - self._started_at) * 1000
        self.response = response

        try:
            for callback in self._callbacks:
                try:
                    callback(self)
                except Exception as e:
                    logger.warning(f"Completion hook failed for request {self.id}: {e}")

            if self.progress_function is not None:
                try:
                    self.progress_function(self)
                except Exception as e:
                    logger.debug(f"Progress function failed for request {self.id}: {e}")
        finally:
            self.state = RequestState.COMPLETED
            self._done.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the request completed; False when the timeout ran out."""
        return self._done.wait(timeout)

    def __repr__(self) -> str:
        return f"HttpRequest(id={self.id}, method={self.method}, state={self.state.value})"
