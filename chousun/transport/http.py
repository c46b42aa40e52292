"""
HTTP transport for the ClickHouse query endpoint.

Builds HttpRequest objects from SQL text, connection Settings and the
optional side-channel payloads (external-data files, result file sinks,
streams), then executes them on a RequestQueue and wraps them in Statements.

Readonly levels on the wire:
    2 -> select paths (full read-only enforcement)
    0 -> write paths
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import urlencode

from chousun.core.files import WhereInFile, WriteToFile
from chousun.core.settings import Settings
from chousun.core.sql import StatementText
from chousun.core.statement import SUMMARY_HEADER, Statement, parse_summary
from chousun.transport.bindings import bind
from chousun.transport.queue import QueueConfig, RequestQueue
from chousun.transport.request import AuthMethod, HttpRequest
from chousun.transport.stream import GZIP_HEADER_PREFIX, ResultSink, Stream

logger = logging.getLogger(__name__)

PING_RESPONSE = "Ok.\n"

ProgressCallback = Union[Callable[[Dict[str, Any]], Any], Tuple[Any, str], List[Any]]


class HttpTransport:
    """
    Connection to one ClickHouse server over HTTP.

    Args:
        host: Server host; may carry a scheme suffix or socket path ("/" or ":")
        port: Server port, appended only when positive and the host is plain
        database: Default database
        username: User name
        password: Password
        auth_method: How credentials are sent (header by default)
        connect_timeout: Connect timeout in seconds
        queue: RequestQueue to execute on (one is created if omitted)

    Usage:
        transport = HttpTransport("127.0.0.1", 8123, "default", "default", "")
        statement = transport.select("SELECT * FROM events WHERE id = ?", [5])
        rows = statement.rows()
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8123,
        database: str = "default",
        username: str = "default",
        password: Optional[str] = None,
        auth_method: Union[AuthMethod, str] = AuthMethod.HEADER,
        connect_timeout: float = 5,
        queue: Optional[RequestQueue] = None,
        queue_config: Optional[QueueConfig] = None,
    ):
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._auth_method = AuthMethod(auth_method)
        self._connect_timeout = connect_timeout
        self._ssl_ca: Optional[str] = None
        self._verbose = False
        self._progress: Optional[ProgressCallback] = None

        self._settings = Settings()
        self._settings.set_database(database)

        self._queue = queue if queue is not None else RequestQueue(queue_config)

    # =========================================================================
    # Configuration
    # =========================================================================

    def settings(self) -> Settings:
        return self._settings

    @property
    def queue(self) -> RequestQueue:
        return self._queue

    @property
    def connect_timeout(self) -> float:
        return self._connect_timeout

    def set_ssl_ca(self, ca_path: str) -> None:
        """Trust root for HTTPS connections (CA bundle path)."""
        self._ssl_ca = ca_path

    def verbose(self, flag: bool) -> bool:
        self._verbose = bool(flag)
        return self._verbose

    def progress_function(self, callback: Optional[ProgressCallback]) -> None:
        """
        Register a progress callback for select requests.

        Args:
            callback: Callable taking the decoded summary dict, or an
                (object, "method_name") pair
        """
        self._progress = callback

    def close(self) -> None:
        self._queue.close()

    # =========================================================================
    # URL construction
    # =========================================================================

    def uri(self) -> str:
        scheme = "https" if self._settings.https else "http"
        uri = f"{scheme}://{self._host}"

        if "/" in self._host or ":" in self._host:
            return uri
        if int(self._port or 0) > 0:
            return f"{uri}:{self._port}"
        return uri

    def url(self, params: Optional[Dict[str, Any]] = None, exclude: Tuple[str, ...] = ()) -> str:
        parameters = self._settings.effective_parameters(params, exclude=exclude)
        return f"{self.uri()}?{urlencode(parameters)}"

    # =========================================================================
    # Request construction
    # =========================================================================

    def _new_request(self, extended_info: Dict[str, Any]) -> HttpRequest:
        request = HttpRequest().post()
        request.extended_info = extended_info

        if self._auth_method == AuthMethod.BASIC_AUTH:
            request.auth_by_basic_auth(self._username, self._password)
        elif self._auth_method == AuthMethod.HEADER:
            request.auth_by_headers(self._username, self._password)

        if self._settings.enable_http_compression:
            request.http_compression(True)
        if self._settings.session_id:
            request.set_persistent()
        if self._ssl_ca:
            request.set_ssl_ca(self._ssl_ca)

        request.set_timeout(self._settings.timeout)
        request.set_connect_timeout(self._connect_timeout)
        request.verbose = self._verbose
        return request

    def _auth_params(self) -> Dict[str, Any]:
        if self._auth_method == AuthMethod.QUERY_STRING:
            return {"user": self._username, "password": self._password or ""}
        return {}

    def _make_request(
        self,
        query: StatementText,
        url_params: Optional[Dict[str, Any]] = None,
        query_as_string: bool = False,
        exclude: Tuple[str, ...] = (),
    ) -> HttpRequest:
        sql = query.to_sql()
        params = dict(url_params or {})
        params.update(self._auth_params())

        if query_as_string:
            params["query"] = sql

        request = self._new_request({"sql": sql, "query": query, "format": query.get_format()})
        request.set_url(self.url(params, exclude=exclude))

        if not query_as_string:
            request.set_body(sql)

        logger.debug(f"Built request {request.id}: {sql}")
        return request

    def get_request_read(
        self,
        query: StatementText,
        where_in_file: Optional[WhereInFile] = None,
        write_to_file: Optional[WriteToFile] = None,
    ) -> HttpRequest:
        """
        Build a select request (readonly=2).

        With external-data files the SQL travels in the "query" URL parameter
        and the files form the multipart body. With a result file the output
        format is forced onto the query and the response streams into the file.
        """
        url_params: Dict[str, Any] = {"readonly": 2}
        exclude: Tuple[str, ...] = ()
        query_as_string = False

        if where_in_file is not None and where_in_file.size():
            url_params.update(where_in_file.fetch_url_params())
            query_as_string = True

        if write_to_file is not None and write_to_file.fetch_format():
            query.set_format(write_to_file.fetch_format())
            exclude = ("extremes",)

        request = self._make_request(query, url_params, query_as_string, exclude)

        if where_in_file is not None and where_in_file.size():
            request.attach_files(where_in_file.fetch_files())

        if write_to_file is not None and write_to_file.fetch_format():
            handle = open(write_to_file.fetch_file(), "wb")
            if write_to_file.gzip:
                handle.write(GZIP_HEADER_PREFIX)

            sink = ResultSink(handle, gzip=write_to_file.gzip)
            request.set_result_sink(sink).add_callback(lambda completed: completed.result_sink.close())

        if self._progress is not None:
            request.set_progress_function(self._find_progress)

        return request

    def get_request_write(self, query: StatementText) -> HttpRequest:
        """Build a write request (readonly=0) with the SQL as body."""
        return self._make_request(query, {"readonly": 0})

    def write_stream_data(self, sql: Union[str, StatementText]) -> HttpRequest:
        """Build an upload request: SQL in the URL, body left for the data stream."""
        query = sql if isinstance(sql, StatementText) else StatementText(sql)

        params: Dict[str, Any] = {"readonly": 0, "query": query.to_sql()}
        params.update(self._auth_params())

        request = self._new_request({"sql": query.to_sql(), "query": query, "format": query.get_format()})
        request.set_url(self.url(params))
        return request

    # =========================================================================
    # Progress
    # =========================================================================

    def _find_progress(self, request: HttpRequest) -> bool:
        """Hand the X-ClickHouse-Summary of a successful response to the progress callback."""
        response = request.response
        if self._progress is None or response is None or not response.ok:
            return False

        data = parse_summary(response.header(SUMMARY_HEADER))
        if not data:
            return False

        callback = self._progress
        if isinstance(callback, (tuple, list)):
            target, method = callback
            callback = getattr(target, method)

        try:
            callback(data)
        except Exception as e:
            logger.debug(f"Progress callback failed: {e}")
            return False
        return True

    # =========================================================================
    # Execution
    # =========================================================================

    def _build_sql(self, sql: Union[str, StatementText], bindings: Optional[Sequence[Any]]) -> Union[str, StatementText]:
        if not bindings:
            return sql
        if isinstance(sql, StatementText):
            bound = StatementText(bind(sql.text, bindings))
            return bound.set_format(sql.format) if sql.format else bound
        return bind(sql, bindings)

    def _prepare_select(self, sql, bindings, where_in_file, write_to_file) -> HttpRequest:
        sql = self._build_sql(sql, bindings)
        if isinstance(sql, StatementText):
            return self.get_request_read(sql, where_in_file, write_to_file)

        query = StatementText(sql).set_format("JSON")
        return self.get_request_read(query, where_in_file, write_to_file)

    def _prepare_write(self, sql, bindings) -> HttpRequest:
        sql = self._build_sql(sql, bindings)
        query = sql if isinstance(sql, StatementText) else StatementText(sql)
        return self.get_request_write(query)

    def select(
        self,
        sql: Union[str, StatementText],
        bindings: Optional[Sequence[Any]] = None,
        where_in_file: Optional[WhereInFile] = None,
        write_to_file: Optional[WriteToFile] = None,
    ) -> Statement:
        """Run a select synchronously; the caller checks is_error()."""
        request = self._prepare_select(sql, bindings, where_in_file, write_to_file)
        self._queue.exec_one(request)
        return Statement(request)

    def select_async(
        self,
        sql: Union[str, StatementText],
        bindings: Optional[Sequence[Any]] = None,
        where_in_file: Optional[WhereInFile] = None,
        write_to_file: Optional[WriteToFile] = None,
    ) -> Statement:
        """Enqueue a select; the Statement waits for it when accessed."""
        request = self._prepare_select(sql, bindings, where_in_file, write_to_file)
        self._queue.add_que_loop(request)
        return Statement(request)

    def write(
        self,
        sql: Union[str, StatementText],
        bindings: Optional[Sequence[Any]] = None,
        exception: bool = True,
    ) -> Statement:
        """
        Run a write statement synchronously.

        Raises:
            TransportError: When the statement failed and exception is True
        """
        request = self._prepare_write(sql, bindings)
        self._queue.exec_one(request)

        statement = Statement(request)
        if exception and statement.is_error():
            statement.error()
        return statement

    def _streaming(self, stream: Stream, request: HttpRequest) -> Statement:
        try:
            if stream.is_gzip_header():
                if stream.is_write():
                    request.header("Content-Encoding", "gzip")
                    request.header("Content-Type", "application/x-www-form-urlencoded")
                else:
                    request.header("Accept-Encoding", "gzip")

            request.header("Transfer-Encoding", "chunked")

            if stream.is_write():
                request.read_function = stream.strategy()
            else:
                request.write_function = stream.strategy()

            self._queue.exec_one(request, is_streaming=True)

            statement = Statement(request)
            if statement.is_error():
                statement.error()
            return statement
        finally:
            if stream.is_write():
                stream.close()

    def stream_read(self, stream: Stream, sql: str, bindings: Optional[Sequence[Any]] = None) -> Statement:
        """Run a select and write its raw output into the stream."""
        query = StatementText(self._build_sql(sql, bindings))
        return self._streaming(stream, self.get_request_read(query))

    def stream_write(self, stream: Stream, sql: str, bindings: Optional[Sequence[Any]] = None) -> Statement:
        """Upload the stream's content as the data of an INSERT."""
        query = StatementText(self._build_sql(sql, bindings))
        return self._streaming(stream, self.write_stream_data(query))

    def ping(self) -> bool:
        """Liveness probe: true only when the server answers exactly "Ok.\\n"."""
        request = HttpRequest().get().set_url(self.uri()).set_connect_timeout(self._connect_timeout)
        if self._ssl_ca:
            request.set_ssl_ca(self._ssl_ca)

        self._queue.exec_one(request)
        response = request.response
        alive = response is not None and response.error is None and response.text() == PING_RESPONSE
        logger.info(f"Ping {self.uri()}: {'ok' if alive else 'failed'}")
        return alive

    # =========================================================================
    # Queue
    # =========================================================================

    def count_pending_queue(self) -> int:
        return self._queue.count_pending()

    def exec_loop_wait(self, timeout: Optional[float] = None) -> bool:
        return self._queue.exec_loop_wait(timeout)
