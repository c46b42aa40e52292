"""
Request execution engine.

Executes HttpRequest objects over a shared requests.Session, either one at a
time on the caller's thread (exec_one) or in the background on a thread pool
(add_que_loop). There is no ordering between queued requests and nothing is
retried: a failure is recorded on the request's response.

Usage:
    queue = RequestQueue(QueueConfig(max_parallel=10))
    queue.add_que_loop(request_a)
    queue.add_que_loop(request_b)
    queue.exec_loop_wait()
"""

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from contextlib import ExitStack
from typing import Any, Callable, Dict, Iterator, Optional

import requests
from pydantic import BaseModel, Field

from chousun.transport.request import HttpRequest, HttpResponse, is_success

logger = logging.getLogger(__name__)


class QueueConfig(BaseModel):
    """Execution engine configuration."""

    max_parallel: int = Field(default=5, description="Max requests running at once")
    chunk_size: int = Field(default=8192, description="Streaming chunk size in bytes")


def _upload_chunks(read_function: Callable[[int], bytes], chunk_size: int) -> Iterator[bytes]:
    while True:
        chunk = read_function(chunk_size)
        if not chunk:
            return
        yield chunk if isinstance(chunk, bytes) else chunk.encode("utf-8")


class RequestQueue:
    """
    Runs requests synchronously or on a background pool.

    Args:
        config: Pool size and chunk size
        session: requests.Session to send through (one is created if omitted)
    """

    def __init__(self, config: Optional[QueueConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or QueueConfig()
        self.session = session if session is not None else requests.Session()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Dict[Future, HttpRequest] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def exec_one(self, request: HttpRequest, is_streaming: bool = False) -> None:
        """Execute a request on the calling thread; returns once it completed."""
        request.mark_executing()
        logger.debug(f"Executing {request.method} {request.url} (streaming={is_streaming})")

        response = HttpResponse(status_code=0, error="Request aborted")
        try:
            response = self._send(request, is_streaming)
        finally:
            request.complete(response)

    def add_que_loop(self, request: HttpRequest) -> None:
        """Enqueue a request for background execution without blocking."""
        request.mark_queued()

        with self._lock:
            future = self._get_executor().submit(self.exec_one, request)
            self._pending[future] = request
        future.add_done_callback(self._finished)

    def count_pending(self) -> int:
        """Number of enqueued requests that have not completed yet."""
        with self._lock:
            return sum(1 for request in self._pending.values() if not request.is_completed)

    def exec_loop_wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for every queued request; True when nothing is left pending."""
        with self._lock:
            futures = list(self._pending)

        if futures:
            wait(futures, timeout=timeout)
        return self.count_pending() == 0

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self.session.close()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.max_parallel,
                thread_name_prefix="chousun-queue",
            )
        return self._executor

    def _finished(self, future: Future) -> None:
        with self._lock:
            request = self._pending.pop(future, None)

        error = future.exception()
        if error is not None:
            logger.error(f"Queued request {request.id if request else '?'} failed: {error}")

    def _request_kwargs(self, request: HttpRequest, stack: ExitStack) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "method": request.method,
            "url": request.url,
            "headers": dict(request.headers),
            "timeout": (request.connect_timeout, request.timeout),
            "verify": request.verify,
        }
        if request.auth:
            kwargs["auth"] = request.auth

        if request.read_function is not None:
            kwargs["data"] = _upload_chunks(request.read_function, self.config.chunk_size)
        elif request.files:
            kwargs["files"] = {
                table: (os.path.basename(path), stack.enter_context(open(path, "rb")))
                for table, path in request.files.items()
            }
        elif request.body is not None:
            body = request.body.encode("utf-8") if isinstance(request.body, str) else request.body
            # An iterable body makes requests use chunked transfer encoding.
            kwargs["data"] = iter([body]) if request.is_chunked() else body

        if request.is_chunked() and "data" not in kwargs:
            kwargs["headers"].pop("Transfer-Encoding", None)

        return kwargs

    def _send(self, request: HttpRequest, is_streaming: bool) -> HttpResponse:
        sink = request.write_function
        if sink is None and request.result_sink is not None:
            sink = request.result_sink.write
        stream = sink is not None

        try:
            with ExitStack() as stack:
                kwargs = self._request_kwargs(request, stack)
                response = self.session.request(stream=stream, **kwargs)

                with response:
                    if stream and is_success(response.status_code):
                        for chunk in response.iter_content(chunk_size=self.config.chunk_size):
                            if chunk:
                                sink(chunk)
                        body = b""
                    else:
                        body = response.content

                    return HttpResponse(
                        status_code=response.status_code,
                        headers=dict(response.headers),
                        body=body,
                    )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Request {request.id} to {request.url} failed: {e}")
            return HttpResponse(status_code=0, error=str(e))
        except OSError as e:
            logger.warning(f"Request {request.id} could not read a local file: {e}")
            return HttpResponse(status_code=0, error=str(e))
