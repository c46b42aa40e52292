"""
Tests for request execution and streaming strategies.
"""

import gzip
import io
import threading

import requests

from chousun.transport.queue import QueueConfig, RequestQueue
from chousun.transport.request import HttpRequest, RequestState
from chousun.transport.stream import (
    GZIP_HEADER_PREFIX,
    ChunkReader,
    ChunkWriter,
    GzipChunkReader,
    ResultSink,
    StreamRead,
    StreamWrite,
)

from tests.conftest import FakeResponse, FakeSession


def make_request(url="http://127.0.0.1:8123/?readonly=2", body="select 1"):
    return HttpRequest().post().set_url(url).set_body(body)


class BlockingSession(FakeSession):
    """Fake session whose requests wait until released."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def request(self, method, url, **kwargs):
        self.release.wait(5)
        return super().request(method, url, **kwargs)


class TestExecOne:
    """Synchronous execution."""

    def test_success(self, queue, session):
        """The response is recorded and the request completes."""
        session.respond(200, "1\n", {"X-ClickHouse-Summary": '{"read_rows":"1"}'})
        request = make_request()

        queue.exec_one(request)

        assert request.state == RequestState.COMPLETED
        assert request.response.ok
        assert request.response.body == b"1\n"
        assert request.response.header("x-clickhouse-summary") == '{"read_rows":"1"}'
        assert session.last_call["data"] == b"select 1"
        assert session.last_call["method"] == "POST"

    def test_transport_failure_is_a_response(self, queue, session):
        """A connection error becomes an errored response, not an exception."""
        session.error = requests.exceptions.ConnectionError("connection refused")
        request = make_request()

        queue.exec_one(request)

        assert request.response.status_code == 0
        assert "connection refused" in request.response.error
        assert not request.response.ok

    def test_callbacks_then_progress(self, queue, session):
        """Completion hooks run before the progress function, on failure too."""
        session.error = requests.exceptions.Timeout("timed out")
        order = []
        request = make_request()
        request.add_callback(lambda r: order.append("hook"))
        request.set_progress_function(lambda r: order.append("progress"))

        queue.exec_one(request)

        assert order == ["hook", "progress"]

    def test_failing_hook_does_not_stop_completion(self, queue):
        """A raising hook is logged and the request still completes."""
        request = make_request()
        request.add_callback(lambda r: 1 / 0)

        queue.exec_one(request)

        assert request.is_completed
        assert request.wait(0)

    def test_basic_auth_and_timeouts(self, queue, session):
        """Auth, timeouts and TLS settings reach the session."""
        request = make_request().auth_by_basic_auth("user", "pw").set_ssl_ca("/etc/ca.pem")
        request.set_connect_timeout(2).set_timeout(30)

        queue.exec_one(request)

        call = session.last_call
        assert call["auth"] == ("user", "pw")
        assert call["timeout"] == (2, 30)
        assert call["verify"] == "/etc/ca.pem"

    def test_chunked_body_is_streamed(self, queue, session):
        """A chunked request sends its body as an iterable."""
        request = make_request().header("Transfer-Encoding", "chunked")

        queue.exec_one(request, is_streaming=True)

        assert session.last_call["streamed"] is True
        assert session.last_call["data"] == b"select 1"

    def test_upload_function(self, queue, session):
        """The read function is drained into the request body."""
        request = make_request(body=None)
        request.read_function = ChunkReader(io.BytesIO(b"a" * 20000))

        queue.exec_one(request, is_streaming=True)

        assert session.last_call["data"] == b"a" * 20000

    def test_download_function(self, queue, session):
        """The write function receives the response body."""
        session.respond(200, b"x" * 10000)
        target = io.BytesIO()
        request = make_request()
        request.write_function = ChunkWriter(target)

        queue.exec_one(request, is_streaming=True)

        assert target.getvalue() == b"x" * 10000
        assert request.response.body == b""
        assert session.last_call["stream"] is True

    def test_download_error_keeps_body(self, queue, session):
        """An error response is not written to the sink."""
        session.respond(500, "Code: 60. DB::Exception: Table default.nope doesn't exist.")
        target = io.BytesIO()
        request = make_request()
        request.write_function = ChunkWriter(target)

        queue.exec_one(request)

        assert target.getvalue() == b""
        assert request.response.body.startswith(b"Code: 60.")

    def test_files_are_multipart(self, queue, session, tmp_path):
        """Attached files are uploaded as multipart parts."""
        ids = tmp_path / "ids.csv"
        ids.write_bytes(b"1\n2\n")
        request = make_request(body=None).attach_files({"ids": str(ids)})

        queue.exec_one(request)

        assert session.last_call["files"] == {"ids": ("ids.csv", b"1\n2\n")}
        assert "data" not in session.last_call


class TestQueueLoop:
    """Background execution."""

    def test_pending_count(self):
        """Queued requests count as pending until they finish."""
        session = BlockingSession()
        queue = RequestQueue(QueueConfig(max_parallel=2), session=session)
        requests_ = [make_request(), make_request()]

        for request in requests_:
            queue.add_que_loop(request)
        assert queue.count_pending() == 2

        session.release.set()
        assert queue.exec_loop_wait(timeout=5) is True
        assert queue.count_pending() == 0
        assert all(request.is_completed for request in requests_)
        queue.close()
        assert session.closed

    def test_wait_on_request(self, queue, session):
        """A queued request can be waited on directly."""
        session.respond(200, "ok")
        request = make_request()

        queue.add_que_loop(request)

        assert request.wait(5)
        assert request.response.body == b"ok"


class TestStrategies:
    """Default chunk strategies."""

    def test_chunk_reader(self):
        """Reads fixed-size chunks and b"" at the end."""
        reader = ChunkReader(io.BytesIO(b"abcdef"), chunk_size=4)
        assert reader() == b"abcd"
        assert reader() == b"ef"
        assert reader() == b""

    def test_gzip_reader(self):
        """Compressed chunks form one gzip member."""
        data = b"hello world " * 1000
        reader = GzipChunkReader(ChunkReader(io.BytesIO(data)))

        chunks = []
        while True:
            chunk = reader(1024)
            if not chunk:
                break
            chunks.append(chunk)

        assert gzip.decompress(b"".join(chunks)) == data

    def test_stream_write_gzip(self):
        """A gzip upload stream compresses its strategy."""
        stream = StreamWrite(io.BytesIO(b"1,a\n")).apply_gzip()

        assert stream.is_write()
        assert stream.is_gzip_header()
        assert isinstance(stream.strategy(), GzipChunkReader)

    def test_stream_read_closure(self):
        """A custom closure replaces the default writer."""
        received = []
        stream = StreamRead(io.BytesIO()).closure(received.append)

        stream.strategy()(b"chunk")

        assert not stream.is_write()
        assert received == [b"chunk"]

    def test_gzip_sink(self, tmp_path):
        """A gzip result file is a valid gzip member."""
        path = tmp_path / "out.csv.gz"
        handle = open(path, "wb")
        handle.write(GZIP_HEADER_PREFIX)
        sink = ResultSink(handle, gzip=True)

        sink.write(b"1,a\n")
        sink.write(b"2,b\n")
        sink.close()
        sink.close()

        raw_bytes = path.read_bytes()
        assert raw_bytes[:8] == b"\x1f\x8b\x08\x00\x00\x00\x00\x00"
        assert gzip.decompress(raw_bytes) == b"1,a\n2,b\n"
        assert handle.closed

    def test_empty_gzip_sink(self, tmp_path):
        """An empty result still closes into a valid gzip file."""
        path = tmp_path / "empty.gz"
        handle = open(path, "wb")
        handle.write(GZIP_HEADER_PREFIX)

        ResultSink(handle, gzip=True).close()

        assert gzip.decompress(path.read_bytes()) == b""
