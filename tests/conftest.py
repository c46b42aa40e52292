"""
Pytest configuration and shared fixtures for chousun tests.
"""

import threading
from urllib.parse import parse_qs, urlsplit

import pytest

from chousun.query.builder import Builder
from chousun.query.grammar import Grammar
from chousun.transport.http import HttpTransport
from chousun.transport.queue import RequestQueue


class FakeResponse:
    """Stand-in for requests.Response."""

    def __init__(self, status_code=200, body=b"", headers=None):
        self.status_code = status_code
        self.content = body.encode("utf-8") if isinstance(body, str) else body
        self.headers = dict(headers or {})
        self.closed = False

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start:start + chunk_size]

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class FakeSession:
    """
    Stand-in for requests.Session recording every request.

    Uploaded iterables and multipart files are read eagerly so tests can
    assert on the bytes that would have been sent.
    """

    def __init__(self):
        self.calls = []
        self.responses = []
        self.default = FakeResponse(200, b"")
        self.error = None
        self.closed = False
        self._lock = threading.Lock()

    def respond(self, status_code=200, body=b"", headers=None):
        self.responses.append(FakeResponse(status_code, body, headers))
        return self

    def request(self, method, url, **kwargs):
        call = {"method": method, "url": url, **kwargs}

        data = kwargs.get("data")
        if data is not None and not isinstance(data, (bytes, str)):
            call["data"] = b"".join(data)
            call["streamed"] = True

        files = kwargs.get("files")
        if files:
            call["files"] = {name: (file_name, handle.read()) for name, (file_name, handle) in files.items()}

        with self._lock:
            self.calls.append(call)
            if self.error is not None:
                raise self.error
            return self.responses.pop(0) if self.responses else self.default

    def close(self):
        self.closed = True

    @property
    def last_call(self):
        return self.calls[-1]


def query_params(url):
    """Query-string parameters of a URL as a flat dict."""
    return {key: values[-1] for key, values in parse_qs(urlsplit(url).query).items()}


@pytest.fixture
def grammar():
    """Return a grammar without table prefix."""
    return Grammar()


@pytest.fixture
def builder(grammar):
    """Return a builder without connection."""
    return Builder(grammar=grammar)


@pytest.fixture
def session():
    """Return a recording fake HTTP session."""
    return FakeSession()


@pytest.fixture
def queue(session):
    """Return a request queue sending through the fake session."""
    queue = RequestQueue(session=session)
    yield queue
    queue.close()


@pytest.fixture
def transport(queue):
    """Return a transport on the fake session."""
    return HttpTransport("127.0.0.1", 8123, "default", "default", "secret", queue=queue)


@pytest.fixture
def json_body():
    """Return a ClickHouse JSON-format response body."""
    return (
        '{"meta": [{"name": "id", "type": "UInt64"}, {"name": "name", "type": "String"}],'
        ' "data": [{"id": "1", "name": "a"}, {"id": "2", "name": "b"}],'
        ' "rows": 2, "rows_before_limit_at_least": 40,'
        ' "statistics": {"elapsed": 0.001, "rows_read": 2, "bytes_read": 32}}'
    )
