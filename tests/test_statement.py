"""
Tests for statement results.
"""

import pytest

from chousun.core.statement import Statement, parse_summary
from chousun.exceptions import TransportError
from chousun.transport.request import HttpRequest, HttpResponse


def completed(status_code=200, body=b"", headers=None, error=None, format="JSON", sql="select 1"):
    request = HttpRequest()
    request.extended_info = {"sql": sql, "format": format}
    request.complete(HttpResponse(status_code, dict(headers or {}), body.encode() if isinstance(body, str) else body, error))
    return Statement(request)


class TestResults:
    """Decoded result access."""

    def test_json(self, json_body):
        """JSON bodies expose rows, meta and counters."""
        statement = completed(body=json_body)

        assert len(statement) == 2
        assert statement.fetch_one() == {"id": "1", "name": "a"}
        assert statement.fetch_one("name") == "a"
        assert [column["name"] for column in statement.meta()] == ["id", "name"]
        assert statement.count_rows() == 2
        assert statement.count_all() == 40
        assert statement.statistics()["rows_read"] == 2
        assert statement.totals() is None

    def test_json_each_row(self):
        """JSONEachRow is decoded line by line."""
        statement = completed(body='{"id": 1}\n{"id": 2}\n', format="JSONEachRow")
        assert [row["id"] for row in statement] == [1, 2]

    def test_empty_body(self):
        """An empty body has no rows."""
        statement = completed(body="")
        assert statement.rows() == []
        assert statement.fetch_one() is None

    def test_raw(self):
        """raw() is the body as received."""
        assert completed(body="1\t2\n", format="TSV").raw() == b"1\t2\n"

    def test_invalid_json(self):
        """A body that is not JSON is reported."""
        with pytest.raises(TransportError):
            completed(body="not json").rows()


class TestErrors:
    """Error surface."""

    def test_http_error(self):
        """Non-200 responses are errors carrying status, body, code and SQL."""
        body = "Code: 60. DB::Exception: Table default.nope doesn't exist. (UNKNOWN_TABLE)\n"
        statement = completed(status_code=404, body=body, sql="select * from nope")

        assert statement.is_error()
        with pytest.raises(TransportError) as error:
            statement.error()

        assert error.value.status_code == 404
        assert error.value.code == 60
        assert error.value.body == body
        assert error.value.sql == "select * from nope"
        assert str(error.value).startswith("[404] Code: 60.")

    def test_transport_failure(self):
        """A request without response is an error with status 0."""
        statement = completed(status_code=0, error="connection refused")

        assert statement.is_error()
        with pytest.raises(TransportError, match="connection refused"):
            statement.error()

    def test_2xx_is_success(self):
        """Any 200-class status counts as success."""
        statement = completed(status_code=202, body="")

        assert not statement.is_error()
        assert statement.response().ok
        assert completed(status_code=300).is_error()

    def test_rows_raise_on_error(self):
        """Reading rows of a failed statement raises."""
        with pytest.raises(TransportError):
            completed(status_code=500, body="Code: 241. Memory limit exceeded").rows()


class TestSummary:
    """Progress summary header."""

    def test_summary(self):
        """The summary header is decoded."""
        statement = completed(headers={"x-clickhouse-summary": '{"read_rows":"5"}'})
        assert statement.summary() == {"read_rows": "5"}

    def test_repeated_header_takes_last(self):
        """Joined repeated headers use the last value."""
        assert parse_summary('{"read_rows":"1"}, {"read_rows":"2"}') == {"read_rows": "2"}

    @pytest.mark.parametrize("value", [None, "", "garbage", "{broken", "{}"])
    def test_unusable(self, value):
        """Missing, malformed or empty summaries give None."""
        assert parse_summary(value) is None
