"""
Unit tests for HTTP request parsing and the body stream.
"""

import pytest

from simplehttp.http.request import (
    BodyStream,
    HTTPRequest,
    HTTPParseError,
    RequestParser,
    parse_request,
)


class TestRequestParser:
    """Tests for RequestParser class."""

    def test_parse_simple_get(self, sample_get_request: bytes):
        """Test parsing a simple GET request."""
        parser = RequestParser()
        request = parser.parse(sample_get_request, ("127.0.0.1", 12345))

        assert request.method == "GET"
        assert request.path == "/users/42"
        assert request.url == "/users/42?page=1&limit=10"
        assert request.version == "HTTP/1.1"
        assert request.client_address == ("127.0.0.1", 12345)

    def test_parse_headers(self, sample_get_request: bytes):
        """Header names are lowercased."""
        request = parse_request(sample_get_request)

        assert request.headers["host"] == "localhost:4000"
        assert request.user_agent == "pytest"
        assert request.headers["accept"] == "application/json"
        assert request.is_keep_alive is True

    def test_parse_query_params(self, sample_get_request: bytes):
        """The query string is kept out of the path and parsed separately."""
        request = parse_request(sample_get_request)

        assert request.query_params == {"page": ["1"], "limit": ["10"]}
        assert request.get_query("page") == "1"
        assert request.get_query("missing") is None
        assert request.get_query("missing", "default") == "default"

    def test_parse_post_with_body(self, sample_post_request: bytes):
        """Test parsing a POST request with a body."""
        request = parse_request(sample_post_request)

        assert request.method == "POST"
        assert request.content_type == "application/json"
        assert request.authorization == "Bearer secret"
        assert request.body is None  # parsed later, by the dispatcher
        assert request.body_stream.read_all() == b'{"name": "John", "email": "john@example.com"}'

    def test_path_is_not_percent_decoded(self):
        """Test that the path is not percent-decoded."""
        request = parse_request(b"GET /users/john%20doe HTTP/1.1\r\nHost: x\r\n\r\n")

        assert request.path == "/users/john%20doe"

    def test_leading_double_slash_kept(self):
        """Test that "//admin/secret" is not read as a host name."""
        request = parse_request(b"GET //admin/secret?x=1 HTTP/1.1\r\nHost: x\r\n\r\n")

        assert request.path == "//admin/secret"
        assert request.get_query("x") == "1"

    def test_absolute_form_target(self):
        """Test that an absolute URL target yields its path and query."""
        request = parse_request(b"GET http://example.com/users/1?a=2 HTTP/1.1\r\n\r\n")

        assert request.path == "/users/1"
        assert request.get_query("a") == "2"

    def test_empty_target_path(self):
        """Test a target with only a query string."""
        request = parse_request(b"GET ?a=1 HTTP/1.1\r\nHost: x\r\n\r\n")

        assert request.path == "/"
        assert request.get_query("a") == "1"

    def test_parse_invalid_method(self):
        """Test parsing an invalid method."""
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"FETCH / HTTP/1.1\r\n\r\n")

        assert exc_info.value.status_code == 405

    def test_parse_invalid_request_line(self):
        """Test parsing an invalid request line."""
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"GET\r\n\r\n")

        assert exc_info.value.status_code == 400

    def test_unsupported_version(self):
        """Test an unsupported HTTP version."""
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"GET / HTTP/2.0\r\n\r\n")

        assert exc_info.value.status_code == 505

    def test_missing_terminator(self):
        """Test a head without the blank line."""
        with pytest.raises(HTTPParseError):
            parse_request(b"GET / HTTP/1.1\r\nHost: x\r\n")

    def test_body_too_large(self):
        """Test a body over max_size."""
        data = b"POST / HTTP/1.1\r\nContent-Length: 100\r\n\r\n" + b"x" * 100

        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(data, max_size=10)

        assert exc_info.value.status_code == 413

    def test_invalid_content_length(self):
        """Test invalid Content-Length values."""
        for value in (b"abc", b"-1"):
            with pytest.raises(HTTPParseError) as exc_info:
                parse_request(b"POST / HTTP/1.1\r\nContent-Length: " + value + b"\r\n\r\n")
            assert exc_info.value.status_code == 400

    def test_chunked_bodies_rejected(self):
        """Test rejecting chunked bodies."""
        data = b"POST / HTTP/1.1\r\nTransfer-Encoding: chunked\r\n\r\n0\r\n\r\n"

        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(data)

        assert exc_info.value.status_code == 501

    def test_incomplete_body(self):
        """Test a body shorter than Content-Length."""
        with pytest.raises(HTTPParseError):
            parse_request(b"POST / HTTP/1.1\r\nContent-Length: 10\r\n\r\nabc")

    def test_duplicate_headers_joined(self):
        """Test joining duplicate headers."""
        request = parse_request(
            b"GET / HTTP/1.1\r\nAccept: text/html\r\nAccept: application/json\r\n\r\n"
        )

        assert request.headers["accept"] == "text/html, application/json"

    def test_parse_head_without_body_stream(self):
        """Test parse_head() without a body stream."""
        parser = RequestParser()
        request = parser.parse_head(b"DELETE /items/3 HTTP/1.1\r\nHost: x\r\n\r\n")

        assert request.method == "DELETE"
        assert request.body_stream is None
        assert request.content_length == 0


class TestHTTPRequest:
    """Tests for HTTPRequest helpers."""

    def test_url_defaults_to_path(self):
        """Test that url defaults to path."""
        request = HTTPRequest(method="GET", path="/a")

        assert request.url == "/a"
        assert request.params == {}
        assert request.body is None
        assert request.phase is None

    def test_keep_alive_rules(self):
        """Test keep-alive rules for HTTP/1.0 and 1.1."""
        assert HTTPRequest("GET", "/", version="HTTP/1.1").is_keep_alive
        assert not HTTPRequest(
            "GET", "/", version="HTTP/1.1", headers={"connection": "close"}
        ).is_keep_alive
        assert not HTTPRequest("GET", "/", version="HTTP/1.0").is_keep_alive
        assert HTTPRequest(
            "GET", "/", version="HTTP/1.0", headers={"connection": "keep-alive"}
        ).is_keep_alive

    def test_get_header_case_insensitive(self):
        """Test case-insensitive header lookup."""
        request = HTTPRequest("GET", "/", headers={"x-token": "abc"})

        assert request.get_header("X-Token") == "abc"
        assert request.get_header("X-Missing", "none") == "none"


class TestBodyStream:
    """Tests for BodyStream."""

    def test_chunks_until_length(self):
        """Test chunking until Content-Length."""
        stream = BodyStream.from_bytes(b"abcdefghij", chunk_size=4)

        assert list(stream) == [b"abcd", b"efgh", b"ij"]
        assert stream.at_end

    def test_empty_body(self):
        """Test an empty body."""
        stream = BodyStream.from_bytes(b"")

        assert list(stream) == []
        assert stream.read_all() == b""

    def test_stops_at_declared_length(self):
        """Bytes past Content-Length belong to the next request."""
        data = b"0123456789NEXT"
        position = 0

        def read(n):
            nonlocal position
            chunk = data[position:position + n]
            position += len(chunk)
            return chunk

        stream = BodyStream(read, length=10, chunk_size=3)

        assert stream.read_all() == b"0123456789"
        assert data[position:] == b"NEXT"

    def test_peer_closing_early_ends_stream(self):
        """Test that an early peer close ends the stream."""
        stream = BodyStream(lambda n: b"", length=10)

        assert stream.read_all() == b""
        assert stream.at_end

    def test_drain(self):
        """Test drain()."""
        stream = BodyStream.from_bytes(b"x" * 20, chunk_size=8)
        next(iter(stream))

        assert stream.remaining == 12
        assert stream.drain() == 12
        assert stream.remaining == 0
