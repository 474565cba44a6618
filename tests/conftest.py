"""
pytest configuration and fixtures.
"""

import http.client
import json
import socket
from typing import Generator, List, Optional
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from simplehttp import SimpleHttpApi, ServerConfig, send_response
from simplehttp.http import BodyStream, HTTPRequest, ObservedResponse, ResponseWriter


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /users/42?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:4000\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: application/json\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with JSON body."""
    body = b'{"name": "John", "email": "john@example.com"}'
    return (
        b"POST /users HTTP/1.1\r\n"
        b"Host: localhost:4000\r\n"
        b"Content-Type: application/json\r\n"
        b"Authorization: Bearer secret\r\n"
        + b"Content-Length: %d\r\n" % len(body)
        + b"Connection: close\r\n"
        b"\r\n"
    ) + body


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        min_workers=2,
        max_workers=4,
        timeout=5.0,
        keep_alive_timeout=1.0,
        log_level="WARNING",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


# ─────────────────────────────────────────────────────────────────────────────
# In-memory requests and responses
# ─────────────────────────────────────────────────────────────────────────────

def make_request(
    method: str,
    path: str,
    body: Optional[bytes] = None,
    headers: Optional[dict] = None,
) -> HTTPRequest:
    """Build a request as the server would hand it to the dispatcher."""
    data = body or b""
    all_headers = {"host": "localhost"}
    if data:
        all_headers["content-length"] = str(len(data))
    all_headers.update(headers or {})
    request = HTTPRequest(method=method, path=path, headers=all_headers)
    request.body_stream = BodyStream.from_bytes(data, chunk_size=4)
    return request


class RecordingSink:
    """Collects what a ResponseWriter sends."""

    def __init__(self):
        self.sent: List[bytes] = []

    def __call__(self, data: bytes) -> bool:
        self.sent.append(data)
        return True

    @property
    def last(self) -> bytes:
        return self.sent[-1]


def make_response(sink: Optional[RecordingSink] = None) -> ObservedResponse:
    """An observed response writing into a RecordingSink."""
    return ObservedResponse(ResponseWriter(sink if sink is not None else RecordingSink()))


def body_of(response: ObservedResponse):
    """Decoded JSON body of an ended response."""
    return json.loads(response.record.body.decode("utf-8"))


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


# ─────────────────────────────────────────────────────────────────────────────
# Live server
# ─────────────────────────────────────────────────────────────────────────────

class LiveServer:
    """An api served on a background thread, plus a small client."""

    def __init__(self, api: SimpleHttpApi):
        self.api = api
        self.port: int = 0

    def start(self):
        self.port = self.api.start(port=0)

    def stop(self):
        self.api.stop()

    def request(
        self,
        method: str,
        path: str,
        body: Optional[bytes] = None,
        headers: Optional[dict] = None,
    ):
        """Send one request on a fresh connection. Returns (status, headers, body)."""
        conn = http.client.HTTPConnection("127.0.0.1", self.port, timeout=5)
        try:
            conn.request(method, path, body=body, headers=headers or {})
            response = conn.getresponse()
            return response.status, dict(response.getheaders()), response.read()
        finally:
            conn.close()

    def request_json(self, method: str, path: str, body=None, headers=None):
        raw = body if body is None or isinstance(body, bytes) else json.dumps(body).encode()
        status, _, data = self.request(method, path, raw, headers)
        return status, json.loads(data.decode("utf-8"))


@pytest.fixture
def live_server(config: ServerConfig) -> Generator[LiveServer, None, None]:
    """
    A server with an echo route and a params route, already listening.

    Tests may register more routes before sending requests.
    """
    api = SimpleHttpApi(config)

    @api.get("/users/$id")
    def get_user(request, response):
        send_response(response, 200, {"params": request.params, "body": request.body})

    @api.post("/echo")
    def echo(request, response):
        send_response(response, 200, {"received": request.body})

    server = LiveServer(api)
    server.start()

    yield server

    server.stop()
