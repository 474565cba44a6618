"""
=============================================================================
HTTP RESPONSES
=============================================================================

Handlers do not return responses; they WRITE them:

    def get_user(request, response):
        send_response(response, 200, {"id": request.params["id"]})

That lets a middleware or handler finish the response later, from another
thread, after its own I/O completed. The worker thread that owns the
connection waits on ResponseWriter.wait() until end() was called.

=============================================================================
RESPONSE TYPES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   handler / middleware                                               │
    │        │  write_head(), end()                                        │
    │        ▼                                                             │
    │   ObservedResponse ──── records status/headers/body                  │
    │        │                └── notifies observers (access logger)      │
    │        │  forwards every call                                        │
    │        ▼                                                             │
    │   ResponseWriter   ──── serializes HTTP/1.1, hands bytes to sink     │
    │        │                                                             │
    │        ▼                                                             │
    │   Connection.send_response(bytes)                                    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

ObservedResponse wraps the writer instead of overriding its methods, so
observers can be attached without touching the transport object.

=============================================================================
WIRE FORMAT
=============================================================================

    HTTP/1.1 201 Created\\r\\n
    Content-Type: application/json\\r\\n
    Content-Length: 11\\r\\n
    Date: Sun, 18 Oct 2026 12:00:00 GMT\\r\\n
    Server: SimpleHttpApi/1.0\\r\\n
    Connection: keep-alive\\r\\n
    \\r\\n
    {"ok":true}

JSON bodies are compact: no spaces after separators, no trailing newline,
non-ASCII characters kept as-is (UTF-8 encoded), NaN and Infinity written
as null.

=============================================================================
"""

from dataclasses import dataclass, field
from email.utils import formatdate
from http import HTTPStatus
from typing import Any, Callable, Dict, List, Optional, Union
import json
import math
import logging
import threading

from ..errors import ResponseAlreadySentError


logger = logging.getLogger(__name__)


JSON_CONTENT_TYPE = "application/json"


def _finite(data: Any) -> Any:
    """Replace NaN and +/-Infinity with None, at any depth."""
    if isinstance(data, float) and not math.isfinite(data):
        return None
    if isinstance(data, dict):
        return {key: _finite(value) for key, value in data.items()}
    if isinstance(data, (list, tuple)):
        return [_finite(item) for item in data]
    return data


def to_json(data: Any) -> str:
    """
    Serialize data as compact JSON ('{"ok":true}').

    Non-finite floats become null, so the output is always valid JSON.
    """
    return json.dumps(_finite(data), separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def reason_phrase(status_code: int) -> str:
    """Reason phrase for the status line, "Unknown" for unregistered codes."""
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Unknown"


def format_http_date(timestamp: Optional[float] = None) -> str:
    """RFC 7231 HTTP-date, always GMT: "Sun, 18 Oct 2026 12:00:00 GMT"."""
    return formatdate(timestamp, usegmt=True)


@dataclass
class ResponseRecord:
    """What an ObservedResponse saw go out."""

    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class ResponseWriter:
    """
    Transport-level response for one request.

    =========================================================================
    LIFECYCLE
    =========================================================================

        NEW ──write_head()──► HEADERS_SET ──end()──► FINISHED
         │                                   ▲
         └────────────────end()──────────────┘   (status defaults to 200)

    - write_head() twice, set_header() after write_head(), or anything
      after end() raises ResponseAlreadySentError.
    - Bytes are produced once, in end(), because Content-Length is only
      known when the body is.

    =========================================================================
    """

    def __init__(
        self,
        sink: Callable[[bytes], Any],
        server_name: str = "SimpleHttpApi/1.0",
        default_headers: Optional[Dict[str, str]] = None,
    ):
        """
        Args:
            sink: Receives the serialized response, e.g.
                  Connection.send_response. May return False on failure.
            server_name: Value of the Server header.
            default_headers: Headers added unless the handler sets them
                             (the server passes Connection/Keep-Alive).
        """
        self._sink = sink
        self.server_name = server_name
        self.default_headers = dict(default_headers or {})

        self.status_code = 200
        self.headers: Dict[str, str] = {}
        self.body = b""
        self.delivered = False

        self._headers_sent = False
        self._lock = threading.Lock()
        self._finished = threading.Event()

    @property
    def headers_sent(self) -> bool:
        return self._headers_sent or self._finished.is_set()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def set_header(self, name: str, value: str) -> "ResponseWriter":
        if self.headers_sent:
            raise ResponseAlreadySentError(f"Cannot set header {name!r}: headers already sent")
        self.headers[name] = value
        return self

    def write_head(
        self,
        status_code: int,
        headers: Optional[Dict[str, str]] = None,
    ) -> "ResponseWriter":
        """Set the status code and headers. Allowed once per response."""
        with self._lock:
            if self.headers_sent:
                raise ResponseAlreadySentError("Headers already sent")
            self.status_code = int(status_code)
            if headers:
                self.headers.update(headers)
            self._headers_sent = True
        return self

    def end(self, body: Union[str, bytes, None] = None) -> None:
        """
        Finish the response and hand it to the sink.

        Raises:
            ResponseAlreadySentError: The response already ended.
        """
        if body is None:
            payload = b""
        elif isinstance(body, str):
            payload = body.encode("utf-8")
        else:
            payload = bytes(body)

        with self._lock:
            if self._finished.is_set():
                raise ResponseAlreadySentError("Response already ended")
            self._headers_sent = True
            self.body = payload
            data = self.to_bytes()
            try:
                self.delivered = self._sink(data) is not False
            finally:
                self._finished.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until end() ran. Returns False on timeout."""
        return self._finished.wait(timeout)

    @property
    def status_line(self) -> str:
        return f"HTTP/1.1 {self.status_code} {reason_phrase(self.status_code)}"

    def to_bytes(self) -> bytes:
        """Serialize status line, headers and body."""
        response_headers = dict(self.headers)
        response_headers["Content-Length"] = str(len(self.body))
        response_headers.setdefault("Date", format_http_date())
        response_headers.setdefault("Server", self.server_name)
        for name, value in self.default_headers.items():
            response_headers.setdefault(name, value)

        lines = [self.status_line]
        for name, value in response_headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")

        head = "\r\n".join(lines).encode("latin-1", errors="replace") + b"\r\n"
        return head + self.body


Observer = Callable[[ResponseRecord], None]


class ObservedResponse:
    """
    Wraps a response and reports what was written to observers.

    Same capability as ResponseWriter (set_header, write_head, end, wait),
    every call forwarded to the wrapped response. Once end() went through,
    each observer is called with a ResponseRecord.

    Usage:
        response = ObservedResponse(writer)
        response.add_observer(lambda record: print(record.status_code))
    """

    def __init__(self, inner: Any):
        self._inner = inner
        self._observers: List[Observer] = []
        self._lock = threading.Lock()
        self.record: Optional[ResponseRecord] = None

    @property
    def inner(self) -> Any:
        return self._inner

    @property
    def status_code(self) -> int:
        return self._inner.status_code

    @property
    def headers(self) -> Dict[str, str]:
        return self._inner.headers

    @property
    def headers_sent(self) -> bool:
        return self._inner.headers_sent

    @property
    def finished(self) -> bool:
        return self._inner.finished

    def add_observer(self, observer: Observer) -> None:
        with self._lock:
            self._observers.append(observer)

    def set_header(self, name: str, value: str) -> "ObservedResponse":
        self._inner.set_header(name, value)
        return self

    def write_head(
        self,
        status_code: int,
        headers: Optional[Dict[str, str]] = None,
    ) -> "ObservedResponse":
        self._inner.write_head(status_code, headers)
        return self

    def end(self, body: Union[str, bytes, None] = None) -> None:
        self._inner.end(body)

        if isinstance(body, str):
            payload = body.encode("utf-8")
        else:
            payload = bytes(body or b"")

        record = ResponseRecord(
            status_code=self._inner.status_code,
            headers=dict(self._inner.headers),
            body=payload,
        )
        with self._lock:
            self.record = record
            observers = list(self._observers)

        for observer in observers:
            try:
                observer(record)
            except Exception:
                logger.exception(f"Response observer {observer!r} failed")

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._inner.wait(timeout)


def send_response(response: Any, status_code: int, data: Any) -> None:
    """
    Write a JSON response and end it.

        send_response(response, 201, {"ok": True})

        → status 201
        → Content-Type: application/json
        → body '{"ok":true}'

    Must be called once per request. A second call is not checked here;
    the transport response rejects it with ResponseAlreadySentError.
    """
    response.write_head(status_code, {"Content-Type": JSON_CONTENT_TYPE})
    response.end(to_json(data))
