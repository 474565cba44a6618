"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

Turns the head of an HTTP/1.x request into an HTTPRequest and exposes the
body as a stream of chunks.

=============================================================================
HEAD FIRST, BODY LATER
=============================================================================

The connection reads only the head (request line + headers) before the
request is dispatched. The body stays on the socket and is handed out
chunk by chunk through a BodyStream, so the dispatcher decides whether to
read it at all:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   POST /users HTTP/1.1\\r\\n          ┐                               │
    │   Content-Type: application/json\\r\\n │  read_head()  → parse_head()  │
    │   Content-Length: 7\\r\\n              │                              │
    │   \\r\\n                               ┘                              │
    │   {"a":1}                            ←  BodyStream: chunk, chunk,    │
    │                                          ... end-of-stream           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    GET / DELETE   the dispatcher never reads the stream; the server
                   drains it after the response so keep-alive stays in sync
    POST / PUT ... the dispatcher iterates the stream until it ends and
                   parses the concatenated bytes as JSON

Bodies are framed by Content-Length only. Chunked transfer encoding is
rejected with 501.

=============================================================================
PATH VS URL
=============================================================================

    url:          "/users/42?verbose=1"   raw request target
    path:         "/users/42"             used for route matching
    query_params: {"verbose": ["1"]}      available to handlers separately

The path is everything before the first "?", taken as sent: it is NOT
percent-decoded and NOT normalized. "/files/a%20b" is matched, and captured,
as "a%20b".

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, Optional, Tuple, TYPE_CHECKING
from urllib.parse import parse_qs, urlsplit
import re

if TYPE_CHECKING:
    from ..dispatcher import DispatchPhase


def split_target(url: str) -> Tuple[str, str]:
    """
    Split a request target into (path, query).

    Origin-form targets ("/a/b?x=1") are split at the first "?" and the
    path is kept byte for byte, so "//admin" stays "//admin". Only
    absolute-form targets ("http://host/a?x=1") go through urlsplit.
    """
    if "://" in url and not url.startswith("/"):
        target = urlsplit(url)
        return target.path or "/", target.query

    path, _, query = url.partition("?")
    return path or "/", query


class HTTPParseError(Exception):
    """
    Raised when an HTTP request cannot be parsed.

    Carries the status code the client should receive:

        400 Bad Request                 malformed syntax
        405 Method Not Allowed          unknown method
        413 Payload Too Large           body over max_request_size
        501 Not Implemented             chunked request bodies
        505 HTTP Version Not Supported  not HTTP/1.0 or HTTP/1.1
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class BodyStream:
    """
    The request body as a sequence of chunks.

    Iterating yields chunks of at most chunk_size bytes until
    Content-Length bytes were read (end-of-stream). If the peer closes
    early the stream simply ends.

    Usage:
        for chunk in request.body_stream:
            ...

        data = request.body_stream.read_all()
    """

    def __init__(
        self,
        read: Callable[[int], bytes],
        length: int,
        chunk_size: int = 8192,
    ):
        """
        Args:
            read: Callable returning up to n bytes, b"" when the peer closed.
            length: Declared Content-Length.
            chunk_size: Largest chunk to hand out.
        """
        self._read = read
        self._remaining = length
        self.length = length
        self.chunk_size = chunk_size

    @classmethod
    def from_bytes(cls, data: bytes, chunk_size: int = 8192) -> "BodyStream":
        """Stream over an in-memory body."""
        view = memoryview(data)
        position = 0

        def read(n: int) -> bytes:
            nonlocal position
            chunk = bytes(view[position:position + n])
            position += len(chunk)
            return chunk

        return cls(read, len(data), chunk_size)

    @property
    def remaining(self) -> int:
        """Bytes not yet read."""
        return self._remaining

    @property
    def at_end(self) -> bool:
        return self._remaining <= 0

    def __iter__(self) -> Iterator[bytes]:
        while self._remaining > 0:
            chunk = self._read(min(self.chunk_size, self._remaining))
            if not chunk:
                # Peer closed before sending the whole body
                self._remaining = 0
                break
            self._remaining -= len(chunk)
            yield chunk

    def read_all(self) -> bytes:
        """Concatenate every remaining chunk."""
        return b"".join(self)

    def drain(self) -> int:
        """Discard the unread remainder. Returns the number of bytes dropped."""
        dropped = 0
        for chunk in self:
            dropped += len(chunk)
        return dropped


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request, augmented by the dispatcher.

    =========================================================================
    ATTRIBUTES
    =========================================================================

        method:         "GET", "POST", ... (uppercase)
        path:           request path without query string, not decoded
        url:            raw request target including the query string
        version:        "HTTP/1.1" or "HTTP/1.0"
        headers:        header name (lowercase) → value
        query_params:   "?a=1&a=2" → {"a": ["1", "2"]}
        client_address: (ip, port)

    Set by the dispatcher:

        params:         placeholder name → matched segment
        body:           parsed JSON for buffered methods, {} when the body
                        is not valid JSON, None when not buffered
        phase:          current DispatchPhase

    =========================================================================
    """

    method: str
    path: str
    url: str = ""
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, list[str]] = field(default_factory=dict)
    client_address: tuple[str, int] = ("", 0)
    params: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    body_stream: Optional[BodyStream] = field(default=None, repr=False)
    phase: Optional["DispatchPhase"] = field(default=None, repr=False)

    def __post_init__(self):
        if not self.url:
            self.url = self.path

    @property
    def content_length(self) -> int:
        """Content-Length as an integer, 0 when missing or invalid."""
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def content_type(self) -> Optional[str]:
        """Content-Type without parameters ("application/json")."""
        ct = self.headers.get("content-type", "")
        return ct.split(";")[0].strip().lower() or None

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def authorization(self) -> Optional[str]:
        return self.headers.get("authorization")

    @property
    def is_keep_alive(self) -> bool:
        """
        Whether the client wants the connection kept open.

        HTTP/1.1 keeps it open unless "Connection: close";
        HTTP/1.0 closes it unless "Connection: keep-alive".
        """
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value of a query parameter."""
        values = self.query_params.get(name, [])
        return values[0] if values else default


class RequestParser:
    """
    Parses request heads into HTTPRequest objects.

        1. Split head into lines on CRLF
        2. Request line: METHOD SP TARGET SP HTTP/x.y
        3. Headers: "Name: value", names lowercased, repeats joined by ", "
        4. Validate Content-Length / Transfer-Encoding
        5. Build HTTPRequest (body_stream attached by the caller)
    """

    VALID_METHODS = {
        "GET", "POST", "PUT", "DELETE", "PATCH",
        "HEAD", "OPTIONS", "TRACE", "CONNECT",
    }

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse_head(
        self,
        head: bytes,
        client_address: tuple[str, int] = ("", 0),
    ) -> HTTPRequest:
        """
        Parse a request head (everything before the blank line).

        Args:
            head: Head bytes, with or without the trailing CRLFCRLF.
            client_address: Client (ip, port) for logging.

        Returns:
            HTTPRequest without a body stream.

        Raises:
            HTTPParseError: Malformed head, unsupported method/version,
                            oversized or chunked body.
        """
        text = head.decode("latin-1").rstrip("\r\n")
        lines = text.split("\r\n")
        if not lines or not lines[0]:
            raise HTTPParseError("Empty request")

        method, url, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        if "chunked" in headers.get("transfer-encoding", "").lower():
            raise HTTPParseError("Chunked request bodies are not supported", 501)

        raw_length = headers.get("content-length", "0")
        try:
            content_length = int(raw_length)
        except ValueError:
            raise HTTPParseError(f"Invalid Content-Length: {raw_length!r}")
        if content_length < 0:
            raise HTTPParseError(f"Invalid Content-Length: {raw_length!r}")
        if content_length > self.max_request_size:
            raise HTTPParseError(
                f"Request body too large: {content_length} bytes",
                status_code=413,
            )

        path, query = split_target(url)
        return HTTPRequest(
            method=method,
            path=path,
            url=url,
            version=version,
            headers=headers,
            query_params=parse_qs(query, keep_blank_values=True),
            client_address=client_address,
        )

    def parse(
        self,
        data: bytes,
        client_address: tuple[str, int] = ("", 0),
        chunk_size: int = 8192,
    ) -> HTTPRequest:
        """
        Parse a complete in-memory request (head + body).

        The body becomes an in-memory BodyStream of Content-Length bytes.
        """
        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        request = self.parse_head(data[:header_end], client_address)
        body = data[header_end + 4:header_end + 4 + request.content_length]
        if len(body) < request.content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {request.content_length} bytes, got {len(body)}"
            )
        request.body_stream = BodyStream.from_bytes(body, chunk_size)
        return request

    def _parse_request_line(self, line: str) -> tuple[str, str, str]:
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line!r}")

        method, url, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(
                f"Unsupported HTTP version: {version}",
                status_code=505,
            )

        return method, url, version

    def _parse_headers(self, lines: list[str]) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        current_name = None

        for line in lines:
            if not line:
                continue

            # Obsolete line folding: continuation of the previous header
            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue  # lenient: skip malformed header lines

            name = match.group(1).strip().lower()
            value = match.group(2).strip()
            current_name = name

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers


def parse_request(
    data: bytes,
    client_address: tuple[str, int] = ("", 0),
    max_size: int = 10 * 1024 * 1024,
) -> HTTPRequest:
    """Parse a complete request in one call."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)
