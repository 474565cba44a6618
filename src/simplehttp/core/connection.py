"""
=============================================================================
CONNECTION
=============================================================================

Wraps an accepted client socket with the reads the router needs:

    read_head()         bytes up to and including the blank line
    read_body_chunk(n)  up to n body bytes, leftovers from the head read
                        first, then the socket
    send_response(b)    the serialized response, all of it

=============================================================================
TCP IS A BYTE STREAM
=============================================================================

recv() returns whatever arrived, not whole messages:

    Client sends:    "POST /users HTTP/1.1\\r\\n...\\r\\n\\r\\n{"a":1}"

    recv() #1  →  "POST /users HTTP/1.1\\r\\nContent-Le"
    recv() #2  →  "ngth: 7\\r\\n\\r\\n{"a"
    recv() #3  →  ":1}"

So the head is accumulated in a buffer until "\\r\\n\\r\\n" shows up. Any
bytes after it already belong to the body and are handed out first by
read_body_chunk().

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──► READING ──► DISPATCHING ──► WRITING ──► KEEP_ALIVE ──┐
     │         │                                        │         │
     │         ▼                                        ▼         │
     └─────► CLOSING ◄──────────────────────────────────┴─────────┘
                │
                ▼
              CLOSED

=============================================================================
"""

import logging
import socket
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..http.request import HTTPParseError


logger = logging.getLogger(__name__)


HEAD_TERMINATOR = b"\r\n\r\n"

# Request line + headers larger than this are rejected with 431.
MAX_HEAD_SIZE = 64 * 1024


class ConnectionState(Enum):
    NEW = "new"
    READING = "reading"
    DISPATCHING = "dispatching"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(eq=False)
class Connection:
    """
    A client connection.

    Attributes:
        socket: The accepted client socket.
        address: Client (ip, port).
        id: Short id for log lines.
        requests_handled: Heads read on this connection so far.
        broken: Set when a body read failed; the server then closes
                instead of keeping the connection alive.
    """

    socket: socket.socket
    address: tuple[str, int]

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    requests_handled: int = 0
    broken: bool = False

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0

    _buffer: bytes = field(default=b"", repr=False)
    _write_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    # =========================================================================
    # READING
    # =========================================================================

    def read_head(self) -> Optional[bytes]:
        """
        Read one request head, including its terminating blank line.

        A shorter timeout applies while waiting for the next request on a
        kept-alive connection; running out of it is a normal close.

        Returns:
            The head bytes, or None when the client closed the connection
            (or went idle on keep-alive).

        Raises:
            TimeoutError: The first request did not arrive in time.
            HTTPParseError: The head exceeds MAX_HEAD_SIZE (431).
        """
        self.state = ConnectionState.READING

        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while HEAD_TERMINATOR not in self._buffer:
                if len(self._buffer) > MAX_HEAD_SIZE:
                    raise HTTPParseError("Request header fields too large", 431)

                chunk = self._recv(self.buffer_size)
                if not chunk:
                    return None
                self._buffer += chunk

        except socket.timeout:
            if self.requests_handled > 0 and not self._buffer:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")

        finally:
            self.socket.settimeout(self.timeout)

        head_end = self._buffer.find(HEAD_TERMINATOR) + len(HEAD_TERMINATOR)
        head = self._buffer[:head_end]
        self._buffer = self._buffer[head_end:]

        self.requests_handled += 1
        return head

    def read_body_chunk(self, max_bytes: int) -> bytes:
        """
        Read up to max_bytes of the current request body.

        Returns b"" when the peer closed or stopped sending; the
        connection is then marked broken.
        """
        if self._buffer:
            chunk = self._buffer[:max_bytes]
            self._buffer = self._buffer[len(chunk):]
            return chunk

        try:
            chunk = self._recv(min(max_bytes, self.buffer_size))
        except socket.timeout:
            logger.debug(f"[{self.id}] Timed out reading request body")
            chunk = b""

        if not chunk:
            self.broken = True
        return chunk

    def _recv(self, size: int) -> bytes:
        try:
            data = self.socket.recv(size)
            return data
        except (ConnectionResetError, BrokenPipeError):
            return b""

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """
        Send a serialized response with sendall().

        Safe to call from the thread that finished the response, which is
        not necessarily the worker owning the connection.

        Returns:
            True if sent, False if the client is gone.
        """
        with self._write_lock:
            if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
                logger.debug(f"[{self.id}] Response dropped: connection closed")
                return False

            self.state = ConnectionState.WRITING
            try:
                self.socket.sendall(data)
                return True
            except OSError as e:
                logger.warning(f"[{self.id}] Send failed: {e}")
                self.broken = True
                return False

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close the connection: FIN first, drain what the client still sends,
        then release the descriptor.
        """
        with self._write_lock:
            if self.state == ConnectionState.CLOSED:
                return
            self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # already disconnected

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass  # closing anyway (socket.timeout is an OSError)

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def interrupt(self):
        """
        Stop further reads from another thread.

        A worker blocked waiting for the next request sees end-of-stream
        and closes the connection itself.
        """
        try:
            self.socket.shutdown(socket.SHUT_RD)
        except OSError:
            pass  # already closed

    def set_keep_alive(self):
        self.state = ConnectionState.KEEP_ALIVE

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
