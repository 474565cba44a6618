"""
=============================================================================
TCP SOCKET SERVER
=============================================================================

Listens, accepts and hands every client socket, wrapped in a Connection,
to a callback. Everything HTTP happens above this layer.

    socket() ──► setsockopt() ──► bind() ──► listen() ──► accept loop
                                                             │
                                       connection_handler(conn) per client

=============================================================================
SOCKET OPTIONS
=============================================================================

SO_REUSEADDR   rebind right after a restart instead of waiting out
               TIME_WAIT
SO_REUSEPORT   several processes on one port (not on every platform)
TCP_NODELAY    no Nagle buffering; responses go out immediately

The listening socket has a 1 second timeout so the accept loop notices
shutdown() without needing a wake-up connection.

=============================================================================
PORT 0
=============================================================================

Binding to port 0 lets the OS choose a free port. The chosen port is read
back with getsockname() and published through bound_address once the
socket listens; `ready` is set at the same moment, so another thread can

    threading.Thread(target=server.start, args=(handler,)).start()
    server.ready.wait()
    port = server.bound_address[1]

=============================================================================
"""

import socket
import signal
import logging
import threading
from typing import Optional, Callable, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)


class SocketServer:
    """
    Low-level TCP server.

    Usage:
        def handle_connection(conn: Connection):
            ...

        server = SocketServer(config)
        server.start(handle_connection)  # blocks until shutdown()
    """

    def __init__(self, config: ServerConfig):
        self.config = config

        self._socket: Optional[socket.socket] = None
        self._running = False
        self._bound_address: Optional[Tuple[str, int]] = None

        # set once listening; cleared again on cleanup
        self.ready = threading.Event()

        self._original_handlers: dict = {}

    @property
    def bound_address(self) -> Optional[Tuple[str, int]]:
        """(host, port) actually bound, None before start()."""
        return self._bound_address

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        except (AttributeError, OSError):
            pass  # Not available on Windows

        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        sock.settimeout(1.0)
        return sock

    def _setup_signals(self):
        """
        Turn SIGINT / SIGTERM into a graceful shutdown.

        signal.signal() only works on the main thread. A server started in
        a background thread (api.start()) leaves signal handling to the
        embedding application.
        """
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def start(
        self,
        connection_handler: Callable[[Connection], None],
        on_listening: Optional[Callable[[Tuple[str, int]], None]] = None,
    ):
        """
        Bind, listen and accept until shutdown() is called.

        Args:
            connection_handler: Called with every accepted Connection.
            on_listening: Called with the bound address once listening.

        Raises:
            OSError: The address could not be bound.
        """
        self._socket = self._create_socket()

        try:
            self._socket.bind((self.config.host, self.config.port))
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            self._socket.close()
            self._socket = None
            raise

        self._socket.listen(self.config.backlog)
        self._bound_address = self._socket.getsockname()[:2]

        self._running = True
        self._setup_signals()

        logger.debug(f"Socket listening on {self._bound_address[0]}:{self._bound_address[1]}")
        self.ready.set()

        try:
            if on_listening is not None:
                on_listening(self._bound_address)
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue  # re-check self._running
            except OSError as e:
                if self._running:
                    logger.error(f"Accept error: {e}")
                break

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            conn = Connection(
                socket=client_socket,
                address=client_address,
                buffer_size=self.config.buffer_size,
                timeout=self.config.timeout,
                keep_alive_timeout=self.config.keep_alive_timeout,
            )
            try:
                connection_handler(conn)
            except Exception as e:
                logger.exception(f"[{conn.id}] Connection handler failed: {e}")
                conn.close()

    def shutdown(self):
        """Stop accepting. Safe to call more than once and from any thread."""
        if not self._running:
            return
        logger.debug("Shutting down socket server...")
        self._running = False

    def _cleanup(self):
        self._running = False
        self._restore_signals()

        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass  # Already closed
            self._socket = None

        self.ready.clear()
        logger.debug("Socket server stopped")

