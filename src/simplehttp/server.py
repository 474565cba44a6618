"""
=============================================================================
SIMPLEHTTP API
=============================================================================

The object an application talks to: register routes and middlewares, then
run it.

    api = SimpleHttpApi()
    api.enable_request_logging()

    @api.get("/users/$id")
    def get_user(request, response):
        send_response(response, 200, {"id": request.params["id"]})

    api.post("/users", create_user, [require_auth])
    api.use("/users", audit)

    api.run()                   # blocks, Ctrl+C to stop
    # or
    api.start(port=0)           # background thread, returns once listening
    api.stop()

=============================================================================
REQUEST FLOW
=============================================================================

    SocketServer.accept()
        │  Connection
        ▼
    _handle_connection()   connection limit, hand off to the thread pool
        │
        ▼  (worker thread)
    _process_connection()  keep-alive loop:
        │
        ├── conn.read_head()                 bytes through the blank line
        ├── parser.parse_head()              HTTPRequest (400/405/413/505)
        ├── request.body_stream = BodyStream(conn.read_body_chunk, ...)
        ├── response = ObservedResponse(ResponseWriter(conn.send_response))
        ├── dispatcher.dispatch(request, response)
        │        match → global mw → route mw → body → handler
        ├── response.wait(config.response_timeout)
        ├── body_stream.drain()              leave the socket at the next head
        └── keep-alive? loop : close

The worker blocks in response.wait() rather than in the dispatcher, so a
middleware may call proceed() from any thread at any later time and the
handler may end the response from there too.

=============================================================================
"""

import logging
import threading
from typing import List, Optional

from .config import ServerConfig
from .core import SocketServer, Connection, ConnectionState, ThreadPool
from .dispatcher import Dispatcher, DispatchPhase
from .errors import ResponseAlreadySentError
from .http import (
    BodyStream,
    HTTPParseError,
    HTTPRequest,
    ObservedResponse,
    RequestParser,
    ResponseWriter,
    send_response,
)
from .http.router import Handler, Route
from .middleware import RequestLoggingMiddleware
from .middleware.base import MiddlewareFn
from .middleware.logging import CYAN, paint


logger = logging.getLogger(__name__)


INTERNAL_ERROR_BODY = {"error": "Internal Server Error"}
SERVICE_UNAVAILABLE_BODY = {"error": "Service Unavailable"}


class SimpleHttpApi:
    """
    HTTP router with middleware chaining on a socket server.

    =========================================================================
    REGISTRATION
    =========================================================================

        get / post / put / patch / delete(path, handler=None, middlewares=None)
        route(method, path, handler=None, middlewares=None)

    Called with a handler they register it directly; without one they
    return a decorator. Paths use $name placeholders for segments:

        "/users/$id/posts/$post_id"   →   request.params["id"], ["post_id"]

    Routes are tried in registration order; the first whose method and
    pattern match wins.

        use_global(mw)                 runs for every matched request
        use(path, mw, method=None)     appends to the first route whose
                                       template string equals path

    =========================================================================
    LIFECYCLE
    =========================================================================

        run()        serve on the calling thread until SIGINT/SIGTERM
        start()      serve on a background thread
        stop()       stop accepting, release the workers

    =========================================================================
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self.config.validate()  # Fail-fast on invalid config

        self.dispatcher = Dispatcher(escape_literals=self.config.escape_literals)
        self._parser = RequestParser(max_request_size=self.config.max_request_size)

        self._socket_server = SocketServer(self.config)
        self._thread_pool = ThreadPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
        )

        self._request_logger: Optional[RequestLoggingMiddleware] = None

        self._running = False
        self._serve_thread: Optional[threading.Thread] = None
        self._start_error: Optional[BaseException] = None

        self._connections: set = set()
        self._connections_lock = threading.Lock()

    # =========================================================================
    # ROUTE REGISTRATION
    # =========================================================================

    def route(
        self,
        method: str,
        path: str,
        handler: Optional[Handler] = None,
        middlewares: Optional[List[MiddlewareFn]] = None,
    ):
        """
        Register a handler for method + path.

        Returns the Route when a handler is given, otherwise a decorator
        that registers the decorated function and returns it unchanged.

        Raises:
            RoutePatternError: The path is not a valid template.
        """
        if handler is not None:
            return self.dispatcher.register(method, path, handler, middlewares)

        def decorator(func: Handler) -> Handler:
            self.dispatcher.register(method, path, func, middlewares)
            return func

        return decorator

    def get(self, path: str, handler: Optional[Handler] = None,
            middlewares: Optional[List[MiddlewareFn]] = None):
        """Register a GET route."""
        return self.route("GET", path, handler, middlewares)

    def post(self, path: str, handler: Optional[Handler] = None,
             middlewares: Optional[List[MiddlewareFn]] = None):
        """Register a POST route."""
        return self.route("POST", path, handler, middlewares)

    def put(self, path: str, handler: Optional[Handler] = None,
            middlewares: Optional[List[MiddlewareFn]] = None):
        """Register a PUT route."""
        return self.route("PUT", path, handler, middlewares)

    def patch(self, path: str, handler: Optional[Handler] = None,
              middlewares: Optional[List[MiddlewareFn]] = None):
        """Register a PATCH route."""
        return self.route("PATCH", path, handler, middlewares)

    def delete(self, path: str, handler: Optional[Handler] = None,
               middlewares: Optional[List[MiddlewareFn]] = None):
        """Register a DELETE route."""
        return self.route("DELETE", path, handler, middlewares)

    @property
    def routes(self) -> List[Route]:
        return self.dispatcher.routes.routes()

    # =========================================================================
    # MIDDLEWARE
    # =========================================================================

    def use_global(self, middleware: MiddlewareFn) -> "SimpleHttpApi":
        """
        Add a middleware that runs for every matched request, before any
        route middleware. Middlewares run in the order added.
        """
        self.dispatcher.use_global(middleware)
        return self

    def use(
        self,
        path: str,
        middleware: MiddlewareFn,
        method: Optional[str] = None,
    ) -> Optional[Route]:
        """
        Append a middleware to an already registered route.

        The route is found by its template string, not by matching: use
        the same string the route was registered with. Without method the
        first route with that template wins, whatever its method. No such
        route: nothing happens and None is returned.
        """
        return self.dispatcher.attach(path, middleware, method)

    def enable_request_logging(self, color: bool = True) -> RequestLoggingMiddleware:
        """
        Log every request and its response (colored access log).

        Installed as a global middleware; calling this again returns the
        middleware installed the first time.
        """
        if self._request_logger is None:
            self._request_logger = RequestLoggingMiddleware(color=color)
            self.use_global(self._request_logger)
        return self._request_logger

    @staticmethod
    def send_response(response, status_code: int, data) -> None:
        """Same as simplehttp.send_response."""
        send_response(response, status_code, data)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def running(self) -> bool:
        return self._running

    @property
    def port(self) -> Optional[int]:
        """Port actually listened on, None while not listening."""
        if not self._socket_server.ready.is_set():
            return None
        return self._socket_server.bound_address[1]

    def run(self, host: Optional[str] = None, port: Optional[int] = None):
        """
        Serve on the calling thread until shutdown (Ctrl+C / SIGTERM).

        Args:
            host: Override config host.
            port: Override config port.
        """
        if host:
            self.config.host = host
        if port is not None:
            self.config.port = port

        self._setup_logging()
        self._serve()

    def start(self, port: Optional[int] = None, timeout: float = 10.0) -> int:
        """
        Serve on a background thread.

        Returns once the socket listens, with the port it listens on.

        Raises:
            RuntimeError: Already running, or not listening within timeout.
            OSError: The port could not be bound.
        """
        if self._running:
            raise RuntimeError("Server is already running")
        if port is not None:
            self.config.port = port

        self._setup_logging()
        self._start_error = None

        self._serve_thread = threading.Thread(
            target=self._serve,
            name="simplehttp-server",
            daemon=True,
        )
        self._serve_thread.start()

        ready = self._socket_server.ready
        while not ready.wait(0.05):
            if not self._serve_thread.is_alive():
                break
            timeout -= 0.05
            if timeout <= 0:
                self.stop()
                raise RuntimeError("Server did not start listening in time")

        if self._start_error is not None:
            raise self._start_error

        return self._socket_server.bound_address[1]

    def stop(self, timeout: float = 5.0):
        """Stop accepting, close open connections and release the workers."""
        self._socket_server.shutdown()

        if self._serve_thread is not None and self._serve_thread is not threading.current_thread():
            self._serve_thread.join(timeout)
            self._serve_thread = None

    def _serve(self):
        self._running = True
        self._thread_pool.start()

        try:
            self._socket_server.start(self._handle_connection, self._on_listening)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        except OSError as e:
            self._start_error = e
            if threading.current_thread() is not self._serve_thread:
                raise
        finally:
            self._shutdown()

    def _on_listening(self, address):
        logger.info(f"Server listening on port: {paint(str(address[1]), CYAN)}")
        for line in self.dispatcher.routes.format_routes().splitlines():
            logger.debug(line)

    def _shutdown(self):
        self._running = False

        # unblock workers waiting for the next request on a kept-alive socket
        with self._connections_lock:
            connections = list(self._connections)
        for conn in connections:
            conn.interrupt()

        self._thread_pool.shutdown(wait=False, timeout=2.0)
        logger.info("Server stopped")

    def _setup_logging(self):
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("simplehttp").setLevel(level)

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """Admit a connection (runs on the accept thread)."""
        with self._connections_lock:
            if len(self._connections) >= self.config.max_connections:
                admitted = False
            else:
                self._connections.add(conn)
                admitted = True

        if not admitted:
            logger.warning(f"[{conn.id}] Connection limit reached, rejecting connection")
            self._send_error(conn, 503, "Service Unavailable")
            conn.close()
            return

        submitted = self._thread_pool.submit(
            self._process_connection,
            args=(conn,),
            block=False,
        )

        if not submitted:
            logger.warning(f"[{conn.id}] Thread pool full, rejecting connection")
            self._release(conn)
            self._send_error(conn, 503, "Service Unavailable")
            conn.close()

    def _release(self, conn: Connection):
        with self._connections_lock:
            self._connections.discard(conn)

    def _process_connection(self, conn: Connection):
        """Serve requests on one connection until it closes (worker thread)."""
        try:
            with conn:
                while self._running:
                    try:
                        if not self._serve_request(conn):
                            break
                    except TimeoutError:
                        self._send_error(conn, 408, "Request Timeout")
                        break
                    except HTTPParseError as e:
                        self._send_error(conn, e.status_code, str(e))
                        break
                    conn.set_keep_alive()
        finally:
            self._release(conn)

    def _serve_request(self, conn: Connection) -> bool:
        """
        Read, dispatch and answer one request.

        Returns:
            True to keep the connection open for another request.
        """
        head = conn.read_head()
        if head is None:
            return False

        request = self._parser.parse_head(head, conn.address)
        request.body_stream = BodyStream(
            conn.read_body_chunk,
            request.content_length,
            self.config.body_chunk_size,
        )

        keep_alive = request.is_keep_alive and self.config.keep_alive
        if keep_alive:
            connection_headers = {
                "Connection": "keep-alive",
                "Keep-Alive": f"timeout={int(self.config.keep_alive_timeout)}",
            }
        else:
            connection_headers = {"Connection": "close"}

        writer = ResponseWriter(conn.send_response, self.config.server_name, connection_headers)
        response = ObservedResponse(writer)

        conn.state = ConnectionState.DISPATCHING
        try:
            self.dispatcher.dispatch(request, response)
        except Exception as e:
            logger.exception(f"[{conn.id}] Error handling {request.method} {request.path}: {e}")
            self._answer_if_unsent(response, 500, INTERNAL_ERROR_BODY)

        if not response.wait(self.config.response_timeout):
            logger.warning(
                f"[{conn.id}] {request.method} {request.path} did not finish within "
                f"{self.config.response_timeout}s (stuck in {self._phase_name(request)})"
            )
            self._answer_if_unsent(response, 503, SERVICE_UNAVAILABLE_BODY, close=True)
            return False

        request.body_stream.drain()

        if not writer.delivered or conn.broken:
            return False
        return keep_alive

    def _answer_if_unsent(self, response, status_code: int, data, close: bool = False):
        if response.headers_sent:
            return
        try:
            if close:
                response.set_header("Connection", "close")
            send_response(response, status_code, data)
        except ResponseAlreadySentError:
            pass  # the handler answered first

    @staticmethod
    def _phase_name(request: HTTPRequest) -> str:
        phase = request.phase or DispatchPhase.MATCHING
        return phase.name

    def _send_error(self, conn: Connection, status_code: int, message: str):
        """Answer outside the dispatcher (parse errors, rejections)."""
        writer = ResponseWriter(conn.send_response, self.config.server_name, {"Connection": "close"})
        send_response(writer, status_code, {"error": message})


def create_app(config: Optional[ServerConfig] = None) -> SimpleHttpApi:
    """
    Create an api instance.

        app = create_app(ServerConfig(port=3000))
        app.get("/", index)
        app.run()
    """
    return SimpleHttpApi(config)
