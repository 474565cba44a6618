"""
=============================================================================
SIMPLEHTTP - HTTP Router With Middleware Chaining
=============================================================================

A small JSON API router on raw sockets: routes with $name placeholders,
global and per-route middlewares that continue the chain by calling
proceed(), JSON request bodies and JSON responses.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    simplehttp/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m simplehttp)
    ├── server.py            # SimpleHttpApi: registration + lifecycle
    ├── dispatcher.py        # match → middlewares → body → handler
    ├── config.py            # ServerConfig dataclass
    ├── errors.py            # exception types
    ├── core/                # Socket transport
    │   ├── socket_server.py # accept loop
    │   ├── connection.py    # per-client reads and writes
    │   └── thread_pool.py   # worker threads
    ├── http/
    │   ├── request.py       # request parsing, body stream
    │   ├── response.py      # response writer, send_response()
    │   └── router.py        # $name patterns, route table
    └── middleware/
        ├── base.py          # middleware contract, chain runner
        └── logging.py       # colored request logging

=============================================================================
QUICK START
=============================================================================

    from simplehttp import SimpleHttpApi, send_response

    api = SimpleHttpApi()
    api.enable_request_logging()

    def require_token(request, response, proceed):
        if request.headers.get("authorization") != "Bearer secret":
            send_response(response, 401, {"error": "Unauthorized"})
            return
        proceed()

    @api.get("/users/$id")
    def get_user(request, response):
        send_response(response, 200, {"id": request.params["id"]})

    @api.post("/users", middlewares=[require_token])
    def create_user(request, response):
        send_response(response, 201, request.body)

    api.run()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig
from .dispatcher import Dispatcher, DispatchPhase
from .errors import ResponseAlreadySentError, RoutePatternError, SimpleHttpError
from .http import HTTPRequest, send_response
from .middleware import Middleware, RequestLoggingMiddleware
from .server import SimpleHttpApi, create_app

__all__ = [
    "SimpleHttpApi",
    "ServerConfig",
    "create_app",
    "send_response",
    "Dispatcher",
    "DispatchPhase",
    "HTTPRequest",
    "Middleware",
    "RequestLoggingMiddleware",
    "SimpleHttpError",
    "RoutePatternError",
    "ResponseAlreadySentError",
    "__version__",
]
