"""
=============================================================================
REQUEST DISPATCHER
=============================================================================

Sequences everything that happens to one request between "head parsed"
and "handler called".

=============================================================================
PER-REQUEST STATE MACHINE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   MATCHING ──no route──► NOT_FOUND   (404 {"error":"Not Found"})     │
    │      │                                                               │
    │      │ route found, params attached to request                       │
    │      ▼                                                               │
    │   GLOBAL_MW        api.use_global(...) middlewares, in order         │
    │      │ last proceed()                                                │
    │      ▼                                                               │
    │   ROUTE_MW         the route's own middlewares (may be empty)        │
    │      │ last proceed()                                                │
    │      ▼                                                               │
    │   BODY_BUFFERING   only for methods other than GET / DELETE          │
    │      │ stream read to its end, parsed as JSON ({} on failure)        │
    │      ▼                                                               │
    │   HANDLING         route.handler(request, response)                  │
    │      │                                                               │
    │      ▼                                                               │
    │   DONE                                                               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

A transition out of a middleware phase happens when the last middleware
calls proceed(), which may be on another thread and at any later time.
request.phase always names where the request currently is, so a stalled
request can be reported with the phase it is stuck in.

=============================================================================
"""

from enum import Enum
from typing import Any, List, Optional
import json
import logging
import threading

from .http.request import HTTPRequest
from .http.response import send_response
from .http.router import Handler, Route, RouteTable
from .middleware.base import MiddlewareChain, MiddlewareFn


logger = logging.getLogger(__name__)


class DispatchPhase(Enum):
    """Where a request is in the dispatch pipeline."""

    MATCHING = "matching"
    GLOBAL_MW = "global_middleware"
    ROUTE_MW = "route_middleware"
    BODY_BUFFERING = "body_buffering"
    HANDLING = "handling"
    DONE = "done"
    NOT_FOUND = "not_found"


# Methods dispatched without reading or parsing the body.
UNBUFFERED_METHODS = frozenset({"GET", "DELETE"})

NOT_FOUND_BODY = {"error": "Not Found"}


def needs_body(method: str) -> bool:
    """Whether the body is buffered and parsed for this method."""
    return method.upper() not in UNBUFFERED_METHODS


def _reject_constant(name: str) -> Any:
    # NaN / Infinity are not JSON
    raise ValueError(f"Invalid JSON constant: {name}")


def parse_json_body(data: bytes) -> Any:
    """
    Parse a request body as JSON.

    Anything that is not valid UTF-8 JSON, the empty body included,
    yields an empty dict instead of an error.
    """
    try:
        return json.loads(data.decode("utf-8"), parse_constant=_reject_constant)
    except (UnicodeDecodeError, ValueError) as e:
        logger.debug(f"Body is not valid JSON ({type(e).__name__}); using {{}}")
        return {}


class Dispatcher:
    """
    Owns the route table and the global middleware list and runs requests
    through them.

        dispatcher = Dispatcher()
        dispatcher.use_global(log_everything)
        dispatcher.register("GET", "/users/$id", get_user, [require_auth])

        dispatcher.dispatch(request, response)

    One dispatcher is shared by all connections. It keeps no per-request
    state of its own; each request carries its params, body and phase.
    """

    def __init__(self, routes: Optional[RouteTable] = None, escape_literals: bool = False):
        self.routes = routes if routes is not None else RouteTable(escape_literals)
        self._global_middlewares: List[MiddlewareFn] = []
        self._lock = threading.Lock()

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def use_global(self, middleware: MiddlewareFn) -> None:
        """Append a middleware that runs for every matched request."""
        with self._lock:
            self._global_middlewares.append(middleware)

    @property
    def global_middlewares(self) -> List[MiddlewareFn]:
        with self._lock:
            return list(self._global_middlewares)

    def register(
        self,
        method: str,
        path: str,
        handler: Handler,
        middlewares: Optional[List[MiddlewareFn]] = None,
    ) -> Route:
        return self.routes.register(method, path, handler, middlewares)

    def attach(
        self,
        path: str,
        middleware: MiddlewareFn,
        method: Optional[str] = None,
    ) -> Optional[Route]:
        return self.routes.attach_middleware(path, middleware, method)

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def dispatch(self, request: HTTPRequest, response: Any) -> None:
        """
        Run one request through the pipeline.

        Returns as soon as the pipeline is handed off: if a middleware
        defers proceed(), the rest of the pipeline runs later on whatever
        thread calls it. Wait on the response to know when it finished.
        """
        self._enter(request, DispatchPhase.MATCHING)
        match = self.routes.find_match(request.method, request.path)

        if match is None:
            self._enter(request, DispatchPhase.NOT_FOUND)
            send_response(response, 404, NOT_FOUND_BODY)
            return

        route = match.route
        request.params = match.params

        self._enter(request, DispatchPhase.GLOBAL_MW)
        MiddlewareChain(
            self.global_middlewares,
            lambda: self._run_route_middlewares(route, request, response),
        ).run(request, response)

    def _run_route_middlewares(self, route: Route, request: HTTPRequest, response: Any) -> None:
        self._enter(request, DispatchPhase.ROUTE_MW)
        MiddlewareChain(
            route.middlewares,
            lambda: self._prepare_and_handle(route, request, response),
        ).run(request, response)

    def _prepare_and_handle(self, route: Route, request: HTTPRequest, response: Any) -> None:
        if needs_body(request.method):
            self._enter(request, DispatchPhase.BODY_BUFFERING)
            request.body = self.buffer_body(request)

        self._enter(request, DispatchPhase.HANDLING)
        route.handler(request, response)
        self._enter(request, DispatchPhase.DONE)

    def buffer_body(self, request: HTTPRequest) -> Any:
        """Read the body stream to its end and parse the bytes as JSON."""
        stream = request.body_stream
        data = b"".join(stream) if stream is not None else b""
        return parse_json_body(data)

    def _enter(self, request: HTTPRequest, phase: DispatchPhase) -> None:
        request.phase = phase
        logger.debug(f"{request.method} {request.path} -> {phase.name}")
