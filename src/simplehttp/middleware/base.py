"""
=============================================================================
MIDDLEWARE CONTRACT AND CHAIN RUNNER
=============================================================================

A middleware is any callable

    middleware(request, response, proceed) -> None

It either calls proceed() exactly once to hand control to the next
middleware, or writes a response itself and does not call proceed() to
short-circuit the chain.

=============================================================================
CONTINUATION-PASSING CHAIN
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   chain = MiddlewareChain([m0, m1, m2], on_complete=handler_step)    │
    │   chain.run(request, response)                                       │
    │                                                                      │
    │      m0(request, response, proceed_0)                                │
    │                              │                                       │
    │                              └──► m1(request, response, proceed_1)   │
    │                                                         │            │
    │                                    m2(req, res, proceed_2) ◄┘        │
    │                                          │                           │
    │                                          └──► on_complete()          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Unlike a return-value pipeline, nothing flows back up the chain: the
response is written, not returned. That is what allows a middleware to
call proceed() LATER, e.g. from a thread that finished a lookup:

    def load_user(request, response, proceed):
        def fetch():
            request.user = users.get(request.params["id"])
            proceed()
        threading.Thread(target=fetch).start()

The runner makes no assumption about when, or on which thread, proceed()
runs.

=============================================================================
GUARANTEES
=============================================================================

- Middleware k+1 never starts before middleware k called proceed().
- Each proceed() closure works once. A second call is ignored and logged,
  so no middleware runs twice for one request.
- A middleware that never calls proceed() and never ends the response
  leaves the request pending. The chain has no timeout of its own.
- Each request gets its own chain; nothing is shared between requests.

=============================================================================
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Sequence
import logging
import threading


logger = logging.getLogger(__name__)


# proceed() continues the chain with the next middleware.
Proceed = Callable[[], None]

MiddlewareFn = Callable[[Any, Any, Proceed], None]


def middleware_name(middleware: Any) -> str:
    """Readable name for logs: .name, the function name, or the class name."""
    name = getattr(middleware, "name", None)
    if isinstance(name, str):
        return name
    return getattr(middleware, "__name__", type(middleware).__name__)


class Middleware(ABC):
    """
    Base class for class-based middleware.

        class RequireJson(Middleware):
            def __call__(self, request, response, proceed):
                if request.content_type != "application/json":
                    send_response(response, 415, {"error": "Expected JSON"})
                    return                     # short-circuit
                proceed()

    Plain functions with the same signature work just as well.
    """

    @abstractmethod
    def __call__(self, request: Any, response: Any, proceed: Proceed) -> None:
        """
        Process the request.

        Args:
            request: The HTTPRequest being dispatched.
            response: The response to write when short-circuiting.
            proceed: Call once to continue with the next middleware.
        """

    @property
    def name(self) -> str:
        return self.__class__.__name__


class FunctionMiddleware(Middleware):
    """Wraps a plain (request, response, proceed) function with a name."""

    def __init__(self, func: MiddlewareFn, name: Optional[str] = None):
        self._func = func
        self._name = name or func.__name__

    def __call__(self, request: Any, response: Any, proceed: Proceed) -> None:
        self._func(request, response, proceed)

    @property
    def name(self) -> str:
        return self._name


class MiddlewareChain:
    """
    Runs an ordered sequence of middlewares, then a terminal callback.

    The sequence is copied when the chain is created, so middlewares
    attached to a route while a request is in flight only affect later
    requests.
    """

    def __init__(self, middlewares: Sequence[MiddlewareFn], on_complete: Callable[[], None]):
        self._middlewares = tuple(middlewares)
        self._on_complete = on_complete

    def __len__(self) -> int:
        return len(self._middlewares)

    def run(self, request: Any, response: Any) -> None:
        """Start the chain at index 0. An empty chain completes immediately."""
        self._step(0, request, response)

    def _step(self, index: int, request: Any, response: Any) -> None:
        if index >= len(self._middlewares):
            self._on_complete()
            return

        middleware = self._middlewares[index]
        middleware(request, response, self._make_proceed(index, request, response))

    def _make_proceed(self, index: int, request: Any, response: Any) -> Proceed:
        """
        Build the one-shot continuation handed to middleware[index].

        The lock makes the one-shot check safe when a middleware calls
        proceed() from a thread of its own.
        """
        lock = threading.Lock()
        called = False

        def proceed() -> None:
            nonlocal called
            with lock:
                if called:
                    logger.warning(
                        f"proceed() called more than once by middleware "
                        f"{middleware_name(self._middlewares[index])!r}; ignoring"
                    )
                    return
                called = True
            self._step(index + 1, request, response)

        return proceed


def run_middlewares(
    request: Any,
    response: Any,
    middlewares: Sequence[MiddlewareFn],
    callback: Callable[[], None],
) -> None:
    """Run middlewares in order, then callback. Shorthand for MiddlewareChain."""
    MiddlewareChain(middlewares, callback).run(request, response)
