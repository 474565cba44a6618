"""
=============================================================================
MIDDLEWARE
=============================================================================

Middleware runs between route matching and the handler:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   match route ──► global middlewares ──► route middlewares ──►       │
    │                   (api.use_global)       (api.get(..., [mw]),        │
    │                                           api.use(path, mw))         │
    │                                                                      │
    │              ──► body buffering (POST/PUT/PATCH) ──► handler         │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Every middleware is called as middleware(request, response, proceed) and
must either call proceed() once or end the response.

    MiddlewareChain            runs a sequence with continuation semantics
    Middleware                 base class for class-based middleware
    RequestLoggingMiddleware   colored access log

=============================================================================
"""

from .base import (
    Middleware,
    FunctionMiddleware,
    MiddlewareChain,
    MiddlewareFn,
    Proceed,
    run_middlewares,
)
from .logging import RequestLoggingMiddleware

__all__ = [
    "Middleware",
    "FunctionMiddleware",
    "MiddlewareChain",
    "MiddlewareFn",
    "Proceed",
    "run_middlewares",
    "RequestLoggingMiddleware",
]
