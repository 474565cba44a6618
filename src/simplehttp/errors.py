"""
=============================================================================
ERROR TAXONOMY
=============================================================================

Exceptions raised by the router core.

    ┌─────────────────────────────────────────────────────────────────────┐
    │  CONDITION                 HOW IT SURFACES                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │  No route matches          404 {"error":"Not Found"} (never raised) │
    │  Malformed JSON body       request.body = {}        (never raised)  │
    │  Bad route template        RoutePatternError  (at registration)     │
    │  Response written twice    ResponseAlreadySentError (transport)     │
    │  Malformed HTTP request    HTTPParseError (see http/request.py)     │
    └─────────────────────────────────────────────────────────────────────┘

A middleware that never calls proceed() is NOT an error here. The request
simply stays open until the client gives up or the optional
ServerConfig.response_timeout expires.

=============================================================================
"""


class SimpleHttpError(Exception):
    """Base class for all simplehttp errors."""


class RoutePatternError(SimpleHttpError, ValueError):
    """
    Raised when a route template cannot be compiled.

    Literal text in templates is embedded in the matcher as-is, so a
    template such as "/files/(draft" is not a valid regular expression.
    """

    def __init__(self, path: str, reason: str):
        super().__init__(f"Invalid route pattern {path!r}: {reason}")
        self.path = path
        self.reason = reason


class ResponseAlreadySentError(SimpleHttpError, RuntimeError):
    """
    Raised by the transport response when it is written after it ended.

    send_response() does not guard against being called twice; the
    second attempt is rejected here, at the transport layer.
    """
