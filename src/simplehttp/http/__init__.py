"""
=============================================================================
HTTP PROTOCOL LAYER
=============================================================================

    request.py   HTTPRequest, RequestParser, BodyStream
    response.py  ResponseWriter, ObservedResponse, send_response
    router.py    compile_pattern, Route, RouteMatch, RouteTable

=============================================================================
"""

from .request import HTTPRequest, RequestParser, HTTPParseError, BodyStream, parse_request
from .response import (
    ResponseWriter,
    ObservedResponse,
    ResponseRecord,
    send_response,
    to_json,
)
from .router import (
    CompiledPattern,
    Route,
    RouteMatch,
    RouteTable,
    compile_pattern,
)

__all__ = [
    # Requests
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "BodyStream",
    "parse_request",

    # Responses
    "ResponseWriter",
    "ObservedResponse",
    "ResponseRecord",
    "send_response",
    "to_json",

    # Routing
    "CompiledPattern",
    "Route",
    "RouteMatch",
    "RouteTable",
    "compile_pattern",
]
