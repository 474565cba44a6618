"""
=============================================================================
REQUEST LOGGING MIDDLEWARE
=============================================================================

Console access log: one line when a request enters the global chain, one
line when its response ends.

    [14:05]: GET:/exatch/bob, params: {"name":"bob"}, body: null, header-authorization: N/A
    [14:05]: Response: statusCode: 200, body: {"datalist":[...]}, duration: 0.41ms

Method, URL, params, body, authorization and status are colored with ANSI
escapes (status green for 2xx, red otherwise) unless color=False.

=============================================================================
HOW THE RESPONSE LINE IS PRODUCED
=============================================================================

The middleware runs BEFORE the handler, so it cannot see the response yet.
It registers an observer on the ObservedResponse the server hands to every
request; the observer fires once end() went through:

    RequestLoggingMiddleware(request, response, proceed)
        │
        ├── log request line
        ├── response.add_observer(log_response)   ← fires after end()
        └── proceed()

Register it FIRST among the global middlewares so it also logs requests
that later middlewares reject.

=============================================================================
"""

import logging
import time
from typing import Any, Optional

from .base import Middleware, Proceed
from ..http.response import ResponseRecord, to_json


# Namespaced so it can be routed separately:
#   logging.getLogger("simplehttp.access").addHandler(file_handler)
logger = logging.getLogger("simplehttp.access")


RESET = "\x1b[0m"
GREEN = "\x1b[32m"
RED = "\x1b[31m"
YELLOW = "\x1b[33m"
BLUE = "\x1b[34m"
MAGENTA = "\x1b[35m"
CYAN = "\x1b[36m"
CYAN_BACKGROUND = "\x1b[46m"


def paint(text: str, color: str, enabled: bool = True) -> str:
    """Wrap text in an ANSI color, or return it unchanged."""
    if not enabled:
        return text
    return f"{color}{text}{RESET}"


class RequestLoggingMiddleware(Middleware):
    """
    Logs each request and the response it produced.

    Usage:
        api.use_global(RequestLoggingMiddleware())
        # or simply
        api.enable_request_logging()
    """

    def __init__(
        self,
        color: bool = True,
        log_level: int = logging.INFO,
        log_responses: bool = True,
    ):
        """
        Args:
            color: Emit ANSI color codes.
            log_level: Level used for both lines.
            log_responses: Also log the response line.
        """
        self.color = color
        self.log_level = log_level
        self.log_responses = log_responses

    def __call__(self, request: Any, response: Any, proceed: Proceed) -> None:
        timestamp = time.strftime("%H:%M")
        start_time = time.time()

        logger.log(self.log_level, self.format_request(request, timestamp))

        if self.log_responses and hasattr(response, "add_observer"):
            def log_response(record: ResponseRecord) -> None:
                duration_ms = (time.time() - start_time) * 1000
                logger.log(
                    self.log_level,
                    self.format_response(record, timestamp, duration_ms),
                )

            response.add_observer(log_response)

        proceed()

    def format_request(self, request: Any, timestamp: str) -> str:
        method = paint(request.method, GREEN, self.color)
        endpoint = paint(request.url, GREEN, self.color)
        params = paint(to_json(request.params), YELLOW, self.color)
        body = paint(to_json(request.body), BLUE, self.color)
        authorization = paint(
            request.headers.get("authorization") or "N/A", MAGENTA, self.color
        )
        return (
            f"[{timestamp}]: {paint(method, CYAN_BACKGROUND, self.color)}:{endpoint}, "
            f"params: {params}, body: {body}, header-authorization: {authorization}"
        )

    def format_response(
        self,
        record: ResponseRecord,
        timestamp: str,
        duration_ms: Optional[float] = None,
    ) -> str:
        status_color = GREEN if 200 <= record.status_code < 300 else RED
        status = paint(str(record.status_code), status_color, self.color)
        body = paint(record.text, BLUE, self.color)
        line = (
            f"[{timestamp}]: {paint('Response', CYAN_BACKGROUND, self.color)}: "
            f"statusCode: {status}, body: {body}"
        )
        if duration_ms is not None:
            line += f", duration: {duration_ms:.2f}ms"
        return line
