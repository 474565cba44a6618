"""
=============================================================================
ROUTE TABLE AND PATTERN COMPILER
=============================================================================

Maps (method, path) pairs to registered routes.

- Static paths:        /users, /api/health
- Named placeholders:  /users/$id, /posts/$post_id/comments/$comment_id
- Method filtering:    GET, POST, PUT, PATCH, DELETE

=============================================================================
ROUTING FLOW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   Incoming Request                                                   │
    │   GET /users/123?verbose=1                                           │
    │        │                                                             │
    │        │  query string dropped: match on "/users/123"                │
    │        ▼                                                             │
    │   ┌─────────────────────────────────────────────────────────────┐   │
    │   │  ROUTE TABLE (registration order)                            │   │
    │   │                                                              │   │
    │   │   GET  /users        → list_users                            │   │
    │   │   GET  /users/$id    → get_user       ← FIRST MATCH WINS     │   │
    │   │   GET  /users/me     → current_user   (never reached)        │   │
    │   │   POST /users        → create_user                           │   │
    │   │                                                              │   │
    │   │   params = {"id": "123"}                                     │   │
    │   └─────────────────────────────────────────────────────────────┘   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

There is no specificity ranking. Register "/users/me" BEFORE "/users/$id"
if both should be reachable.

=============================================================================
PATTERN COMPILATION
=============================================================================

    Template:  /users/$id/posts/$post_id
                      │          │
                      ▼          ▼
    Regex:     ^/users/([^/]+)/posts/([^/]+)\\Z
    Names:     ["id", "post_id"]

    - A placeholder is "$" + [a-zA-Z_][a-zA-Z0-9_]*
    - It captures one or more characters that are not "/", so empty
      segments never match: "/users/" does not match "/users/$id".
    - The regex is anchored at both ends (full match, not prefix).
    - Literal text is embedded AS-IS unless escape_literals=True.
      "/report.json" therefore also matches "/reportXjson". Turning on
      escape_literals gives exact literal matching instead.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging
import re
import threading

from ..errors import RoutePatternError


logger = logging.getLogger(__name__)


# Handler: called with the prepared request and the response to write.
# It writes the response itself (usually via send_response); return value
# is ignored.
Handler = Callable[[Any, Any], None]

# (request, response, proceed) -> None. See middleware/base.py.
MiddlewareFn = Callable[[Any, Any, Callable[[], None]], None]

Params = Dict[str, str]

PLACEHOLDER_PATTERN = re.compile(r"\$([a-zA-Z_][a-zA-Z0-9_]*)")

# Each placeholder becomes one capturing group of non-slash characters.
SEGMENT_CAPTURE = r"([^/]+)"


@dataclass(frozen=True)
class CompiledPattern:
    """
    A route template compiled into a matcher.

    Example:
        pattern = compile_pattern("/users/$id")
        pattern.param_names     # ("id",)
        pattern.match("/users/42")   # {"id": "42"}
        pattern.match("/users/")     # None
    """

    source: str                       # Template as registered
    regex: "re.Pattern[str]"          # Anchored matcher
    param_names: Tuple[str, ...]      # Placeholder names, left to right

    def match(self, path: str) -> Optional[Params]:
        """
        Match a path and extract its parameters.

        Groups are read by position, so a name used twice in one template
        keeps the value of its LAST occurrence.

        Returns:
            Params dict on match (empty for static templates), None otherwise.
        """
        found = self.regex.match(path)
        if found is None:
            return None

        params: Params = {}
        for index, name in enumerate(self.param_names):
            params[name] = found.group(index + 1)
        return params


def compile_pattern(path: str, escape_literals: bool = False) -> CompiledPattern:
    """
    Compile a route template into a CompiledPattern.

    Args:
        path: Route template, e.g. "/users/$id".
        escape_literals: Escape regex metacharacters in the literal text.

    Returns:
        The compiled pattern.

    Raises:
        RoutePatternError: The resulting expression is not a valid regex.
    """
    param_names: List[str] = []
    regex_parts = ["^"]
    cursor = 0

    for placeholder in PLACEHOLDER_PATTERN.finditer(path):
        literal = path[cursor:placeholder.start()]
        regex_parts.append(re.escape(literal) if escape_literals else literal)
        regex_parts.append(SEGMENT_CAPTURE)
        param_names.append(placeholder.group(1))
        cursor = placeholder.end()

    tail = path[cursor:]
    regex_parts.append(re.escape(tail) if escape_literals else tail)

    # \Z rather than $: Python's $ also accepts a trailing newline
    regex_parts.append(r"\Z")

    try:
        regex = re.compile("".join(regex_parts))
    except re.error as e:
        raise RoutePatternError(path, str(e)) from e

    return CompiledPattern(
        source=path,
        regex=regex,
        param_names=tuple(param_names),
    )


@dataclass
class Route:
    """
    A registered route.

        api.get("/users/$id", get_user, [require_auth])

        Route(
            method="GET",
            path="/users/$id",
            handler=get_user,
            middlewares=[require_auth],
            pattern=<CompiledPattern>,
        )

    Only the middleware list changes after registration (see
    RouteTable.attach_middleware).
    """

    method: str                       # Uppercase HTTP verb
    path: str                         # Template as registered
    handler: Handler
    middlewares: List[MiddlewareFn] = field(default_factory=list)
    pattern: Optional[CompiledPattern] = field(default=None, repr=False)


@dataclass
class RouteMatch:
    """The route that matched plus the parameters extracted from the path."""

    route: Route
    params: Params


class RouteTable:
    """
    Ordered collection of routes with first-match lookup.

    Lookup is a linear scan, O(routes) per request, with no caching and no
    duplicate detection: registering the same route twice keeps both
    entries and the first one shadows the second.

    Registration takes a lock, so routes can safely be added while the
    server is already handling traffic.
    """

    def __init__(self, escape_literals: bool = False):
        self.escape_literals = escape_literals
        self._routes: List[Route] = []
        self._lock = threading.Lock()

    def register(
        self,
        method: str,
        path: str,
        handler: Handler,
        middlewares: Optional[List[MiddlewareFn]] = None,
    ) -> Route:
        """
        Append a route.

        The template is compiled here, so an invalid template fails at
        registration rather than on the first request.
        """
        route = Route(
            method=method.upper(),
            path=path,
            handler=handler,
            middlewares=list(middlewares or []),
            pattern=compile_pattern(path, self.escape_literals),
        )
        with self._lock:
            self._routes.append(route)

        logger.debug(f"Registered route {route.method} {route.path}")
        return route

    def find_match(self, method: str, path: str) -> Optional[RouteMatch]:
        """
        Find the first route, in registration order, for method and path.

        Args:
            method: Request method (compared case-sensitively to the
                    uppercase route method, as parsed methods are uppercase).
            path: Request path WITHOUT the query string.

        Returns:
            RouteMatch, or None when nothing matches.
        """
        for route in self.routes():
            if route.method != method:
                continue

            params = route.pattern.match(path)
            if params is not None:
                return RouteMatch(route=route, params=params)

        return None

    def attach_middleware(
        self,
        path: str,
        middleware: MiddlewareFn,
        method: Optional[str] = None,
    ) -> Optional[Route]:
        """
        Append a middleware to an existing route.

        The route is found by its literal template string, not by pattern
        matching. Without a method the lookup ignores methods, so
        use("/a", mw) picks whichever "/a" route was registered first,
        GET or POST alike.

        Returns:
            The route that received the middleware, or None when no route
            has that template (the call is then a no-op).
        """
        wanted = method.upper() if method else None

        with self._lock:
            for route in self._routes:
                if route.path != path:
                    continue
                if wanted is not None and route.method != wanted:
                    continue
                route.middlewares.append(middleware)
                return route

        logger.debug(f"No route registered for {path!r}; middleware not attached")
        return None

    def routes(self) -> List[Route]:
        """Snapshot of the registered routes, in registration order."""
        with self._lock:
            return list(self._routes)

    def __len__(self) -> int:
        return len(self._routes)

    def format_routes(self) -> str:
        """
        Route listing for the startup banner.

            GET      /exatch/$name   (0 middlewares)
            DELETE   /$id            (1 middleware)
        """
        lines = []
        for route in self.routes():
            count = len(route.middlewares)
            suffix = "middleware" if count == 1 else "middlewares"
            lines.append(f"  {route.method:8} {route.path}   ({count} {suffix})")
        return "\n".join(lines)
