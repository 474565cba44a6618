"""
Unit tests for route templates and the route table.
"""

import threading

import pytest

from simplehttp.errors import RoutePatternError
from simplehttp.http.router import RouteTable, compile_pattern


def dummy_handler(request, response):
    """Dummy handler for testing."""


def other_handler(request, response):
    """Second handler to tell routes apart."""


class TestCompilePattern:
    """Tests for compile_pattern()."""

    def test_static_pattern(self):
        """Test matching static paths."""
        pattern = compile_pattern("/users")

        assert pattern.param_names == ()
        assert pattern.match("/users") == {}
        assert pattern.match("/users/") is None
        assert pattern.match("/users/1") is None

    def test_single_placeholder(self):
        """/users/$id with /users/42 yields {"id": "42"}."""
        pattern = compile_pattern("/users/$id")

        assert pattern.param_names == ("id",)
        assert pattern.match("/users/42") == {"id": "42"}

    def test_multiple_placeholders(self):
        """Test several placeholders."""
        pattern = compile_pattern("/users/$user_id/posts/$post_id")

        assert pattern.match("/users/7/posts/99") == {"user_id": "7", "post_id": "99"}

    def test_placeholder_does_not_cross_slash(self):
        """Test that a placeholder does not cross "/"."""
        pattern = compile_pattern("/files/$name")

        assert pattern.match("/files/a/b") is None

    def test_placeholder_never_matches_empty_segment(self):
        """Test that a placeholder never matches an empty segment."""
        pattern = compile_pattern("/users/$id")

        assert pattern.match("/users/") is None

    def test_anchored_at_both_ends(self):
        """Test that patterns are anchored at both ends."""
        pattern = compile_pattern("/a/$x")

        assert pattern.match("/prefix/a/1") is None
        assert pattern.match("/a/1/suffix") is None
        assert compile_pattern("/a").match("/a\n") is None

    def test_placeholder_inside_segment(self):
        """Test a placeholder inside a segment."""
        pattern = compile_pattern("/report-$year.csv", escape_literals=True)

        assert pattern.match("/report-2024.csv") == {"year": "2024"}

    def test_identifier_rules(self):
        """Identifiers start with a letter or underscore."""
        pattern = compile_pattern("/v/$_id2")
        assert pattern.match("/v/abc") == {"_id2": "abc"}

        # "$1" is not a placeholder, the text stays literal regex
        assert compile_pattern("/v/$1").param_names == ()

    def test_duplicate_names_keep_last_value(self):
        """Test that duplicate names keep the last value."""
        pattern = compile_pattern("/$id/child/$id")

        assert pattern.match("/first/child/second") == {"id": "second"}

    def test_percent_encoding_is_not_decoded(self):
        """Test that percent-encoding is not decoded."""
        pattern = compile_pattern("/users/$name")

        assert pattern.match("/users/john%20doe") == {"name": "john%20doe"}

    def test_literal_metacharacters_unescaped_by_default(self):
        """A "." in a template matches any character."""
        pattern = compile_pattern("/file.json")

        assert pattern.match("/file.json") == {}
        assert pattern.match("/fileXjson") == {}

    def test_escape_literals_matches_exactly(self):
        """Test exact matching with escape_literals."""
        pattern = compile_pattern("/file.json", escape_literals=True)

        assert pattern.match("/file.json") == {}
        assert pattern.match("/fileXjson") is None

    def test_invalid_template_raises(self):
        """Test RoutePatternError for an invalid template."""
        with pytest.raises(RoutePatternError) as exc_info:
            compile_pattern("/files/(draft")

        assert exc_info.value.path == "/files/(draft"
        assert isinstance(exc_info.value, ValueError)

    def test_invalid_template_is_fine_when_escaped(self):
        """Test that escaping makes the same template valid."""
        pattern = compile_pattern("/files/(draft", escape_literals=True)

        assert pattern.match("/files/(draft") == {}


class TestRouteTable:
    """Tests for RouteTable."""

    def test_register_route(self):
        """Test adding routes."""
        table = RouteTable()
        route = table.register("get", "/users", dummy_handler)

        assert len(table) == 1
        assert route.method == "GET"
        assert route.path == "/users"
        assert route.middlewares == []

    def test_find_match_by_method(self):
        """Test method-based routing."""
        table = RouteTable()
        table.register("GET", "/users", dummy_handler)
        table.register("POST", "/users", other_handler)

        assert table.find_match("GET", "/users").route.handler is dummy_handler
        assert table.find_match("POST", "/users").route.handler is other_handler
        assert table.find_match("PUT", "/users") is None

    def test_find_match_returns_params(self):
        """Test dynamic path parameters."""
        table = RouteTable()
        table.register("GET", "/users/$id", dummy_handler)

        match = table.find_match("GET", "/users/42")

        assert match is not None
        assert match.params == {"id": "42"}

    def test_no_match(self):
        """Test when no route matches."""
        table = RouteTable()
        table.register("GET", "/users", dummy_handler)

        assert table.find_match("GET", "/posts") is None

    def test_first_registered_wins(self):
        """/a/$x registered before /a/fixed captures "fixed"."""
        table = RouteTable()
        table.register("GET", "/a/$x", dummy_handler)
        table.register("GET", "/a/fixed", other_handler)

        match = table.find_match("GET", "/a/fixed")

        assert match.route.handler is dummy_handler
        assert match.params == {"x": "fixed"}

    def test_duplicate_registration_keeps_both(self):
        """Test that duplicate registrations are both kept."""
        table = RouteTable()
        first = table.register("GET", "/dup", dummy_handler)
        table.register("GET", "/dup", other_handler)

        assert len(table) == 2
        assert table.find_match("GET", "/dup").route is first

    def test_table_escape_literals_option(self):
        """Test the table-wide escape_literals option."""
        table = RouteTable(escape_literals=True)
        table.register("GET", "/file.json", dummy_handler)

        assert table.find_match("GET", "/fileXjson") is None
        assert table.find_match("GET", "/file.json") is not None

    def test_invalid_template_fails_at_registration(self):
        """Test that an invalid template fails at registration."""
        table = RouteTable()

        with pytest.raises(RoutePatternError):
            table.register("GET", "/broken/[", dummy_handler)
        assert len(table) == 0

    def test_register_with_middlewares_copies_list(self):
        """Test that the middleware list is copied."""
        middlewares = [lambda req, res, proceed: proceed()]
        table = RouteTable()
        route = table.register("GET", "/x", dummy_handler, middlewares)

        middlewares.append(lambda req, res, proceed: proceed())

        assert len(route.middlewares) == 1

    def test_routes_snapshot(self):
        """Test that routes() returns a snapshot."""
        table = RouteTable()
        table.register("GET", "/a", dummy_handler)

        snapshot = table.routes()
        table.register("GET", "/b", dummy_handler)

        assert [r.path for r in snapshot] == ["/a"]
        assert [r.path for r in table.routes()] == ["/a", "/b"]

    def test_format_routes(self):
        """Test the route listing."""
        table = RouteTable()
        table.register("GET", "/exatch/$name", dummy_handler)
        table.register("DELETE", "/$id", dummy_handler, [lambda q, s, p: p()])

        listing = table.format_routes()

        assert "GET      /exatch/$name   (0 middlewares)" in listing
        assert "DELETE   /$id   (1 middleware)" in listing

    def test_concurrent_registration(self):
        """Test registering from several threads."""
        table = RouteTable()

        def register_many(prefix):
            for i in range(50):
                table.register("GET", f"/{prefix}/{i}", dummy_handler)

        threads = [threading.Thread(target=register_many, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(table) == 200


class TestAttachMiddleware:
    """Tests for RouteTable.attach_middleware (api.use)."""

    def test_attach_by_literal_path(self):
        """Test attaching by template string."""
        table = RouteTable()
        route = table.register("GET", "/users/$id", dummy_handler)

        def mw(request, response, proceed):
            proceed()

        assert table.attach_middleware("/users/$id", mw) is route
        assert route.middlewares == [mw]

    def test_attach_does_not_pattern_match(self):
        """Test that attaching does not pattern match."""
        table = RouteTable()
        route = table.register("GET", "/users/$id", dummy_handler)

        assert table.attach_middleware("/users/42", lambda q, s, p: p()) is None
        assert route.middlewares == []

    def test_attach_to_unknown_path_is_noop(self):
        """Test attaching to an unknown path."""
        table = RouteTable()

        assert table.attach_middleware("/nope", lambda q, s, p: p()) is None

    def test_attach_ignores_method(self):
        """Without a method, the first route with the template wins, POST or GET."""
        table = RouteTable()
        post_route = table.register("POST", "/a", dummy_handler)
        get_route = table.register("GET", "/a", dummy_handler)

        def mw(request, response, proceed):
            proceed()

        assert table.attach_middleware("/a", mw) is post_route
        assert post_route.middlewares == [mw]
        assert get_route.middlewares == []

    def test_attach_with_method_narrows_lookup(self):
        """Test narrowing the lookup by method."""
        table = RouteTable()
        post_route = table.register("POST", "/a", dummy_handler)
        get_route = table.register("GET", "/a", dummy_handler)

        def mw(request, response, proceed):
            proceed()

        assert table.attach_middleware("/a", mw, method="get") is get_route
        assert get_route.middlewares == [mw]
        assert post_route.middlewares == []

    def test_attach_appends_in_order(self):
        """Test that attached middlewares keep their order."""
        table = RouteTable()
        route = table.register("GET", "/x", dummy_handler)

        def first(request, response, proceed):
            proceed()

        def second(request, response, proceed):
            proceed()

        table.attach_middleware("/x", first)
        table.attach_middleware("/x", second)

        assert route.middlewares == [first, second]
