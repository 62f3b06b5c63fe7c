"""Tests for tarry.routing.router — regex-compiled router."""

import pytest

from tarry.errors import ConfigurationError, MethodNotAllowed, NotFound
from tarry.routing.route import Route
from tarry.routing.router import Router, compile_path, convert_param


def _handler() -> str:
    return "ok"


def _route(path: str, methods: frozenset[str] | None = None, **kwargs) -> Route:
    return Route(path=path, handler=_handler, methods=methods or frozenset({"GET"}), **kwargs)


def _router(*routes: Route) -> Router:
    router = Router()
    for route in routes:
        router.add(route)
    router.compile()
    return router


class TestCompilePath:
    def test_static(self) -> None:
        regex, params = compile_path("/users")
        assert regex.match("/users")
        assert not regex.match("/users/1")
        assert params == {}

    def test_root(self) -> None:
        regex, _ = compile_path("/")
        assert regex.match("/")

    def test_typed_params(self) -> None:
        regex, params = compile_path("/users/{id:int}/files/{rest:path}")
        assert params == {"id": "int", "rest": "path"}
        m = regex.match("/users/7/files/a/b.txt")
        assert m is not None
        assert m.groupdict() == {"id": "7", "rest": "a/b.txt"}

    def test_int_rejects_letters(self) -> None:
        regex, _ = compile_path("/users/{id:int}")
        assert regex.match("/users/abc") is None

    def test_unknown_converter(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown path converter"):
            compile_path("/users/{id:uuid}")

    def test_duplicate_param(self) -> None:
        with pytest.raises(ConfigurationError, match="Duplicate"):
            compile_path("/{a}/{a}")

    def test_regex_characters_escaped(self) -> None:
        regex, _ = compile_path("/files/report.txt")
        assert regex.match("/files/report.txt")
        assert not regex.match("/files/reportxtxt")


class TestConvertParam:
    def test_int(self) -> None:
        assert convert_param("42", "int") == 42

    def test_float(self) -> None:
        assert convert_param("1.5", "float") == 1.5

    def test_str(self) -> None:
        assert convert_param("x", "str") == "x"


class TestRouterMatch:
    def test_match_converts_params(self) -> None:
        router = _router(_route("/users/{id:int}"))
        match = router.match("GET", "/users/42")
        assert match.path_params == {"id": 42}

    def test_not_found(self) -> None:
        router = _router(_route("/users"))
        with pytest.raises(NotFound):
            router.match("GET", "/posts")

    def test_method_not_allowed_lists_methods(self) -> None:
        router = _router(_route("/users", frozenset({"GET", "HEAD"})))
        with pytest.raises(MethodNotAllowed) as exc_info:
            router.match("POST", "/users")
        assert exc_info.value.status == 405
        assert ("Allow", "GET, HEAD") in exc_info.value.headers

    def test_methods_split_across_routes(self) -> None:
        get_route = _route("/items", frozenset({"GET"}))
        post_route = _route("/items", frozenset({"POST"}), deferred=True)
        router = _router(get_route, post_route)
        assert router.match("GET", "/items").route is get_route
        assert router.match("POST", "/items").route.deferred is True

    def test_first_registered_wins(self) -> None:
        specific = _route("/users/me")
        generic = _route("/users/{name}")
        router = _router(specific, generic)
        assert router.match("GET", "/users/me").route is specific
        assert router.match("GET", "/users/bob").path_params == {"name": "bob"}

    def test_routes_listed_once(self) -> None:
        route = _route("/a", frozenset({"GET", "HEAD"}))
        router = _router(route, _route("/b"))
        assert [r.path for r in router.routes] == ["/a", "/b"]

    def test_add_after_compile_fails(self) -> None:
        router = _router()
        with pytest.raises(RuntimeError):
            router.add(_route("/late"))
