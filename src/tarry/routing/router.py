"""Compiled router.

Each path pattern is translated once into an anchored regex. Matching
walks the routes in registration order; the first pattern that matches
the path wins, then the method is checked.
"""

import re
from dataclasses import dataclass, field

from tarry.errors import ConfigurationError, MethodNotAllowed, NotFound
from tarry.routing.route import Route, RouteMatch

# (regex fragment, python type) for each supported converter
CONVERTERS: dict[str, tuple[str, type]] = {
    "str": (r"[^/]+", str),
    "int": (r"\d+", int),
    "float": (r"\d+(?:\.\d+)?", float),
    "path": (r".+", str),
}

_PARAM = re.compile(r"\{(\w+)(?::(\w+))?\}")


def compile_path(path: str) -> tuple[re.Pattern[str], dict[str, str]]:
    """Translate a route pattern into a regex and its param converters.

    Examples::

        "/users"             -> ^/users$
        "/users/{id:int}"    -> ^/users/(?P<id>\\d+)$
        "/files/{rest:path}" -> ^/files/(?P<rest>.+)$
    """
    pattern = "^"
    params: dict[str, str] = {}
    pos = 0
    normalized = "/" + path.strip("/")
    for m in _PARAM.finditer(normalized):
        name, kind = m.group(1), m.group(2) or "str"
        if kind not in CONVERTERS:
            msg = f"Unknown path converter {kind!r} in route {path!r}"
            raise ConfigurationError(msg)
        if name in params:
            msg = f"Duplicate path parameter {name!r} in route {path!r}"
            raise ConfigurationError(msg)
        params[name] = kind
        pattern += re.escape(normalized[pos : m.start()])
        pattern += f"(?P<{name}>{CONVERTERS[kind][0]})"
        pos = m.end()
    pattern += re.escape(normalized[pos:]) + "$"
    return re.compile(pattern), params


def convert_param(value: str, param_type: str) -> str | int | float:
    """Convert a captured path parameter string to the target type."""
    _, target_type = CONVERTERS[param_type]
    return target_type(value)


@dataclass(slots=True)
class _Entry:
    regex: re.Pattern[str]
    params: dict[str, str]
    routes_by_method: dict[str, Route] = field(default_factory=dict)


class Router:
    """Route table compiled at freeze time.

    Usage::

        router = Router()
        router.add(Route("/users/{id:int}", handler, frozenset({"GET"})))
        router.compile()
        match = router.match("GET", "/users/42")
    """

    __slots__ = ("_compiled", "_entries")

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._compiled = False

    def add(self, route: Route) -> None:
        """Add a route. Must be called before compile()."""
        if self._compiled:
            msg = "Cannot add routes after compilation."
            raise RuntimeError(msg)
        key = "/" + route.path.strip("/")
        entry = self._entries.get(key)
        if entry is None:
            regex, params = compile_path(route.path)
            entry = _Entry(regex, params)
            self._entries[key] = entry
        for method in route.methods:
            entry.routes_by_method[method] = route

    @property
    def routes(self) -> list[Route]:
        """All registered routes, without duplicates, in registration order."""
        seen: set[int] = set()
        result: list[Route] = []
        for entry in self._entries.values():
            for route in entry.routes_by_method.values():
                if id(route) not in seen:
                    seen.add(id(route))
                    result.append(route)
        return result

    def compile(self) -> None:
        """Freeze the router. No more routes can be added."""
        self._compiled = True

    def match(self, method: str, path: str) -> RouteMatch:
        """Match a request method and path.

        Raises ``NotFound`` if no pattern matches the path, and
        ``MethodNotAllowed`` if patterns match but none for *method*.
        """
        allowed: set[str] = set()
        for entry in self._entries.values():
            m = entry.regex.match(path)
            if m is None:
                continue
            route = entry.routes_by_method.get(method)
            if route is not None:
                params = {
                    name: convert_param(value, entry.params[name])
                    for name, value in m.groupdict().items()
                }
                return RouteMatch(route=route, path_params=params)
            allowed.update(entry.routes_by_method)

        if allowed:
            raise MethodNotAllowed(frozenset(allowed))
        raise NotFound(f"No route matches {method} {path!r}")
