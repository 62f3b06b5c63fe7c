"""Route and RouteMatch frozen dataclasses."""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class Route:
    """A frozen route definition.

    ``deferred`` marks routes registered through the ``a*`` family: the
    server suspends them instead of rendering the handler's return value.
    """

    path: str
    handler: Callable[..., Any]
    methods: frozenset[str]
    name: str | None = None
    deferred: bool = False


@dataclass(frozen=True, slots=True)
class RouteMatch:
    """Result of a successful route match.

    ``path_params`` holds converted values (``{id:int}`` yields an ``int``).
    """

    route: Route
    path_params: dict[str, Any]
