"""tarry exception hierarchy.

Shared across the router, app, server pipeline and the deferred
controller so every module raises and catches the same types.
"""

from dataclasses import dataclass
from typing import Any


class TarryError(Exception):
    """Base for all tarry-specific errors."""


class ConfigurationError(TarryError):
    """Raised when app configuration is invalid."""


class DeferredError(TarryError):
    """Raised when the deferred-response API is misused.

    For example, suspending a request outside of a running event loop.
    """


@dataclass(frozen=True, slots=True)
class HTTPError(TarryError):
    """An error that maps directly to an HTTP status code.

    Raised by the router, middleware, or handlers. The server pipeline
    catches these and dispatches to the matching ``@app.error()`` handler.
    """

    status: int
    detail: str = ""
    headers: tuple[tuple[str, str], ...] = ()

    def __str__(self) -> str:
        if self.detail:
            return f"{self.status}: {self.detail}"
        return str(self.status)


class NotFound(HTTPError):  # noqa: N818
    """404 — no route matched the request path."""

    def __init__(self, detail: str = "Not Found") -> None:
        super().__init__(status=404, detail=detail)


class MethodNotAllowed(HTTPError):  # noqa: N818
    """405 — route exists but not for this HTTP method.

    Carries an ``Allow`` header listing the valid methods.
    """

    def __init__(self, allowed: frozenset[str], detail: str = "") -> None:
        allow_value = ", ".join(sorted(allowed))
        default_detail = f"Method not allowed. Allowed methods: {allow_value}"
        super().__init__(
            status=405,
            detail=detail or default_detail,
            headers=(("Allow", allow_value),),
        )


class Halt(Exception):  # noqa: N818
    """Stop the current handler and respond with *value* right away.

    Not a failure: the pipeline converts the carried value into a
    response (see ``tarry.deferred.coercion.coerce_halt``). Accepted
    shapes are a body string, a status int, ``(status, body)`` or
    ``(status, headers, body)``, or any iterable of body chunks.

    Usually raised through :func:`halt`.
    """

    def __init__(self, value: Any = None) -> None:
        super().__init__(value)
        self.value = value

    def __repr__(self) -> str:
        return f"Halt({self.value!r})"


class UnsupportedHaltValue(TarryError, TypeError):  # noqa: N818
    """A ``Halt`` carried a value that cannot be turned into a response."""

    def __init__(self, value: Any) -> None:
        super().__init__(f"{value!r} not supported as a halt value")
        self.value = value


def halt(*args: Any) -> None:
    """Raise :class:`Halt` for the given response value.

    ``halt(404)``, ``halt("gone")``, ``halt(406, "Format not supported")``
    and ``halt(503, {"Retry-After": "5"}, "busy")`` are all accepted. With
    a single argument the value is carried as is; with several they are
    carried as a tuple.
    """
    if not args:
        raise Halt(None)
    raise Halt(args[0] if len(args) == 1 else args)
