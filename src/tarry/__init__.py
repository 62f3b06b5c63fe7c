"""tarry — an ASGI micro-framework with deferred responses.

A deferred route answers later: the handler returns at once, the request
stays open, and whatever callback finishes the work supplies the body.

Basic usage::

    from tarry import App, Deferred

    app = App()

    @app.get("/")
    def index():
        return "Hello, World!"

    @app.aget("/delay/{n:int}")
    def delay(deferred: Deferred, n: int):
        deferred.call_later(n, deferred.body, f"delayed for {n} seconds")

    app.run()
"""

__version__ = "0.1.0"
__all__ = [
    "AnyResponse",
    "App",
    "AppConfig",
    "ConfigurationError",
    "Deferred",
    "DeferredError",
    "HTTPError",
    "Halt",
    "InlineTemplate",
    "MethodNotAllowed",
    "Middleware",
    "Next",
    "NotFound",
    "Redirect",
    "Request",
    "Response",
    "StreamingResponse",
    "TarryError",
    "Template",
    "UnsupportedHaltValue",
    "get_request",
    "halt",
]


def __getattr__(name: str) -> object:
    """Lazy imports for public API.

    Keeps ``import tarry`` fast while providing a clean top-level API.
    """
    if name == "App":
        from tarry.app import App

        return App

    if name == "AppConfig":
        from tarry.config import AppConfig

        return AppConfig

    if name == "Deferred":
        from tarry.deferred.pending import Deferred

        return Deferred

    if name == "Request":
        from tarry.http.request import Request

        return Request

    if name in ("Response", "Redirect", "StreamingResponse"):
        from tarry.http import response as _resp

        return getattr(_resp, name)

    if name in ("Template", "InlineTemplate"):
        from tarry.templating import returns as _tmpl

        return getattr(_tmpl, name)

    if name in ("AnyResponse", "Middleware", "Next"):
        from tarry.middleware import protocol as _mw

        return getattr(_mw, name)

    if name == "get_request":
        from tarry.context import get_request

        return get_request

    if name in (
        "ConfigurationError",
        "DeferredError",
        "HTTPError",
        "Halt",
        "MethodNotAllowed",
        "NotFound",
        "TarryError",
        "UnsupportedHaltValue",
        "halt",
    ):
        from tarry import errors as _errors

        return getattr(_errors, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
