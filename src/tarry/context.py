"""Request-scoped context via ContextVar.

``request_var`` holds the current ``Request``. It is set by the server
pipeline before dispatch and reset afterwards.

Deferred bodies run on a later event-loop tick, but ``loop.call_soon``
copies the context it is called from, so ``get_request()`` still returns
the suspended request inside a deferred body and its guarded callbacks.
"""

from contextvars import ContextVar

from tarry.http.request import Request

request_var: ContextVar[Request] = ContextVar("tarry_request")
"""The current request. Set by the server pipeline before dispatch."""


def get_request() -> Request:
    """Return the current request.

    Raises ``LookupError`` if called outside a request context.
    """
    return request_var.get()
