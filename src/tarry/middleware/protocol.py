"""Middleware protocol and Next type alias.

A middleware is any callable matching::

    async def my_mw(request: Request, next: Next) -> AnyResponse: ...

The ``next`` callable may return ``Response``, ``StreamingResponse`` or,
for deferred routes, ``Suspended``. All three share the ``.with_header()``
/ ``.with_status()`` chainable API. On ``Suspended`` those calls do
nothing: a middleware that wants to touch a deferred response has to do
it from the deferred body.
"""

from collections.abc import Awaitable, Callable
from typing import Protocol

from tarry.http.request import Request
from tarry.http.response import Response, StreamingResponse, Suspended

# Any response type the pipeline can produce
type AnyResponse = Response | StreamingResponse | Suspended

# The next handler in the middleware chain
type Next = Callable[[Request], Awaitable[AnyResponse]]


class Middleware(Protocol):
    """Protocol for tarry middleware.

    Accepts both functions and callable objects::

        async def timing(request: Request, next: Next) -> AnyResponse:
            start = time.monotonic()
            response = await next(request)
            elapsed = time.monotonic() - start
            return response.with_header("X-Time", f"{elapsed:.3f}")
    """

    async def __call__(self, request: Request, next: Next) -> AnyResponse: ...
