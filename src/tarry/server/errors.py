"""Error handling pipeline.

Maps HTTPError exceptions, halts and unexpected failures to Response
objects, using registered error handlers, the diagnostic page, or
defaults. Shared by synchronous routes and deferred bodies so a failure
renders the same way whichever tick it happens on.
"""

import inspect
import logging
from collections.abc import Callable
from typing import Any

from kida import Environment

from tarry._internal.types import ErrorHandlers
from tarry.deferred.coercion import coerce_halt
from tarry.deferred.descriptor import ResponseDescriptor
from tarry.errors import HTTPError
from tarry.http.request import Request
from tarry.http.response import Response, StreamingResponse
from tarry.server.negotiation import negotiate

logger = logging.getLogger("tarry.server")


def find_error_handler(
    exc: BaseException, error_handlers: ErrorHandlers
) -> Callable[..., Any] | None:
    """Look up a handler by exception class, walking the MRO.

    ``@app.error(Exception)`` therefore catches a ``RuntimeError``.
    """
    for cls in type(exc).__mro__:
        handler = error_handlers.get(cls)
        if handler is not None:
            return handler
    return None


async def call_error_handler(
    handler: Callable[..., Any],
    request: Request,
    exc: Exception,
    kida_env: Environment | None,
) -> Response | StreamingResponse:
    """Invoke a user-registered error handler with introspected arguments.

    Error handlers may accept zero, one (request), or two (request, exc) args.
    Supports both sync and async error handlers.
    """
    params = list(inspect.signature(handler).parameters.values())

    if len(params) >= 2:
        result = handler(request, exc)
    elif len(params) == 1:
        result = handler(request)
    else:
        result = handler()

    if inspect.isawaitable(result):
        result = await result

    return negotiate(result, kida_env=kida_env)


def internal_error_body(exc: BaseException) -> str:
    """Default 500 body: names the exception class and its message."""
    return f"Internal Server Error\n\n{type(exc).__name__}: {exc}"


async def handle_http_error(
    exc: HTTPError,
    request: Request,
    error_handlers: ErrorHandlers,
    kida_env: Environment | None,
) -> Response | StreamingResponse:
    """Map an HTTPError to a Response using registered error handlers."""
    logger.debug("%d %s %s — %s", exc.status, request.method, request.path, exc.detail)

    # Exception class first (MRO), then status code
    handler = find_error_handler(exc, error_handlers) or error_handlers.get(exc.status)
    if handler is not None:
        response = await call_error_handler(handler, request, exc, kida_env)
        # Keep the error status unless the handler chose its own
        if response.status == 200:
            response = response.with_status(exc.status)
        return response

    resp = Response(body=exc.detail or f"Error {exc.status}").with_status(exc.status)
    for name, value in exc.headers:
        resp = resp.with_header(name, value)
    return resp


async def handle_internal_error(
    exc: Exception,
    request: Request,
    error_handlers: ErrorHandlers,
    kida_env: Environment | None,
    *,
    show_exceptions: bool,
    deferred: bool = False,
) -> Response | StreamingResponse:
    """Handle unexpected exceptions as 500 errors.

    With *show_exceptions* on, the diagnostic page replaces any registered
    handler. Otherwise the handler registered for the exception class (or
    for 500) renders the body, falling back to :func:`internal_error_body`.
    """
    logger.exception(
        "500 %s %s%s", request.method, request.path, " (deferred)" if deferred else "",
        exc_info=exc,
    )

    if show_exceptions:
        from tarry.server.debug_page import render_debug_page

        body = render_debug_page(exc, request, deferred=deferred)
        return Response(body=body, status=500)

    handler = find_error_handler(exc, error_handlers) or error_handlers.get(500)
    if handler is not None:
        response = await call_error_handler(handler, request, exc, kida_env)
        if response.status == 200:
            response = response.with_status(500)
        return response

    return Response(
        body=internal_error_body(exc),
        status=500,
        content_type="text/plain; charset=utf-8",
    )


async def render_halt(
    value: Any,
    request: Request,
    error_handlers: ErrorHandlers,
    kida_env: Environment | None,
    descriptor: ResponseDescriptor | None = None,
) -> Response | StreamingResponse:
    """Turn a halt payload into the final response.

    The payload is coerced onto *descriptor* (a fresh one for synchronous
    routes). When an error handler is registered for the resulting
    status, it receives an ``HTTPError`` whose ``detail`` is the current
    body text, and its result replaces the body. ``UnsupportedHaltValue``
    propagates to the caller.
    """
    descriptor = coerce_halt(value, descriptor or ResponseDescriptor())
    response = descriptor.render(kida_env)

    handler = error_handlers.get(response.status)
    if handler is None:
        return response

    detail = response.text if isinstance(response, Response) else ""
    replacement = await call_error_handler(
        handler, request, HTTPError(status=response.status, detail=detail), kida_env
    )
    # Keep the halt status unless the handler chose its own
    if replacement.status == 200:
        replacement = replacement.with_status(response.status)
    carried = {k: v for k, v in response.headers if not _has_header(replacement, k)}
    return replacement.with_headers(carried)


def _has_header(response: Response | StreamingResponse, name: str) -> bool:
    wanted = name.lower()
    return any(key.lower() == wanted for key, _ in response.headers)
