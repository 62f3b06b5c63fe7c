"""ASGI handler — translates ASGI scope/messages to tarry types.

The only component that touches raw ASGI directly. Converts scope dicts
to typed Request objects, dispatches through middleware and routing,
and sends Response back through ASGI send().

Deferred routes hand back ``Suspended`` instead of a response. The
request task then awaits a per-request future that the Deferred resolves
through the ``complete`` callback, on whatever later tick it finishes.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable
from contextvars import Token
from typing import Any

from kida import Environment

from tarry._internal.asgi import Receive, Scope, Send
from tarry._internal.invoke import invoke
from tarry._internal.types import ErrorHandlers
from tarry.context import request_var
from tarry.deferred.pending import Deferred
from tarry.errors import Halt, HTTPError, UnsupportedHaltValue
from tarry.http.request import Request
from tarry.http.response import Response, StreamingResponse, Suspended
from tarry.middleware.protocol import AnyResponse, Next
from tarry.routing.route import RouteMatch
from tarry.routing.router import Router
from tarry.server.errors import handle_http_error, handle_internal_error, render_halt
from tarry.server.negotiation import negotiate
from tarry.server.sender import send_response, send_streaming_response

logger = logging.getLogger("tarry.server")


async def handle_request(
    scope: Scope,
    receive: Receive,
    send: Send,
    *,
    router: Router,
    middleware: tuple[Callable[..., Any], ...],
    error_handlers: ErrorHandlers,
    kida_env: Environment | None = None,
    show_exceptions: bool = False,
    providers: dict[type, Callable[..., Any]] | None = None,
) -> None:
    """Process a single HTTP request through the full pipeline."""
    if scope["type"] != "http":
        return

    # Build Request from ASGI scope
    request = Request.from_asgi(scope, receive)

    # Set request context var (reset after dispatch). Deferred bodies
    # scheduled during dispatch keep a copy of this context.
    token: Token[Request] = request_var.set(request)

    completion: asyncio.Future[Response | StreamingResponse] = (
        asyncio.get_running_loop().create_future()
    )

    def complete(response: Response | StreamingResponse) -> None:
        if completion.done():
            logger.debug(
                "Dropping late completion for %s %s", request.method, request.path
            )
            return
        completion.set_result(response)

    try:
        # Build the innermost handler (router dispatch)
        async def dispatch(req: Request) -> AnyResponse:
            match = router.match(req.method, req.path)
            return await _invoke_handler(
                match,
                req,
                kida_env=kida_env,
                providers=providers,
                complete=complete,
                error_handlers=error_handlers,
                show_exceptions=show_exceptions,
            )

        # Wrap middleware around the dispatch
        handler = dispatch
        for mw in reversed(middleware):
            outer = handler
            mw_ref = mw

            async def make_next(req: Request, _mw: Any = mw_ref, _next: Next = outer) -> Response:
                return await _mw(req, _next)

            handler = make_next

        # Execute the full pipeline
        response = await handler(request)

    except Halt as exc:
        try:
            response = await render_halt(exc.value, request, error_handlers, kida_env)
        except UnsupportedHaltValue as unsupported:
            response = await handle_internal_error(
                unsupported,
                request,
                error_handlers,
                kida_env,
                show_exceptions=show_exceptions,
            )
    except HTTPError as exc:
        response = await handle_http_error(exc, request, error_handlers, kida_env)
    except Exception as exc:
        response = await handle_internal_error(
            exc, request, error_handlers, kida_env, show_exceptions=show_exceptions
        )
    finally:
        request_var.reset(token)

    if isinstance(response, Suspended):
        logger.debug("Waiting on %r", response.deferred)
        response = await completion

    head = request.method == "HEAD"
    if isinstance(response, StreamingResponse):
        await send_streaming_response(response, send, head=head)
    else:
        await send_response(response, send, head=head)


async def _invoke_handler(
    match: RouteMatch,
    request: Request,
    *,
    kida_env: Environment | None = None,
    providers: dict[type, Callable[..., Any]] | None = None,
    complete: Callable[[Response | StreamingResponse], None] | None = None,
    error_handlers: ErrorHandlers | None = None,
    show_exceptions: bool = False,
) -> AnyResponse:
    """Call the matched route handler, converting path params and return value.

    Deferred routes are not called here: a ``Deferred`` is built around
    the handler and suspended, and its signal is returned instead.
    """
    route = match.route
    handler = route.handler

    # Carry the matched path params; the body cache is shared
    request = request.with_path_params(match.path_params)

    if route.deferred:
        deferred = Deferred(
            handler,
            request=request,
            complete=complete,
            error_handlers=error_handlers,
            kida_env=kida_env,
            show_exceptions=show_exceptions,
        )
        kwargs = _build_handler_kwargs(
            handler, request, match.path_params, providers, deferred=deferred
        )
        return deferred.suspend(kwargs)

    kwargs = _build_handler_kwargs(handler, request, match.path_params, providers)

    # Call the handler; invoke() handles sync and async
    result = await invoke(handler, **kwargs)

    return negotiate(result, kida_env=kida_env)


def _build_handler_kwargs(
    handler: Callable[..., Any],
    request: Request,
    path_params: dict[str, Any],
    providers: dict[type, Callable[..., Any]] | None = None,
    *,
    deferred: Deferred | None = None,
) -> dict[str, Any]:
    """Inspect handler signature and build kwargs from request + path params.

    Resolution order:
    1. ``request`` parameter (by name or ``Request`` annotation)
    2. ``deferred`` parameter (by name or ``Deferred`` annotation), deferred
       routes only
    3. Path parameters (by name, converted to the annotated type)
    4. Service providers (by type annotation via ``app.provide()``)
    """
    sig = inspect.signature(handler, eval_str=True)
    kwargs: dict[str, Any] = {}

    for name, param in sig.parameters.items():
        annotation = param.annotation
        if name == "request" or annotation is Request:
            kwargs[name] = request
        elif deferred is not None and (name == "deferred" or annotation is Deferred):
            kwargs[name] = deferred
        elif name in path_params:
            kwargs[name] = _convert(path_params[name], annotation)
        elif providers and annotation is not inspect.Parameter.empty and annotation in providers:
            kwargs[name] = providers[annotation]()

    return kwargs


def _convert(value: Any, annotation: Any) -> Any:
    """Convert a path param to the annotated type if it is not one already."""
    if not isinstance(annotation, type) or isinstance(value, annotation):
        return value
    try:
        return annotation(value)
    except (ValueError, TypeError):
        return value
