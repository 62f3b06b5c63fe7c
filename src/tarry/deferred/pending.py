"""The Deferred object: one suspended request and its finisher.

A deferred route's handler is not run when the route matches. Instead
the server pipeline builds a :class:`Deferred`, calls :meth:`suspend`
and gets back the ``Suspended`` signal. The handler runs on the next
event-loop tick, inside an outcome-capturing scope, and the request stays
open until something calls :meth:`Deferred.body`.

Handlers receive the Deferred as an ordinary argument::

    @app.aget("/delay/{n:int}")
    def delayed(deferred: Deferred, n: int):
        deferred.call_later(n, deferred.body, f"delayed for {n} seconds")

All work happens on the single event loop thread; no locking.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any

from kida import Environment

from tarry._internal.types import CompletionCallback, ErrorHandlers
from tarry.deferred.descriptor import ResponseDescriptor
from tarry.deferred.outcome import (
    Completed,
    EarlyExit,
    Failed,
    Outcome,
    capture,
    capture_async,
    capture_awaitable,
)
from tarry.errors import DeferredError, HTTPError, UnsupportedHaltValue
from tarry.http.response import Response, StreamingResponse, Suspended
from tarry.server.errors import handle_http_error, handle_internal_error, render_halt

if TYPE_CHECKING:
    from tarry.http.request import Request

logger = logging.getLogger("tarry.deferred")


class Deferred:
    """A request whose response is supplied later.

    Set ``status``, ``headers`` and ``content_type`` as the work
    progresses, then finish with :meth:`body`. Finishing twice is not an
    error: the first response wins and later calls are logged and ignored.
    """

    __slots__ = (
        "_complete",
        "_error_handlers",
        "_finished",
        "_handler",
        "_kida_env",
        "_kwargs",
        "_loop",
        "_rendered",
        "_show_exceptions",
        "_tasks",
        "request",
        "response",
    )

    def __init__(
        self,
        handler: Callable[..., Any],
        kwargs: Mapping[str, Any] | None = None,
        *,
        request: Request | None = None,
        complete: CompletionCallback | None = None,
        error_handlers: ErrorHandlers | None = None,
        kida_env: Environment | None = None,
        show_exceptions: bool = False,
    ) -> None:
        self._handler = handler
        self._kwargs: dict[str, Any] = dict(kwargs or {})
        self._complete = complete
        self._error_handlers: ErrorHandlers = error_handlers or {}
        self._kida_env = kida_env
        self._show_exceptions = show_exceptions
        self._finished = False
        self._rendered: Response | StreamingResponse | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self.request = request
        self.response = ResponseDescriptor()

    def __repr__(self) -> str:
        state = "finished" if self._finished else "pending"
        name = getattr(self._handler, "__qualname__", repr(self._handler))
        return f"<Deferred {name} {state}>"

    # -- Response fields --

    @property
    def status(self) -> int:
        return self.response.status

    @status.setter
    def status(self, value: int) -> None:
        self.response.set_status(value)

    @property
    def headers(self) -> dict[str, str]:
        return self.response.headers

    @property
    def content_type(self) -> str | None:
        return self.response.content_type

    @content_type.setter
    def content_type(self, value: str | None) -> None:
        self.response.content_type = value

    @property
    def finished(self) -> bool:
        """True once the response has been rendered and handed over."""
        return self._finished

    @property
    def rendered(self) -> Response | StreamingResponse | None:
        """The final response, once finished."""
        return self._rendered

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError:
                msg = "Deferred responses need a running event loop."
                raise DeferredError(msg) from None
        return self._loop

    # -- Suspend --

    def suspend(self, kwargs: Mapping[str, Any] | None = None) -> Suspended:
        """Schedule the handler on the next tick and return the signal.

        *kwargs*, when given, replaces the handler arguments passed at
        construction. The server builds them after the Deferred exists,
        since the handler may ask for the Deferred itself.

        The handler never runs inside the caller's frame: by the time it
        starts, the server has already received ``Suspended``.
        """
        if self._finished:
            msg = f"{self!r} is already finished and cannot be suspended."
            raise DeferredError(msg)
        if kwargs is not None:
            self._kwargs = dict(kwargs)
        self.loop.call_soon(self._start)
        logger.debug("Suspended %r", self)
        return Suspended(self)

    def _start(self) -> None:
        self._track(self.loop.create_task(self._drive()))

    async def _drive(self) -> None:
        outcome = await capture_async(self._handler, **self._kwargs)
        await self._settle(outcome)

    def _track(self, task: asyncio.Task[Any]) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -- Finish --

    def body(self, value: Any = None) -> None:
        """Finish the request with *value* as the body.

        *value* may be anything a route may return (str, bytes, dict,
        ``Template``, ``Response``, an iterable of chunks, ``None`` for an
        empty body) or a zero-argument callable producing one. The
        callable must be synchronous; await async work first, or hand it
        to :meth:`spawn`. The descriptor's status, headers and content
        type are applied, then the completion callback fires once.

        Raises:
            DeferredError: *value* is, or the callable returned, an awaitable.
        """
        if self._finished:
            logger.warning("%r already finished; ignoring second body() call", self)
            return
        if callable(value):
            value = value()
        if inspect.isawaitable(value):
            if inspect.iscoroutine(value):
                value.close()
            msg = "body() needs a value, not an awaitable; await it or use spawn()."
            raise DeferredError(msg)
        self.response.body = value
        self._finish(self.response.render(self._kida_env))

    def _finish(self, response: Response | StreamingResponse) -> None:
        self._finished = True
        self._rendered = response
        logger.debug("Finished %r with status %d", self, response.status)
        if self._complete is not None:
            self._complete(response)

    # -- Guarded callbacks --

    def guard[**P](self, fn: Callable[P, Any]) -> Callable[P, Any]:
        """Wrap a callback so a halt or error inside it settles this request.

        Use for callbacks handed to other libraries::

            client.on_error(deferred.guard(lambda err: halt(502, str(err))))
        """

        @functools.wraps(fn)
        def guarded(*args: P.args, **kwargs: P.kwargs) -> Any:
            outcome = capture(fn, *args, **kwargs)
            if isinstance(outcome, Completed):
                return outcome.value
            self._track(self.loop.create_task(self._settle(outcome)))
            return None

        return guarded

    def call_soon(self, fn: Callable[..., Any], *args: Any) -> asyncio.Handle:
        """Run *fn* on the next tick, guarded."""
        return self.loop.call_soon(self.guard(fn), *args)

    def call_later(
        self, delay: float, fn: Callable[..., Any], *args: Any
    ) -> asyncio.TimerHandle:
        """Run *fn* after *delay* seconds, guarded."""
        return self.loop.call_later(delay, self.guard(fn), *args)

    def spawn(self, awaitable: Awaitable[Any]) -> asyncio.Task[None]:
        """Run a coroutine as a task whose halt or error settles this request."""

        async def run() -> None:
            await self._settle(await capture_awaitable(awaitable))

        task = self.loop.create_task(run())
        self._track(task)
        return task

    # -- Settle --

    async def _settle(self, outcome: Outcome) -> None:
        """Produce the final response for a halted or failed outcome.

        Never raises: anything going wrong here is logged and answered
        with a bare 500, so nothing escapes the event-loop tick.
        """
        match outcome:
            case Completed():
                return
            case EarlyExit() | Failed() if self._finished:
                error = outcome.error if isinstance(outcome, Failed) else None
                logger.warning(
                    "%r already finished; dropping %s", self, type(outcome).__name__,
                    exc_info=error,
                )
                return

        try:
            response = await self._respond(outcome)
        except Exception:
            logger.exception("Error while completing %r", self)
            response = Response(body="Internal Server Error", status=500)

        if self._finished:
            logger.warning("%r finished while settling; dropping late response", self)
            return
        self._finish(response)

    async def _respond(self, outcome: EarlyExit | Failed) -> Response | StreamingResponse:
        request = self._require_request()
        match outcome:
            case EarlyExit(value=value):
                try:
                    return await render_halt(
                        value, request, self._error_handlers, self._kida_env, self.response
                    )
                except UnsupportedHaltValue as exc:
                    return await self._error_response(exc, request)
            case Failed(error=error):
                return await self._error_response(error, request)

    async def _error_response(
        self, error: Exception, request: Request
    ) -> Response | StreamingResponse:
        if isinstance(error, HTTPError):
            return await handle_http_error(error, request, self._error_handlers, self._kida_env)
        return await handle_internal_error(
            error,
            request,
            self._error_handlers,
            self._kida_env,
            show_exceptions=self._show_exceptions,
            deferred=True,
        )

    def _require_request(self) -> Request:
        if self.request is None:
            msg = f"{self!r} has no request to render an error response for."
            raise DeferredError(msg)
        return self.request
