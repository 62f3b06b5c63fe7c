"""tarry application class.

Mutable during setup (route registration, middleware, error handlers).
Frozen at runtime when app.run() or __call__() is first invoked.
"""

import inspect
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from kida import Environment

from tarry._internal.asgi import Receive, Scope, Send
from tarry._internal.types import ErrorHandler, Handler
from tarry.config import AppConfig
from tarry.middleware.protocol import Middleware
from tarry.routing.route import Route
from tarry.routing.router import Router
from tarry.server.handler import handle_request
from tarry.templating.integration import create_environment

logger = logging.getLogger("tarry.server")


@dataclass(slots=True)
class _PendingRoute:
    """A route waiting to be compiled."""

    path: str
    handler: Handler
    methods: list[str] | None
    name: str | None
    deferred: bool = False


class App:
    """The tarry application.

    Mutable during setup (route registration, middleware, error handlers).
    Frozen at runtime when ``app.run()`` or ``__call__()`` is first invoked.

    Two families of route decorators exist. ``get``/``post``/... register
    ordinary handlers whose return value is the response. ``aget``/
    ``apost``/... register deferred handlers: the request is suspended,
    the handler runs on the next event-loop tick, and the response is
    whatever it (or a later callback) passes to ``deferred.body()``::

        @app.aget("/")
        def index(deferred: Deferred):
            deferred.body("hello async")

    Thread safety:
        The setup phase is single-threaded (decorators at import time).
        The freeze transition uses a Lock + double-check to ensure exactly
        one thread compiles the app, even when several ASGI workers call
        ``__call__()`` concurrently on first request.
    """

    __slots__ = (
        "_custom_kida_env",
        "_error_handlers",
        "_freeze_lock",
        "_frozen",
        "_kida_env",
        "_middleware",
        "_middleware_list",
        "_pending_routes",
        "_providers",
        "_router",
        "_shutdown_hooks",
        "_startup_hooks",
        "config",
    )

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        kida_env: Environment | None = None,
    ) -> None:
        self.config: AppConfig = config or AppConfig()
        self._pending_routes: list[_PendingRoute] = []
        self._middleware_list: list[Middleware] = []
        self._error_handlers: dict[int | type, ErrorHandler] = {}
        self._startup_hooks: list[Callable[..., Any]] = []
        self._shutdown_hooks: list[Callable[..., Any]] = []
        self._providers: dict[type, Callable[..., Any]] = {}
        self._frozen: bool = False
        self._freeze_lock: threading.Lock = threading.Lock()
        self._custom_kida_env: Environment | None = kida_env

        # Compiled state, set during _freeze()
        self._router: Router | None = None
        self._middleware: tuple[Callable[..., Any], ...] = ()
        self._kida_env: Environment | None = None

    # -- Route registration --

    def route(
        self,
        path: str,
        *,
        methods: Iterable[str] | None = None,
        name: str | None = None,
    ) -> Callable[[Handler], Handler]:
        """Register a route handler via decorator.

        Args:
            path: URL path pattern. Use ``{param}`` or ``{param:int}`` for
                path parameters.
            methods: HTTP methods. Defaults to ``["GET"]``.
            name: Optional route name.
        """
        return self._register(path, methods, name, deferred=False)

    def get(self, path: str, *, name: str | None = None) -> Callable[[Handler], Handler]:
        """Register a GET route. HEAD is answered by the same handler."""
        return self.route(path, methods=["GET", "HEAD"], name=name)

    def post(self, path: str, *, name: str | None = None) -> Callable[[Handler], Handler]:
        return self.route(path, methods=["POST"], name=name)

    def put(self, path: str, *, name: str | None = None) -> Callable[[Handler], Handler]:
        return self.route(path, methods=["PUT"], name=name)

    def delete(self, path: str, *, name: str | None = None) -> Callable[[Handler], Handler]:
        return self.route(path, methods=["DELETE"], name=name)

    def head(self, path: str, *, name: str | None = None) -> Callable[[Handler], Handler]:
        return self.route(path, methods=["HEAD"], name=name)

    # -- Deferred route registration --

    def aroute(
        self,
        path: str,
        *,
        methods: Iterable[str] | None = None,
        name: str | None = None,
    ) -> Callable[[Handler], Handler]:
        """Register a deferred route handler via decorator.

        The handler receives the pending request as its ``deferred``
        argument (by name or ``Deferred`` annotation) and finishes it by
        calling ``deferred.body(...)``, immediately or from a later
        callback. Its return value is ignored. Raising ``Halt`` or any
        other exception produces the response the same way it would in an
        ordinary route.
        """
        return self._register(path, methods, name, deferred=True)

    def aget(self, path: str, *, name: str | None = None) -> Callable[[Handler], Handler]:
        """Register a deferred GET route. HEAD is answered by the same handler."""
        return self.aroute(path, methods=["GET", "HEAD"], name=name)

    def apost(self, path: str, *, name: str | None = None) -> Callable[[Handler], Handler]:
        return self.aroute(path, methods=["POST"], name=name)

    def aput(self, path: str, *, name: str | None = None) -> Callable[[Handler], Handler]:
        return self.aroute(path, methods=["PUT"], name=name)

    def adelete(self, path: str, *, name: str | None = None) -> Callable[[Handler], Handler]:
        return self.aroute(path, methods=["DELETE"], name=name)

    def ahead(self, path: str, *, name: str | None = None) -> Callable[[Handler], Handler]:
        return self.aroute(path, methods=["HEAD"], name=name)

    def _register(
        self,
        path: str,
        methods: Iterable[str] | None,
        name: str | None,
        *,
        deferred: bool,
    ) -> Callable[[Handler], Handler]:
        method_list = list(methods) if methods is not None else None

        def decorator(func: Handler) -> Handler:
            self._check_not_frozen()
            self._pending_routes.append(
                _PendingRoute(path, func, method_list, name, deferred)
            )
            return func

        return decorator

    # -- Service injection --

    def provide(self, annotation: type, factory: Callable[..., Any]) -> None:
        """Register a provider factory for dependency injection.

        When a handler parameter's type annotation matches *annotation*,
        tarry calls *factory* (with no arguments) and injects the result.
        Deferred handlers get their providers resolved when the request is
        suspended, not when the body runs.
        """
        self._check_not_frozen()
        self._providers[annotation] = factory

    # -- Error handlers --

    def error(
        self,
        code_or_exception: int | type[Exception],
    ) -> Callable[[ErrorHandler], ErrorHandler]:
        """Register an error handler via decorator.

        Keyed by status code (also used for halts that set that status) or
        by exception class (matched along the raised exception's MRO).
        """

        def decorator(func: ErrorHandler) -> ErrorHandler:
            self._check_not_frozen()
            self._error_handlers[code_or_exception] = func
            return func

        return decorator

    # -- Middleware --

    def add_middleware(self, middleware: Middleware) -> None:
        """Add a middleware to the pipeline."""
        self._check_not_frozen()
        self._middleware_list.append(middleware)

    # -- Lifecycle hooks --

    def on_startup(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register an async or sync startup hook via decorator.

        Hooks run in registration order during ASGI lifespan startup,
        before the server begins accepting HTTP requests.
        """
        self._check_not_frozen()
        self._startup_hooks.append(func)
        return func

    def on_shutdown(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register an async or sync shutdown hook via decorator.

        Hooks run in registration order during ASGI lifespan shutdown,
        after the server stops accepting new requests.
        """
        self._check_not_frozen()
        self._shutdown_hooks.append(func)
        return func

    # -- Introspection --

    @property
    def routes(self) -> list[Route]:
        """Compiled routes, in registration order. Freezes the app."""
        self._ensure_frozen()
        assert self._router is not None
        return self._router.routes

    # -- Server --

    def run(self, host: str | None = None, port: int | None = None) -> None:
        """Start the development server.

        Compiles the app (freezing routes, middleware, templates)
        and serves it with pounce.

        Args:
            host: Override bind host.
            port: Override bind port.
        """
        self._ensure_frozen()

        logging.getLogger("tarry").setLevel(self.config.log_level.upper())

        from tarry.server.dev import run_dev_server

        run_dev_server(
            self,
            host or self.config.host,
            port or self.config.port,
            reload=self.config.debug,
        )

    # -- ASGI interface --

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI 3.0 entry point.

        Handles the lifespan scope directly, then delegates HTTP scopes to
        the request handler pipeline.
        """
        if scope["type"] == "lifespan":
            await self._handle_lifespan(scope, receive, send)
            return

        self._ensure_frozen()

        assert self._router is not None

        await handle_request(
            scope,
            receive,
            send,
            router=self._router,
            middleware=self._middleware,
            error_handlers=self._error_handlers,
            kida_env=self._kida_env,
            show_exceptions=self.config.exceptions_shown,
            providers=self._providers or None,
        )

    async def _handle_lifespan(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        """Run the ASGI lifespan protocol.

        Freezes the app at startup (before first HTTP request), then
        runs registered startup/shutdown hooks and signals completion
        back to the server.
        """
        self._ensure_frozen()

        while True:
            message = await receive()
            msg_type = message["type"]

            if msg_type == "lifespan.startup":
                try:
                    for hook in self._startup_hooks:
                        result = hook()
                        if inspect.isawaitable(result):
                            await result
                    await send({"type": "lifespan.startup.complete"})
                except Exception as exc:
                    logger.exception("Startup hook failed")
                    await send(
                        {
                            "type": "lifespan.startup.failed",
                            "message": str(exc),
                        }
                    )
                    return

            elif msg_type == "lifespan.shutdown":
                for hook in self._shutdown_hooks:
                    result = hook()
                    if inspect.isawaitable(result):
                        await result
                await send({"type": "lifespan.shutdown.complete"})
                return

    # -- Internal --

    def _ensure_frozen(self) -> None:
        """Thread-safe freeze with double-check locking.

        Several ASGI worker threads could call __call__() concurrently on
        first request. This pattern ensures exactly one thread performs
        compilation.
        """
        if self._frozen:
            return
        with self._freeze_lock:
            if self._frozen:
                return
            self._freeze()

    def _freeze(self) -> None:
        """Compile the app into its frozen runtime state.

        MUST only be called while holding _freeze_lock.
        """
        # 1. Compile route table
        router = Router()
        for pending in self._pending_routes:
            methods = frozenset(m.upper() for m in (pending.methods or ["GET"]))
            router.add(
                Route(
                    path=pending.path,
                    handler=pending.handler,
                    methods=methods,
                    name=pending.name,
                    deferred=pending.deferred,
                )
            )
        router.compile()
        self._router = router

        # 2. Capture middleware as immutable tuple
        self._middleware = tuple(self._middleware_list)

        # 3. Initialize kida environment
        self._kida_env = self._custom_kida_env or create_environment(self.config)

        self._frozen = True
        logger.debug(
            "Compiled %d routes (%d deferred)",
            len(router.routes),
            sum(1 for r in router.routes if r.deferred),
        )

    def _check_not_frozen(self) -> None:
        if self._frozen:
            msg = (
                "Cannot modify the app after it has started serving requests. "
                "Register routes, middleware, and error handlers before calling app.run()."
            )
            raise RuntimeError(msg)
