"""Gatehouse application class.

Mutable during setup (route registration, middleware, lifecycle hooks).
Frozen at runtime when ``app.run()`` or ``__call__()`` is first invoked.
"""

import logging
import threading
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import Any

import anyio

from gatehouse._internal.asgi import Receive, Scope, Send
from gatehouse._internal.invoke import invoke
from gatehouse.config import AppConfig
from gatehouse.data.database import Database
from gatehouse.middleware.protocol import Middleware
from gatehouse.routing.route import Route
from gatehouse.routing.router import Router
from gatehouse.server.handler import handle_request

logger = logging.getLogger("gatehouse.server")

type Handler = Callable[..., Any]


class App:
    """The gatehouse ASGI application.

    Routes and global middleware are registered during setup::

        app = App(AppConfig(secret_key="..."))
        app.add_middleware(SessionMiddleware(store, session_config))

        @app.get("/tasks/{id}", middleware=[AuthRequired(authenticator)])
        async def show_task(request: Request) -> dict:
            return {"id": request.path_params["id"]}

    Global middleware runs in registration order around routing; a
    route's own middleware runs around its handler only.

    Thread safety:
        The freeze transition uses a Lock + double-check so exactly one
        thread compiles the app even if several workers hit ``__call__()``
        concurrently on the first request.
    """

    __slots__ = (
        "_background_tasks",
        "_db",
        "_freeze_lock",
        "_frozen",
        "_middleware",
        "_middleware_list",
        "_migrations_dir",
        "_pending_routes",
        "_router",
        "_shutdown_hooks",
        "_startup_hooks",
        "config",
    )

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        db: Database | str | None = None,
        migrations: str | Path | None = None,
    ) -> None:
        self.config: AppConfig = config or AppConfig()
        self._pending_routes: list[Route] = []
        self._middleware_list: list[Middleware] = []
        self._startup_hooks: list[Callable[..., Any]] = []
        self._shutdown_hooks: list[Callable[..., Any]] = []
        self._background_tasks: list[Callable[[], Awaitable[None]]] = []
        self._frozen: bool = False
        self._freeze_lock: threading.Lock = threading.Lock()

        # When set, the lifespan connects, migrates and disconnects it.
        self._db: Database | None = Database(db) if isinstance(db, str) else db
        self._migrations_dir: str | Path | None = migrations

        # Compiled state, set during _freeze()
        self._router: Router | None = None
        self._middleware: tuple[Middleware, ...] = ()

    @property
    def db(self) -> Database | None:
        return self._db

    @property
    def routes(self) -> tuple[Route, ...]:
        return tuple(self._pending_routes)

    # -- Route registration --

    def add_route(
        self,
        method: str,
        path: str,
        handler: Handler,
        middleware: Sequence[Middleware] = (),
    ) -> Route:
        """Register *handler* for *method* and *path*.

        The template is compiled immediately, so a malformed path fails
        here with ``ConfigurationError`` rather than on first request.
        """
        self._check_not_frozen()
        route = Route.build(method.upper(), path, handler, tuple(middleware))
        self._pending_routes.append(route)
        return route

    def route(
        self,
        path: str,
        *,
        methods: Sequence[str] = ("GET",),
        middleware: Sequence[Middleware] = (),
    ) -> Callable[[Handler], Handler]:
        """Register a route handler via decorator, once per method."""

        def decorator(func: Handler) -> Handler:
            for method in methods:
                self.add_route(method, path, func, middleware)
            return func

        return decorator

    def get(self, path: str, *, middleware: Sequence[Middleware] = ()) -> Callable[[Handler], Handler]:
        return self.route(path, methods=("GET",), middleware=middleware)

    def post(self, path: str, *, middleware: Sequence[Middleware] = ()) -> Callable[[Handler], Handler]:
        return self.route(path, methods=("POST",), middleware=middleware)

    def put(self, path: str, *, middleware: Sequence[Middleware] = ()) -> Callable[[Handler], Handler]:
        return self.route(path, methods=("PUT",), middleware=middleware)

    def patch(self, path: str, *, middleware: Sequence[Middleware] = ()) -> Callable[[Handler], Handler]:
        return self.route(path, methods=("PATCH",), middleware=middleware)

    def delete(self, path: str, *, middleware: Sequence[Middleware] = ()) -> Callable[[Handler], Handler]:
        return self.route(path, methods=("DELETE",), middleware=middleware)

    # -- Middleware --

    def add_middleware(self, middleware: Middleware) -> None:
        """Add a global middleware. The first one added runs outermost."""
        self._check_not_frozen()
        self._middleware_list.append(middleware)

    # -- Lifecycle hooks --

    def on_startup(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register an async or sync startup hook via decorator.

        Hooks run in registration order during ASGI lifespan startup,
        after the database (if any) is connected and migrated.
        """
        self._check_not_frozen()
        self._startup_hooks.append(func)
        return func

    def on_shutdown(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register an async or sync shutdown hook via decorator."""
        self._check_not_frozen()
        self._shutdown_hooks.append(func)
        return func

    def background_task(self, func: Callable[[], Awaitable[None]]) -> Callable[[], Awaitable[None]]:
        """Register a coroutine function that runs for the app's lifetime.

        Tasks start once ASGI lifespan startup succeeds and are cancelled
        at shutdown, before the shutdown hooks run. An exception ends
        only that task, and is logged.
        """
        self._check_not_frozen()
        self._background_tasks.append(func)
        return func

    # -- Serving --

    def run(self, host: str | None = None, port: int | None = None) -> None:
        """Serve the app with uvicorn."""
        import uvicorn

        self._ensure_frozen()
        uvicorn.run(
            self,
            host=host or self.config.host,
            port=port or self.config.port,
            log_level=self.config.log_level.lower(),
        )

    # -- ASGI interface --

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI 3.0 entry point."""
        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
            return

        self._ensure_frozen()
        assert self._router is not None

        await handle_request(
            scope,
            receive,
            send,
            router=self._router,
            middleware=self._middleware,
            debug=self.config.debug,
            trusted_proxy_header=self.config.trusted_proxy_header,
        )

    async def _handle_lifespan(self, receive: Receive, send: Send) -> None:
        self._ensure_frozen()

        async with anyio.create_task_group() as tg:
            while True:
                message = await receive()
                msg_type = message["type"]

                if msg_type == "lifespan.startup":
                    try:
                        await self.startup()
                    except Exception as exc:
                        logger.exception("Startup failed")
                        await send({"type": "lifespan.startup.failed", "message": str(exc)})
                        return
                    for task in self._background_tasks:
                        tg.start_soon(self._run_background, task)
                    await send({"type": "lifespan.startup.complete"})

                elif msg_type == "lifespan.shutdown":
                    tg.cancel_scope.cancel()
                    break

        await self.shutdown()
        await send({"type": "lifespan.shutdown.complete"})

    async def _run_background(self, func: Callable[[], Awaitable[None]]) -> None:
        try:
            await func()
        except Exception:
            logger.exception("Background task %s failed", getattr(func, "__qualname__", func))

    async def startup(self) -> None:
        """Connect and migrate the database, then run startup hooks."""
        if self._db is not None:
            await self._db.connect()
            if self._migrations_dir is not None:
                from gatehouse.data.migrate import migrate

                migrated = await migrate(self._db, self._migrations_dir)
                logger.info("%s", migrated.summary)
        for hook in self._startup_hooks:
            await invoke(hook)

    async def shutdown(self) -> None:
        for hook in self._shutdown_hooks:
            await invoke(hook)
        if self._db is not None:
            await self._db.disconnect()

    # -- Internal --

    def _ensure_frozen(self) -> None:
        if self._frozen:
            return
        with self._freeze_lock:
            if self._frozen:
                return
            self._freeze()

    def _freeze(self) -> None:
        """Compile routes and middleware. Only call while holding ``_freeze_lock``."""
        router = Router()
        for route in self._pending_routes:
            router.add(route)
        router.freeze()
        self._router = router
        self._middleware = tuple(self._middleware_list)
        self._frozen = True

    def _check_not_frozen(self) -> None:
        if self._frozen:
            msg = (
                "Cannot modify the app after it has started serving requests. "
                "Register routes and middleware before the first request."
            )
            raise RuntimeError(msg)
