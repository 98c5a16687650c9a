"""Application wiring.

``create_app`` assembles the portal from an ``AppConfig``: global
middleware (security headers, CORS, sessions), the authenticator, the
CSRF guard, the login throttle, and the endpoint routes under
``config.api_prefix``.

Backends are chosen from configuration unless passed explicitly:

- with ``database_url``, users, sessions and throttle state live in
  SQLite and the bundled migrations run at startup;
- ``throttle_dir`` selects the file-backed throttle store;
- otherwise everything is in-process memory.

When served with an ASGI lifespan, a background ``Housekeeper`` sweeps
idle sessions and expired throttle state every
``config.housekeeping_interval_seconds``.

Serve it with::

    uvicorn --factory gatehouse.factory:create_app_from_env
"""

import time
from collections.abc import Callable

from gatehouse.app import App
from gatehouse.auth.authenticator import SessionAuthenticator
from gatehouse.auth.database import DatabasePrincipalRepository
from gatehouse.auth.principal import MemoryPrincipalRepository, PrincipalRepository
from gatehouse.config import AppConfig
from gatehouse.data.database import Database
from gatehouse.data.migrate import BUNDLED_MIGRATIONS
from gatehouse.handlers.auth import AuthEndpoints
from gatehouse.handlers.health import HealthEndpoint
from gatehouse.housekeeping import Housekeeper, session_retention_seconds
from gatehouse.middleware.cors import CORSConfig, CORSMiddleware
from gatehouse.middleware.guards import AuthRequired, CsrfRequired
from gatehouse.middleware.security_headers import SecurityHeadersMiddleware
from gatehouse.middleware.sessions import SessionConfig, SessionMiddleware
from gatehouse.security.csrf import CsrfGuard
from gatehouse.security.throttle import LoginThrottle, ThrottleConfig
from gatehouse.security.throttle_stores import (
    DatabaseThrottleStore,
    FileThrottleStore,
    KeyedAtomicStore,
    MemoryThrottleStore,
)
from gatehouse.sessions.database import DatabaseSessionStore
from gatehouse.sessions.store import MemorySessionStore, SessionStore


def api_path(prefix: str, path: str) -> str:
    """Join the API prefix and a route path: ``("/api/", "/health") -> "/api/health"``."""
    prefix = "/" + prefix.strip("/") if prefix.strip("/") else ""
    return f"{prefix}{path}" or "/"


def session_config(config: AppConfig) -> SessionConfig:
    return SessionConfig(
        secret_key=config.secret_key,
        cookie_name=config.session_cookie,
        secure=config.session_secure,
        samesite=config.session_samesite,
        lifetime_seconds=config.session_lifetime_seconds,
        idle_timeout_seconds=config.session_idle_timeout_seconds,
    )


def throttle_config(config: AppConfig) -> ThrottleConfig:
    return ThrottleConfig(
        window_seconds=config.auth_login_window_seconds,
        max_attempts=config.auth_login_max_attempts,
        lockout_seconds=config.auth_login_lockout_seconds,
        fail_open=config.throttle_fail_open,
    )


def create_app(
    config: AppConfig,
    *,
    db: Database | None = None,
    principals: PrincipalRepository | None = None,
    session_store: SessionStore | None = None,
    throttle_store: KeyedAtomicStore | None = None,
    clock: Callable[[], float] = time.time,
) -> App:
    """Build the portal application for *config*.

    Raises:
        ConfigurationError: If ``config.secret_key`` is empty.
    """
    if db is None and config.database_url:
        db = Database(config.database_url)

    if principals is None:
        principals = DatabasePrincipalRepository(db) if db is not None else MemoryPrincipalRepository()
    if session_store is None:
        session_store = DatabaseSessionStore(db) if db is not None else MemorySessionStore()
    if throttle_store is None:
        if config.throttle_dir:
            throttle_store = FileThrottleStore(config.throttle_dir)
        elif db is not None:
            throttle_store = DatabaseThrottleStore(db)
        else:
            throttle_store = MemoryThrottleStore()

    app = App(config, db=db, migrations=BUNDLED_MIGRATIONS if db is not None else None)
    app.add_middleware(SecurityHeadersMiddleware())
    app.add_middleware(CORSMiddleware(CORSConfig(allowed_origins=config.cors_allowed_origins)))
    app.add_middleware(SessionMiddleware(session_store, session_config(config), clock=clock))

    authenticator = SessionAuthenticator(principals)
    csrf = CsrfGuard()
    throttle = LoginThrottle(throttle_store, throttle_config(config), clock=clock)
    endpoints = AuthEndpoints(authenticator, csrf, throttle)
    protected = (AuthRequired(authenticator), CsrfRequired(csrf))

    if config.housekeeping_interval_seconds > 0:
        housekeeper = Housekeeper(
            session_store,
            throttle,
            session_retention_seconds=session_retention_seconds(config),
            interval_seconds=config.housekeeping_interval_seconds,
            clock=clock,
        )
        app.background_task(housekeeper.run)

    prefix = config.api_prefix
    app.add_route("GET", api_path(prefix, "/health"), HealthEndpoint(config))
    app.add_route("GET", api_path(prefix, "/csrf-token"), endpoints.csrf_token)
    app.add_route("POST", api_path(prefix, "/auth/login"), endpoints.login)
    app.add_route("POST", api_path(prefix, "/auth/logout"), endpoints.logout, protected)
    app.add_route("GET", api_path(prefix, "/auth/me"), endpoints.me)
    app.add_route("PUT", api_path(prefix, "/auth/password"), endpoints.change_password, protected)
    return app


def create_app_from_env() -> App:
    """``create_app`` for the process environment and ``.env`` files."""
    return create_app(AppConfig.from_env())
