"""Application configuration.

``AppConfig`` is a frozen dataclass: immutable after creation, with
attribute access instead of string-key lookups. ``AppConfig.from_env()``
builds one from process environment variables plus optional dotenv files.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, fields
from pathlib import Path

_TRUTHY = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration. Immutable after creation.

    All fields have sensible defaults. Override what you need::

        config = AppConfig(debug=True, secret_key="s3cr3t", session_secure=True)
    """

    # Environment
    env: str = "production"
    debug: bool = False
    service_name: str = "gatehouse"

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    # Security
    secret_key: str = ""
    api_prefix: str = "/api"
    cors_allowed_origins: tuple[str, ...] = ()
    trusted_proxy_header: str | None = None

    # Session cookie
    session_cookie: str = "crm_session"
    session_secure: bool = False
    session_samesite: str = "Lax"
    session_lifetime_seconds: int | None = None  # None = browser-session cookie
    session_idle_timeout_seconds: int | None = None
    # Sessions untouched this long are swept when no idle timeout is set
    session_gc_max_idle_seconds: int = 1440

    # Login throttle
    auth_login_window_seconds: int = 900
    auth_login_max_attempts: int = 5
    auth_login_lockout_seconds: int = 900
    throttle_fail_open: bool = True
    throttle_dir: str | Path | None = None

    # Persistence
    database_url: str | None = None

    # Background sweep of idle sessions and expired throttle state; 0 disables it
    housekeeping_interval_seconds: int = 300

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        env_files: Iterable[str | Path] = (".env.local", ".env"),
    ) -> AppConfig:
        """Build a config from environment variables.

        Dotenv files are read in order; the first file that defines a key
        wins, and the real environment overrides every file.
        """
        values: dict[str, str] = {}
        for path in env_files:
            for key, value in read_env_file(path).items():
                values.setdefault(key, value)
        values.update(os.environ if environ is None else environ)

        defaults = {f.name: f.default for f in fields(cls)}

        def get(key: str, default: str | None = None) -> str | None:
            value = values.get(key)
            return default if value is None else value

        def get_bool(key: str, default: bool) -> bool:
            value = values.get(key)
            if value is None:
                return default
            return value.strip().lower() in _TRUTHY

        def get_int(key: str, default: int | None) -> int | None:
            value = values.get(key)
            if value is None or not value.strip():
                return default
            try:
                return int(value.strip())
            except ValueError:
                return default

        origins = tuple(
            origin.strip() for origin in (get("CORS_ALLOWED_ORIGIN") or "").split(",") if origin.strip()
        )

        return cls(
            env=get("APP_ENV", defaults["env"]),
            debug=get_bool("APP_DEBUG", defaults["debug"]),
            service_name=get("APP_NAME", defaults["service_name"]),
            host=get("APP_HOST", defaults["host"]),
            port=get_int("APP_PORT", defaults["port"]),
            log_level=get("LOG_LEVEL", defaults["log_level"]).upper(),
            secret_key=get("APP_SECRET_KEY", defaults["secret_key"]),
            api_prefix=get("API_PREFIX", defaults["api_prefix"]),
            cors_allowed_origins=origins,
            trusted_proxy_header=get("TRUSTED_PROXY_HEADER") or None,
            session_cookie=get("SESSION_COOKIE", defaults["session_cookie"]),
            session_secure=get_bool("SESSION_SECURE", defaults["session_secure"]),
            session_samesite=get("SESSION_SAMESITE", defaults["session_samesite"]),
            session_lifetime_seconds=get_int("SESSION_LIFETIME_SECONDS", None),
            session_idle_timeout_seconds=get_int("SESSION_IDLE_TIMEOUT_SECONDS", None),
            session_gc_max_idle_seconds=get_int(
                "SESSION_GC_MAX_IDLE_SECONDS", defaults["session_gc_max_idle_seconds"]
            ),
            auth_login_window_seconds=get_int(
                "AUTH_LOGIN_WINDOW_SECONDS", defaults["auth_login_window_seconds"]
            ),
            auth_login_max_attempts=get_int(
                "AUTH_LOGIN_MAX_ATTEMPTS", defaults["auth_login_max_attempts"]
            ),
            auth_login_lockout_seconds=get_int(
                "AUTH_LOGIN_LOCKOUT_SECONDS", defaults["auth_login_lockout_seconds"]
            ),
            throttle_fail_open=get_bool("AUTH_THROTTLE_FAIL_OPEN", defaults["throttle_fail_open"]),
            throttle_dir=get("AUTH_THROTTLE_DIR") or None,
            database_url=get("DATABASE_URL") or None,
            housekeeping_interval_seconds=get_int(
                "HOUSEKEEPING_INTERVAL_SECONDS", defaults["housekeeping_interval_seconds"]
            ),
        )


def read_env_file(path: str | Path) -> dict[str, str]:
    """Parse a dotenv file of ``KEY=value`` lines.

    Blank lines and ``#`` comments are skipped, as are lines without ``=``.
    A value wrapped in double quotes has the quotes removed. A missing
    file yields an empty dict.
    """
    file = Path(path)
    if not file.is_file():
        return {}

    values: dict[str, str] = {}
    for raw_line in file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()
        if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
            value = value[1:-1]
        values[key] = value
    return values
