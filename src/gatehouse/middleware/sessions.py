"""Session middleware: signed-id cookie, server-side state.

The cookie carries only the session identifier, signed with
``itsdangerous`` so a tampered or forged value is treated as absent.
Session values live in a ``SessionStore``. The ``Session`` handle for
the current request is available via ``get_session()``.

Requests carrying the same session id are serialized for their whole
duration, so duplicate tabs cannot interleave read-modify-write cycles.
"""

import logging
import time
from collections.abc import Callable
from contextvars import ContextVar
from dataclasses import dataclass

from itsdangerous import BadData, URLSafeTimedSerializer

from gatehouse._internal.locks import KeyedLock
from gatehouse.errors import ConfigurationError
from gatehouse.http.cookies import SetCookie
from gatehouse.http.request import Request
from gatehouse.http.response import Response
from gatehouse.middleware.protocol import Next
from gatehouse.sessions.session import Session, SessionRecord
from gatehouse.sessions.store import SessionStore

logger = logging.getLogger("gatehouse.sessions")

_session_var: ContextVar[Session | None] = ContextVar("gatehouse_session", default=None)

_SIGNER_SALT = "gatehouse.session"


def get_session() -> Session:
    """Return the current request's session handle.

    Raises ``LookupError`` if called outside a request with
    ``SessionMiddleware`` active.
    """
    session = _session_var.get()
    if session is None:
        msg = (
            "No active session. Ensure SessionMiddleware is added "
            "to the app before accessing the session."
        )
        raise LookupError(msg)
    return session


@dataclass(frozen=True, slots=True)
class SessionConfig:
    """Session cookie configuration.

    ``secret_key`` signs the cookie; it is required. ``lifetime_seconds``
    of ``None`` issues a browser-session cookie. ``httponly`` is always on.
    """

    secret_key: str
    cookie_name: str = "crm_session"
    path: str = "/"
    domain: str | None = None
    secure: bool = False
    samesite: str = "Lax"
    lifetime_seconds: int | None = None
    idle_timeout_seconds: int | None = None

    def cookie(self, value: str) -> SetCookie:
        return SetCookie(
            name=self.cookie_name,
            value=value,
            max_age=self.lifetime_seconds,
            path=self.path,
            domain=self.domain,
            secure=self.secure,
            httponly=True,
            samesite=self.samesite,
        )


class SessionMiddleware:
    """Loads the session before dispatch and commits it afterwards.

    Commit rules:

    - ids retired by ``regenerate()``/``destroy()`` are deleted from the store;
    - a session holding values is saved, and its cookie issued when the
      id changed (or refreshed when a lifetime is configured);
    - a destroyed or emptied session expires the cookie the client sent.

    State is committed only when the downstream pipeline produced a
    non-5xx response; an exception or a server error leaves the store
    and the cookie untouched.
    """

    __slots__ = ("_clock", "_config", "_locks", "_serializer", "_store")

    def __init__(
        self,
        store: SessionStore,
        config: SessionConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not config.secret_key:
            msg = "SessionConfig.secret_key must not be empty."
            raise ConfigurationError(msg)
        self._store = store
        self._config = config
        self._clock = clock
        self._serializer = URLSafeTimedSerializer(config.secret_key, salt=_SIGNER_SALT)
        self._locks = KeyedLock()

    @property
    def config(self) -> SessionConfig:
        return self._config

    def sign(self, session_id: str) -> str:
        return self._serializer.dumps(session_id)

    def unsign(self, cookie_value: str) -> str | None:
        """The session id inside a cookie value, or ``None`` if invalid."""
        try:
            session_id = self._serializer.loads(
                cookie_value, max_age=self._config.lifetime_seconds
            )
        except BadData:
            return None
        return session_id if isinstance(session_id, str) and session_id else None

    async def __call__(self, request: Request, next: Next) -> Response:
        cookie_value = request.cookies.get(self._config.cookie_name)
        session_id = self.unsign(cookie_value) if cookie_value else None

        if session_id is None:
            return await self._dispatch(request, next, None, had_cookie=bool(cookie_value))

        async with self._locks.hold(session_id):
            return await self._dispatch(request, next, session_id, had_cookie=True)

    async def _dispatch(
        self,
        request: Request,
        next: Next,
        session_id: str | None,
        *,
        had_cookie: bool,
    ) -> Response:
        record = await self._load(session_id) if session_id else None
        session = Session(record, clock=self._clock)

        token = _session_var.set(session)
        try:
            response = await next(request)
        finally:
            _session_var.reset(token)

        if response.status >= 500:
            return response
        return await self._commit(session, response, had_cookie=had_cookie)

    async def _load(self, session_id: str) -> SessionRecord | None:
        record = await self._store.load(session_id)
        if record is None:
            return None
        idle = self._config.idle_timeout_seconds
        if idle is not None and self._clock() - record.last_accessed_at > idle:
            logger.debug("Session idle timeout exceeded; discarding")
            await self._store.delete(session_id)
            return None
        return record

    async def _commit(self, session: Session, response: Response, *, had_cookie: bool) -> Response:
        cfg = self._config
        for retired in session.retired_ids:
            await self._store.delete(retired)

        if session.id is not None and len(session) > 0:
            await self._store.save(session.to_record())
            if session.id != session.loaded_id or cfg.lifetime_seconds is not None:
                response = response.with_cookie(cfg.cookie(self.sign(session.id)))
            return response

        if session.id is not None and session.id == session.loaded_id:
            # Loaded, then emptied without destroy(): drop the husk.
            await self._store.delete(session.id)

        if had_cookie:
            response = response.without_cookie(cfg.cookie(""))
        return response
