"""Session-bound CSRF tokens.

The token is generated once per session and stays stable until the
session is regenerated (login) or destroyed (logout). State-changing
requests must echo it in the ``X-CSRF-Token`` header or, failing that,
the ``_csrf`` body field. Read-only requests are never checked.
"""

import secrets
from dataclasses import dataclass

from gatehouse.http.request import Request
from gatehouse.sessions.session import Session


@dataclass(frozen=True, slots=True)
class CsrfConfig:
    """CSRF token configuration.

    Attributes:
        header_name: Request header checked first.
        field_name: Body field (JSON or form) used when the header is absent or empty.
        session_key: Session key holding the token.
        token_bytes: Entropy in bytes; the token is hex-encoded.
    """

    header_name: str = "X-CSRF-Token"
    field_name: str = "_csrf"
    session_key: str = "_csrf_token"
    token_bytes: int = 32


class CsrfGuard:
    """Issues and validates the session's anti-forgery token."""

    __slots__ = ("_config",)

    def __init__(self, config: CsrfConfig | None = None) -> None:
        self._config = config or CsrfConfig()

    @property
    def config(self) -> CsrfConfig:
        return self._config

    def token(self, session: Session) -> str:
        """Return the session's token, generating and storing one on first use."""
        key = self._config.session_key
        current = session.get(key)
        if isinstance(current, str) and current:
            return current
        token = secrets.token_hex(self._config.token_bytes)
        session[key] = token
        return token

    def validate(self, session: Session, provided: str | None) -> bool:
        """Constant-time comparison of *provided* against the session token.

        False when the session has no token, nothing was provided, or
        the values differ. Never creates a token.
        """
        expected = session.get(self._config.session_key)
        if not isinstance(expected, str) or not expected:
            return False
        if not provided:
            return False
        return secrets.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))

    async def extract(self, request: Request) -> str | None:
        """The token a request submitted; a non-empty header beats the body field."""
        header = (request.headers.get(self._config.header_name) or "").strip()
        if header:
            return header
        value = await request.input(self._config.field_name)
        return value if isinstance(value, str) and value else None

    async def check(self, session: Session, request: Request) -> bool:
        """True for read-only requests; otherwise validate the submitted token."""
        if not request.is_state_changing:
            return True
        return self.validate(session, await self.extract(request))
