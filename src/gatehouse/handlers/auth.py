"""Authentication endpoints.

The login flow, in order:

1. validate the body (``identity``/``secret``, or ``email``/``password``);
2. refuse with 429 while any throttle key is locked, before touching
   credentials at all;
3. verify credentials; a failure is recorded against all three keys
   and answered with a uniform 401;
4. on success, clear the identity and pair keys and return the
   principal with a fresh CSRF token for the regenerated session.
"""

from typing import Any

from gatehouse.auth.authenticator import SessionAuthenticator
from gatehouse.errors import RateLimited, Unauthorized
from gatehouse.http.request import Request
from gatehouse.middleware.guards import get_principal
from gatehouse.middleware.sessions import get_session
from gatehouse.security.audit import emit_security_event
from gatehouse.security.csrf import CsrfGuard
from gatehouse.security.throttle import LoginThrottle
from gatehouse.validation import required_string

IDENTITY_MAX_LENGTH = 190
SECRET_MAX_LENGTH = 255


class AuthEndpoints:
    """Handlers for the ``/csrf-token`` and ``/auth/*`` routes."""

    __slots__ = ("_authenticator", "_csrf", "_throttle")

    def __init__(
        self,
        authenticator: SessionAuthenticator,
        csrf: CsrfGuard,
        throttle: LoginThrottle,
    ) -> None:
        self._authenticator = authenticator
        self._csrf = csrf
        self._throttle = throttle

    async def csrf_token(self, request: Request) -> dict[str, Any]:
        return {"data": {"csrf_token": self._csrf.token(get_session())}}

    async def login(self, request: Request) -> dict[str, Any]:
        inputs = await request.inputs()
        identity = required_string(
            inputs, "identity", max_length=IDENTITY_MAX_LENGTH, aliases=("email",)
        )
        secret = required_string(
            inputs, "secret", max_length=SECRET_MAX_LENGTH, aliases=("password",), strip=False
        )
        origin = request.client_ip

        blocked_until = await self._throttle.blocked_until(identity, origin)
        if blocked_until is not None:
            retry_after = self._throttle.retry_after(blocked_until)
            emit_security_event(
                "auth.login.throttled",
                request=request,
                details={"retry_after_seconds": retry_after},
            )
            raise RateLimited(retry_after)

        session = get_session()
        principal = await self._authenticator.login(session, identity, secret)
        if principal is None:
            await self._throttle.record_failure(identity, origin)
            raise Unauthorized("Invalid email or password.", error="invalid_credentials")

        await self._throttle.clear(identity, origin)
        return {
            "data": {
                "principal": principal.to_dict(),
                "csrf_token": self._csrf.token(session),
            }
        }

    async def logout(self, request: Request) -> dict[str, Any]:
        await self._authenticator.logout(get_session())
        return {"data": {"logged_out": True}}

    async def me(self, request: Request) -> dict[str, Any]:
        principal = await self._authenticator.current_principal(get_session())
        return {"data": {"principal": principal.to_dict() if principal is not None else None}}

    async def change_password(self, request: Request) -> dict[str, Any]:
        principal = get_principal() or await self._authenticator.require_principal(get_session())
        inputs = await request.inputs()
        current = required_string(inputs, "current_password", strip=False)
        new = required_string(inputs, "new_password", strip=False)
        confirm = required_string(inputs, "confirm_password", strip=False)

        updated = await self._authenticator.change_password(principal, current, new, confirm)
        return {"data": {"updated": updated}}
