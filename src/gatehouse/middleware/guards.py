"""Route guards: authentication, CSRF, and admin role.

Attach them per route, in order::

    app.post("/auth/logout", logout, middleware=[
        AuthRequired(authenticator),
        CsrfRequired(csrf),
    ])

Each guard reads the request's session via ``get_session()``, so
``SessionMiddleware`` must be installed globally. A failing guard
raises an ``HTTPError`` and the rest of the chain never runs.
``AuthRequired`` exposes the resolved principal to the remainder of
the chain through ``get_principal()``.
"""

from contextvars import ContextVar

from gatehouse.auth.authenticator import SessionAuthenticator
from gatehouse.auth.principal import Principal
from gatehouse.errors import Forbidden, Unauthorized
from gatehouse.http.request import Request
from gatehouse.http.response import Response
from gatehouse.middleware.protocol import Next
from gatehouse.middleware.sessions import get_session
from gatehouse.security.audit import emit_security_event
from gatehouse.security.csrf import CsrfGuard

_principal_var: ContextVar[Principal | None] = ContextVar("gatehouse_principal", default=None)

CSRF_MISMATCH = "csrf_mismatch"


def get_principal() -> Principal | None:
    """The principal ``AuthRequired`` resolved for this request, if any."""
    return _principal_var.get()


class AuthRequired:
    """Reject requests without an active authenticated principal (401)."""

    __slots__ = ("_authenticator",)

    def __init__(self, authenticator: SessionAuthenticator) -> None:
        self._authenticator = authenticator

    async def __call__(self, request: Request, next: Next) -> Response:
        principal = await self._authenticator.current_principal(get_session())
        if principal is None:
            emit_security_event("authz.denied", request=request, details={"reason": "unauthenticated"})
            raise Unauthorized()
        token = _principal_var.set(principal)
        try:
            return await next(request)
        finally:
            _principal_var.reset(token)


class CsrfRequired:
    """Reject state-changing requests without the session's CSRF token (403)."""

    __slots__ = ("_guard",)

    def __init__(self, guard: CsrfGuard) -> None:
        self._guard = guard

    async def __call__(self, request: Request, next: Next) -> Response:
        if not await self._guard.check(get_session(), request):
            emit_security_event("csrf.rejected", request=request)
            raise Forbidden(detail="CSRF token is invalid or missing.", error=CSRF_MISMATCH)
        return await next(request)


class AdminRequired:
    """Reject callers whose principal is not an admin (401 if anonymous, 403 otherwise)."""

    __slots__ = ("_authenticator",)

    def __init__(self, authenticator: SessionAuthenticator) -> None:
        self._authenticator = authenticator

    async def __call__(self, request: Request, next: Next) -> Response:
        principal = await self._authenticator.current_principal(get_session())
        if principal is None:
            emit_security_event("authz.denied", request=request, details={"reason": "unauthenticated"})
            raise Unauthorized()
        if not principal.is_admin:
            emit_security_event(
                "authz.denied",
                request=request,
                user_id=str(principal.id),
                details={"reason": "role", "role": principal.role},
            )
            raise Forbidden("Admin access required.")
        return await next(request)
