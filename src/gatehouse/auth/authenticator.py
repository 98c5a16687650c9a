"""Session-based authentication.

``SessionAuthenticator`` is the only component that reads or writes
the principal id in a session. Every lookup reloads the principal from
the repository, so deactivation and role changes take effect on the
caller's very next request.
"""

import logging

import anyio

from gatehouse.auth.principal import Principal, PrincipalRepository
from gatehouse.errors import Forbidden, NotFound, Unauthorized, ValidationError
from gatehouse.security.audit import emit_security_event
from gatehouse.security.passwords import dummy_hash, hash_password, needs_rehash, verify_password
from gatehouse.sessions.session import Session

logger = logging.getLogger("gatehouse.security")

SESSION_PRINCIPAL_KEY = "principal_id"

MIN_PASSWORD_LENGTH = 8


def _principal_id(value: object) -> int | None:
    """Coerce a stored principal id; anything but a non-negative integer is malformed."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and value.isascii() and value.isdigit():
        return int(value)
    return None


async def _verify(secret: str, password_hash: str) -> bool:
    return await anyio.to_thread.run_sync(verify_password, secret, password_hash)


class SessionAuthenticator:
    """Resolves, establishes, and ends authenticated sessions."""

    __slots__ = ("_principals",)

    def __init__(self, principals: PrincipalRepository) -> None:
        self._principals = principals

    @property
    def principals(self) -> PrincipalRepository:
        return self._principals

    async def login(self, session: Session, identity: str, secret: str) -> Principal | None:
        """Verify credentials and bind the principal to a fresh session id.

        Returns ``None`` for an unknown identity, an inactive principal,
        or a wrong secret, without saying which.
        """
        record = await self._principals.get_credentials(identity)
        if record is None:
            await _verify(secret, dummy_hash())
            emit_security_event("auth.login.failure", details={"reason": "invalid"})
            return None

        verified = await _verify(secret, record.password_hash)
        if not verified or not record.is_active:
            emit_security_event(
                "auth.login.failure",
                user_id=str(record.id),
                details={"reason": "invalid"},
            )
            return None

        if needs_rehash(record.password_hash):
            rehashed = await anyio.to_thread.run_sync(hash_password, secret)
            await self._principals.update_password_hash(record.id, rehashed)
            logger.info("Upgraded password hash for principal %s", record.id)

        session.regenerate()
        session[SESSION_PRINCIPAL_KEY] = record.id
        await self._principals.record_login(record.id)
        emit_security_event("auth.login.success", user_id=str(record.id))
        return record.principal()

    async def logout(self, session: Session) -> None:
        principal_id = _principal_id(session.get(SESSION_PRINCIPAL_KEY))
        session.destroy()
        emit_security_event(
            "auth.logout",
            user_id=str(principal_id) if principal_id is not None else None,
        )

    async def current_principal(self, session: Session) -> Principal | None:
        """The active principal bound to *session*, or ``None``.

        Never raises for an absent or malformed id, an unknown
        principal, or a deactivated one.
        """
        principal_id = _principal_id(session.get(SESSION_PRINCIPAL_KEY))
        if principal_id is None:
            return None
        principal = await self._principals.get_by_id(principal_id)
        if principal is None or not principal.is_active:
            return None
        return principal

    async def require_principal(self, session: Session) -> Principal:
        principal = await self.current_principal(session)
        if principal is None:
            raise Unauthorized()
        return principal

    async def require_admin(self, session: Session) -> Principal:
        principal = await self.require_principal(session)
        if not principal.is_admin:
            raise Forbidden("Admin access required.")
        return principal

    async def change_password(
        self,
        principal: Principal,
        current: str,
        new: str,
        confirm: str,
    ) -> bool:
        """Replace *principal*'s password after checking the current one.

        Raises:
            ValidationError: If the new password is too short, does not
                match its confirmation, the current password is wrong,
                or the new password equals the current one.
            NotFound: If the principal no longer exists.
        """
        if len(new) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"new_password must be at least {MIN_PASSWORD_LENGTH} characters.")
        if new != confirm:
            raise ValidationError("confirm_password does not match new_password.")

        stored = await self._principals.get_password_hash(principal.id)
        if stored is None:
            raise NotFound("User not found.")
        if not await _verify(current, stored):
            raise ValidationError("Current password is incorrect.")
        if await _verify(new, stored):
            raise ValidationError("New password must be different from current password.")

        new_hash = await anyio.to_thread.run_sync(hash_password, new)
        updated = await self._principals.update_password_hash(principal.id, new_hash)
        logger.info("Password changed for principal %s", principal.id)
        emit_security_event("auth.password.changed", user_id=str(principal.id))
        return updated
