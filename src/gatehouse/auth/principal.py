"""Principals, credential records, and the repository protocol.

A ``Principal`` is the sanitized identity handed to handlers and
serialized to clients. A ``CredentialRecord`` additionally carries the
password hash and never leaves the authenticator.
"""

from dataclasses import asdict, dataclass, replace
from datetime import UTC, datetime
from typing import Any, Protocol

ADMIN_ROLE = "admin"


@dataclass(frozen=True, slots=True)
class Principal:
    """An authenticated caller.

    ``client_id`` is the role-scoped ownership key: the tenant a client
    user belongs to, ``None`` for staff.
    """

    id: int
    role: str
    is_active: bool
    client_id: int | None = None
    name: str = ""
    email: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class CredentialRecord:
    """A stored user row including secret material."""

    id: int
    role: str
    is_active: bool
    password_hash: str
    client_id: int | None = None
    name: str = ""
    email: str = ""

    def principal(self) -> Principal:
        return Principal(
            id=self.id,
            role=self.role,
            is_active=self.is_active,
            client_id=self.client_id,
            name=self.name,
            email=self.email,
        )


def normalize_identity(identity: str) -> str:
    return identity.strip().lower()


class PrincipalRepository(Protocol):
    """User storage as seen by the authenticator.

    Lookups always hit the backing store; implementations must not
    cache, so role and active-flag changes apply on the next request.
    """

    async def get_by_id(self, principal_id: int) -> Principal | None: ...

    async def get_credentials(self, identity: str) -> CredentialRecord | None: ...

    async def record_login(self, principal_id: int) -> None: ...

    async def get_password_hash(self, principal_id: int) -> str | None: ...

    async def update_password_hash(self, principal_id: int, password_hash: str) -> bool: ...


class MemoryPrincipalRepository:
    """In-process user storage for tests and single-process demos."""

    __slots__ = ("_last_login", "_records")

    def __init__(self, records: list[CredentialRecord] | None = None) -> None:
        self._records: dict[int, CredentialRecord] = {}
        self._last_login: dict[int, datetime] = {}
        for record in records or ():
            self.add(record)

    def add(self, record: CredentialRecord) -> None:
        self._records[record.id] = record

    def set_active(self, principal_id: int, active: bool) -> None:
        self._records[principal_id] = replace(self._records[principal_id], is_active=active)

    def set_role(self, principal_id: int, role: str) -> None:
        self._records[principal_id] = replace(self._records[principal_id], role=role)

    def last_login(self, principal_id: int) -> datetime | None:
        return self._last_login.get(principal_id)

    async def get_by_id(self, principal_id: int) -> Principal | None:
        record = self._records.get(principal_id)
        return record.principal() if record is not None else None

    async def get_credentials(self, identity: str) -> CredentialRecord | None:
        wanted = normalize_identity(identity)
        for record in self._records.values():
            if normalize_identity(record.email) == wanted:
                return record
        return None

    async def record_login(self, principal_id: int) -> None:
        self._last_login[principal_id] = datetime.now(UTC)

    async def get_password_hash(self, principal_id: int) -> str | None:
        record = self._records.get(principal_id)
        return record.password_hash if record is not None else None

    async def update_password_hash(self, principal_id: int, password_hash: str) -> bool:
        record = self._records.get(principal_id)
        if record is None:
            return False
        self._records[principal_id] = replace(record, password_hash=password_hash)
        return True
