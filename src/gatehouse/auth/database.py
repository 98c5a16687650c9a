"""SQLite-backed principal repository over the ``users`` table."""

from dataclasses import dataclass
from datetime import UTC, datetime

from gatehouse.auth.principal import CredentialRecord, Principal, normalize_identity
from gatehouse.data.database import Database

_COLUMNS = "id, role, is_active, client_id, name, email"


@dataclass(frozen=True, slots=True)
class _HashRow:
    password_hash: str


class DatabasePrincipalRepository:
    """Reads users straight from the database on every call."""

    __slots__ = ("_db",)

    def __init__(self, db: Database) -> None:
        self._db = db

    async def get_by_id(self, principal_id: int) -> Principal | None:
        return await self._db.fetch_one(
            Principal, f"SELECT {_COLUMNS} FROM users WHERE id = ?", principal_id
        )

    async def get_credentials(self, identity: str) -> CredentialRecord | None:
        return await self._db.fetch_one(
            CredentialRecord,
            f"SELECT {_COLUMNS}, password_hash FROM users WHERE email = ? LIMIT 1",
            normalize_identity(identity),
        )

    async def record_login(self, principal_id: int) -> None:
        now = _now()
        await self._db.execute(
            "UPDATE users SET last_login_at = ?, updated_at = ? WHERE id = ?",
            now,
            now,
            principal_id,
        )

    async def get_password_hash(self, principal_id: int) -> str | None:
        row = await self._db.fetch_one(
            _HashRow, "SELECT password_hash FROM users WHERE id = ?", principal_id
        )
        return row.password_hash if row is not None else None

    async def update_password_hash(self, principal_id: int, password_hash: str) -> bool:
        changed = await self._db.execute(
            "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
            password_hash,
            _now(),
            principal_id,
        )
        return changed > 0

    async def create(
        self,
        *,
        email: str,
        password_hash: str,
        role: str = "staff",
        name: str = "",
        client_id: int | None = None,
        is_active: bool = True,
    ) -> int:
        """Insert a user and return its id."""
        async with self._db.transaction():
            await self._db.execute(
                "INSERT INTO users (client_id, name, email, role, password_hash, is_active) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                client_id,
                name,
                normalize_identity(email),
                role,
                password_hash,
                int(is_active),
            )
            return int(await self._db.fetch_val("SELECT last_insert_rowid()"))


def _now() -> str:
    return datetime.now(UTC).isoformat()
