"""SQLite-backed session store (``sessions`` table, see migration 002)."""

import json
import logging
from dataclasses import dataclass

from gatehouse.data.database import Database
from gatehouse.sessions.session import SessionRecord

logger = logging.getLogger("gatehouse.sessions")


@dataclass(frozen=True, slots=True)
class _SessionRow:
    id: str
    data: str
    created_at: float
    last_accessed_at: float


class DatabaseSessionStore:
    """Session records as JSON rows. Values must be JSON-serializable."""

    __slots__ = ("_db",)

    def __init__(self, db: Database) -> None:
        self._db = db

    async def load(self, session_id: str) -> SessionRecord | None:
        row = await self._db.fetch_one(
            _SessionRow,
            "SELECT id, data, created_at, last_accessed_at FROM sessions WHERE id = ?",
            session_id,
        )
        if row is None:
            return None
        try:
            data = json.loads(row.data)
        except ValueError:
            logger.warning("Discarding session with undecodable data")
            return None
        if not isinstance(data, dict):
            return None
        return SessionRecord(
            id=row.id,
            data=data,
            created_at=row.created_at,
            last_accessed_at=row.last_accessed_at,
        )

    async def save(self, record: SessionRecord) -> None:
        await self._db.execute(
            "INSERT INTO sessions (id, data, created_at, last_accessed_at) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET data = excluded.data, "
            "last_accessed_at = excluded.last_accessed_at",
            record.id,
            json.dumps(record.data, separators=(",", ":")),
            record.created_at,
            record.last_accessed_at,
        )

    async def delete(self, session_id: str) -> None:
        await self._db.execute("DELETE FROM sessions WHERE id = ?", session_id)

    async def purge_idle(self, older_than: float) -> int:
        """Delete sessions last touched before *older_than* (epoch seconds)."""
        return await self._db.execute(
            "DELETE FROM sessions WHERE last_accessed_at < ?", older_than
        )
