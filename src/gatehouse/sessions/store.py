"""Session store protocol and the in-process backend."""

import copy
from typing import Protocol

from gatehouse.sessions.session import SessionRecord


class SessionStore(Protocol):
    """Persists session records keyed by opaque session id."""

    async def load(self, session_id: str) -> SessionRecord | None: ...

    async def save(self, record: SessionRecord) -> None: ...

    async def delete(self, session_id: str) -> None: ...

    async def purge_idle(self, older_than: float) -> int:
        """Delete records last touched before *older_than*; returns the count."""
        ...


class MemorySessionStore:
    """Process-local store. Records are copied in and out, so a handler
    mutating its session never changes stored state before commit."""

    __slots__ = ("_records",)

    def __init__(self) -> None:
        self._records: dict[str, SessionRecord] = {}

    async def load(self, session_id: str) -> SessionRecord | None:
        record = self._records.get(session_id)
        return copy.deepcopy(record) if record is not None else None

    async def save(self, record: SessionRecord) -> None:
        self._records[record.id] = copy.deepcopy(record)

    async def delete(self, session_id: str) -> None:
        self._records.pop(session_id, None)

    async def purge_idle(self, older_than: float) -> int:
        idle = [sid for sid, record in self._records.items() if record.last_accessed_at < older_than]
        for session_id in idle:
            del self._records[session_id]
        return len(idle)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._records
