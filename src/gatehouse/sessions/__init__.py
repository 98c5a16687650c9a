"""Server-side sessions: the per-request handle and its stores."""

from gatehouse.sessions.session import Session, SessionRecord, new_session_id
from gatehouse.sessions.store import MemorySessionStore, SessionStore

__all__ = [
    "MemorySessionStore",
    "Session",
    "SessionRecord",
    "SessionStore",
    "new_session_id",
]
