"""The per-request session handle.

A ``Session`` wraps the stored ``SessionRecord`` for one request. Its
lifecycle operations (``start``, ``regenerate``, ``destroy``) only
change the handle; ``SessionMiddleware`` commits the outcome to the
store and the cookie once the response is produced.
"""

import secrets
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

_ID_BYTES = 32


def new_session_id() -> str:
    """An unguessable opaque session identifier."""
    return secrets.token_urlsafe(_ID_BYTES)


@dataclass(frozen=True, slots=True)
class SessionRecord:
    """The persisted form of a session."""

    id: str
    data: dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0
    last_accessed_at: float = 0.0


class Session:
    """Mutable session state for a single request.

    Reading never creates a session. Writing a value starts one. A
    started session with no values is not persisted, so anonymous
    traffic never fills the store.
    """

    __slots__ = (
        "_clock",
        "_created_at",
        "_data",
        "_destroyed",
        "_id",
        "_loaded_id",
        "_retired_ids",
    )

    def __init__(
        self,
        record: SessionRecord | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._clock = clock
        self._id: str | None = record.id if record else None
        self._loaded_id: str | None = self._id
        self._data: dict[str, Any] = dict(record.data) if record else {}
        self._created_at: float = record.created_at if record else 0.0
        self._retired_ids: list[str] = []
        self._destroyed = False

    # -- Lifecycle --

    @property
    def id(self) -> str | None:
        """The current identifier, or ``None`` before ``start()``."""
        return self._id

    @property
    def loaded_id(self) -> str | None:
        """The identifier the request arrived with, if it was valid."""
        return self._loaded_id

    @property
    def retired_ids(self) -> tuple[str, ...]:
        """Identifiers invalidated during this request."""
        return tuple(self._retired_ids)

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def created_at(self) -> float:
        return self._created_at

    def start(self) -> str:
        """Return the active identifier, allocating one if needed. Idempotent."""
        if self._id is None:
            self._id = new_session_id()
            self._created_at = self._clock()
            self._destroyed = False
        return self._id

    def regenerate(self) -> str:
        """Switch to a fresh identifier and drop every value.

        The old identifier is invalidated; callers re-assert whatever
        they want to keep after this returns.
        """
        if self._id is not None:
            self._retired_ids.append(self._id)
        self._id = None
        self._data.clear()
        return self.start()

    def destroy(self) -> None:
        """Clear all values and invalidate the identifier and cookie."""
        if self._id is not None:
            self._retired_ids.append(self._id)
        self._id = None
        self._data.clear()
        self._destroyed = True

    def to_record(self) -> SessionRecord:
        """Snapshot for persistence. Requires a started session."""
        if self._id is None:
            msg = "Cannot persist a session that has not been started."
            raise RuntimeError(msg)
        return SessionRecord(
            id=self._id,
            data=dict(self._data),
            created_at=self._created_at,
            last_accessed_at=self._clock(),
        )

    # -- Values --

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.start()
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __bool__(self) -> bool:
        return True

    def pop(self, key: str, default: Any = None) -> Any:
        return self._data.pop(key, default)

    def clear(self) -> None:
        self._data.clear()

    def __repr__(self) -> str:
        return f"Session(id={self._id!r}, keys={sorted(self._data)!r})"
