"""Keyed atomic stores for login throttle state.

Every backend offers the same operations on JSON-compatible
dicts keyed by an opaque string:

- ``read(key)`` returns the current value or ``None``;
- ``mutate(key, fn)`` runs ``fn(current) -> new`` as one atomic
  read-modify-write, deleting the key when ``fn`` returns ``None``;
- ``delete(key)`` removes the value;
- ``purge(is_stale)`` drops every value the predicate reports as stale
  and returns how many were removed.

Concurrent ``mutate`` calls on one key never lose updates. I/O
failures surface as ``ThrottleStoreError``; deciding what a failure
means for a login is the throttle's job, not the store's.
"""

import fcntl
import json
import logging
import os
import re
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

import anyio

from gatehouse._internal.locks import KeyedLock
from gatehouse.data.database import Database
from gatehouse.data.errors import DataError
from gatehouse.errors import ThrottleStoreError

logger = logging.getLogger("gatehouse.security")

type StateDict = dict[str, Any]
type Mutator = Callable[[StateDict | None], StateDict | None]
type StalePredicate = Callable[[StateDict], bool]

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class KeyedAtomicStore(Protocol):
    async def read(self, key: str) -> StateDict | None: ...

    async def mutate(self, key: str, fn: Mutator) -> StateDict | None: ...

    async def delete(self, key: str) -> None: ...

    async def purge(self, is_stale: StalePredicate) -> int: ...


class MemoryThrottleStore:
    """In-process store; a per-key lock wraps each mutation."""

    __slots__ = ("_locks", "_values")

    def __init__(self) -> None:
        self._values: dict[str, StateDict] = {}
        self._locks = KeyedLock()

    async def read(self, key: str) -> StateDict | None:
        value = self._values.get(key)
        return dict(value) if value is not None else None

    async def mutate(self, key: str, fn: Mutator) -> StateDict | None:
        async with self._locks.hold(key):
            current = self._values.get(key)
            updated = fn(dict(current) if current is not None else None)
            await anyio.sleep(0)
            if updated is None:
                self._values.pop(key, None)
            else:
                self._values[key] = dict(updated)
            return updated

    async def delete(self, key: str) -> None:
        async with self._locks.hold(key):
            self._values.pop(key, None)

    async def purge(self, is_stale: StalePredicate) -> int:
        removed = 0
        for key in list(self._values):
            async with self._locks.hold(key):
                current = self._values.get(key)
                if current is not None and is_stale(dict(current)):
                    del self._values[key]
                    removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._values)


class FileThrottleStore:
    """One JSON file per key under *directory*.

    Mutations hold an exclusive ``flock`` on a per-key lock file, so
    several worker processes sharing the directory stay consistent.
    Writes go to a temporary file that atomically replaces the target.
    Deleting a key removes its lock file too. Blocking file I/O runs
    in ``anyio`` worker threads.
    """

    __slots__ = ("_directory", "_locks")

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)
        self._locks = KeyedLock()

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            msg = f"Throttle key is not filename-safe: {key[:16]!r}"
            raise ThrottleStoreError(msg)
        return self._directory / f"{key}.json"

    async def read(self, key: str) -> StateDict | None:
        path = self.path_for(key)
        try:
            return await anyio.to_thread.run_sync(self._read_file, path)
        except OSError as exc:
            msg = f"Could not read throttle state: {exc}"
            raise ThrottleStoreError(msg) from exc

    async def mutate(self, key: str, fn: Mutator) -> StateDict | None:
        path = self.path_for(key)
        async with self._locks.hold(key):
            try:
                return await anyio.to_thread.run_sync(self._mutate_locked, path, fn)
            except OSError as exc:
                msg = f"Could not update throttle state: {exc}"
                raise ThrottleStoreError(msg) from exc

    async def delete(self, key: str) -> None:
        await self.mutate(key, lambda _current: None)

    async def purge(self, is_stale: StalePredicate) -> int:
        try:
            return await anyio.to_thread.run_sync(self._purge_files, is_stale)
        except OSError as exc:
            msg = f"Could not purge throttle state: {exc}"
            raise ThrottleStoreError(msg) from exc

    # -- Blocking helpers (worker thread) --

    @staticmethod
    @contextmanager
    def _flocked(lock_path: Path) -> Iterator[None]:
        # A holder may unlink the lock file; retry until the locked
        # descriptor is the file currently at lock_path.
        while True:
            lock_file = open(lock_path, "a+b")
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    on_disk = os.stat(lock_path).st_ino
                except FileNotFoundError:
                    on_disk = None
                if on_disk == os.fstat(lock_file.fileno()).st_ino:
                    break
            except BaseException:
                lock_file.close()
                raise
            lock_file.close()
        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
            lock_file.close()

    def _mutate_locked(self, path: Path, fn: Mutator) -> StateDict | None:
        self._directory.mkdir(parents=True, exist_ok=True)
        lock_path = path.with_suffix(".lock")
        with self._flocked(lock_path):
            current = self._read_file(path)
            updated = fn(current)
            if updated is None:
                path.unlink(missing_ok=True)
                lock_path.unlink(missing_ok=True)
            elif updated != current:
                self._write_file(path, updated)
            return updated

    def _purge_files(self, is_stale: StalePredicate) -> int:
        if not self._directory.is_dir():
            return 0
        stems = {
            entry.stem
            for entry in self._directory.iterdir()
            if entry.suffix in (".json", ".lock") and _SAFE_KEY.match(entry.stem)
        }
        removed = 0
        for stem in sorted(stems):
            path = self._directory / f"{stem}.json"
            lock_path = path.with_suffix(".lock")
            with self._flocked(lock_path):
                current = self._read_file(path)
                if current is not None and not is_stale(current):
                    continue
                if path.exists():
                    removed += 1
                path.unlink(missing_ok=True)
                lock_path.unlink(missing_ok=True)
        return removed

    @staticmethod
    def _read_file(path: Path) -> StateDict | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        if not raw.strip():
            return None
        try:
            decoded = json.loads(raw)
        except ValueError:
            logger.warning("Discarding corrupt throttle state file %s", path.name)
            return None
        return decoded if isinstance(decoded, dict) else None

    @staticmethod
    def _write_file(path: Path, value: StateDict) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                json.dump(value, tmp, separators=(",", ":"))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


@dataclass(frozen=True, slots=True)
class _StateRow:
    throttle_key: str
    state: str


class DatabaseThrottleStore:
    """Throttle state in the ``auth_throttle`` table.

    Each mutation is a read-modify-write inside ``Database.transaction()``.
    """

    __slots__ = ("_db",)

    def __init__(self, db: Database) -> None:
        self._db = db

    async def read(self, key: str) -> StateDict | None:
        try:
            row = await self._db.fetch_one(
                _StateRow,
                "SELECT throttle_key, state FROM auth_throttle WHERE throttle_key = ?",
                key,
            )
        except DataError as exc:
            msg = f"Could not read throttle state: {exc}"
            raise ThrottleStoreError(msg) from exc
        return _decode(row)

    async def mutate(self, key: str, fn: Mutator) -> StateDict | None:
        try:
            async with self._db.transaction():
                row = await self._db.fetch_one(
                    _StateRow,
                    "SELECT throttle_key, state FROM auth_throttle WHERE throttle_key = ?",
                    key,
                )
                updated = fn(_decode(row))
                if updated is None:
                    await self._db.execute("DELETE FROM auth_throttle WHERE throttle_key = ?", key)
                else:
                    await self._db.execute(
                        "INSERT INTO auth_throttle (throttle_key, state, updated_at) VALUES (?, ?, ?) "
                        "ON CONFLICT(throttle_key) DO UPDATE SET state = excluded.state, "
                        "updated_at = excluded.updated_at",
                        key,
                        json.dumps(updated, separators=(",", ":")),
                        datetime.now(UTC).isoformat(),
                    )
                return updated
        except DataError as exc:
            msg = f"Could not update throttle state: {exc}"
            raise ThrottleStoreError(msg) from exc

    async def delete(self, key: str) -> None:
        try:
            await self._db.execute("DELETE FROM auth_throttle WHERE throttle_key = ?", key)
        except DataError as exc:
            msg = f"Could not delete throttle state: {exc}"
            raise ThrottleStoreError(msg) from exc

    async def purge(self, is_stale: StalePredicate) -> int:
        try:
            async with self._db.transaction():
                rows = await self._db.fetch(_StateRow, "SELECT throttle_key, state FROM auth_throttle")
                stale = []
                for row in rows:
                    state = _decode(row)
                    if state is None or is_stale(state):
                        stale.append(row.throttle_key)
                for key in stale:
                    await self._db.execute("DELETE FROM auth_throttle WHERE throttle_key = ?", key)
        except DataError as exc:
            msg = f"Could not purge throttle state: {exc}"
            raise ThrottleStoreError(msg) from exc
        return len(stale)


def _decode(row: _StateRow | None) -> StateDict | None:
    if row is None:
        return None
    try:
        decoded = json.loads(row.state)
    except ValueError:
        logger.warning("Discarding corrupt throttle state row")
        return None
    return decoded if isinstance(decoded, dict) else None
