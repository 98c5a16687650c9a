"""Typed async SQLite access.

SQL in, frozen dataclasses out. Connection URL format::

    sqlite:///path/to/db.sqlite    # SQLite file
    sqlite:///:memory:             # In-memory SQLite

A ``Database`` owns one SQLite connection. Statements from concurrent
tasks are serialized through an async lock; ``transaction()`` holds
that lock for its whole block, and statements issued inside it reuse
its connection via a ContextVar.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any

import anyio

from gatehouse.data._mapping import map_row
from gatehouse.data._sqlite import AsyncConnection, connect
from gatehouse.data.errors import DataError, QueryError

logger = logging.getLogger("gatehouse.data")

_current_conn: ContextVar[AsyncConnection] = ContextVar("gatehouse_db_conn")


def _parse_sqlite_path(url: str) -> str:
    # sqlite:///path/to/db  ->  path/to/db
    # sqlite:///:memory:    ->  :memory:
    for prefix in ("sqlite:///", "sqlite://"):
        if url.startswith(prefix):
            return url[len(prefix) :]
    msg = f"Unsupported database URL: {url!r}. Expected sqlite:///path"
    raise DataError(msg)


class Database:
    """Typed async database access.

    Usage::

        db = Database("sqlite:///gatehouse.db")

        @dataclass(frozen=True, slots=True)
        class UserRow:
            id: int
            email: str

        user = await db.fetch_one(UserRow, "SELECT * FROM users WHERE id = ?", 42)
        await db.execute("UPDATE users SET name = ? WHERE id = ?", "Ada", 42)

        async with db.transaction():
            await db.execute("INSERT INTO ...")
            await db.execute("UPDATE ...")
    """

    __slots__ = ("_conn", "_lock", "_path", "_url")

    def __init__(self, url: str, /) -> None:
        self._url = url
        self._path = _parse_sqlite_path(url)
        self._conn: AsyncConnection | None = None
        self._lock: anyio.Lock | None = None

    @property
    def url(self) -> str:
        return self._url

    # -- Connection management --

    async def connect(self) -> None:
        """Open the connection. Called automatically on first query."""
        if self._conn is not None:
            return
        conn = await connect(self._path)
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA foreign_keys=ON")
        self._conn = conn

    async def disconnect(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        await conn.close()

    def _get_lock(self) -> anyio.Lock:
        if self._lock is None:
            self._lock = anyio.Lock()
        return self._lock

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[AsyncConnection]:
        current = _current_conn.get(None)
        if current is not None:
            yield current
            return
        await self.connect()
        async with self._get_lock():
            assert self._conn is not None
            yield self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Run the block atomically: commit on clean exit, roll back on error.

        Nested ``transaction()`` calls join the outer one.
        """
        if _current_conn.get(None) is not None:
            yield
            return

        await self.connect()
        async with self._get_lock():
            conn = self._conn
            assert conn is not None
            token = _current_conn.set(conn)
            try:
                conn.autocommit = False
                yield
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise
            finally:
                conn.autocommit = True
                _current_conn.reset(token)

    # -- Query API --

    def _log_query(self, sql: str, params: tuple[Any, ...], started: float) -> None:
        if logger.isEnabledFor(logging.DEBUG):
            elapsed = (time.perf_counter() - started) * 1000
            logger.debug("%6.1fms  %s  params=%d", elapsed, " ".join(sql.split()), len(params))

    async def fetch[T](self, cls: type[T], sql: str, /, *params: Any) -> list[T]:
        """Execute a query and return every row as a dataclass."""
        started = time.perf_counter()
        async with self._connection() as conn:
            try:
                cursor = await conn.execute(sql, params)
                rows = await cursor.fetchall()
                columns = [desc[0] for desc in cursor.description]
                return [map_row(cls, dict(zip(columns, row, strict=True))) for row in rows]
            except Exception as exc:
                raise QueryError(str(exc)) from exc
            finally:
                self._log_query(sql, params, started)

    async def fetch_one[T](self, cls: type[T], sql: str, /, *params: Any) -> T | None:
        """Execute a query and return the first row, or ``None``."""
        started = time.perf_counter()
        async with self._connection() as conn:
            try:
                cursor = await conn.execute(sql, params)
                row = await cursor.fetchone()
                if row is None:
                    return None
                columns = [desc[0] for desc in cursor.description]
                return map_row(cls, dict(zip(columns, row, strict=True)))
            except Exception as exc:
                raise QueryError(str(exc)) from exc
            finally:
                self._log_query(sql, params, started)

    async def fetch_val(self, sql: str, /, *params: Any) -> Any:
        """First column of the first row, or ``None``. Useful for COUNT and friends."""
        started = time.perf_counter()
        async with self._connection() as conn:
            try:
                cursor = await conn.execute(sql, params)
                row = await cursor.fetchone()
                return None if row is None else row[0]
            except Exception as exc:
                raise QueryError(str(exc)) from exc
            finally:
                self._log_query(sql, params, started)

    async def execute(self, sql: str, /, *params: Any) -> int:
        """Execute an INSERT/UPDATE/DELETE and return the affected row count."""
        started = time.perf_counter()
        async with self._connection() as conn:
            try:
                cursor = await conn.execute(sql, params)
                return cursor.rowcount
            except Exception as exc:
                raise QueryError(str(exc)) from exc
            finally:
                self._log_query(sql, params, started)

    async def execute_script(self, sql: str, /) -> None:
        """Execute several statements at once (migrations)."""
        started = time.perf_counter()
        async with self._connection() as conn:
            try:
                await conn.executescript(sql)
            except Exception as exc:
                raise QueryError(str(exc)) from exc
            finally:
                self._log_query(sql, (), started)

    # -- Context manager --

    async def __aenter__(self) -> Database:
        await self.connect()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.disconnect()
