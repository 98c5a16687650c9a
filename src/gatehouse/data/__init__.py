"""Typed async SQLite access. SQL in, frozen dataclasses out. Not an ORM.

Basic usage::

    from gatehouse.data import Database

    db = Database("sqlite:///gatehouse.db")
    row = await db.fetch_one(UserRow, "SELECT * FROM users WHERE id = ?", 42)
"""

from gatehouse.data.database import Database
from gatehouse.data.errors import DataError, MigrationError, QueryError
from gatehouse.data.migrate import BUNDLED_MIGRATIONS, migrate

__all__ = [
    "BUNDLED_MIGRATIONS",
    "DataError",
    "Database",
    "MigrationError",
    "QueryError",
    "migrate",
]
