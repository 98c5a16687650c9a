"""Forward-only SQL migration runner.

Migrations are numbered ``.sql`` files in a directory::

    migrations/
        001_create_users.sql
        002_create_sessions.sql

Applied versions are recorded in ``_gatehouse_migrations``. Each
migration and its tracking row commit together; a failing migration
rolls back and stops the run.

The schema gatehouse itself needs ships in ``BUNDLED_MIGRATIONS``::

    async with Database("sqlite:///gatehouse.db") as db:
        result = await migrate(db)
        print(result.summary)
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from gatehouse.data.database import Database
from gatehouse.data.errors import MigrationError

BUNDLED_MIGRATIONS = Path(__file__).resolve().parent.parent / "migrations"

_TRACKING_TABLE = "_gatehouse_migrations"

_CREATE_TRACKING_SQL = f"""
CREATE TABLE IF NOT EXISTS {_TRACKING_TABLE} (
    version    INTEGER PRIMARY KEY,
    name       TEXT    NOT NULL,
    applied_at TEXT    NOT NULL
)
"""


@dataclass(frozen=True, slots=True)
class Migration:
    version: int
    name: str
    sql: str


@dataclass(frozen=True, slots=True)
class MigrationResult:
    """What one ``migrate()`` run did."""

    applied: list[str]
    already_applied: int
    total_available: int

    @property
    def summary(self) -> str:
        if not self.applied:
            return f"Already up to date ({self.already_applied} migrations applied)"
        return f"Applied {len(self.applied)} migration(s): {', '.join(self.applied)}"


@dataclass(frozen=True, slots=True)
class _Version:
    version: int


def discover_migrations(directory: str | Path) -> list[Migration]:
    """Parse ``NNN_description.sql`` files from *directory*, ordered by version."""
    path = Path(directory)
    if not path.is_dir():
        msg = f"Migration directory does not exist: {path}"
        raise MigrationError(msg)

    migrations: list[Migration] = []
    seen: set[int] = set()
    for sql_file in sorted(path.glob("*.sql")):
        prefix, sep, _rest = sql_file.stem.partition("_")
        if not sep:
            msg = f"Invalid migration filename: {sql_file.name} (expected NNN_description.sql)"
            raise MigrationError(msg)
        try:
            version = int(prefix)
        except ValueError:
            msg = f"Invalid migration version in {sql_file.name}: {prefix!r} is not an integer"
            raise MigrationError(msg) from None
        if version in seen:
            msg = f"Duplicate migration version {version} ({sql_file.name})"
            raise MigrationError(msg)
        seen.add(version)

        sql = sql_file.read_text(encoding="utf-8").strip()
        if not sql:
            msg = f"Empty migration file: {sql_file.name}"
            raise MigrationError(msg)
        migrations.append(Migration(version=version, name=sql_file.stem, sql=sql))

    migrations.sort(key=lambda m: m.version)
    return migrations


async def applied_versions(db: Database) -> set[int]:
    await db.execute(_CREATE_TRACKING_SQL)
    rows = await db.fetch(_Version, f"SELECT version FROM {_TRACKING_TABLE}")
    return {row.version for row in rows}


async def _apply(db: Database, migration: Migration) -> None:
    async with db.transaction():
        await db.execute_script(migration.sql)
        await db.execute(
            f"INSERT INTO {_TRACKING_TABLE} (version, name, applied_at) VALUES (?, ?, ?)",
            migration.version,
            migration.name,
            datetime.now(UTC).isoformat(),
        )


async def migrate(db: Database, directory: str | Path = BUNDLED_MIGRATIONS) -> MigrationResult:
    """Apply pending migrations from *directory* in version order.

    Raises:
        MigrationError: If the directory is invalid or a migration fails.
    """
    migrations = discover_migrations(directory)
    done = await applied_versions(db)

    applied: list[str] = []
    for migration in migrations:
        if migration.version in done:
            continue
        try:
            await _apply(db, migration)
        except Exception as exc:
            msg = f"Migration {migration.name} failed: {exc}"
            raise MigrationError(msg) from exc
        applied.append(migration.name)

    return MigrationResult(
        applied=applied,
        already_applied=len(done),
        total_available=len(migrations),
    )
