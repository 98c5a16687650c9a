"""``gatehouse migrate``: apply the bundled schema migrations."""

import argparse
import sys

import anyio

from gatehouse.config import AppConfig
from gatehouse.data.database import Database
from gatehouse.data.errors import DataError
from gatehouse.data.migrate import BUNDLED_MIGRATIONS, MigrationResult, migrate


async def _apply(url: str) -> MigrationResult:
    async with Database(url) as db:
        return await migrate(db, BUNDLED_MIGRATIONS)


def run_migrate(args: argparse.Namespace, config: AppConfig) -> None:
    url = args.database or config.database_url
    if not url:
        print("Error: no database configured (pass --database or set DATABASE_URL)", file=sys.stderr)
        raise SystemExit(1)
    try:
        result = anyio.run(_apply, url)
    except DataError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    print(result.summary)
