"""Gatehouse CLI: serve the app, apply migrations, hash passwords.

Entry point registered as ``gatehouse`` in ``pyproject.toml``::

    [project.scripts]
    gatehouse = "gatehouse.cli:main"
"""

import argparse
import logging
import sys

from gatehouse.config import AppConfig

DEFAULT_APP = "gatehouse.factory:create_app_from_env"


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the ``gatehouse`` command."""
    parser = argparse.ArgumentParser(
        prog="gatehouse",
        description="Gatehouse: session auth, CSRF and login throttling for a portal API.",
    )
    subparsers = parser.add_subparsers(dest="command")

    # -- gatehouse run ----------------------------------------------------
    run_parser = subparsers.add_parser("run", help="Serve the app with uvicorn")
    run_parser.add_argument(
        "app",
        nargs="?",
        default=DEFAULT_APP,
        help=f"Import string (default: {DEFAULT_APP})",
    )
    run_parser.add_argument("--host", default=None, help="Bind host address")
    run_parser.add_argument("--port", type=int, default=None, help="Bind port number")

    # -- gatehouse migrate ------------------------------------------------
    migrate_parser = subparsers.add_parser("migrate", help="Apply the bundled migrations")
    migrate_parser.add_argument(
        "--database",
        default=None,
        help="Database URL (default: DATABASE_URL)",
    )

    # -- gatehouse hash-password ------------------------------------------
    hash_parser = subparsers.add_parser("hash-password", help="Print an argon2 hash for seeding")
    hash_parser.add_argument(
        "--stdin",
        action="store_true",
        help="Read the password from standard input instead of prompting",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    config = AppConfig.from_env()
    _configure_logging(config.log_level)

    if args.command == "run":
        from gatehouse.cli._run import run_server

        run_server(args)
    elif args.command == "migrate":
        from gatehouse.cli._migrate import run_migrate

        run_migrate(args, config)
    elif args.command == "hash-password":
        from gatehouse.cli._hash import run_hash_password

        run_hash_password(args)
