"""``gatehouse run``: serve an app with uvicorn."""

import argparse
import sys

from gatehouse.cli._resolve import resolve_app
from gatehouse.errors import ConfigurationError


def run_server(args: argparse.Namespace) -> None:
    try:
        app = resolve_app(args.app)
    except (ModuleNotFoundError, AttributeError, TypeError, ConfigurationError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    app.run(host=args.host, port=args.port)
