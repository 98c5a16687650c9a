"""``gatehouse hash-password``: print an argon2 hash for seeding users."""

import argparse
import getpass
import sys

from gatehouse.security.passwords import hash_password


def run_hash_password(args: argparse.Namespace) -> None:
    if args.stdin:
        password = sys.stdin.readline().rstrip("\r\n")
    else:
        password = getpass.getpass("Password: ")
        if getpass.getpass("Repeat: ") != password:
            print("Error: passwords do not match", file=sys.stderr)
            raise SystemExit(1)
    if not password:
        print("Error: password must not be empty", file=sys.stderr)
        raise SystemExit(1)
    print(hash_password(password))
