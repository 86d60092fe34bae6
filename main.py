#!/usr/bin/env python3
"""
TeamGate -- operator commands.

Usage:
  python main.py seed-admin --email admin@example.com
  python main.py seed-admin --email admin@example.com --password '...' --name "Ops Admin"
  python main.py purge-tokens

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the account store (default: sqlite:///teamgate.db)
  SECRET_KEY    Required unless DEBUG=true (settings are validated on startup).

The server itself is started with `uvicorn asgi:app`.
"""

import argparse
import getpass
import logging
import sys

from auth.seed import seed_superadmin
from auth.store import AccountStore
from core.config import get_settings

logger = logging.getLogger("teamgate.cli")

_PASSWORD_MIN = 8


def _read_password(args: argparse.Namespace) -> str:
    """Take --password if given, otherwise prompt twice without echo."""
    if args.password:
        return args.password
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Confirm password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        sys.exit(1)
    return first


def _seed_admin(args: argparse.Namespace) -> int:
    password = _read_password(args)
    if len(password) < _PASSWORD_MIN:
        print(f"  [!] Password must be at least {_PASSWORD_MIN} characters.")
        return 1
    store = AccountStore(get_settings().database_url)
    try:
        account, created = seed_superadmin(store, args.email, password, display_name=args.name)
    finally:
        store.close()
    if created:
        print(f"  Superadmin created: {account.email} (id={account.id})")
    else:
        print(f"  Account already exists: {account.email} (id={account.id}) -- left unchanged")
    return 0


def _purge_tokens(args: argparse.Namespace) -> int:
    store = AccountStore(get_settings().database_url)
    try:
        purged = store.purge_expired_tokens()
    finally:
        store.close()
    print(f"  Cleared {purged} expired token slot(s).")
    return 0


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")

    parser = argparse.ArgumentParser(
        prog="teamgate",
        description="Operator commands for the TeamGate account service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed-admin --email admin@example.com
  DATABASE_URL=sqlite:///prod.db python main.py seed-admin --email ops@example.com --name "Ops"
  python main.py purge-tokens
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    seed = sub.add_parser("seed-admin", help="Create the first superadmin (idempotent)")
    seed.add_argument("--email", required=True, help="Login email of the superadmin")
    seed.add_argument(
        "--password",
        default=None,
        help="Initial password. Prompted for when omitted, which keeps it out of shell history.",
    )
    seed.add_argument("--name", default="Admin", help="Display name (default: Admin)")
    seed.set_defaults(handler=_seed_admin)

    purge = sub.add_parser("purge-tokens", help="Clear expired OTP, reset, and confirmation tokens")
    purge.set_defaults(handler=_purge_tokens)

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(1)
    sys.exit(args.handler(args))


if __name__ == "__main__":
    main()
