#!/usr/bin/env python3
"""
QMS portal -- account and session administration.

Usage:
  python main.py create-user admin@example.com --role "Super Admin" --name "Site Admin"
  python main.py list-users
  python main.py revoke-sessions admin@example.com
  python main.py purge-sessions

The password for create-user is read from the QMS_PASSWORD environment
variable when set, otherwise prompted for (twice, not echoed).

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth database (default: sqlite file
                next to this script).
  SECRET_KEY    Required unless DEBUG=true; see core/config.py.
"""

import argparse
import getpass
import os
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.permissions import ROLES
from auth.store import AuthStore
from auth.tokens import hash_password

_MIN_PASSWORD_LENGTH = 8


def _read_password() -> Optional[str]:
    """Return the new account's password, or None if it was rejected."""
    password = os.environ.get("QMS_PASSWORD")
    if password is None:
        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Repeat password: "):
            print("  [!] Passwords do not match.")
            return None
    if len(password) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
        return None
    if len(password.encode("utf-8")) > 72:
        print("  [!] Password must be at most 72 bytes.")
        return None
    return password


def cmd_create_user(store: AuthStore, args: argparse.Namespace) -> int:
    password = _read_password()
    if password is None:
        return 1
    user = User(email=args.email, role=args.role, name=args.name, hashed_password=hash_password(password))
    try:
        user_id = store.create_user(user)
    except IntegrityError:
        print(f"  [!] A user with email '{args.email}' already exists.")
        return 1
    print(f"  Created user {user_id}: {args.email.strip().lower()} ({args.role})")
    return 0


def cmd_list_users(store: AuthStore, args: argparse.Namespace) -> int:
    users = store.list_users()
    if not users:
        print("  No users.")
        return 0
    for user in users:
        status = "active" if user.is_active else "disabled"
        print(f"  {user.id:>4}  {user.email:<40} {user.role:<16} {status:<8} last login: {user.last_login or '-'}")
    return 0


def cmd_revoke_sessions(store: AuthStore, args: argparse.Namespace) -> int:
    user = store.get_by_email(args.email)
    if user is None:
        print(f"  [!] No user with email '{args.email}'.")
        return 1
    count = store.revoke_user_sessions(user.id)
    print(f"  Revoked {count} session(s) for {user.email}.")
    return 0


def cmd_purge_sessions(store: AuthStore, args: argparse.Namespace) -> int:
    count = store.purge_expired_sessions()
    print(f"  Purged {count} expired or revoked session(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qms-admin",
        description="Account and session administration for the QMS portal.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  QMS_PASSWORD=changeme123 python main.py create-user pm@example.com --role "Project Manager"
  python main.py revoke-sessions pm@example.com
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create a local account")
    create.add_argument("email", help="Login email address")
    create.add_argument(
        "--role",
        choices=ROLES,
        default="Viewer",
        metavar="ROLE",
        help=f"One of: {', '.join(ROLES)} (default: Viewer)",
    )
    create.add_argument("--name", default=None, help="Display name")
    create.set_defaults(func=cmd_create_user)

    listing = sub.add_parser("list-users", help="List all accounts")
    listing.set_defaults(func=cmd_list_users)

    revoke = sub.add_parser("revoke-sessions", help="Sign a user out everywhere")
    revoke.add_argument("email", help="Login email address")
    revoke.set_defaults(func=cmd_revoke_sessions)

    purge = sub.add_parser("purge-sessions", help="Delete expired and revoked sessions")
    purge.set_defaults(func=cmd_purge_sessions)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    store = AuthStore()
    try:
        return args.func(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
