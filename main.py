#!/usr/bin/env python3
"""
Lanterra auth -- operator command line.

Registration through the API always creates plain USER accounts, so the first
ADMIN has to be created here.

Usage:
  python main.py create-admin admin@example.com --password 'S3cret!x'
  python main.py toggle-block user@example.com
  python main.py purge

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the user database (default sqlite:///lanterra.db)
  CACHE_DB_PATH  Path of the SQLite user cache (default lanterra_cache.db)
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth.models import Role
from auth.store import UserStore
from cache.store import UserCache
from core.config import get_settings
from users.service import UserService


def _open_service(database_url: str, cache_db: str) -> UserService:
    settings = get_settings()
    return UserService(
        UserStore(database_url),
        UserCache(cache_db, ttl=settings.cache_user_ttl),
        cache_ttl=settings.cache_user_ttl,
    )


def _close_service(users: UserService) -> None:
    users.cache.close()
    users.store.close()


def create_admin(users: UserService, email: str, password: Optional[str] = None) -> int:
    """Create the account if needed and grant it USER and ADMIN roles.

    The password is only used, or prompted for, when the account is new.
    """
    if users.find_one(email, reset=True) is None:
        if users.save(email, password or getpass.getpass("Password: ")) is None:
            print(f"  [!] Could not save user {email}.")
            return 1
    user = users.save(email, roles=[Role.USER.value, Role.ADMIN.value], is_confirmed=True)
    print(f"  {user.email} ({user.id}) now has roles: {', '.join(user.roles)}")
    return 0


def toggle_block(users: UserService, id_or_email: str) -> int:
    user = users.find_one(id_or_email, reset=True)
    if user is None:
        print(f"  [!] No user with id/email: {id_or_email}")
        return 1
    updated = users.set_block_unblock(user.id)
    print(f"  Block status of user with email: {updated.email} changed to: {str(updated.is_blocked).lower()}")
    return 0


def purge(users: UserService) -> int:
    tokens = users.store.purge_expired_tokens()
    entries = users.cache.purge_expired()
    print(f"  Purged {tokens} expired refresh token(s) and {entries} cache entr{'y' if entries == 1 else 'ies'}.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="lanterra-auth",
        description="Operator commands for the Lanterra auth database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin admin@example.com
  python main.py toggle-block user@example.com
  DATABASE_URL=sqlite:///prod.db python main.py purge
        """,
    )
    parser.add_argument(
        "--database-url",
        default=settings.database_url,
        metavar="URL",
        help="SQLAlchemy database URL (default: DATABASE_URL)",
    )
    parser.add_argument(
        "--cache-db",
        default=settings.cache_db_path,
        metavar="PATH",
        help="SQLite cache file (default: CACHE_DB_PATH)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    admin = sub.add_parser("create-admin", help="Create a user or promote an existing one to ADMIN")
    admin.add_argument("email")
    admin.add_argument("--password", help="Password for a new account (prompted if omitted)")

    block = sub.add_parser("toggle-block", help="Block or unblock a user")
    block.add_argument("id_or_email")

    sub.add_parser("purge", help="Delete expired refresh tokens and cache entries")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")

    users = _open_service(args.database_url, args.cache_db)
    try:
        if args.command == "create-admin":
            return create_admin(users, args.email, args.password)
        if args.command == "toggle-block":
            return toggle_block(users, args.id_or_email)
        return purge(users)
    finally:
        _close_service(users)


if __name__ == "__main__":
    sys.exit(main())
