#!/usr/bin/env python3
"""
authgate -- command-line administration for the credential store.

Usage:
  python main.py register alice alice@example.com
  python main.py purge-tokens

The password for `register` is read with getpass (never from argv, where it
would land in shell history and the process list).

Environment variables (see core/config.py):
  SECRET_KEY     Signing key; required unless DEBUG=true.
  DATABASE_URL   SQLAlchemy URL of the credential store.
"""

import argparse
import getpass
import logging
import sys
from datetime import timedelta
from typing import Optional

from auth.errors import AlreadyExists, AuthError
from auth.passwords import PasswordHasher
from auth.rotation import SessionRotator
from auth.service import CredentialService
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import Settings, get_settings

logger = logging.getLogger("authgate.cli")


def _build(settings: Settings, store: UserStore) -> tuple[CredentialService, SessionRotator]:
    refresh_ttl = timedelta(seconds=settings.refresh_token_ttl_seconds)
    codec = TokenCodec(
        secret=settings.secret_key,
        access_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
        algorithm=settings.jwt_algorithm,
    )
    return (
        CredentialService(store, PasswordHasher(), codec, refresh_ttl),
        SessionRotator(store, codec, refresh_ttl),
    )


def cmd_register(service: CredentialService, args: argparse.Namespace) -> int:
    password = getpass.getpass("Password: ")
    if len(password) < 6:
        print("  [!] Password must be at least 6 characters long.")
        return 1
    if password != getpass.getpass("Confirm password: "):
        print("  [!] Passwords do not match.")
        return 1
    try:
        user = service.register(args.username, args.email, password)
    except AlreadyExists:
        print(f"  [!] A user with username '{args.username}' or email '{args.email}' already exists.")
        return 1
    print(f"  Registered {user.username} (id {user.id})")
    return 0


def cmd_purge_tokens(rotator: SessionRotator, args: argparse.Namespace) -> int:
    removed = rotator.purge()
    print(f"  Purged {removed} expired or revoked refresh token(s)")
    return 0


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="Administer the authgate credential store.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    reg = sub.add_parser("register", help="Create a user account (password is prompted)")
    reg.add_argument("username")
    reg.add_argument("email")

    sub.add_parser("purge-tokens", help="Delete expired and revoked refresh tokens")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = _parser().parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s %(message)s")

    settings = get_settings()
    store = UserStore(settings.database_url)
    service, rotator = _build(settings, store)
    try:
        if args.command == "register":
            return cmd_register(service, args)
        return cmd_purge_tokens(rotator, args)
    except AuthError:
        logger.exception("Command %s failed", args.command)
        print("  [!] Command failed; see log for details.")
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
