#!/usr/bin/env python3
"""
SessionGate -- operator CLI for accounts and sessions.

Works directly against the same database as the API, through the same
AuthService, so the bootstrap rule and the last-privileged rule apply here
exactly as they do over HTTP.

Usage:
  python main.py create-user a@x.com          # prompts for the secret
  python main.py list-users
  python main.py set-role 2 privileged
  python main.py revoke-sessions 2
  python main.py purge-sessions

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the auth database (see core/config.py).
  SECRET_KEY     Required unless DEBUG=true (see core/config.py).
"""

import argparse
from getpass import getpass
from typing import Optional

from auth.errors import AuthError
from auth.models import Role
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings


def _build_service(db_url: Optional[str]) -> AuthService:
    settings = get_settings()
    url = db_url or settings.database_url
    return AuthService(
        UserStore(url),
        SessionStore(url, ttl=settings.session_ttl_seconds),
        PasswordHasher(rounds=settings.bcrypt_rounds),
    )


def _close(service: AuthService) -> None:
    service.sessions.close()
    service.users.close()


def _cmd_create_user(service: AuthService, args: argparse.Namespace) -> int:
    secret = getpass("Secret: ")
    if secret != getpass("Repeat secret: "):
        print("  [!] Secrets do not match.")
        return 1
    if len(secret) < 6:
        print("  [!] Secret must be at least 6 characters.")
        return 1
    identity = service.register(args.handle, secret)
    print(f"  Created id={identity.id} handle={identity.handle} role={identity.role.value}")
    return 0


def _cmd_list_users(service: AuthService, args: argparse.Namespace) -> int:
    identities = service.list_identities()
    if not identities:
        print("  No accounts yet. The first account created becomes privileged.")
        return 0
    for identity in identities:
        print(f"  {identity.id:>5}  {identity.role.value:<10}  {identity.created_at}  {identity.handle}")
    return 0


def _cmd_set_role(service: AuthService, args: argparse.Namespace) -> int:
    identity = service.change_role(None, args.user_id, Role(args.role))
    print(f"  id={identity.id} handle={identity.handle} role={identity.role.value}")
    return 0


def _cmd_revoke_sessions(service: AuthService, args: argparse.Namespace) -> int:
    revoked = service.revoke_sessions(args.user_id)
    print(f"  Revoked {revoked} session(s) for id={args.user_id}")
    return 0


def _cmd_purge_sessions(service: AuthService, args: argparse.Namespace) -> int:
    removed = service.sessions.purge_expired()
    print(f"  Purged {removed} expired session(s); {service.sessions.count_active()} active.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="sessiongate",
        description="Manage SessionGate accounts and sessions.",
    )
    parser.add_argument(
        "--db-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from settings)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create an account (prompts for the secret)")
    create.add_argument("handle", help="Account handle, e.g. an email address (matched exactly)")
    create.set_defaults(func=_cmd_create_user)

    listing = sub.add_parser("list-users", help="List every account")
    listing.set_defaults(func=_cmd_list_users)

    set_role = sub.add_parser("set-role", help="Change an account's role")
    set_role.add_argument("user_id", type=int)
    set_role.add_argument("role", choices=[r.value for r in Role])
    set_role.set_defaults(func=_cmd_set_role)

    revoke = sub.add_parser("revoke-sessions", help="Log an account out everywhere")
    revoke.add_argument("user_id", type=int)
    revoke.set_defaults(func=_cmd_revoke_sessions)

    purge = sub.add_parser("purge-sessions", help="Delete expired sessions")
    purge.set_defaults(func=_cmd_purge_sessions)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    service = _build_service(args.db_url)
    try:
        return args.func(service, args)
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        _close(service)


if __name__ == "__main__":
    raise SystemExit(main())
