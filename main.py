#!/usr/bin/env python3
"""
Admin portal auth -- operator CLI.

Runs the same AuthEngine the API uses, against the database in DATABASE_URL.

Usage:
  python main.py create-admin --email admin@example.com
  python main.py create-admin --email admin@example.com --password 'S3cure-pass' --first-name Ada --last-name Admin
  python main.py revoke-sessions --email someone@example.com
  python main.py sweep-tokens

Environment variables:
  SECRET_KEY     Token signing secret (>= 32 chars). Required unless DEBUG=true.
  DATABASE_URL   SQLAlchemy URL of the auth database.
"""

from __future__ import annotations

import argparse
import dataclasses
import getpass
from typing import Optional

from auth.engine import AuthEngine, normalize_email
from auth.models import AccountStatus, Role
from auth.result import Err
from auth.store import IdentityStore, RefreshTokenStore, create_store_engine
from core.config import get_settings


def _build_engine() -> tuple[AuthEngine, IdentityStore]:
    settings = get_settings()
    db_engine = create_store_engine(settings.database_url)
    identities = IdentityStore(engine=db_engine)
    tokens = RefreshTokenStore(engine=db_engine)
    return AuthEngine.from_settings(settings, identities, tokens), identities


def create_admin(
    engine: AuthEngine,
    identities: IdentityStore,
    email: str,
    password: str,
    first_name: str = "Admin",
    last_name: str = "User",
) -> int:
    """Create an Administrator, or promote the existing identity with that email.

    A new admin gets every capability flag. Returns a process exit code.
    """
    existing = identities.find_by_email(normalize_email(email))
    if existing is None:
        result = engine.register(first_name, last_name, email, password)
        if isinstance(result, Err):
            print(f"  [!] Could not create admin: {result.error.message}")
            return 1
        existing = identities.find_by_id(result.value.identity.id)
        # register() opened a session the operator will never use.
        engine.revoke_all_sessions(existing.id)
        status = "created"
    elif existing.role is Role.ADMINISTRATOR:
        print(f"  {existing.email} is already an administrator (id: {existing.id}).")
        return 0
    else:
        status = "promoted"

    identities.save(
        dataclasses.replace(
            existing,
            role=Role.ADMINISTRATOR,
            status=AccountStatus.ACTIVE,
            can_manage_identities=True,
            can_view_reports=True,
            can_manage_settings=True,
        )
    )
    print(f"  Administrator {existing.email} {status} (id: {existing.id}, handle: {existing.handle}).")
    return 0


def revoke_sessions(engine: AuthEngine, identities: IdentityStore, email: str) -> int:
    identity = identities.find_by_email(normalize_email(email))
    if identity is None:
        print(f"  [!] No identity with email '{email}'.")
        return 1
    count = engine.revoke_all_sessions(identity.id).unwrap()
    print(f"  Revoked {count} session(s) for {identity.email}.")
    return 0


def sweep_tokens(engine: AuthEngine) -> int:
    report = engine.sweep_tokens().unwrap()
    print(f"  Deleted {report.expired_deleted} expired and {report.revoked_deleted} revoked refresh token(s).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="adminportal-auth",
        description="Operator commands for the admin portal auth core.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --email admin@example.com
  python main.py revoke-sessions --email someone@example.com
  python main.py sweep-tokens
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_admin = sub.add_parser("create-admin", help="Create or promote an administrator account")
    p_admin.add_argument("--email", required=True, help="Administrator email address")
    p_admin.add_argument("--password", help="Password (prompted for if omitted)")
    p_admin.add_argument("--first-name", default="Admin")
    p_admin.add_argument("--last-name", default="User")

    p_revoke = sub.add_parser("revoke-sessions", help="Revoke every refresh session of an identity")
    p_revoke.add_argument("--email", required=True)

    sub.add_parser("sweep-tokens", help="Delete expired and revoked refresh tokens")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    engine, identities = _build_engine()
    try:
        if args.command == "create-admin":
            password = args.password or getpass.getpass("Password: ")
            return create_admin(engine, identities, args.email, password, args.first_name, args.last_name)
        if args.command == "revoke-sessions":
            return revoke_sessions(engine, identities, args.email)
        return sweep_tokens(engine)
    finally:
        identities.close()


if __name__ == "__main__":
    raise SystemExit(main())
