#!/usr/bin/env python3
"""
authkeep -- Credential and token lifecycle service.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000 --reload
  python main.py purge-tokens
  python main.py create-user admin@example.com
  python main.py create-user owner@example.com --role seller_landlord

Environment variables:
  SECRET_KEY    Signing key for session tokens (required unless DEBUG=true).
  DATABASE_URL  SQLAlchemy URL of the credential database (default: sqlite:///authkeep.db).
  See core/config.py for the full list.
"""

import argparse
import getpass
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from auth.one_time import OneTimeTokenStore
from auth.passwords import PasswordHasher, password_policy_violation
from auth.store import CredentialStore, normalize_email
from core.config import Settings, get_settings


def purge_tokens(settings: Settings) -> int:
    """Delete expired one-time tokens once and return how many were removed."""
    store = CredentialStore(settings.database_url)
    try:
        return OneTimeTokenStore(store).purge_expired()
    finally:
        store.close()


def create_user(settings: Settings, email: str, password: str, role: str = Role.BUYER_RENTER.value) -> Optional[User]:
    """Create an already-verified account. Returns None if the email is taken.

    Raises ValueError if the password fails the policy. Intended for seeding
    operator accounts; the account gets no verification token or email.
    """
    reason = password_policy_violation(password)
    if reason is not None:
        raise ValueError(reason)
    store = CredentialStore(settings.database_url)
    try:
        hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
        return store.create_user(
            User(
                email=normalize_email(email),
                hashed_password=hasher.hash(password),
                role=Role(role).value,
                verified=True,
            )
        )
    except IntegrityError:
        return None
    finally:
        store.close()


def _prompt_password() -> Optional[str]:
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Confirm password: "):
        print("  [!] Passwords do not match.")
        return None
    return password


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="authkeep",
        description="Registration, login, email verification and password reset service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py purge-tokens
  python main.py create-user admin@example.com
        """,
    )
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")

    sub.add_parser("purge-tokens", help="Delete expired verification and reset tokens")

    create = sub.add_parser("create-user", help="Create a verified account (password is prompted)")
    create.add_argument("email", help="Email address of the new account")
    create.add_argument(
        "--role",
        choices=[r.value for r in Role],
        default=Role.BUYER_RENTER.value,
        help="Account role (default: buyer_renter)",
    )

    args = parser.parse_args(argv)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)

    elif args.command == "purge-tokens":
        removed = purge_tokens(get_settings())
        print(f"  Removed {removed} expired token(s).")

    elif args.command == "create-user":
        password = _prompt_password()
        if password is None:
            raise SystemExit(1)
        try:
            user = create_user(get_settings(), args.email, password, role=args.role)
        except ValueError as e:
            print(f"  [!] {e}")
            raise SystemExit(1)
        if user is None:
            print(f"  [!] An account for '{normalize_email(args.email)}' already exists.")
            raise SystemExit(1)
        print(f"  Created user {user.id} ({user.email}, {user.role}).")

    else:
        parser.print_help()


if __name__ == "__main__":
    main()
