#!/usr/bin/env python3
"""
CodeCoach -- administrative command line for the identity directory.

Bootstraps accounts and issues tokens directly against the configured
database, without going through the HTTP API. Useful for the first admin of
a fresh deployment and for scripting.

Usage:
  python main.py signup "Acme Inc" admin@acme.io
  python main.py signup "Acme Inc" admin@acme.io --given-name Ada --family-name Lovelace
  python main.py login acme-inc admin@acme.io
  python main.py login acme-inc admin@acme.io --json

The password is prompted for unless --password is given.

Environment variables:
  DATABASE_URL           SQLAlchemy URL of the directory database
  BCRYPT_ROUNDS          bcrypt cost factor (default 12)
  TOKEN_EXPIRE_SECONDS   lifetime of issued tokens (default one week)
"""

import argparse
import getpass
import json
import logging
import sys
from typing import Optional

from auth.oauth import OAuthStateManager
from auth.service import AuthResult, IdentityService, SignupArgs
from core.config import get_settings
from core.errors import DirectoryError
from directory.store import DirectoryStore


def _open_service(db_url: Optional[str]) -> tuple[IdentityService, DirectoryStore]:
    settings = get_settings()
    url = db_url or settings.database_url
    store = DirectoryStore(url) if url else DirectoryStore()
    service = IdentityService(
        store,
        OAuthStateManager(ttl_seconds=settings.oauth_state_ttl_seconds),
        token_ttl_seconds=settings.token_expire_seconds,
        page_size=settings.users_page_size,
    )
    return service, store


def _print_result(result: AuthResult, as_json: bool) -> None:
    if as_json:
        print(
            json.dumps(
                {
                    "account_id": result.account.id,
                    "account_code": result.account.code,
                    "user_id": result.user.id,
                    "role": result.user.role,
                    "token": result.token,
                    "expires_at": result.user.token_expires_at.isoformat(),
                },
                indent=2,
            )
        )
        return
    print(f"  Account:  {result.account.name} ({result.account.code})")
    print(f"  Account ID: {result.account.id}")
    print(f"  User:     {result.user.email} [{result.user.role}]")
    print(f"  Token:    {result.token}")
    print(f"  Expires:  {result.user.token_expires_at:%Y-%m-%d %H:%M:%S} UTC")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="codecoach",
        description="Create accounts and issue tokens for the CodeCoach directory.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py signup "Acme Inc" admin@acme.io
  python main.py login acme-inc admin@acme.io --json
  DATABASE_URL=sqlite:///./dev.db python main.py signup "Dev" dev@example.com
        """,
    )
    parser.add_argument("--db", metavar="URL", help="SQLAlchemy database URL (overrides DATABASE_URL)")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO level")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_signup = sub.add_parser("signup", help="Create an account and its admin user")
    p_signup.add_argument("account_name", help='Display name, e.g. "Acme Inc" (code becomes acme-inc)')
    p_signup.add_argument("email")
    p_signup.add_argument("--password", help="Admin password (prompted if omitted)")
    p_signup.add_argument("--given-name", default="")
    p_signup.add_argument("--family-name", default="")

    p_login = sub.add_parser("login", help="Issue a fresh token for an existing user")
    p_login.add_argument("account_code", help="Account code, e.g. acme-inc")
    p_login.add_argument("email")
    p_login.add_argument("--password", help="Password (prompted if omitted)")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if not args.command:
        parser.print_help()
        return 2

    password = args.password or getpass.getpass("Password: ")
    service, store = _open_service(args.db)
    try:
        if args.command == "signup":
            result = service.signup(
                SignupArgs(
                    account_name=args.account_name,
                    email=args.email,
                    password=password,
                    given_name=args.given_name,
                    family_name=args.family_name,
                )
            )
        else:
            result = service.login(args.account_code, args.email, password)
    except DirectoryError as exc:
        detail = f" ({exc.detail})" if exc.detail else ""
        print(f"  [!] {exc.message}{detail}", file=sys.stderr)
        return 1
    finally:
        store.close()

    _print_result(result, args.json)
    return 0


if __name__ == "__main__":
    sys.exit(main())
