#!/usr/bin/env python3
"""
ICT4Events -- command-line administration.

Usage:
  python main.py init-db
  python main.py create-user jan@example.nl --username jan --name "Jan Jansen"
  python main.py create-user admin@example.nl --username admin --role admin --password s3cret!
  python main.py serve --host 127.0.0.1 --port 8000 --reload

The site has no self-registration, so accounts are created here.

Environment variables (see core/config.py):
  DATABASE_URL   SQLAlchemy URL of the site database.
  SECRET_KEY     Signing key for session tickets (>= 32 chars).
  DEBUG          "true" generates a throwaway SECRET_KEY for local use.
"""

import argparse
import getpass
import sys

from auth.logic import is_valid_email
from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from data.database import Database
from timeline.store import TimelineStore

_ROLES = ("admin", "employee", "visitor")


def _open_stores() -> tuple[Database, UserStore, TimelineStore]:
    db = Database(get_settings().database_url)
    return db, UserStore(db), TimelineStore(db)


def cmd_init_db(args: argparse.Namespace) -> int:
    db, _users, _timeline = _open_stores()
    print(f"  Database ready ({len(db.catalog)} procedures registered).")
    db.close()
    return 0


def cmd_create_user(args: argparse.Namespace) -> int:
    email = args.email.strip()
    if not is_valid_email(email):
        print(f"  [!] '{email}' is not a valid email address.")
        return 1
    password = args.password or getpass.getpass("  Password: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1

    db, users, _timeline = _open_stores()
    try:
        if users.get_by_email(email) is not None:
            print(f"  [!] An account for {email} already exists.")
            return 1
        user = User(
            email=email,
            username=args.username or email.split("@", 1)[0],
            name=args.name,
            role=args.role,
            hashed_password=hash_password(password),
        )
        user_id = users.create_user(user)
        if user_id is None:
            print("  [!] The account could not be created. See the log for details.")
            return 1
        print(f"  Created account #{user_id} for {email} ({args.role}).")
        return 0
    finally:
        db.close()


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ict4events", description="ICT4Events site administration.")
    sub = parser.add_subparsers(dest="command", required=True)

    init_db = sub.add_parser("init-db", help="Create tables and check the database is reachable.")
    init_db.set_defaults(func=cmd_init_db)

    create_user = sub.add_parser("create-user", help="Create a login account.")
    create_user.add_argument("email")
    create_user.add_argument("--username", default="")
    create_user.add_argument("--name", default="")
    create_user.add_argument("--role", choices=_ROLES, default="visitor")
    create_user.add_argument("--password", default="", help="Prompted for when omitted.")
    create_user.set_defaults(func=cmd_create_user)

    serve = sub.add_parser("serve", help="Run the web application with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
