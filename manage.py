#!/usr/bin/env python3
"""
Administrative tasks for the Support Desk database.

Accounts and customers are not created through the API; use this
script instead.  It works directly on the database named by
``DATABASE_URL`` (or ``--db``).

Usage:
    python manage.py init-db
    python manage.py create-customer --title "Acme" --code 1001
    python manage.py create-staff --email agent@ex.com --first-name Ana
    python manage.py create-customer-user --email bob@acme.com --customer <id>
    python manage.py token --email agent@ex.com --days 365
    python manage.py reset-password --email agent@ex.com
    python manage.py orphans --older-than 2024-01-01

If --password is omitted where one is needed, you will be prompted to
enter it securely.
"""

import argparse
import asyncio
import getpass
import sys

from support_desk.app.core.config import settings
from support_desk.app.core.db import init_db
from support_desk.app.core.security import create_access_token
from support_desk.app.services.account_service import AccountService
from support_desk.app.services.errors import SupportError
from support_desk.app.services.file_service import FileService
from support_desk.lifecycle import Role


def _password(args, prompt: str = "Enter NEW password: ") -> str:
    password = args.password or getpass.getpass(prompt)
    if not password:
        print("[!] Empty password is not allowed.", file=sys.stderr)
        sys.exit(1)
    return password


def cmd_init_db(args) -> int:
    init_db()
    print(f"[+] Database ready: {settings.database_url}")
    return 0


def cmd_create_customer(args) -> int:
    customer = asyncio.run(
        AccountService.create_customer(args.title, args.code, type=args.type, category=args.category)
    )
    print(f"[+] Customer created: {customer.id}")
    return 0


def cmd_create_staff(args) -> int:
    user = asyncio.run(
        AccountService.create_user(
            args.email,
            Role.STAFF,
            password=_password(args, "Password: "),
            first_name=args.first_name,
            last_name=args.last_name,
        )
    )
    print(f"[+] Staff account created: {user.id}")
    return 0


def cmd_create_customer_user(args) -> int:
    user = asyncio.run(
        AccountService.create_user(
            args.email,
            Role.CUSTOMER,
            password=_password(args, "Password: "),
            first_name=args.first_name,
            last_name=args.last_name,
            customer_id=args.customer,
        )
    )
    print(f"[+] Customer account created: {user.id}")
    return 0


def cmd_token(args) -> int:
    print(create_access_token({"sub": args.email}, expires_delta=args.days * 24 * 60 * 60))
    return 0


def cmd_reset_password(args) -> int:
    if not asyncio.run(AccountService.set_password(args.email, _password(args))):
        print(f"[!] No user found with email: {args.email}", file=sys.stderr)
        return 2
    print(f"[+] Password updated for user: {args.email}")
    return 0


def cmd_orphans(args) -> int:
    orphans = asyncio.run(FileService.list_orphans(older_than=args.older_than))
    for item in orphans:
        print(f"{item['id']}  {item['created_at']}  {item['size']:>10}  {item['uploader_id']}  {item['name']}")
    print(f"[+] {len(orphans)} unattached upload(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Support Desk administration.")
    ap.add_argument("--db", help="Path to SQLite DB file (overrides DATABASE_URL)")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create or migrate the database")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("create-customer", help="Create a customer organisation")
    p.add_argument("--title", required=True)
    p.add_argument("--code", type=int, required=True)
    p.add_argument("--type", default="PERSONAL")
    p.add_argument("--category", default="OTHER")
    p.set_defaults(func=cmd_create_customer)

    for name, func, help_text in (
        ("create-staff", cmd_create_staff, "Create a staff account"),
        ("create-customer-user", cmd_create_customer_user, "Create a customer person account"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--email", required=True)
        p.add_argument("--password", help="If omitted, you'll be prompted securely.")
        p.add_argument("--first-name", default="")
        p.add_argument("--last-name", default="")
        if name == "create-customer-user":
            p.add_argument("--customer", required=True, help="Customer id")
        p.set_defaults(func=func)

    p = sub.add_parser("token", help="Issue an access token for an account")
    p.add_argument("--email", required=True)
    p.add_argument("--days", type=int, default=365)
    p.set_defaults(func=cmd_token)

    p = sub.add_parser("reset-password", help="Set a new password for an account")
    p.add_argument("--email", required=True)
    p.add_argument("--password", help="New password. If omitted, you'll be prompted securely.")
    p.set_defaults(func=cmd_reset_password)

    p = sub.add_parser("orphans", help="List uploads never attached to a message")
    p.add_argument("--older-than", help="ISO timestamp; only list uploads created before it")
    p.set_defaults(func=cmd_orphans)
    return ap


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.db:
        settings.database_url = args.db
    if args.command != "init-db":
        init_db()
    try:
        return args.func(args)
    except SupportError as e:
        print(f"[!] {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
