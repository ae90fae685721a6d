#!/usr/bin/env python3
"""
Parts catalog backend -- operator CLI.

Usage:
  python main.py serve [--host 127.0.0.1] [--port 4000] [--reload]
  python main.py create-user alice --role admin
  python main.py create-user shop1 --role partshop --posisi Engine --expires 2026-12-31
  python main.py create-user alice --reset
  python main.py seed public/data/catalog.json
  python main.py seed public/data/catalog.json --with-users

Environment variables (read through core.config.Settings):
  DATABASE_URL  SQLAlchemy URL of the catalog database (default: sqlite:///partkatalog.db)
  SECRET_KEY    Session signing key; required unless DEBUG=true
"""

import argparse
import getpass
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from core.config import POSISI_VALUES, ROLES, get_settings


def _read_password(given: Optional[str]) -> str:
    """Use --password if given, otherwise prompt twice without echo."""
    if given:
        return given
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if not first or first != second:
        print("  [!] Passwords are empty or do not match.")
        sys.exit(1)
    return first


def _parse_expiry(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        print(f"  [!] '{value}' is not an ISO date (YYYY-MM-DD or YYYY-MM-DDTHH:MM).")
        sys.exit(1)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def cmd_create_user(args: argparse.Namespace) -> None:
    from auth.models import User
    from auth.store import UserStore
    from auth.tokens import hash_password

    store = UserStore(get_settings().database_url)
    try:
        existing = store.get_by_username(args.username)
        expires = _parse_expiry(args.expires)
        if existing is not None and not args.reset:
            print(f"  [!] User '{args.username}' already exists. Use --reset to change its password.")
            sys.exit(1)

        password_hash = hash_password(_read_password(args.password))
        if existing is not None:
            # Same path as an admin password change: every open session is revoked.
            store.change_password(
                existing.id,
                password_hash,
                datetime.now(timezone.utc),
                role=args.role,
                posisi=args.posisi,
            )
            if args.expires:
                store.set_expiry(existing.id, expires)
            print(f"Reset '{args.username}'; existing sessions revoked.")
            return

        user_id = store.create_user(
            User(
                username=args.username,
                role=args.role or "user",
                posisi=args.posisi,
                password_hash=password_hash,
                expired_at=expires,
            )
        )
        print(f"Created '{args.username}' (id={user_id}, role={args.role or 'user'}).")
    finally:
        store.close()


def cmd_seed(args: argparse.Namespace) -> None:
    from auth.store import UserStore
    from catalog.seed import ensure_user, load_catalog
    from catalog.store import CatalogStore

    settings = get_settings()
    path = Path(args.file).resolve()
    if not path.is_file():
        print(f"  [!] '{args.file}' is not a readable file.")
        sys.exit(1)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        print(f"  [!] Could not read catalog JSON '{args.file}': {e}")
        sys.exit(1)

    catalog_store = CatalogStore(settings.database_url)
    try:
        report = load_catalog(catalog_store, data)
    finally:
        catalog_store.close()
    print(
        f"Catalog: {report.illustrations_created} created, {report.illustrations_updated} updated, "
        f"{report.parts} part links, {report.hotspots} hotspots, {report.skipped} skipped."
    )

    if args.with_users:
        user_store = UserStore(settings.database_url)
        try:
            for username, password, role in (
                (args.admin_user, args.admin_password, "admin"),
                (args.superadmin_user, args.superadmin_password, "superadmin"),
                (args.default_user, args.default_password, "user"),
            ):
                created = ensure_user(user_store, username, password, role)
                print(f"  {role:<10} '{username}': {'created' if created else 'already exists'}")
        finally:
            user_store.close()


def cmd_serve(args: argparse.Namespace) -> None:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="partkatalog",
        description="Parts catalog backend: run the API and manage its data.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py create-user admin --role admin
  python main.py seed public/data/catalog.json --with-users
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=4000, help="Port (default: 4000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    serve.set_defaults(func=cmd_serve)

    create = sub.add_parser("create-user", help="Create an account, or reset one with --reset")
    create.add_argument("username", help="Login name")
    create.add_argument("--password", help="Password (prompted without echo if omitted)")
    create.add_argument("--role", choices=ROLES, default=None, help="Role (default: user)")
    create.add_argument("--posisi", choices=POSISI_VALUES, default=None, help="Posisi scope for partshop accounts")
    create.add_argument("--expires", metavar="ISO_DATE", help="Account expiry, e.g. 2026-12-31")
    create.add_argument(
        "--reset",
        action="store_true",
        help="If the user exists, set a new password and revoke all of its sessions",
    )
    create.set_defaults(func=cmd_create_user)

    seed = sub.add_parser("seed", help="Import a catalog JSON file")
    seed.add_argument("file", metavar="PATH", help="Catalog JSON (same shape as GET /api/catalog)")
    seed.add_argument("--with-users", action="store_true", help="Also create default admin/superadmin/user accounts")
    seed.add_argument("--admin-user", default="admin")
    seed.add_argument("--admin-password", default="admin123")
    seed.add_argument("--superadmin-user", default="superadmin")
    seed.add_argument("--superadmin-password", default="superadmin123")
    seed.add_argument("--default-user", default="user")
    seed.add_argument("--default-password", default="user123")
    seed.set_defaults(func=cmd_seed)

    args = parser.parse_args()
    if not getattr(args, "func", None):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
