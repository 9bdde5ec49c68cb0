#!/usr/bin/env python3
"""
orgguard -- admin command line for the access-control store.

Usage:
  python main.py sync-policies
  python main.py create-org-unit --name "Head Office" --code HQ --type company
  python main.py create-org-unit --name "North" --code N --parent 1 --type region
  python main.py create-user --email admin@example.com --name Admin --password s3cret --super-admin
  python main.py check-assign --actor 2 --target 5 --role 3
  python main.py purge-sessions

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the store (default: SQLite file beside the auth package).
"""

import argparse
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import OrgUnit, User
from auth.store import AuthStore
from auth.tokens import hash_password
from core.config import get_settings
from rbac.audit import AuditLogger
from rbac.guard import PolicyClassification, RoleAssignmentGuard
from rbac.service import sync_policy_catalog


def _cmd_sync_policies(store: AuthStore, args: argparse.Namespace) -> int:
    summary = sync_policy_catalog(store)
    print(f"Policy catalog: {summary['total']} keys, {summary['created']} created, {summary['existing']} existing.")
    return 0


def _cmd_create_org_unit(store: AuthStore, args: argparse.Namespace) -> int:
    level = 0
    if args.parent is not None:
        parent = store.get_org_unit(args.parent)
        if parent is None:
            print(f"  [!] Parent org unit {args.parent} does not exist.")
            return 1
        level = parent.level + 1
    try:
        unit_id = store.create_org_unit(
            OrgUnit(name=args.name, code=args.code, parent_id=args.parent, type=args.type, level=level)
        )
    except IntegrityError:
        print(f"  [!] Org unit code '{args.code}' already exists.")
        return 1
    print(f"Created org unit {unit_id} ({args.code}).")
    return 0


def _cmd_create_user(store: AuthStore, args: argparse.Namespace) -> int:
    if args.org_unit is not None and store.get_org_unit(args.org_unit) is None:
        print(f"  [!] Org unit {args.org_unit} does not exist.")
        return 1
    try:
        user_id = store.create_user(
            User(
                email=args.email,
                name=args.name,
                hashed_password=hash_password(args.password),
                org_unit_id=args.org_unit,
                employee_id=args.employee_id,
                is_super_admin=args.super_admin,
            )
        )
    except IntegrityError:
        print(f"  [!] A user with e-mail '{args.email}' already exists.")
        return 1
    flag = " (super admin)" if args.super_admin else ""
    print(f"Created user {user_id} <{args.email.lower()}>{flag}.")
    return 0


def _cmd_check_assign(store: AuthStore, args: argparse.Namespace) -> int:
    settings = get_settings()
    guard = RoleAssignmentGuard(
        store,
        PolicyClassification.from_settings(settings),
        AuditLogger(store),
        delegation_policy=settings.delegation_policy,
    )
    check = guard.can_assign_role(args.actor, args.target, args.role)
    if check.allowed:
        print("ALLOWED" + (" (super admin bypass)" if check.bypass else ""))
        return 0
    print(f"DENIED [{check.reason}] {check.message}")
    if check.missing_policies:
        print("  missing: " + ", ".join(check.missing_policies))
    return 2


def _cmd_purge_sessions(store: AuthStore, args: argparse.Namespace) -> int:
    removed = store.purge_expired_sessions()
    print(f"Purged {removed} expired session(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="orgguard",
        description="Administer the orgguard access-control store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy URL of the store (default: DATABASE_URL or the bundled SQLite file)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("sync-policies", help="Create catalog policies missing from the store")
    p.set_defaults(func=_cmd_sync_policies)

    p = sub.add_parser("create-org-unit", help="Add a node to the org tree")
    p.add_argument("--name", required=True)
    p.add_argument("--code", required=True, help="Unique short code")
    p.add_argument("--parent", type=int, default=None, metavar="ID", help="Parent org unit id (omit for a root)")
    p.add_argument("--type", default=None, help="company, region, branch, ...")
    p.set_defaults(func=_cmd_create_org_unit)

    p = sub.add_parser("create-user", help="Create a user with a password")
    p.add_argument("--email", required=True)
    p.add_argument("--name", required=True)
    p.add_argument("--password", required=True)
    p.add_argument("--org-unit", type=int, default=None, metavar="ID")
    p.add_argument("--employee-id", default=None)
    p.add_argument("--super-admin", action="store_true", help="Set the explicit SuperAdmin flag")
    p.set_defaults(func=_cmd_create_user)

    p = sub.add_parser("check-assign", help="Print whether ACTOR may grant ROLE to TARGET")
    p.add_argument("--actor", type=int, required=True, metavar="USER_ID")
    p.add_argument("--target", type=int, required=True, metavar="USER_ID")
    p.add_argument("--role", type=int, required=True, metavar="ROLE_ID")
    p.set_defaults(func=_cmd_check_assign)

    p = sub.add_parser("purge-sessions", help="Delete expired session rows")
    p.set_defaults(func=_cmd_purge_sessions)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    store = AuthStore(args.database_url)
    try:
        return args.func(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
