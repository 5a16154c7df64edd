"""
Privilege administration CLI for PrivDB.

This tool edits the privilege store directly:
- add-user / add-group / add-role / add-table: create identities and catalog entries
- join / assign-role: maintain memberships
- grant / revoke: maintain the privilege ledger
- check: answer an authorization question
- drop: DROP USER/GROUP/ROLE, optionally cascading

Usage:
    privdb add-user alice --password secret
    privdb add-table orders
    privdb grant user alice orders SELECT
    privdb check alice orders SELECT

The store is selected by the same environment variables as the server
(PRIVDB_STORE_BACKEND, DATA_DIR, PRIVDB_DB_NAME); --data-dir overrides DATA_DIR.

Invariants:
    - Errors and DENIED decisions cause a non-zero exit code
    - Output lines are stable for scripting

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep exit codes: 0 success, 1 refused or failed
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from typing import List, Optional

from ..config import StorageConfig
from ..errors import PrivilegeError
from ..privileges import Decision, PrivilegeManager, RevokeResult, SubjectKind
from ..store import create_record_store

logger = logging.getLogger(__name__)

SUBJECT_KINDS = [kind.value for kind in SubjectKind]


class PrivilegeCLI:
    """Command implementations on top of a PrivilegeManager.

    Example:
        >>> cli = PrivilegeCLI(manager)
        >>> cli.grant("user", "alice", "orders", "ALL")
        ['UPDATE', 'DELETE', 'INSERT', 'SELECT']
    """

    def __init__(self, manager: PrivilegeManager) -> None:
        self.manager = manager

    def add(self, kind: str, name: str, password: Optional[str], explicit_id: Optional[int]) -> int:
        subject_kind = SubjectKind.parse(kind)
        if subject_kind is SubjectKind.USER:
            return self.manager.add_user(name, password or "", explicit_id)
        if subject_kind is SubjectKind.GROUP:
            return self.manager.add_group(name, explicit_id)
        return self.manager.add_role(name, explicit_id)

    def assign_role(self, role: str, user: Optional[str], group: Optional[str]) -> None:
        if user is not None:
            self.manager.assign_role_to_user(user, role)
        if group is not None:
            self.manager.assign_role_to_group(group, role)

    def grant(self, kind: str, subject: str, table: str, right: str) -> List[str]:
        grants = self.manager.grant(SubjectKind.parse(kind), subject, table, right)
        return [g.right.value for g in grants]

    def revoke(self, kind: str, subject: str, table: str, right: str) -> RevokeResult:
        return self.manager.revoke(SubjectKind.parse(kind), subject, table, right)

    def check(self, user: str, table: str, right: str, via_roles: bool = True) -> Decision:
        return self.manager.check_privilege(user, table, right, via_roles=via_roles)

    def drop(self, kind: str, name: str, cascade: bool = False) -> int:
        return self.manager.drop(SubjectKind.parse(kind), name, cascade=cascade)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="privdb", description="PrivDB privilege administration")
    parser.add_argument("--data-dir", help="Directory holding the SQLite store (overrides DATA_DIR)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    user_parser = subparsers.add_parser("add-user", help="Create a user")
    user_parser.add_argument("name")
    user_parser.add_argument("--password", "-p", required=True)
    user_parser.add_argument("--id", type=int, default=None, help="Explicit user ID")

    for kind in ("group", "role"):
        named_parser = subparsers.add_parser(f"add-{kind}", help=f"Create a {kind}")
        named_parser.add_argument("name")
        named_parser.add_argument("--id", type=int, default=None, help=f"Explicit {kind} ID")

    table_parser = subparsers.add_parser("add-table", help="Register a table in the catalog")
    table_parser.add_argument("name")
    table_parser.add_argument("--object-id", type=int, default=None)

    join_parser = subparsers.add_parser("join", help="Add a user to a group")
    join_parser.add_argument("username")
    join_parser.add_argument("group")

    role_parser = subparsers.add_parser("assign-role", help="Assign a role to a user or group")
    role_parser.add_argument("role")
    target = role_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--user")
    target.add_argument("--group")

    for command, verb in (("grant", "Grant"), ("revoke", "Revoke")):
        priv_parser = subparsers.add_parser(command, help=f"{verb} a right on a table")
        priv_parser.add_argument("kind", choices=SUBJECT_KINDS)
        priv_parser.add_argument("subject")
        priv_parser.add_argument("table")
        priv_parser.add_argument("right", help="SELECT, INSERT, UPDATE, DELETE or ALL")

    check_parser = subparsers.add_parser("check", help="Check a user's right on a table")
    check_parser.add_argument("username")
    check_parser.add_argument("table")
    check_parser.add_argument("right")
    check_parser.add_argument(
        "--no-roles", action="store_true", help="Only direct and group grants"
    )
    check_parser.add_argument("--format", choices=["text", "json"], default="text")

    drop_parser = subparsers.add_parser("drop", help="Drop a user, group or role")
    drop_parser.add_argument("kind", choices=SUBJECT_KINDS)
    drop_parser.add_argument("name")
    drop_parser.add_argument(
        "--cascade", action="store_true", help="Revoke grants and memberships first"
    )

    return parser


def _open_manager(data_dir: Optional[str]) -> PrivilegeManager:
    config = StorageConfig.from_env()
    if data_dir:
        config = dataclasses.replace(config, data_dir=data_dir)
    return PrivilegeManager(create_record_store(config))


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point for privilege administration."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    manager: Optional[PrivilegeManager] = None
    try:
        manager = _open_manager(args.data_dir)
        exit_code = _run(PrivilegeCLI(manager), args)
    except PrivilegeError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        exit_code = 1
    except ValueError as e:
        print(f"Error [INVALID_CONFIG]: {e}", file=sys.stderr)
        exit_code = 1
    finally:
        if manager is not None:
            manager.close()

    sys.exit(exit_code)


def _run(cli: PrivilegeCLI, args: argparse.Namespace) -> int:
    if args.command == "add-user":
        user_id = cli.add("user", args.name, args.password, args.id)
        print(f"Created user '{args.name}' with ID {user_id}")

    elif args.command in ("add-group", "add-role"):
        kind = args.command.split("-", 1)[1]
        entity_id = cli.add(kind, args.name, None, args.id)
        print(f"Created {kind} '{args.name}' with ID {entity_id}")

    elif args.command == "add-table":
        object_id = cli.manager.add_table(args.name, args.object_id)
        print(f"Registered table '{args.name}' with object ID {object_id}")

    elif args.command == "join":
        cli.manager.add_user_to_group(args.username, args.group)
        print(f"Added user '{args.username}' to group '{args.group}'")

    elif args.command == "assign-role":
        cli.assign_role(args.role, args.user, args.group)
        holder = f"user '{args.user}'" if args.user is not None else f"group '{args.group}'"
        print(f"Assigned role '{args.role}' to {holder}")

    elif args.command == "grant":
        rights = cli.grant(args.kind, args.subject, args.table, args.right)
        print(f"Granted {', '.join(rights)} on '{args.table}' to {args.kind} '{args.subject}'")

    elif args.command == "revoke":
        result = cli.revoke(args.kind, args.subject, args.table, args.right)
        for outcome in result.outcomes:
            status = "revoked" if outcome.revoked else "not held"
            print(f"  {outcome.right.value}: {status}")
        if not result.success:
            print(f"Revoke incomplete for {args.kind} '{args.subject}'")
            return 1
        print(f"Revoked {args.right.upper()} on '{args.table}' from {args.kind} '{args.subject}'")

    elif args.command == "check":
        decision = cli.check(args.username, args.table, args.right, via_roles=not args.no_roles)
        if args.format == "json":
            print(json.dumps({"decision": decision.value, "allowed": bool(decision)}))
        else:
            print(decision.value.upper())
        return 0 if decision else 1

    elif args.command == "drop":
        entity_id = cli.drop(args.kind, args.name, cascade=args.cascade)
        print(f"Dropped {args.kind} '{args.name}' (ID {entity_id})")

    return 0


if __name__ == "__main__":
    main()
