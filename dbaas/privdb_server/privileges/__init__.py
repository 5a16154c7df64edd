"""
Privilege module for PrivDB - identities, memberships, grants and resolution.

This module handles:
- Users, groups and roles (IdentityRegistry)
- User/group/role membership edges (MembershipGraph)
- Per-(subject, table, right) grant records (PrivilegeLedger)
- Authorization decisions (PrivilegeResolver)
- Name-based statements on top of all four (PrivilegeManager)

Invariants:
    - Names are resolved to ids once, at the manager/registry boundary
    - The resolver never writes
    - Grants are upserts: repeating a GRANT never duplicates a row

How to change safely:
    - Add subject kinds in types.py first, then their relations in store.base
    - Keep the decision table in tests/unit/test_resolver.py passing
"""

from .ledger import PrivilegeLedger
from .manager import PrivilegeManager
from .membership import MembershipGraph
from .registry import IdentityRegistry
from .resolver import PrivilegeResolver
from .types import (
    CANONICAL_RIGHTS,
    Decision,
    EdgeKind,
    Grant,
    Group,
    Membership,
    RevokeOutcome,
    RevokeResult,
    Right,
    Role,
    SubjectKind,
    User,
)

__all__ = [
    "IdentityRegistry",
    "MembershipGraph",
    "PrivilegeLedger",
    "PrivilegeResolver",
    "PrivilegeManager",
    "CANONICAL_RIGHTS",
    "Decision",
    "EdgeKind",
    "Grant",
    "Group",
    "Membership",
    "RevokeOutcome",
    "RevokeResult",
    "Right",
    "Role",
    "SubjectKind",
    "User",
]
