"""
Name-based privilege operations for the statement executor.

PrivilegeManager composes the registry, membership graph, ledger and
resolver into the operations GRANT/REVOKE/CREATE/DROP statements need.
Every name is resolved to an id first; everything below works on ids.

Invariants:
    - Unknown user, group, role or table names raise NotFoundError
    - DROP deletes the entity only after its grants and memberships are gone
    - Partial bulk operations are not rolled back

How to change safely:
    - Add new statements here, not in the components
    - Keep cascade order: grants, memberships, then the entity
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional

from ..errors import HasDependenciesError, NotFoundError
from ..hasher import CredentialHasher, Sha256Hasher
from ..store.base import RecordStore, create_record_store
from .ledger import PrivilegeLedger
from .membership import MembershipGraph
from .registry import IdentityRegistry
from .resolver import PrivilegeResolver
from .types import Decision, EdgeKind, Grant, RevokeResult, Right, SubjectKind

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)

# Membership edges touching each subject kind, with the endpoint it sits on
_EDGES_OF: dict = {
    SubjectKind.USER: ((EdgeKind.USER_GROUP, "a"), (EdgeKind.USER_ROLE, "a")),
    SubjectKind.GROUP: ((EdgeKind.USER_GROUP, "b"), (EdgeKind.GROUP_ROLE, "a")),
    SubjectKind.ROLE: ((EdgeKind.USER_ROLE, "b"), (EdgeKind.GROUP_ROLE, "b")),
}


class PrivilegeManager:
    """Facade over the privilege core.

    Attributes:
        store: Record store holding every relation
        registry: Users, groups and roles
        membership: Membership edges
        ledger: Grant records
        resolver: Authorization decisions

    Example:
        >>> manager = PrivilegeManager(store)
        >>> manager.add_user("alice", "pw1")
        >>> manager.add_group("readers")
        >>> manager.add_user_to_group("alice", "readers")
        >>> manager.grant(SubjectKind.GROUP, "readers", "orders", "SELECT")
        >>> manager.check_privilege("alice", "orders", "SELECT")
        <Decision.ALLOWED: 'allowed'>
    """

    def __init__(
        self,
        store: RecordStore,
        hasher: Optional[CredentialHasher] = None,
    ) -> None:
        self.store = store
        self.registry = IdentityRegistry(store, hasher or Sha256Hasher())
        self.membership = MembershipGraph(store)
        self.ledger = PrivilegeLedger(store)
        self.resolver = PrivilegeResolver(self.registry, self.membership, self.ledger)

    @classmethod
    def from_config(cls, config: "ServerConfig") -> PrivilegeManager:
        """Build a manager on the record store the configuration selects."""
        return cls(create_record_store(config.storage))

    def close(self) -> None:
        self.store.close()

    def _table_id(self, table: str) -> int:
        table_id = self.store.resolve_table_object_id(table)
        if table_id is None:
            raise NotFoundError(f"Table '{table}' does not exist", kind="table", name=table)
        return table_id

    # Identities

    def add_user(self, username: str, password: str, explicit_id: Optional[int] = None) -> int:
        return self.registry.add_user(username, password, explicit_id)

    def add_group(self, name: str, explicit_id: Optional[int] = None) -> int:
        return self.registry.add_group(name, explicit_id)

    def add_role(self, name: str, explicit_id: Optional[int] = None) -> int:
        return self.registry.add_role(name, explicit_id)

    def remove(self, kind: SubjectKind, name: str) -> int:
        return self.registry.remove(kind, name)

    def remove_user(self, username: str) -> int:
        return self.registry.remove_user(username)

    def remove_group(self, name: str) -> int:
        return self.registry.remove_group(name)

    def remove_role(self, name: str) -> int:
        return self.registry.remove_role(name)

    def rename(self, kind: SubjectKind, old_name: str, new_name: str) -> int:
        return self.registry.rename(kind, old_name, new_name)

    def rename_user(self, old_name: str, new_name: str) -> int:
        return self.registry.rename_user(old_name, new_name)

    def rename_group(self, old_name: str, new_name: str) -> int:
        return self.registry.rename_group(old_name, new_name)

    def rename_role(self, old_name: str, new_name: str) -> int:
        return self.registry.rename_role(old_name, new_name)

    def check_password(self, username: str, password: str) -> bool:
        return self.registry.check_password(username, password)

    def add_table(self, name: str, object_id: Optional[int] = None) -> int:
        """Register a table in the catalog (tests, CLI and admin API)."""
        return self.store.register_table(name, object_id)

    # Membership

    def _link(self, a_kind: SubjectKind, a_name: str, b_kind: SubjectKind, b_name: str) -> None:
        edge_kind = EdgeKind.between(a_kind, b_kind)
        a_id = self.registry.get_id(a_kind, a_name)
        b_id = self.registry.get_id(b_kind, b_name)
        self.membership.add_edge(edge_kind, a_id, b_id)

    def _unlink(self, a_kind: SubjectKind, a_name: str, b_kind: SubjectKind, b_name: str) -> None:
        edge_kind = EdgeKind.between(a_kind, b_kind)
        a_id = self.registry.get_id(a_kind, a_name)
        b_id = self.registry.get_id(b_kind, b_name)
        self.membership.remove_edge(edge_kind, a_id, b_id)

    def add_user_to_group(self, username: str, group_name: str) -> None:
        self._link(SubjectKind.USER, username, SubjectKind.GROUP, group_name)

    def remove_user_from_group(self, username: str, group_name: str) -> None:
        self._unlink(SubjectKind.USER, username, SubjectKind.GROUP, group_name)

    def assign_role_to_user(self, username: str, role_name: str) -> None:
        self._link(SubjectKind.USER, username, SubjectKind.ROLE, role_name)

    def assign_role_to_group(self, group_name: str, role_name: str) -> None:
        self._link(SubjectKind.GROUP, group_name, SubjectKind.ROLE, role_name)

    def remove_role_from_user(self, username: str, role_name: str) -> None:
        self._unlink(SubjectKind.USER, username, SubjectKind.ROLE, role_name)

    def remove_role_from_group(self, group_name: str, role_name: str) -> None:
        self._unlink(SubjectKind.GROUP, group_name, SubjectKind.ROLE, role_name)

    def remove_user_from_all_groups(self, username: str) -> int:
        user_id = self.registry.get_user_id(username)
        return self.membership.remove_all_edges_for(EdgeKind.USER_GROUP, "a", user_id)

    def remove_all_users_from_group(self, group_name: str) -> int:
        group_id = self.registry.get_group_id(group_name)
        return self.membership.remove_all_edges_for(EdgeKind.USER_GROUP, "b", group_id)

    def remove_all_roles_from_user(self, username: str) -> int:
        user_id = self.registry.get_user_id(username)
        return self.membership.remove_all_edges_for(EdgeKind.USER_ROLE, "a", user_id)

    def remove_all_roles_from_group(self, group_name: str) -> int:
        group_id = self.registry.get_group_id(group_name)
        return self.membership.remove_all_edges_for(EdgeKind.GROUP_ROLE, "a", group_id)

    # Privileges

    def grant(
        self,
        kind: SubjectKind,
        subject_name: str,
        table: str,
        right: Right | str,
    ) -> List[Grant]:
        """GRANT right ON table TO subject.

        Raises:
            NotFoundError: If the subject or table does not exist
            InvalidArgumentError: If right is not a known right
        """
        right = Right.parse(right)
        subject_id = self.registry.get_id(kind, subject_name)
        table_id = self._table_id(table)
        return self.ledger.grant(kind, subject_id, table_id, right)

    def revoke(
        self,
        kind: SubjectKind,
        subject_name: str,
        table: str,
        right: Right | str,
    ) -> RevokeResult:
        """REVOKE right ON table FROM subject.

        Returns:
            Per-right outcome; check .success or call raise_for_status()

        Raises:
            NotFoundError: If the subject or table does not exist
        """
        right = Right.parse(right)
        subject_id = self.registry.get_id(kind, subject_name)
        table_id = self._table_id(table)
        return self.ledger.revoke(kind, subject_id, table_id, right)

    def revoke_all(self, kind: SubjectKind, subject_name: str) -> int:
        """Revoke every privilege a subject holds on any table."""
        subject_id = self.registry.get_id(kind, subject_name)
        return self.ledger.revoke_all_for_subject(kind, subject_id)

    def grants_of(self, kind: SubjectKind, subject_name: str) -> List[Grant]:
        subject_id = self.registry.get_id(kind, subject_name)
        return self.ledger.grants_for(kind, subject_id)

    # Resolution

    def check_privilege(
        self,
        username: str,
        table: str,
        right: Right | str,
        via_roles: bool = True,
    ) -> Decision:
        return self.resolver.check(username, table, right, via_roles=via_roles)

    def check_user_privilege_via_roles(
        self, username: str, table: str, right: Right | str
    ) -> Decision:
        return self.resolver.check_via_user_role(username, table, right)

    def check_group_privilege_via_roles(
        self, group_name: str, table: str, right: Right | str
    ) -> Decision:
        return self.resolver.check_via_group_role(group_name, table, right)

    def has_any_privilege_user(self, username: str) -> bool:
        return self.resolver.has_any_privilege_user(username)

    def has_any_privilege_group(self, group_name: str) -> bool:
        return self.resolver.has_any_privilege_group(group_name)

    # DROP

    def _membership_count(self, kind: SubjectKind, subject_id: int) -> int:
        return sum(
            self.membership.count_for(edge_kind, endpoint, subject_id)
            for edge_kind, endpoint in _EDGES_OF[kind]
        )

    def drop(self, kind: SubjectKind, name: str, cascade: bool = False) -> int:
        """DROP USER/GROUP/ROLE.

        Without cascade the drop is restricted: it fails while the subject
        still holds grants or memberships. With cascade, grants are revoked
        and memberships removed before the entity is deleted.

        Returns:
            The dropped entity's id

        Raises:
            NotFoundError: If the subject does not exist
            HasDependenciesError: If restricted and dependents remain
        """
        subject_id = self.registry.get_id(kind, name)
        grants = self.ledger.count_for(kind, subject_id)
        memberships = self._membership_count(kind, subject_id)

        if not cascade and (grants or memberships):
            raise HasDependenciesError(kind.value, name, grants, memberships)

        if grants:
            self.ledger.revoke_all_for_subject(kind, subject_id)
        for edge_kind, endpoint in _EDGES_OF[kind]:
            if self.membership.count_for(edge_kind, endpoint, subject_id):
                self.membership.remove_all_edges_for(edge_kind, endpoint, subject_id)

        self.registry.remove(kind, name)
        logger.info(
            f"Dropped {kind.value} '{name}' under ID {subject_id} "
            f"({grants} grant(s), {memberships} membership(s) removed)"
        )
        return subject_id

    def drop_user(self, username: str, cascade: bool = False) -> int:
        return self.drop(SubjectKind.USER, username, cascade)

    def drop_group(self, group_name: str, cascade: bool = False) -> int:
        return self.drop(SubjectKind.GROUP, group_name, cascade)

    def drop_role(self, role_name: str, cascade: bool = False) -> int:
        return self.drop(SubjectKind.ROLE, role_name, cascade)
