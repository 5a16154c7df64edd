"""
Privilege resolution for PrivDB.

Answers "may user U exercise right R on table T?" from the ledger and the
membership graph. The resolver is read-only.

Resolution paths:
    - check(via_roles=False): direct user grants, then the user's groups
    - check(via_roles=True): breadth-first walk over every membership edge
      reachable from the user (user->group, user->role, group->role),
      unioning the grants found on the way
    - check_via_user_role / check_via_group_role: role grants only

Invariants:
    - A right held by any reachable subject counts, even if no single
      subject holds every right requested by ALL
    - check() answers NOT_FOUND for unresolvable user or table names
    - Nothing here writes to the record store
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Dict, FrozenSet, Iterator, Optional, Set, Tuple

from ..errors import InvalidArgumentError, NotFoundError
from ..store.base import RecordStore
from .ledger import PrivilegeLedger
from .membership import MembershipGraph
from .registry import IdentityRegistry
from .types import CANONICAL_RIGHTS, Decision, EdgeKind, Right, SubjectKind

logger = logging.getLogger(__name__)

Subject = Tuple[SubjectKind, int]

# Membership edges followed from each subject kind during resolution
_OUTGOING_EDGES: Dict[SubjectKind, Tuple[EdgeKind, ...]] = {
    SubjectKind.USER: (EdgeKind.USER_GROUP, EdgeKind.USER_ROLE),
    SubjectKind.GROUP: (EdgeKind.GROUP_ROLE,),
    SubjectKind.ROLE: (),
}


class PrivilegeResolver:
    """Point-in-time authorization decisions.

    Example:
        >>> resolver = PrivilegeResolver(registry, membership, ledger)
        >>> resolver.check("alice", "orders", "SELECT")
        <Decision.ALLOWED: 'allowed'>
    """

    def __init__(
        self,
        registry: IdentityRegistry,
        membership: MembershipGraph,
        ledger: PrivilegeLedger,
    ) -> None:
        self.registry = registry
        self.membership = membership
        self.ledger = ledger

    @property
    def store(self) -> RecordStore:
        return self.registry.store

    def _resolve(self, kind: SubjectKind, name: str, table: str) -> Optional[Tuple[int, int]]:
        subject_id = self.registry.find_id(kind, name)
        table_id = self.store.resolve_table_object_id(table)
        if subject_id is None or table_id is None:
            logger.debug(f"Cannot resolve {kind.value} '{name}' or table '{table}'")
            return None
        return subject_id, table_id

    def _held(self, kind: SubjectKind, subject_id: int, table_id: int) -> Set[Right]:
        return {grant.right for grant in self.ledger.grants_for(kind, subject_id, table_id)}

    # Unified resolution

    def reachable_subjects(self, user_id: int) -> Iterator[Subject]:
        """Breadth-first walk of the subjects a user inherits from.

        Yields the user first, then groups and roles in discovery order.
        Each subject is yielded once.
        """
        start: Subject = (SubjectKind.USER, user_id)
        seen = {start}
        queue = deque([start])
        while queue:
            kind, subject_id = queue.popleft()
            yield kind, subject_id
            for edge_kind in _OUTGOING_EDGES[kind]:
                for target_id in self.membership.targets(edge_kind, subject_id):
                    target = (edge_kind.b_kind, target_id)
                    if target not in seen:
                        seen.add(target)
                        queue.append(target)

    def _rights_via_graph(
        self,
        user_id: int,
        table_id: int,
        wanted: FrozenSet[Right],
    ) -> Set[Right]:
        held: Set[Right] = set()
        for kind, subject_id in self.reachable_subjects(user_id):
            held |= self._held(kind, subject_id, table_id)
            if wanted <= held:
                logger.debug(f"Rights satisfied at {kind.value} {subject_id}")
                break
        return held

    def effective_rights(self, username: str, table: str) -> FrozenSet[Right]:
        """Every canonical right the user holds on the table, from any path.

        Raises:
            NotFoundError: If the user or table does not exist
        """
        user_id = self.registry.get_user_id(username)
        table_id = self.store.resolve_table_object_id(table)
        if table_id is None:
            raise NotFoundError(f"Table '{table}' does not exist", kind="table", name=table)
        return frozenset(self._rights_via_graph(user_id, table_id, frozenset(CANONICAL_RIGHTS)))

    def check(
        self,
        username: str,
        table: str,
        right: Right | str,
        *,
        via_roles: bool = True,
    ) -> Decision:
        """Decide whether a user holds a right on a table.

        Args:
            username: User to check
            table: Table name
            right: Canonical right or ALL
            via_roles: Also follow role memberships (user->role, group->role)

        Returns:
            ALLOWED, DENIED, or NOT_FOUND if the user or table is unknown
        """
        right = Right.parse(right)
        resolved = self._resolve(SubjectKind.USER, username, table)
        if resolved is None:
            return Decision.NOT_FOUND
        user_id, table_id = resolved

        if via_roles:
            wanted = frozenset(right.expand())
            held = self._rights_via_graph(user_id, table_id, wanted)
            decision = Decision.ALLOWED if wanted <= held else Decision.DENIED
        elif right is Right.ALL:
            decision = self._check_all_direct_and_groups(user_id, table_id)
        else:
            decision = self._check_direct_and_groups(user_id, table_id, right)

        logger.debug(f"check({username}, {table}, {right.value}) -> {decision.value}")
        return decision

    # User and group path

    def _check_direct_and_groups(self, user_id: int, table_id: int, right: Right) -> Decision:
        if self.ledger.find(SubjectKind.USER, user_id, table_id, right) is not None:
            return Decision.ALLOWED

        for group_id in self.membership.targets(EdgeKind.USER_GROUP, user_id):
            if self.ledger.find(SubjectKind.GROUP, group_id, table_id, right) is not None:
                return Decision.ALLOWED

        return Decision.DENIED

    def _check_all_direct_and_groups(self, user_id: int, table_id: int) -> Decision:
        wanted = set(CANONICAL_RIGHTS)
        held = self._held(SubjectKind.USER, user_id, table_id)
        if wanted <= held:
            return Decision.ALLOWED

        # flags carry over from direct grants and across groups
        for group_id in self.membership.targets(EdgeKind.USER_GROUP, user_id):
            held |= self._held(SubjectKind.GROUP, group_id, table_id)

        return Decision.ALLOWED if wanted <= held else Decision.DENIED

    # Role paths

    def check_role_privilege(self, role_id: int, table_id: int, right: Right | str) -> bool:
        """Whether a role holds a single canonical right on a table.

        Raises:
            InvalidArgumentError: If right is ALL
        """
        right = Right.parse(right)
        if right is Right.ALL:
            raise InvalidArgumentError("ALL must be checked right by right on the role path")
        return self.ledger.find(SubjectKind.ROLE, role_id, table_id, right) is not None

    def _check_via_roles(
        self,
        kind: SubjectKind,
        name: str,
        table: str,
        right: Right | str,
    ) -> Decision:
        right = Right.parse(right)
        if right is Right.ALL:
            raise InvalidArgumentError("ALL must be checked right by right on the role path")
        resolved = self._resolve(kind, name, table)
        if resolved is None:
            return Decision.NOT_FOUND
        subject_id, table_id = resolved

        edge_kind = EdgeKind.between(kind, SubjectKind.ROLE)
        for role_id in self.membership.targets(edge_kind, subject_id):
            if self.check_role_privilege(role_id, table_id, right):
                logger.debug(
                    f"{kind.value.capitalize()} '{name}' holds {right.value} on "
                    f"'{table}' via role {role_id}"
                )
                return Decision.ALLOWED
        return Decision.DENIED

    def check_via_user_role(self, username: str, table: str, right: Right | str) -> Decision:
        """Decide from the user's directly assigned roles only."""
        return self._check_via_roles(SubjectKind.USER, username, table, right)

    def check_via_group_role(self, group_name: str, table: str, right: Right | str) -> Decision:
        """Decide from the group's assigned roles only."""
        return self._check_via_roles(SubjectKind.GROUP, group_name, table, right)

    # Drop guards

    def has_any_privilege_user(self, username: str) -> bool:
        """Whether the user holds any grant or belongs to any group.

        Raises:
            NotFoundError: If the user does not exist
        """
        user_id = self.registry.get_user_id(username)
        return self.ledger.has_any(SubjectKind.USER, user_id) or bool(
            self.membership.targets(EdgeKind.USER_GROUP, user_id)
        )

    def has_any_privilege_group(self, name: str) -> bool:
        """Whether the group holds any grant.

        Raises:
            NotFoundError: If the group does not exist
        """
        group_id = self.registry.get_group_id(name)
        return self.ledger.has_any(SubjectKind.GROUP, group_id)
