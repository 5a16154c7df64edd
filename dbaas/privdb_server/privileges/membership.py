"""
Membership graph for PrivDB.

Maintains the user->group, user->role and group->role edges used for
privilege inheritance. Every edge kind is a set of (a_id, b_id) pairs
stored in its own relation.

Invariants:
    - An (a_id, b_id) pair appears at most once per edge kind (a unique
      key in the store)
    - Removing an edge that is not present is an error (NotFound)
    - The graph stores ids only; names are resolved by the registry
"""

from __future__ import annotations

import logging
from typing import List, Literal

from ..errors import AlreadyExistsError, NotFoundError
from ..store.base import FieldValue, RecordStore
from .types import EdgeKind, Membership

logger = logging.getLogger(__name__)

Endpoint = Literal["a", "b"]


class MembershipGraph:
    """Set-semantics membership edges between subjects.

    Example:
        >>> graph = MembershipGraph(store)
        >>> graph.add_edge(EdgeKind.USER_GROUP, user_id, group_id)
        >>> graph.targets(EdgeKind.USER_GROUP, user_id)
        [1]
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def _column(self, kind: EdgeKind, endpoint: Endpoint) -> str:
        return kind.a_column if endpoint == "a" else kind.b_column

    def edges(self, kind: EdgeKind) -> List[Membership]:
        """All edges of a kind, in insertion order."""
        return [
            Membership(kind, row.get_int(kind.a_column), row.get_int(kind.b_column))
            for row in self.store.scan(kind.relation.name)
        ]

    def has_edge(self, kind: EdgeKind, a_id: int, b_id: int) -> bool:
        return any(edge.a_id == a_id and edge.b_id == b_id for edge in self.edges(kind))

    def targets(self, kind: EdgeKind, a_id: int) -> List[int]:
        """Ids that a_id is a member of (e.g. a user's groups)."""
        return [edge.b_id for edge in self.edges(kind) if edge.a_id == a_id]

    def sources(self, kind: EdgeKind, b_id: int) -> List[int]:
        """Ids that are members of b_id (e.g. a group's users)."""
        return [edge.a_id for edge in self.edges(kind) if edge.b_id == b_id]

    def count_for(self, kind: EdgeKind, endpoint: Endpoint, subject_id: int) -> int:
        column = self._column(kind, endpoint)
        return sum(
            1 for row in self.store.scan(kind.relation.name) if row.get_int(column) == subject_id
        )

    def add_edge(self, kind: EdgeKind, a_id: int, b_id: int) -> None:
        """Insert an edge.

        Raises:
            AlreadyExistsError: If the edge is already present
        """
        inserted = self.store.insert_row_if_absent(
            kind.relation.name,
            {kind.a_column: FieldValue.int_(a_id), kind.b_column: FieldValue.int_(b_id)},
        )
        if not inserted:
            raise AlreadyExistsError(
                f"{kind.a_kind.value.capitalize()} {a_id} is already a member of "
                f"{kind.b_kind.value} {b_id}",
                kind=kind.value,
                name=[a_id, b_id],
            )
        logger.info(f"Added {kind.a_kind.value} {a_id} to {kind.b_kind.value} {b_id}")

    def remove_edge(self, kind: EdgeKind, a_id: int, b_id: int) -> None:
        """Delete one edge.

        Raises:
            NotFoundError: If the edge is not present
        """
        deleted = self.store.delete_rows(
            kind.relation.name, **{kind.a_column: a_id, kind.b_column: b_id}
        )
        if deleted == 0:
            raise NotFoundError(
                f"{kind.a_kind.value.capitalize()} {a_id} is not a member of "
                f"{kind.b_kind.value} {b_id}",
                kind=kind.value,
                name=[a_id, b_id],
            )
        logger.info(f"Removed {kind.a_kind.value} {a_id} from {kind.b_kind.value} {b_id}")

    def remove_all_edges_for(self, kind: EdgeKind, endpoint: Endpoint, subject_id: int) -> int:
        """Delete every edge touching subject_id at the given endpoint.

        Args:
            kind: Edge kind
            endpoint: "a" for the member side, "b" for the container side
            subject_id: Id at that endpoint

        Returns:
            Number of edges removed

        Raises:
            NotFoundError: If no edge matched
        """
        column = self._column(kind, endpoint)
        deleted = self.store.delete_rows(kind.relation.name, **{column: subject_id})
        if deleted == 0:
            side = kind.a_kind if endpoint == "a" else kind.b_kind
            raise NotFoundError(
                f"{side.value.capitalize()} {subject_id} has no {kind.value} memberships",
                kind=kind.value,
                name=subject_id,
            )
        logger.info(f"Removed {deleted} {kind.value} membership(s) of {column}={subject_id}")
        return deleted
