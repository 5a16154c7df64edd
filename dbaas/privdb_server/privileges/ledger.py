"""
Privilege ledger for PrivDB.

Stores one grant row per (subject, table, right) in a ledger relation per
subject kind (user, group, role).

Invariants:
    - At most one grant row exists for a (subject, table, right) triple
    - ALL is never stored; it is expanded to UPDATE, DELETE, INSERT, SELECT
    - Uniqueness of the triple is enforced by the store, so it holds for
      every process sharing one store
    - Bulk operations are not rolled back on partial failure

How to change safely:
    - Grants go through insert_row_if_absent; never scan-then-insert
    - Keep the canonical expansion order stable; callers log per right
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import List, Optional

from ..errors import InconsistentStateError
from ..store.base import FieldValue, RecordStore, Row
from .types import Grant, RevokeOutcome, RevokeResult, Right, SubjectKind

logger = logging.getLogger(__name__)


class PrivilegeLedger:
    """Grant records per subject kind.

    Thread safety:
        The ledger relations carry a unique (subject_id, object_id,
        right_type) key. grant() inserts with insert_row_if_absent and
        revoke() deletes by that key, so concurrent callers in any
        number of threads or processes never leave duplicate rows.

    Example:
        >>> ledger = PrivilegeLedger(store)
        >>> [g.right.value for g in ledger.grant(SubjectKind.GROUP, 1, 7, Right.ALL)]
        ['UPDATE', 'DELETE', 'INSERT', 'SELECT']
        >>> ledger.revoke(SubjectKind.GROUP, 1, 7, Right.SELECT).success
        True
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def _to_grant(self, kind: SubjectKind, row: Row) -> Grant:
        right_name = row.get_text("right_type")
        try:
            right = Right(right_name)
        except ValueError:
            right = None
        if right is None or right is Right.ALL:
            raise InconsistentStateError(
                f"Ledger '{row.relation}' holds invalid right '{right_name}'",
                relation=row.relation,
                column="right_type",
            )
        return Grant(
            id=row.get_int("id"),
            subject_kind=kind,
            subject_id=row.get_int("subject_id"),
            object_id=row.get_int("object_id"),
            right=right,
        )

    def grants(self, kind: SubjectKind) -> Iterator[Grant]:
        """Every grant in a kind's ledger, in insertion order."""
        for row in self.store.scan(kind.ledger_relation.name):
            yield self._to_grant(kind, row)

    def grants_for(
        self,
        kind: SubjectKind,
        subject_id: int,
        object_id: Optional[int] = None,
    ) -> List[Grant]:
        """A subject's grants, optionally restricted to one table."""
        return [
            grant
            for grant in self.grants(kind)
            if grant.subject_id == subject_id
            and (object_id is None or grant.object_id == object_id)
        ]

    def find(
        self,
        kind: SubjectKind,
        subject_id: int,
        object_id: int,
        right: Right,
    ) -> Optional[Grant]:
        """The first grant row matching (subject, table, right), if any."""
        for grant in self.grants(kind):
            if (
                grant.subject_id == subject_id
                and grant.object_id == object_id
                and grant.right is right
            ):
                return grant
        return None

    def has_any(self, kind: SubjectKind, subject_id: int) -> bool:
        return any(grant.subject_id == subject_id for grant in self.grants(kind))

    def count_for(self, kind: SubjectKind, subject_id: int) -> int:
        return sum(1 for grant in self.grants(kind) if grant.subject_id == subject_id)

    def _ensure(self, kind: SubjectKind, subject_id: int, object_id: int, right: Right) -> Grant:
        relation = kind.ledger_relation.name
        while True:
            existing = self.find(kind, subject_id, object_id, right)
            if existing is not None:
                logger.debug(
                    f"{kind.value.capitalize()} {subject_id} already holds "
                    f"{right.value} on object {object_id}"
                )
                return existing

            grant_id = self.store.allocate_id(relation)
            inserted = self.store.insert_row_if_absent(
                relation,
                {
                    "id": FieldValue.int_(grant_id),
                    "subject_id": FieldValue.int_(subject_id),
                    "object_id": FieldValue.int_(object_id),
                    "right_type": FieldValue.text(right.value),
                },
            )
            if inserted:
                logger.info(
                    f"Granted {right.value} to {kind.value} {subject_id} "
                    f"on object {object_id} under grant ID {grant_id}"
                )
                return Grant(grant_id, kind, subject_id, object_id, right)
            # Another writer inserted the same triple first; read its row back

    def grant(
        self,
        kind: SubjectKind,
        subject_id: int,
        object_id: int,
        right: Right | str,
    ) -> List[Grant]:
        """Ensure the subject holds a right (or all canonical rights) on a table.

        Rights already held are returned as they are; missing ones get a
        new row with a freshly allocated grant id.

        Returns:
            One Grant per canonical right, in expansion order
        """
        right = Right.parse(right)
        return [
            self._ensure(kind, subject_id, object_id, canonical)
            for canonical in right.expand()
        ]

    def revoke(
        self,
        kind: SubjectKind,
        subject_id: int,
        object_id: int,
        right: Right | str,
    ) -> RevokeResult:
        """Remove a right (or all canonical rights) from a subject on a table.

        Each canonical right is revoked independently. A right that is not
        held is reported as not revoked; rights revoked before it stay
        revoked.

        Returns:
            RevokeResult with one outcome per canonical right
        """
        right = Right.parse(right)
        relation = kind.ledger_relation.name
        outcomes: List[RevokeOutcome] = []

        for canonical in right.expand():
            deleted = self.store.delete_rows(
                relation,
                subject_id=subject_id,
                object_id=object_id,
                right_type=canonical.value,
            )
            if deleted:
                logger.info(
                    f"Revoked {canonical.value} from {kind.value} {subject_id} "
                    f"on object {object_id}"
                )
            else:
                logger.warning(
                    f"{kind.value.capitalize()} {subject_id} holds no "
                    f"{canonical.value} on object {object_id}"
                )
            outcomes.append(RevokeOutcome(canonical, deleted > 0))

        return RevokeResult(kind, subject_id, object_id, tuple(outcomes))

    def revoke_all_for_subject(self, kind: SubjectKind, subject_id: int) -> int:
        """Delete every grant a subject holds, on any table.

        Returns:
            Number of grant rows removed (0 if the subject held none)
        """
        deleted = self.store.delete_rows(kind.ledger_relation.name, subject_id=subject_id)
        logger.info(f"Revoked {deleted} privilege(s) from {kind.value} {subject_id}")
        return deleted

