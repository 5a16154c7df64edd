"""
Unit tests for the privilege ledger.

Tests cover:
- Idempotent grants (single right and ALL)
- Conjunctive revoke with per-right outcomes
- Bulk revocation
- Concurrent grants never duplicating rows, within and across ledgers
- Corrupted ledger rows
"""

import threading

import pytest

from dbaas.privdb_server.errors import InconsistentStateError
from dbaas.privdb_server.privileges import (
    CANONICAL_RIGHTS,
    PrivilegeLedger,
    Right,
    SubjectKind,
)
from dbaas.privdb_server.store import FieldValue, InMemoryRecordStore, SYSTEM_RELATIONS

USER = SubjectKind.USER
GROUP = SubjectKind.GROUP
ROLE = SubjectKind.ROLE


class TestPrivilegeLedger:
    """Tests for PrivilegeLedger."""

    @pytest.fixture
    def ledger(self, store):
        return PrivilegeLedger(store)

    def rows(self, ledger, kind):
        return [(g.subject_id, g.object_id, g.right) for g in ledger.grants(kind)]

    def test_grant_single_right(self, ledger):
        grants = ledger.grant(GROUP, 1, 7, Right.SELECT)

        assert len(grants) == 1
        assert grants[0].id == 1
        assert self.rows(ledger, GROUP) == [(1, 7, Right.SELECT)]

    def test_grant_accepts_strings(self, ledger):
        ledger.grant(USER, 1, 7, "insert")

        assert ledger.find(USER, 1, 7, Right.INSERT) is not None

    def test_grant_all_inserts_four_rows_in_order(self, ledger):
        grants = ledger.grant(ROLE, 2, 7, Right.ALL)

        assert [g.right for g in grants] == list(CANONICAL_RIGHTS)
        assert [g.id for g in grants] == [1, 2, 3, 4]
        assert len(ledger.grants_for(ROLE, 2, 7)) == 4

    def test_grant_is_idempotent(self, ledger):
        """Re-granting a held right returns the existing row."""
        first = ledger.grant(USER, 1, 7, Right.SELECT)
        second = ledger.grant(USER, 1, 7, Right.SELECT)

        assert first == second
        assert len(list(ledger.grants(USER))) == 1

    def test_grant_all_skips_held_rights(self, ledger):
        held = ledger.grant(USER, 1, 7, Right.DELETE)[0]

        grants = ledger.grant(USER, 1, 7, Right.ALL)

        assert len(list(ledger.grants(USER))) == 4
        assert grants[1] == held

    def test_grant_then_revoke_restores_ledger(self, ledger):
        ledger.grant(USER, 1, 8, Right.INSERT)
        before = self.rows(ledger, USER)

        ledger.grant(USER, 1, 7, Right.UPDATE)
        result = ledger.revoke(USER, 1, 7, Right.UPDATE)

        assert result.success
        assert self.rows(ledger, USER) == before

    def test_revoke_missing_right(self, ledger):
        result = ledger.revoke(GROUP, 1, 7, Right.SELECT)

        assert not result.success
        assert result.missing_rights == (Right.SELECT,)

    def test_revoke_all(self, ledger):
        ledger.grant(GROUP, 1, 7, Right.ALL)
        ledger.grant(GROUP, 1, 8, Right.SELECT)

        result = ledger.revoke(GROUP, 1, 7, Right.ALL)

        assert result.success
        assert result.revoked_rights == CANONICAL_RIGHTS
        assert self.rows(ledger, GROUP) == [(1, 8, Right.SELECT)]

    def test_revoke_all_partial_is_reported_not_rolled_back(self, ledger):
        """A missing right fails the revoke; the others stay revoked."""
        for right in (Right.UPDATE, Right.INSERT, Right.SELECT):
            ledger.grant(USER, 1, 7, right)

        result = ledger.revoke(USER, 1, 7, Right.ALL)

        assert not result.success
        assert result.missing_rights == (Right.DELETE,)
        assert ledger.grants_for(USER, 1, 7) == []

    def test_revoke_only_touches_target(self, ledger):
        ledger.grant(USER, 1, 7, Right.SELECT)
        ledger.grant(USER, 2, 7, Right.SELECT)
        ledger.grant(GROUP, 1, 7, Right.SELECT)

        ledger.revoke(USER, 1, 7, Right.SELECT)

        assert self.rows(ledger, USER) == [(2, 7, Right.SELECT)]
        assert self.rows(ledger, GROUP) == [(1, 7, Right.SELECT)]

    def test_revoke_all_for_subject(self, ledger):
        ledger.grant(USER, 1, 7, Right.ALL)
        ledger.grant(USER, 1, 8, Right.SELECT)
        ledger.grant(USER, 2, 7, Right.SELECT)

        assert ledger.revoke_all_for_subject(USER, 1) == 5
        assert self.rows(ledger, USER) == [(2, 7, Right.SELECT)]
        assert ledger.revoke_all_for_subject(USER, 1) == 0

    def test_has_any_and_count(self, ledger):
        assert not ledger.has_any(GROUP, 1)

        ledger.grant(GROUP, 1, 7, Right.ALL)

        assert ledger.has_any(GROUP, 1)
        assert ledger.count_for(GROUP, 1) == 4
        assert ledger.count_for(GROUP, 2) == 0

    def test_concurrent_grants_never_duplicate(self, ledger):
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            ledger.grant(USER, 1, 7, Right.ALL)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(r.value for _, _, r in self.rows(ledger, USER)) == [
            "DELETE",
            "INSERT",
            "SELECT",
            "UPDATE",
        ]

    def test_grant_after_losing_insert_race(self, ledger, monkeypatch):
        """A row written by another writer after our lookup is returned, not duplicated."""
        held = ledger.grant(USER, 1, 7, Right.SELECT)[0]
        real_find = ledger.find
        lookups = []

        def stale_find(*args):
            lookups.append(args)
            return None if len(lookups) == 1 else real_find(*args)

        monkeypatch.setattr(ledger, "find", stale_find)

        assert ledger.grant(USER, 1, 7, Right.SELECT) == [held]
        assert len(lookups) == 2
        assert self.rows(ledger, USER) == [(1, 7, Right.SELECT)]

    def test_separate_ledgers_share_uniqueness(self, store):
        """Two ledgers over one store (as two processes would be) keep one row per right."""
        first = PrivilegeLedger(store)
        second = PrivilegeLedger(store)
        barrier = threading.Barrier(6)

        def worker(ledger):
            barrier.wait()
            ledger.grant(GROUP, 3, 7, Right.ALL)

        threads = [threading.Thread(target=worker, args=((first, second)[i % 2],)) for i in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(first.grants_for(GROUP, 3, 7)) == 4
        assert second.revoke(GROUP, 3, 7, Right.SELECT).success
        assert first.find(GROUP, 3, 7, Right.SELECT) is None


class TestCorruptedLedger:
    """Stored rights that are not canonical surface as InconsistentStateError."""

    @pytest.fixture
    def store(self):
        store = InMemoryRecordStore()
        for schema in SYSTEM_RELATIONS.values():
            store.ensure_relation(schema)
        return store

    @pytest.mark.parametrize("right_type", ["ALL", "TRUNCATE"])
    def test_invalid_right(self, store, right_type):
        store.insert_row(
            "priv_user_right",
            {
                "id": FieldValue.int_(1),
                "subject_id": FieldValue.int_(1),
                "object_id": FieldValue.int_(7),
                "right_type": FieldValue.text(right_type),
            },
        )

        with pytest.raises(InconsistentStateError):
            list(PrivilegeLedger(store).grants(USER))

    def test_mistyped_subject(self, store):
        store.put_raw(
            "priv_group_right",
            {
                "id": FieldValue.int_(1),
                "subject_id": FieldValue.text("1"),
                "object_id": FieldValue.int_(7),
                "right_type": FieldValue.text("SELECT"),
            },
        )

        with pytest.raises(InconsistentStateError):
            PrivilegeLedger(store).has_any(GROUP, 1)

