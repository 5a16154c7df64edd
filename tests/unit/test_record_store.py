"""
Unit tests for the record store backends.

Tests cover:
- Typed field values and schema validation
- Insertion-order scans and ordinal row access
- Match-based delete and update
- Per-relation id allocation
- Unique keys and insert-if-absent
- Table catalog registration
- Backend factory
"""

import os

import pytest

from dbaas.privdb_server.config import StorageConfig, StoreBackend
from dbaas.privdb_server.errors import (
    AlreadyExistsError,
    InconsistentStateError,
    RecordStoreError,
)
from dbaas.privdb_server.store import (
    GROUP_RELATION,
    SYSTEM_RELATIONS,
    USER_GROUP_RELATION,
    USER_RIGHT_RELATION,
    FieldType,
    FieldValue,
    InMemoryRecordStore,
    RecordStore,
    RelationSchema,
    Row,
    SqliteRecordStore,
    create_record_store,
)


def group_row(group_id, name):
    return {"id": FieldValue.int_(group_id), "name": FieldValue.text(name)}


class TestFieldValue:
    """Tests for tagged field values."""

    def test_constructors_tag_values(self):
        assert FieldValue.int_(7).type == FieldType.INT
        assert FieldValue.text("x").type == FieldType.TEXT

    def test_from_raw(self):
        """Raw backend values are re-tagged by Python type."""
        assert FieldValue.from_raw(3) == FieldValue.int_(3)
        assert FieldValue.from_raw("abc") == FieldValue.text("abc")

    def test_from_raw_rejects_other_types(self):
        with pytest.raises(InconsistentStateError):
            FieldValue.from_raw(b"bytes")
        with pytest.raises(InconsistentStateError):
            FieldValue.from_raw(True)


class TestRow:
    """Tests for typed row access."""

    def test_typed_getters(self):
        row = Row("priv_group", group_row(1, "readers"))

        assert row.get_int("id") == 1
        assert row.get_text("name") == "readers"
        assert len(row) == 2
        assert set(row) == {"id", "name"}

    def test_wrong_type_is_inconsistent_state(self):
        """Reading an integer column that holds text fails loudly."""
        row = Row("priv_group", {"id": FieldValue.text("1"), "name": FieldValue.text("r")})

        with pytest.raises(InconsistentStateError) as exc_info:
            row.get_int("id")

        assert exc_info.value.relation == "priv_group"
        assert exc_info.value.column == "id"

    def test_missing_column_is_inconsistent_state(self):
        row = Row("priv_group", {"id": FieldValue.int_(1)})

        with pytest.raises(InconsistentStateError):
            row.get_text("name")

    def test_matches_is_type_strict(self):
        row = Row("priv_group", group_row(1, "readers"))

        assert row.matches({"id": 1})
        assert row.matches({"id": 1, "name": "readers"})
        assert not row.matches({"id": "1"})
        assert not row.matches({"id": True})
        assert not row.matches({"nope": 1})


class TestRelationSchema:
    """Tests for schema validation."""

    def test_valid_row_passes(self):
        GROUP_RELATION.validate(group_row(1, "readers"))

    def test_reports_every_problem(self):
        with pytest.raises(InconsistentStateError) as exc_info:
            GROUP_RELATION.validate({"id": FieldValue.text("1"), "extra": FieldValue.int_(2)})

        problems = exc_info.value.problems
        assert any("'id'" in p for p in problems)
        assert any("missing column 'name'" in p for p in problems)
        assert any("unknown column 'extra'" in p for p in problems)

    def test_system_relations_are_registered(self):
        assert set(SYSTEM_RELATIONS) == {
            "priv_user",
            "priv_group",
            "priv_role",
            "priv_user_group",
            "priv_user_role",
            "priv_group_role",
            "priv_user_right",
            "priv_group_right",
            "priv_role_right",
        }


class TestRecordStore:
    """Behavior shared by every backend (see the parametrized store fixture)."""

    def test_implements_protocol(self, store):
        assert isinstance(store, RecordStore)

    def test_scan_returns_insertion_order(self, store):
        for group_id, name in [(3, "c"), (1, "a"), (2, "b")]:
            store.insert_row("priv_group", group_row(group_id, name))

        names = [row.get_text("name") for row in store.scan("priv_group")]

        assert names == ["c", "a", "b"]

    def test_get_row_by_index(self, store):
        store.insert_row("priv_group", group_row(1, "a"))
        store.insert_row("priv_group", group_row(2, "b"))

        assert store.get_row("priv_group", 0).get_text("name") == "a"
        assert store.get_row("priv_group", 1).get_text("name") == "b"
        assert store.get_row("priv_group", 2) is None
        assert store.get_row("priv_group", -1) is None

    def test_insert_validates_schema(self, store):
        with pytest.raises(InconsistentStateError):
            store.insert_row("priv_group", {"id": FieldValue.text("1"), "name": FieldValue.text("a")})

        assert list(store.scan("priv_group")) == []

    def test_unknown_relation(self, store):
        with pytest.raises(RecordStoreError):
            list(store.scan("no_such_relation"))

    def test_delete_rows_by_match(self, store):
        store.insert_row("priv_user_group", {"user_id": FieldValue.int_(1), "group_id": FieldValue.int_(1)})
        store.insert_row("priv_user_group", {"user_id": FieldValue.int_(1), "group_id": FieldValue.int_(2)})
        store.insert_row("priv_user_group", {"user_id": FieldValue.int_(2), "group_id": FieldValue.int_(1)})

        deleted = store.delete_rows("priv_user_group", user_id=1)

        assert deleted == 2
        remaining = [(r.get_int("user_id"), r.get_int("group_id")) for r in store.scan("priv_user_group")]
        assert remaining == [(2, 1)]

    def test_delete_without_match_returns_zero(self, store):
        store.insert_row("priv_group", group_row(1, "a"))

        assert store.delete_rows("priv_group", name="zzz") == 0

    def test_update_rows_keeps_position(self, store):
        store.insert_row("priv_group", group_row(1, "a"))
        store.insert_row("priv_group", group_row(2, "b"))

        updated = store.update_rows("priv_group", {"id": 1}, {"name": FieldValue.text("z")})

        assert updated == 1
        assert [r.get_text("name") for r in store.scan("priv_group")] == ["z", "b"]

    def test_update_rejects_mistyped_change(self, store):
        store.insert_row("priv_group", group_row(1, "a"))

        with pytest.raises(InconsistentStateError):
            store.update_rows("priv_group", {"id": 1}, {"name": FieldValue.int_(5)})

    def test_allocate_id_is_per_relation(self, store):
        assert store.allocate_id("priv_user") == 1
        assert store.allocate_id("priv_user") == 2
        assert store.allocate_id("priv_group") == 1

    def test_explicit_ids_advance_sequence(self, store):
        """Inserting id 10 explicitly makes the next allocation 11."""
        store.insert_row("priv_group", group_row(10, "explicit"))

        assert store.allocate_id("priv_group") == 11

    def test_register_and_resolve_table(self, store):
        orders = store.register_table("orders")
        items = store.register_table("items")

        assert orders == 1
        assert items == 2
        assert store.resolve_table_object_id("orders") == 1
        assert store.resolve_table_object_id("missing") is None

    def test_register_table_with_explicit_object_id(self, store):
        assert store.register_table("orders", 7) == 7
        assert store.register_table("items") == 8

    def test_register_duplicate_table(self, store):
        store.register_table("orders", 7)

        with pytest.raises(AlreadyExistsError):
            store.register_table("orders")
        with pytest.raises(AlreadyExistsError):
            store.register_table("other", 7)

    def test_duplicate_unique_key_rejected(self, store):
        store.insert_row("priv_group", group_row(1, "readers"))

        with pytest.raises(AlreadyExistsError):
            store.insert_row("priv_group", group_row(2, "readers"))
        with pytest.raises(AlreadyExistsError):
            store.insert_row("priv_group", group_row(1, "writers"))

        assert len(list(store.scan("priv_group"))) == 1

    def test_rejected_insert_leaves_sequence_alone(self, store):
        store.insert_row("priv_group", group_row(1, "readers"))

        with pytest.raises(AlreadyExistsError):
            store.insert_row("priv_group", group_row(50, "readers"))

        assert store.allocate_id("priv_group") == 2

    def test_insert_row_if_absent(self, store):
        edge = {"user_id": FieldValue.int_(1), "group_id": FieldValue.int_(2)}

        assert store.insert_row_if_absent("priv_user_group", edge) is True
        assert store.insert_row_if_absent("priv_user_group", edge) is False
        assert len(list(store.scan("priv_user_group"))) == 1

    def test_grant_triple_is_unique(self, store):
        def grant_row(grant_id):
            return {
                "id": FieldValue.int_(grant_id),
                "subject_id": FieldValue.int_(1),
                "object_id": FieldValue.int_(7),
                "right_type": FieldValue.text("SELECT"),
            }

        assert store.insert_row_if_absent(USER_RIGHT_RELATION.name, grant_row(1))
        assert not store.insert_row_if_absent(USER_RIGHT_RELATION.name, grant_row(2))

    def test_update_into_existing_key_rejected(self, store):
        store.insert_row("priv_group", group_row(1, "a"))
        store.insert_row("priv_group", group_row(2, "b"))

        with pytest.raises(AlreadyExistsError):
            store.update_rows("priv_group", {"id": 2}, {"name": FieldValue.text("a")})

        assert [r.get_text("name") for r in store.scan("priv_group")] == ["a", "b"]

    def test_ensure_relation_is_idempotent(self, store):
        store.insert_row("priv_group", group_row(1, "a"))

        store.ensure_relation(GROUP_RELATION)

        assert len(list(store.scan("priv_group"))) == 1


class TestInMemoryRecordStore:
    """Tests for in-memory backend specifics."""

    def test_close_clears_data(self):
        store = InMemoryRecordStore()
        store.ensure_relation(GROUP_RELATION)
        store.insert_row("priv_group", group_row(1, "a"))

        store.close()

        with pytest.raises(RecordStoreError):
            store.row_count("priv_group")

    def test_put_raw_skips_validation(self):
        store = InMemoryRecordStore()
        store.ensure_relation(USER_GROUP_RELATION)

        store.put_raw("priv_user_group", {"user_id": FieldValue.text("1"), "group_id": FieldValue.int_(1)})

        assert store.row_count("priv_user_group") == 1
        row = next(store.scan("priv_user_group"))
        with pytest.raises(InconsistentStateError):
            row.get_int("user_id")


class TestSqliteRecordStore:
    """Tests for SQLite backend specifics."""

    def test_data_survives_reopen(self, data_dir):
        store = SqliteRecordStore(data_dir, wal_mode=False)
        store.ensure_relation(GROUP_RELATION)
        store.insert_row("priv_group", group_row(store.allocate_id("priv_group"), "readers"))
        store.register_table("orders", 7)
        store.close()

        reopened = SqliteRecordStore(data_dir, wal_mode=False)
        reopened.ensure_relation(GROUP_RELATION)

        assert [r.get_text("name") for r in reopened.scan("priv_group")] == ["readers"]
        assert reopened.allocate_id("priv_group") == 2
        assert reopened.resolve_table_object_id("orders") == 7

    def test_uniqueness_spans_store_instances(self, data_dir):
        """Separate handles on one file (as separate processes hold) share unique keys."""
        first = SqliteRecordStore(data_dir, wal_mode=False)
        second = SqliteRecordStore(data_dir, wal_mode=False)
        for store in (first, second):
            store.ensure_relation(GROUP_RELATION)

        first.insert_row("priv_group", group_row(1, "readers"))

        with pytest.raises(AlreadyExistsError):
            second.insert_row("priv_group", group_row(2, "readers"))
        assert not second.insert_row_if_absent("priv_group", group_row(1, "writers"))

    def test_unusable_data_dir_is_store_error(self, data_dir):
        blocker = os.path.join(data_dir, "not-a-dir")
        with open(blocker, "w") as f:
            f.write("x")

        with pytest.raises(RecordStoreError):
            SqliteRecordStore(os.path.join(blocker, "sub"))

    def test_wal_mode(self, data_dir):
        store = SqliteRecordStore(data_dir, db_name="wal.db", wal_mode=True)
        store.ensure_relation(GROUP_RELATION)
        store.insert_row("priv_group", group_row(1, "a"))

        assert store.db_path.exists()

    def test_rejects_unsafe_relation_names(self, data_dir):
        store = SqliteRecordStore(data_dir, wal_mode=False)
        bad = RelationSchema("x; DROP TABLE _catalog", (("id", FieldType.INT),))

        with pytest.raises(RecordStoreError):
            store.ensure_relation(bad)


class TestCreateRecordStore:
    """Tests for the backend factory."""

    def test_memory_backend(self):
        store = create_record_store(StorageConfig(backend=StoreBackend.MEMORY))

        assert isinstance(store, InMemoryRecordStore)
        for name in SYSTEM_RELATIONS:
            assert list(store.scan(name)) == []

    def test_sqlite_backend(self, data_dir):
        config = StorageConfig(backend=StoreBackend.SQLITE, data_dir=data_dir, wal_mode=False)

        store = create_record_store(config)

        assert isinstance(store, SqliteRecordStore)
        assert store.db_path.name == "privileges.db"
        for name in SYSTEM_RELATIONS:
            assert list(store.scan(name)) == []
