"""
In-memory record store implementation for testing.

This module provides a simple in-memory RecordStore backend for:
- Unit tests
- Integration tests
- Local development without a data directory

Invariants:
    - All data is lost on process exit
    - Provides the same ordering guarantees as the SQLite backend
    - Thread-safe for concurrent access

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with RecordStore protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import threading
from collections import defaultdict
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging

from ..errors import AlreadyExistsError, RecordStoreError
from .base import FieldValue, RelationSchema, Row

logger = logging.getLogger(__name__)


@dataclass
class InMemoryRelation:
    """In-memory relation storage."""

    schema: RelationSchema
    rows: List[Dict[str, FieldValue]] = field(default_factory=list)


class InMemoryRecordStore:
    """In-memory implementation of RecordStore for testing.

    Attributes:
        relations: Storage for relation rows, keyed by relation name

    Thread safety:
        All operations hold a single re-entrant lock. Safe to share
        between threads.

    Example:
        >>> store = InMemoryRecordStore()
        >>> store.ensure_relation(GROUP_RELATION)
        >>> gid = store.allocate_id("priv_group")
        >>> store.insert_row("priv_group", {"id": FieldValue.int_(gid), "name": FieldValue.text("readers")})
        >>> [row.get_text("name") for row in store.scan("priv_group")]
        ['readers']
    """

    def __init__(self) -> None:
        self._relations: Dict[str, InMemoryRelation] = {}
        self._sequences: Dict[str, int] = defaultdict(int)
        self._catalog: Dict[str, int] = {}
        self._catalog_sequence = 0
        self._lock = threading.RLock()

    def _relation(self, name: str) -> InMemoryRelation:
        try:
            return self._relations[name]
        except KeyError:
            raise RecordStoreError(f"Unknown relation: {name}", backend="memory") from None

    def _conflict(
        self,
        rel: InMemoryRelation,
        values: Mapping[str, FieldValue],
        skip: Optional[Dict[str, FieldValue]] = None,
    ) -> Optional[Tuple[str, ...]]:
        """The first unique column set on which values collide with a stored row."""
        for columns in rel.schema.unique:
            key = rel.schema.key_of(columns, values)
            for stored in rel.rows:
                if stored is skip:
                    continue
                if rel.schema.key_of(columns, stored) == key:
                    return columns
        return None

    def _append(self, relation: str, rel: InMemoryRelation, values: Mapping[str, FieldValue]) -> None:
        rel.rows.append(dict(values))
        id_column = rel.schema.id_column
        if id_column is not None:
            inserted_id = values[id_column].value
            if isinstance(inserted_id, int) and inserted_id > self._sequences[relation]:
                self._sequences[relation] = inserted_id

    def ensure_relation(self, schema: RelationSchema) -> None:
        with self._lock:
            if schema.name not in self._relations:
                self._relations[schema.name] = InMemoryRelation(schema=schema)
                logger.debug(f"Created relation {schema.name}")

    def scan(self, relation: str) -> Iterator[Row]:
        with self._lock:
            snapshot = list(self._relation(relation).rows)
        for values in snapshot:
            yield Row(relation, values)

    def get_row(self, relation: str, index: int) -> Optional[Row]:
        with self._lock:
            rows = self._relation(relation).rows
            if index < 0 or index >= len(rows):
                return None
            return Row(relation, rows[index])

    def insert_row(self, relation: str, values: Mapping[str, FieldValue]) -> None:
        with self._lock:
            rel = self._relation(relation)
            rel.schema.validate(values)
            columns = self._conflict(rel, values)
            if columns is not None:
                raise AlreadyExistsError(
                    f"Row already exists in '{relation}' for {', '.join(columns)}",
                    kind=relation,
                    name=[values[column].value for column in columns],
                )
            self._append(relation, rel, values)

    def insert_row_if_absent(self, relation: str, values: Mapping[str, FieldValue]) -> bool:
        with self._lock:
            rel = self._relation(relation)
            rel.schema.validate(values)
            if self._conflict(rel, values) is not None:
                return False
            self._append(relation, rel, values)
            return True

    def delete_rows(self, relation: str, **match: Any) -> int:
        with self._lock:
            rel = self._relation(relation)
            kept = [values for values in rel.rows if not Row(relation, values).matches(match)]
            deleted = len(rel.rows) - len(kept)
            rel.rows = kept
            return deleted

    def update_rows(
        self,
        relation: str,
        match: Mapping[str, Any],
        changes: Mapping[str, FieldValue],
    ) -> int:
        with self._lock:
            rel = self._relation(relation)
            updated = 0
            for values in rel.rows:
                if Row(relation, values).matches(match):
                    candidate = {**values, **changes}
                    rel.schema.validate(candidate)
                    columns = self._conflict(rel, candidate, skip=values)
                    if columns is not None:
                        raise AlreadyExistsError(
                            f"Row already exists in '{relation}' for {', '.join(columns)}",
                            kind=relation,
                            name=[candidate[column].value for column in columns],
                        )
                    values.update(changes)
                    updated += 1
            return updated

    def allocate_id(self, relation: str) -> int:
        with self._lock:
            self._relation(relation)
            self._sequences[relation] += 1
            return self._sequences[relation]

    def register_table(self, name: str, object_id: Optional[int] = None) -> int:
        with self._lock:
            if name in self._catalog:
                raise AlreadyExistsError(f"Table '{name}' already exists", kind="table", name=name)
            if object_id is None:
                self._catalog_sequence += 1
                object_id = self._catalog_sequence
            elif object_id in self._catalog.values():
                raise AlreadyExistsError(
                    f"Object ID {object_id} is already in use", kind="table", name=name
                )
            else:
                self._catalog_sequence = max(self._catalog_sequence, object_id)
            self._catalog[name] = object_id
            logger.debug(f"Registered table '{name}' under object ID {object_id}")
            return object_id

    def resolve_table_object_id(self, name: str) -> Optional[int]:
        with self._lock:
            return self._catalog.get(name)

    def close(self) -> None:
        """Clear all data."""
        with self._lock:
            self._relations.clear()
            self._sequences.clear()
            self._catalog.clear()
            self._catalog_sequence = 0
        logger.debug("InMemoryRecordStore closed")

    # Testing helpers

    def row_count(self, relation: str) -> int:
        """Number of rows currently stored in a relation."""
        with self._lock:
            return len(self._relation(relation).rows)

    def put_raw(self, relation: str, values: Mapping[str, FieldValue]) -> None:
        """Append a row without schema validation (to simulate corruption)."""
        with self._lock:
            self._relation(relation).rows.append(dict(values))
