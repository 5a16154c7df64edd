"""
SQLite record store for PrivDB.

This module persists the privilege relations in a single SQLite database:
- One SQL table per relation schema (users, groups, roles, memberships, grants)
- One UNIQUE index per unique column set (names, ids, edges, grant triples)
- _catalog: table name -> object id for user relations
- _sequences: last allocated id per relation

Invariants:
    - One SQLite file per store
    - Every write is a single atomic statement or an IMMEDIATE transaction
    - Rows are returned in rowid (insertion) order
    - Every unique column set of a schema is a UNIQUE index, so uniqueness
      holds across processes sharing the file
    - Values read back are re-tagged, so a stored value of the wrong
      type surfaces as InconsistentStateError at the reader

How to change safely:
    - Schema migrations must be backward compatible
    - Never rename system relations; add new ones instead
    - Use transactions for all multi-statement operations

Table schema:
    _catalog:
        - name TEXT PRIMARY KEY
        - object_id INTEGER UNIQUE

    _sequences:
        - relation TEXT PRIMARY KEY
        - last_id INTEGER
"""

from __future__ import annotations

import re
import sqlite3
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import logging

from ..errors import AlreadyExistsError, InconsistentStateError, RecordStoreError
from .base import FieldType, FieldValue, RelationSchema, Row

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_CATALOG_SEQUENCE = "_catalog"

_SQL_TYPES = {
    FieldType.INT: "INTEGER",
    FieldType.TEXT: "TEXT",
}


class SqliteRecordStore:
    """SQLite-backed RecordStore.

    Thread safety:
        Each operation opens its own connection. SQLite serializes
        writers; id allocation runs in an IMMEDIATE transaction.

    Example:
        >>> store = SqliteRecordStore("/var/lib/privdb")
        >>> store.ensure_relation(USER_RELATION)
        >>> store.register_table("orders")
        1
    """

    def __init__(
        self,
        data_dir: str,
        db_name: str = "privileges.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the SQLite store.

        Args:
            data_dir: Directory for the database file
            db_name: Database file name
            wal_mode: Enable SQLite WAL journal mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._schemas: Dict[str, RelationSchema] = {}
        self._lock = threading.Lock()
        self._initialize()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection for one operation.

        Yields:
            SQLite connection

        Raises:
            RecordStoreError: If SQLite reports an error
        """
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except (OSError, sqlite3.Error) as e:
            raise RecordStoreError(f"Cannot open {self.db_path}: {e}", backend="sqlite") from e

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        except sqlite3.Error as e:
            raise RecordStoreError(f"SQLite error: {e}", backend="sqlite") from e
        finally:
            conn.close()

    def _initialize(self) -> None:
        with self._get_connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS _catalog (
                    name TEXT PRIMARY KEY,
                    object_id INTEGER NOT NULL UNIQUE
                );

                CREATE TABLE IF NOT EXISTS _sequences (
                    relation TEXT PRIMARY KEY,
                    last_id INTEGER NOT NULL
                );
            """)
        logger.debug(f"SQLite record store initialized at {self.db_path}")

    def _schema(self, relation: str) -> RelationSchema:
        try:
            return self._schemas[relation]
        except KeyError:
            raise RecordStoreError(f"Unknown relation: {relation}", backend="sqlite") from None

    def _where(self, schema: RelationSchema, match: Mapping[str, Any]) -> Tuple[str, List[Any]]:
        if not match:
            return "", []
        clauses = []
        params: List[Any] = []
        for column, value in match.items():
            schema.column_type(column)
            clauses.append(f"{column} = ?")
            params.append(value)
        return " WHERE " + " AND ".join(clauses), params

    def _to_row(self, schema: RelationSchema, record: sqlite3.Row) -> Row:
        return Row(
            schema.name,
            {column: FieldValue.from_raw(record[column]) for column in schema.column_names},
        )

    def _already_exists(self, relation: str, error: sqlite3.IntegrityError) -> AlreadyExistsError:
        # sqlite reports "UNIQUE constraint failed: rel.col1, rel.col2"
        columns = str(error).rpartition(":")[2].strip()
        return AlreadyExistsError(
            f"Row already exists in '{relation}' for {columns}",
            kind=relation,
            name=columns,
        )

    def _bump_sequence(self, conn: sqlite3.Connection, relation: str, value: int) -> None:
        conn.execute(
            """
            INSERT INTO _sequences (relation, last_id) VALUES (?, ?)
            ON CONFLICT(relation) DO UPDATE SET last_id = MAX(last_id, excluded.last_id)
            """,
            (relation, value),
        )

    def _next_sequence(self, conn: sqlite3.Connection, relation: str) -> int:
        conn.execute("BEGIN IMMEDIATE")
        try:
            cursor = conn.execute(
                "SELECT last_id FROM _sequences WHERE relation = ?", (relation,)
            )
            current = cursor.fetchone()
            next_id = (current[0] if current else 0) + 1
            self._bump_sequence(conn, relation, next_id)
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
        return next_id

    def ensure_relation(self, schema: RelationSchema) -> None:
        if not _IDENTIFIER.match(schema.name):
            raise RecordStoreError(f"Invalid relation name: {schema.name}", backend="sqlite")
        columns = []
        for column, ftype in schema.columns:
            if not _IDENTIFIER.match(column):
                raise RecordStoreError(f"Invalid column name: {column}", backend="sqlite")
            columns.append(f"{column} {_SQL_TYPES[ftype]} NOT NULL")

        with self._lock:
            with self._get_connection() as conn:
                conn.execute(f"CREATE TABLE IF NOT EXISTS {schema.name} ({', '.join(columns)})")
                for unique in schema.unique:
                    conn.execute(
                        f"CREATE UNIQUE INDEX IF NOT EXISTS "
                        f"{schema.name}__{'_'.join(unique)}__key "
                        f"ON {schema.name} ({', '.join(unique)})"
                    )
            self._schemas[schema.name] = schema

    def scan(self, relation: str) -> Iterator[Row]:
        schema = self._schema(relation)
        with self._get_connection() as conn:
            conn.row_factory = sqlite3.Row
            records = conn.execute(f"SELECT * FROM {relation} ORDER BY rowid").fetchall()
        for record in records:
            yield self._to_row(schema, record)

    def get_row(self, relation: str, index: int) -> Optional[Row]:
        schema = self._schema(relation)
        if index < 0:
            return None
        with self._get_connection() as conn:
            conn.row_factory = sqlite3.Row
            record = conn.execute(
                f"SELECT * FROM {relation} ORDER BY rowid LIMIT 1 OFFSET ?", (index,)
            ).fetchone()
        return self._to_row(schema, record) if record is not None else None

    def _insert(self, relation: str, values: Mapping[str, FieldValue], verb: str) -> bool:
        schema = self._schema(relation)
        schema.validate(values)
        columns = schema.column_names
        placeholders = ", ".join("?" for _ in columns)

        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                cursor = conn.execute(
                    f"{verb} INTO {relation} ({', '.join(columns)}) VALUES ({placeholders})",
                    [values[column].value for column in columns],
                )
                inserted = cursor.rowcount > 0
                if inserted and schema.id_column is not None:
                    self._bump_sequence(conn, relation, values[schema.id_column].value)
                conn.execute("COMMIT")
            except sqlite3.IntegrityError as e:
                conn.execute("ROLLBACK")
                raise self._already_exists(relation, e) from e
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return inserted

    def insert_row(self, relation: str, values: Mapping[str, FieldValue]) -> None:
        self._insert(relation, values, "INSERT")

    def insert_row_if_absent(self, relation: str, values: Mapping[str, FieldValue]) -> bool:
        return self._insert(relation, values, "INSERT OR IGNORE")

    def delete_rows(self, relation: str, **match: Any) -> int:
        schema = self._schema(relation)
        where, params = self._where(schema, match)
        with self._get_connection() as conn:
            cursor = conn.execute(f"DELETE FROM {relation}{where}", params)
            return cursor.rowcount

    def update_rows(
        self,
        relation: str,
        match: Mapping[str, Any],
        changes: Mapping[str, FieldValue],
    ) -> int:
        schema = self._schema(relation)
        if not changes:
            return 0
        assignments = []
        params: List[Any] = []
        for column, field in changes.items():
            expected = schema.column_type(column)
            if field.type != expected:
                raise InconsistentStateError(
                    f"Column '{column}' of '{relation}' expects {expected.value}, "
                    f"got {field.type.value}",
                    relation=relation,
                    column=column,
                )
            assignments.append(f"{column} = ?")
            params.append(field.value)
        where, where_params = self._where(schema, match)

        with self._get_connection() as conn:
            try:
                cursor = conn.execute(
                    f"UPDATE {relation} SET {', '.join(assignments)}{where}",
                    params + where_params,
                )
            except sqlite3.IntegrityError as e:
                raise self._already_exists(relation, e) from e
            return cursor.rowcount

    def allocate_id(self, relation: str) -> int:
        self._schema(relation)
        with self._get_connection() as conn:
            return self._next_sequence(conn, relation)

    def register_table(self, name: str, object_id: Optional[int] = None) -> int:
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                existing = conn.execute(
                    "SELECT name FROM _catalog WHERE name = ? OR object_id = ?",
                    (name, object_id),
                ).fetchone()
                if existing is not None:
                    raise AlreadyExistsError(
                        f"Table '{name}' or object ID {object_id} already exists",
                        kind="table",
                        name=name,
                    )
                if object_id is None:
                    current = conn.execute(
                        "SELECT last_id FROM _sequences WHERE relation = ?",
                        (_CATALOG_SEQUENCE,),
                    ).fetchone()
                    object_id = (current[0] if current else 0) + 1
                conn.execute(
                    "INSERT INTO _catalog (name, object_id) VALUES (?, ?)", (name, object_id)
                )
                self._bump_sequence(conn, _CATALOG_SEQUENCE, object_id)
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        logger.debug(f"Registered table '{name}' under object ID {object_id}")
        return object_id

    def resolve_table_object_id(self, name: str) -> Optional[int]:
        with self._get_connection() as conn:
            record = conn.execute(
                "SELECT object_id FROM _catalog WHERE name = ?", (name,)
            ).fetchone()
        return record[0] if record is not None else None

    def close(self) -> None:
        """Forget relation schemas (connections are per-operation)."""
        self._schemas.clear()
        logger.debug("SqliteRecordStore closed")
