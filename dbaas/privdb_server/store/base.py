"""
Base protocol and types for the record store abstraction.

This module defines the RecordStore protocol that all backends must implement,
along with the schema-typed row model used to read and write relations.

Every stored field is tagged with its FieldType. Readers ask for the type they
expect (Row.get_int / Row.get_text) and get an InconsistentStateError when the
tag does not match, instead of interpreting raw values blindly.

Invariants:
    - scan() yields rows in insertion order and is restartable
    - scan() iterates over a snapshot, so callers may delete while iterating
    - allocate_id() never returns an id already present in the relation
    - Inserted rows always match their relation's schema
    - No two rows agree on any of a relation's unique column sets, even
      when several processes share one store

How to change safely:
    - Protocol changes require updating all implementations
    - New system relations are added to SYSTEM_RELATIONS only
    - Never change the type of an existing column
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Optional,
    Protocol,
    Tuple,
    Union,
    runtime_checkable,
)
import logging

from ..errors import InconsistentStateError

if TYPE_CHECKING:
    from ..config import StorageConfig

logger = logging.getLogger(__name__)


class FieldType(Enum):
    """Storage type tag of a field."""

    INT = "int"
    TEXT = "text"


@dataclass(frozen=True)
class FieldValue:
    """A single tagged field value.

    Attributes:
        type: Storage type tag
        value: Python value (int for INT, str for TEXT)
    """

    type: FieldType
    value: Union[int, str]

    @classmethod
    def int_(cls, value: int) -> FieldValue:
        """Create an INT field."""
        return cls(FieldType.INT, value)

    @classmethod
    def text(cls, value: str) -> FieldValue:
        """Create a TEXT field."""
        return cls(FieldType.TEXT, value)

    @classmethod
    def from_raw(cls, value: Any) -> FieldValue:
        """Tag a raw value read back from a backend.

        Raises:
            InconsistentStateError: If the value is neither int nor str
        """
        # bool is an int subclass but never a valid stored value
        if isinstance(value, bool):
            raise InconsistentStateError(f"Unexpected boolean field value: {value!r}")
        if isinstance(value, int):
            return cls(FieldType.INT, value)
        if isinstance(value, str):
            return cls(FieldType.TEXT, value)
        raise InconsistentStateError(
            f"Unsupported field value of type {type(value).__name__}: {value!r}"
        )


@dataclass(frozen=True)
class RelationSchema:
    """Column layout of a relation.

    Attributes:
        name: Relation name
        columns: Ordered (column, type) pairs
        id_column: Column holding ids handed out by allocate_id(), if any
        unique: Column sets whose combined values identify at most one row
    """

    name: str
    columns: Tuple[Tuple[str, FieldType], ...]
    id_column: Optional[str] = None
    unique: Tuple[Tuple[str, ...], ...] = ()

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.columns)

    def key_of(
        self, columns: Tuple[str, ...], values: Mapping[str, FieldValue]
    ) -> Tuple[Optional[FieldValue], ...]:
        """Tagged values of a unique column set, for conflict detection."""
        return tuple(values.get(column) for column in columns)

    def column_type(self, column: str) -> FieldType:
        for name, ftype in self.columns:
            if name == column:
                return ftype
        raise InconsistentStateError(
            f"Relation '{self.name}' has no column '{column}'",
            relation=self.name,
            column=column,
        )

    def validate(self, values: Mapping[str, FieldValue]) -> None:
        """Check a row against this schema.

        Raises:
            InconsistentStateError: If columns are missing, unknown or mistyped
        """
        problems = []
        for name, ftype in self.columns:
            field = values.get(name)
            if field is None:
                problems.append(f"missing column '{name}'")
            elif field.type != ftype:
                problems.append(
                    f"column '{name}' expects {ftype.value}, got {field.type.value}"
                )
        for name in values:
            if name not in self.column_names:
                problems.append(f"unknown column '{name}'")
        if problems:
            raise InconsistentStateError(
                f"Row does not match relation '{self.name}': {'; '.join(problems)}",
                relation=self.name,
                problems=problems,
            )


class Row(Mapping):
    """A row read from a relation: column name -> FieldValue.

    Example:
        >>> row = Row("priv_user", {"id": FieldValue.int_(1), "username": FieldValue.text("alice")})
        >>> row.get_int("id")
        1
    """

    def __init__(self, relation: str, fields: Mapping[str, FieldValue]) -> None:
        self.relation = relation
        self._fields: Dict[str, FieldValue] = dict(fields)

    def __getitem__(self, column: str) -> FieldValue:
        return self._fields[column]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        values = ", ".join(f"{k}={v.value!r}" for k, v in self._fields.items())
        return f"Row({self.relation}: {values})"

    def _typed(self, column: str, expected: FieldType) -> Union[int, str]:
        field = self._fields.get(column)
        if field is None:
            raise InconsistentStateError(
                f"Row of '{self.relation}' has no column '{column}'",
                relation=self.relation,
                column=column,
            )
        if field.type != expected:
            raise InconsistentStateError(
                f"Column '{column}' of '{self.relation}' holds {field.type.value}, "
                f"expected {expected.value}",
                relation=self.relation,
                column=column,
            )
        return field.value

    def get_int(self, column: str) -> int:
        """Read an INT column."""
        return self._typed(column, FieldType.INT)  # type: ignore[return-value]

    def get_text(self, column: str) -> str:
        """Read a TEXT column."""
        return self._typed(column, FieldType.TEXT)  # type: ignore[return-value]

    def matches(self, match: Mapping[str, Any]) -> bool:
        """Whether every (column, raw value) pair in match equals this row."""
        for column, expected in match.items():
            field = self._fields.get(column)
            if field is None or field.value != expected:
                return False
            # 1 == True in Python; keep int/str comparisons strict
            if type(field.value) is not type(expected):
                return False
        return True


def _columns(*pairs: Tuple[str, FieldType]) -> Tuple[Tuple[str, FieldType], ...]:
    return tuple(pairs)


USER_RELATION = RelationSchema(
    "priv_user",
    _columns(("id", FieldType.INT), ("username", FieldType.TEXT), ("password", FieldType.TEXT)),
    id_column="id",
    unique=(("id",), ("username",)),
)
GROUP_RELATION = RelationSchema(
    "priv_group",
    _columns(("id", FieldType.INT), ("name", FieldType.TEXT)),
    id_column="id",
    unique=(("id",), ("name",)),
)
ROLE_RELATION = RelationSchema(
    "priv_role",
    _columns(("id", FieldType.INT), ("name", FieldType.TEXT)),
    id_column="id",
    unique=(("id",), ("name",)),
)
USER_GROUP_RELATION = RelationSchema(
    "priv_user_group",
    _columns(("user_id", FieldType.INT), ("group_id", FieldType.INT)),
    unique=(("user_id", "group_id"),),
)
USER_ROLE_RELATION = RelationSchema(
    "priv_user_role",
    _columns(("user_id", FieldType.INT), ("role_id", FieldType.INT)),
    unique=(("user_id", "role_id"),),
)
GROUP_ROLE_RELATION = RelationSchema(
    "priv_group_role",
    _columns(("group_id", FieldType.INT), ("role_id", FieldType.INT)),
    unique=(("group_id", "role_id"),),
)


def _right_relation(name: str) -> RelationSchema:
    return RelationSchema(
        name,
        _columns(
            ("id", FieldType.INT),
            ("subject_id", FieldType.INT),
            ("object_id", FieldType.INT),
            ("right_type", FieldType.TEXT),
        ),
        id_column="id",
        unique=(("id",), ("subject_id", "object_id", "right_type")),
    )


USER_RIGHT_RELATION = _right_relation("priv_user_right")
GROUP_RIGHT_RELATION = _right_relation("priv_group_right")
ROLE_RIGHT_RELATION = _right_relation("priv_role_right")

SYSTEM_RELATIONS: Dict[str, RelationSchema] = {
    schema.name: schema
    for schema in (
        USER_RELATION,
        GROUP_RELATION,
        ROLE_RELATION,
        USER_GROUP_RELATION,
        USER_ROLE_RELATION,
        GROUP_ROLE_RELATION,
        USER_RIGHT_RELATION,
        GROUP_RIGHT_RELATION,
        ROLE_RIGHT_RELATION,
    )
}


@runtime_checkable
class RecordStore(Protocol):
    """Protocol for record store backends.

    This is the storage contract consumed by the privilege core. The
    backend owns row storage, identifier allocation and the relation
    catalog; the privilege core owns everything else.

    Ordering contract:
        - Rows are returned in insertion order
        - get_row(relation, i) is the i-th row of the current contents

    Atomicity contract:
        - insert_row, delete_rows and update_rows are individually atomic
        - insert_row_if_absent checks and appends in one atomic step
        - allocate_id is atomic with respect to other allocations

    Example:
        >>> store = InMemoryRecordStore()
        >>> store.ensure_relation(USER_RELATION)
        >>> uid = store.allocate_id("priv_user")
        >>> store.insert_row("priv_user", {"id": FieldValue.int_(uid), ...})
    """

    @abstractmethod
    def ensure_relation(self, schema: RelationSchema) -> None:
        """Create the relation if it does not exist yet."""
        ...

    @abstractmethod
    def scan(self, relation: str) -> Iterator[Row]:
        """Iterate the rows of a relation in insertion order.

        The iteration is over a snapshot taken when it starts, so
        deleting rows while scanning is safe.

        Raises:
            RecordStoreError: If the relation does not exist
        """
        ...

    @abstractmethod
    def get_row(self, relation: str, index: int) -> Optional[Row]:
        """Return the index-th row of a relation, or None past the end."""
        ...

    @abstractmethod
    def insert_row(self, relation: str, values: Mapping[str, FieldValue]) -> None:
        """Append a row.

        Raises:
            InconsistentStateError: If the row does not match the schema
            AlreadyExistsError: If the row collides on a unique column set
            RecordStoreError: On backend failure
        """
        ...

    @abstractmethod
    def insert_row_if_absent(self, relation: str, values: Mapping[str, FieldValue]) -> bool:
        """Append a row unless it collides on a unique column set.

        Returns:
            True if the row was inserted, False if a conflicting row exists

        Raises:
            InconsistentStateError: If the row does not match the schema
        """
        ...

    @abstractmethod
    def delete_rows(self, relation: str, **match: Any) -> int:
        """Delete every row whose columns equal the given values.

        Returns:
            Number of rows deleted
        """
        ...

    @abstractmethod
    def update_rows(
        self,
        relation: str,
        match: Mapping[str, Any],
        changes: Mapping[str, FieldValue],
    ) -> int:
        """Set columns on every row matching the given values.

        Returns:
            Number of rows updated

        Raises:
            AlreadyExistsError: If an updated row would collide on a unique column set
        """
        ...

    @abstractmethod
    def allocate_id(self, relation: str) -> int:
        """Return a fresh identifier for a relation's id column."""
        ...

    @abstractmethod
    def register_table(self, name: str, object_id: Optional[int] = None) -> int:
        """Add a user relation to the catalog and return its object id.

        Raises:
            AlreadyExistsError: If the table name is already registered
        """
        ...

    @abstractmethod
    def resolve_table_object_id(self, name: str) -> Optional[int]:
        """Resolve a table name to its object id, or None if unknown."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Release backend resources."""
        ...


def create_record_store(config: "StorageConfig") -> RecordStore:
    """Factory function to create a record store from configuration.

    Args:
        config: Storage configuration

    Returns:
        Appropriate RecordStore implementation with system relations created

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .memory import InMemoryRecordStore
    from .sqlite import SqliteRecordStore

    store: RecordStore
    if config.backend == StoreBackend.MEMORY:
        store = InMemoryRecordStore()
    elif config.backend == StoreBackend.SQLITE:
        store = SqliteRecordStore(
            data_dir=config.data_dir,
            db_name=config.db_name,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
        )
    else:
        raise ValueError(f"Unsupported record store backend: {config.backend}")

    for schema in SYSTEM_RELATIONS.values():
        store.ensure_relation(schema)
    logger.info(f"Record store ready: {config.backend.value}")
    return store
