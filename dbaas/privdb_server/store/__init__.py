"""
Record store abstraction for PrivDB.

This module provides a pluggable storage backend interface supporting:
- SQLite (single database file, recommended for deployments)
- In-memory (for testing)

The record store owns row storage, identifier allocation and the relation
catalog. The privilege core only reads and writes rows through it.

Invariants:
    - Rows come back in insertion order
    - Every stored field carries a type tag
    - Allocated identifiers never collide within a relation

How to change safely:
    - New backends must implement the RecordStore protocol
    - Run the store test-suite against every backend
"""

from .base import (
    GROUP_RELATION,
    GROUP_RIGHT_RELATION,
    GROUP_ROLE_RELATION,
    ROLE_RELATION,
    ROLE_RIGHT_RELATION,
    SYSTEM_RELATIONS,
    USER_GROUP_RELATION,
    USER_RELATION,
    USER_RIGHT_RELATION,
    USER_ROLE_RELATION,
    FieldType,
    FieldValue,
    RecordStore,
    RelationSchema,
    Row,
    create_record_store,
)
from .memory import InMemoryRecordStore
from .sqlite import SqliteRecordStore

__all__ = [
    # Protocol and types
    "RecordStore",
    "RelationSchema",
    "Row",
    "FieldType",
    "FieldValue",
    # System relations
    "SYSTEM_RELATIONS",
    "USER_RELATION",
    "GROUP_RELATION",
    "ROLE_RELATION",
    "USER_GROUP_RELATION",
    "USER_ROLE_RELATION",
    "GROUP_ROLE_RELATION",
    "USER_RIGHT_RELATION",
    "GROUP_RIGHT_RELATION",
    "ROLE_RIGHT_RELATION",
    # Factory
    "create_record_store",
    # Implementations
    "InMemoryRecordStore",
    "SqliteRecordStore",
]
