"""
Shared fixtures for the PrivDB test suite.

Every fixture that hands out a record store is parametrized over both
backends, so core behavior is checked against memory and SQLite alike.
"""

import tempfile

import pytest

from dbaas.privdb_server.privileges import PrivilegeManager
from dbaas.privdb_server.store import (
    SYSTEM_RELATIONS,
    InMemoryRecordStore,
    SqliteRecordStore,
)


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture(params=["memory", "sqlite"])
def store(request, data_dir):
    """Record store with every system relation created."""
    if request.param == "memory":
        backend = InMemoryRecordStore()
    else:
        backend = SqliteRecordStore(data_dir, wal_mode=False)
    for schema in SYSTEM_RELATIONS.values():
        backend.ensure_relation(schema)
    yield backend
    backend.close()


@pytest.fixture
def manager(store):
    """Privilege manager over a fresh store."""
    return PrivilegeManager(store)
