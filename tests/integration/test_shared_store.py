"""
Integration tests for several processes sharing one SQLite store.

Every privdb CLI call opens its own manager on the data directory while the
server holds another, so uniqueness has to hold across processes, not just
across threads. Workers start behind a barrier to make them collide.

Tests cover:
- Concurrent GRANT of the same right
- Concurrent creation of the same group name
"""

import multiprocessing

import pytest

from dbaas.privdb_server.config import StorageConfig, StoreBackend
from dbaas.privdb_server.errors import PrivilegeError
from dbaas.privdb_server.privileges import Decision, PrivilegeManager, SubjectKind
from dbaas.privdb_server.store import create_record_store

WORKERS = 6


def open_manager(data_dir):
    config = StorageConfig(backend=StoreBackend.SQLITE, data_dir=data_dir, wal_mode=True)
    return PrivilegeManager(create_record_store(config))


def grant_select(data_dir, barrier, results):
    manager = open_manager(data_dir)
    try:
        barrier.wait()
        manager.grant(SubjectKind.USER, "alice", "orders", "SELECT")
        results.put("granted")
    except PrivilegeError as e:
        results.put(e.code)
    finally:
        manager.close()


def add_readers(data_dir, barrier, results):
    manager = open_manager(data_dir)
    try:
        barrier.wait()
        manager.add_group("readers")
        results.put("created")
    except PrivilegeError as e:
        results.put(e.code)
    finally:
        manager.close()


def run_workers(target, data_dir):
    ctx = multiprocessing.get_context("spawn")
    barrier = ctx.Barrier(WORKERS)
    results = ctx.Queue()
    processes = [
        ctx.Process(target=target, args=(data_dir, barrier, results)) for _ in range(WORKERS)
    ]
    for p in processes:
        p.start()
    outcomes = [results.get(timeout=60) for _ in processes]
    for p in processes:
        p.join(timeout=60)
        assert p.exitcode == 0
    return outcomes


class TestSharedSqliteStore:
    """Uniqueness across independent managers on one database file."""

    @pytest.fixture
    def seeded_dir(self, data_dir):
        manager = open_manager(data_dir)
        manager.add_user("alice", "pw1")
        manager.add_table("orders", 7)
        manager.close()
        return data_dir

    def test_concurrent_grants_leave_one_row(self, seeded_dir):
        outcomes = run_workers(grant_select, seeded_dir)

        assert outcomes == ["granted"] * WORKERS
        manager = open_manager(seeded_dir)
        assert len(manager.grants_of(SubjectKind.USER, "alice")) == 1

        # one revoke undoes the grant
        assert manager.revoke(SubjectKind.USER, "alice", "orders", "SELECT").success
        assert manager.check_privilege("alice", "orders", "SELECT") is Decision.DENIED

    def test_concurrent_group_creation_succeeds_once(self, seeded_dir):
        outcomes = run_workers(add_readers, seeded_dir)

        assert sorted(outcomes) == ["ALREADY_EXISTS"] * (WORKERS - 1) + ["created"]
        manager = open_manager(seeded_dir)
        assert [g.name for g in manager.registry.list(SubjectKind.GROUP)] == ["readers"]
