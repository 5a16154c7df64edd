"""
PrivDB Server - privilege model and resolution engine for a relational store.

This package implements the authorization core of the database:
- Users, groups and roles (identity registry)
- User/group/role membership edges (membership graph)
- Per-(subject, table, right) grant records (privilege ledger)
- Point-in-time authorization decisions (privilege resolver)

Architecture:
    ┌─────────────┐     ┌──────────────────┐     ┌───────────────────┐
    │  Statement  │────▶│ PrivilegeManager │────▶│ PrivilegeResolver │
    │  executor   │     │  (name-based)    │     │   (read-only)     │
    └─────────────┘     └────────┬─────────┘     └─────────┬─────────┘
                                 │                         │
              ┌──────────────────┼──────────────────┐      │
              ▼                  ▼                  ▼      ▼
       ┌────────────┐    ┌──────────────┐    ┌──────────────┐
       │  Identity  │    │  Membership  │    │  Privilege   │
       │  Registry  │    │    Graph     │    │   Ledger     │
       └─────┬──────┘    └──────┬───────┘    └──────┬───────┘
             │                  │                   │
             ▼                  ▼                   ▼
       ┌─────────────────────────────────────────────────────┐
       │      RecordStore (in-memory or SQLite backend)      │
       └─────────────────────────────────────────────────────┘

Invariants:
    - Names are unique within users, groups and roles
    - Membership edges are sets
    - At most one grant row exists per (subject, table, right)
    - The resolver never mutates state

How to change safely:
    - New subject kinds need a ledger relation and membership edge kinds
    - Keep the canonical right order stable (UPDATE, DELETE, INSERT, SELECT)
    - Uniqueness lives in the store's unique keys; never add a scan-then-insert path

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
