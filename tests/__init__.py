"""
PrivDB Test Suite.

This package contains:
- unit/: Unit tests (each component against memory and SQLite stores)
- integration/: Integration tests (manager facade, HTTP API, CLI)
"""
