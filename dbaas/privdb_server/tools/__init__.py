"""
CLI tools for PrivDB administration.

This module provides command-line tools for:
- privdb: Create identities, maintain memberships, grant, revoke and check

Invariants:
    - Tools work offline (no running server required)
    - All mutations are logged by the privilege core
"""

from .privilege_cli import PrivilegeCLI

__all__ = ["PrivilegeCLI"]
