"""
Error types for PrivDB.

This module defines all exception types raised by the privilege core:
- PrivilegeError: Base exception
- NotFoundError: Name or identifier does not resolve
- AlreadyExistsError: Duplicate name or membership edge
- InvalidArgumentError: Request is malformed (e.g. rename to the same name)
- HasDependenciesError: Restricting DROP on a subject that still has dependents
- InconsistentStateError: Stored data has an unexpected shape or type
- RecordStoreError: Record store backend failure

Invariants:
    - All errors inherit from PrivilegeError
    - Every error carries a stable code for programmatic handling
    - Partial bulk operations are never rolled back by raising
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class PrivilegeError(Exception):
    """Base exception for all PrivDB errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "PRIVDB_ERROR"
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable error body."""
        return {
            "error": self.message,
            "error_code": self.code,
            "details": self.details,
        }


class NotFoundError(PrivilegeError):
    """Something referenced by name or id does not exist.

    Raised when:
    - A user, group, role or table name does not resolve
    - A membership edge to remove is absent
    - A grant to revoke is absent
    """

    def __init__(
        self,
        message: str,
        kind: str,
        name: Any = None,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"kind": kind, "name": name},
        )
        self.kind = kind
        self.name = name


class AlreadyExistsError(PrivilegeError):
    """Creation would violate a uniqueness invariant.

    Raised when:
    - An entity name is already taken within its kind
    - An explicit identifier is already in use
    - A membership edge is already present
    """

    def __init__(
        self,
        message: str,
        kind: str,
        name: Any = None,
    ) -> None:
        super().__init__(
            message,
            code="ALREADY_EXISTS",
            details={"kind": kind, "name": name},
        )
        self.kind = kind
        self.name = name


class InvalidArgumentError(PrivilegeError):
    """Request arguments are invalid."""

    def __init__(
        self,
        message: str,
        code: str = "INVALID_ARGUMENT",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code, details=details)


class HasDependenciesError(InvalidArgumentError):
    """A restricting DROP found grants or memberships still attached.

    Attributes:
        kind: Subject kind being dropped
        name: Subject name
        grants: Number of grant rows still held
        memberships: Number of membership edges still present
    """

    def __init__(
        self,
        kind: str,
        name: str,
        grants: int,
        memberships: int,
    ) -> None:
        super().__init__(
            f"Cannot drop {kind} '{name}': {grants} grant(s) and "
            f"{memberships} membership(s) remain",
            code="HAS_DEPENDENCIES",
            details={
                "kind": kind,
                "name": name,
                "grants": grants,
                "memberships": memberships,
            },
        )
        self.kind = kind
        self.name = name
        self.grants = grants
        self.memberships = memberships


class InconsistentStateError(PrivilegeError):
    """A stored field has an unexpected type or a row has an unexpected shape.

    Raised when:
    - A column expected to hold an integer holds text (or vice versa)
    - A row is missing a column its relation declares
    - A right stored in the ledger is not a canonical right
    """

    def __init__(
        self,
        message: str,
        relation: Optional[str] = None,
        column: Optional[str] = None,
        problems: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="INCONSISTENT_STATE",
            details={
                "relation": relation,
                "column": column,
                "problems": problems or [],
            },
        )
        self.relation = relation
        self.column = column
        self.problems = problems or []


class RecordStoreError(PrivilegeError):
    """The record store backend failed."""

    def __init__(self, message: str, backend: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="STORE_ERROR",
            details={"backend": backend},
        )
        self.backend = backend
