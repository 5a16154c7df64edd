"""
Core types for the privilege model.

Defines the subject kinds, rights, membership edge kinds, decisions and the
records the registry, graph and ledger hand back to callers.

Invariants:
    - CANONICAL_RIGHTS order is fixed: UPDATE, DELETE, INSERT, SELECT
    - ALL is never stored; it always expands to the canonical rights
    - Each subject kind has exactly one entity relation and one ledger relation
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

from ..errors import InvalidArgumentError, NotFoundError
from ..store.base import (
    GROUP_RELATION,
    GROUP_RIGHT_RELATION,
    GROUP_ROLE_RELATION,
    ROLE_RELATION,
    ROLE_RIGHT_RELATION,
    USER_GROUP_RELATION,
    USER_RELATION,
    USER_RIGHT_RELATION,
    USER_ROLE_RELATION,
    RelationSchema,
)


class SubjectKind(Enum):
    """Kinds of subject that can hold a privilege."""

    USER = "user"
    GROUP = "group"
    ROLE = "role"

    @classmethod
    def parse(cls, value: str) -> SubjectKind:
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid = [k.value for k in cls]
            raise InvalidArgumentError(
                f"Invalid subject kind '{value}', must be one of {valid}"
            ) from None

    @property
    def entity_relation(self) -> RelationSchema:
        return _ENTITY_RELATIONS[self]

    @property
    def name_column(self) -> str:
        return "username" if self is SubjectKind.USER else "name"

    @property
    def ledger_relation(self) -> RelationSchema:
        return _LEDGER_RELATIONS[self]


_ENTITY_RELATIONS = {
    SubjectKind.USER: USER_RELATION,
    SubjectKind.GROUP: GROUP_RELATION,
    SubjectKind.ROLE: ROLE_RELATION,
}

_LEDGER_RELATIONS = {
    SubjectKind.USER: USER_RIGHT_RELATION,
    SubjectKind.GROUP: GROUP_RIGHT_RELATION,
    SubjectKind.ROLE: ROLE_RIGHT_RELATION,
}


class Right(Enum):
    """Table privileges. ALL is shorthand for the four canonical rights."""

    SELECT = "SELECT"
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ALL = "ALL"

    @classmethod
    def parse(cls, value: str | Right) -> Right:
        """Parse a right name, case-insensitively.

        Raises:
            InvalidArgumentError: If the name is not a known right
        """
        if isinstance(value, Right):
            return value
        try:
            return cls(value.strip().upper())
        except ValueError:
            valid = [r.value for r in cls]
            raise InvalidArgumentError(
                f"Invalid right '{value}', must be one of {valid}"
            ) from None

    def expand(self) -> Tuple[Right, ...]:
        """The canonical rights this right stands for."""
        if self is Right.ALL:
            return CANONICAL_RIGHTS
        return (self,)


CANONICAL_RIGHTS: Tuple[Right, ...] = (Right.UPDATE, Right.DELETE, Right.INSERT, Right.SELECT)


class EdgeKind(Enum):
    """Membership edge kinds: (a, b) means a is a member of b."""

    USER_GROUP = "user_group"
    USER_ROLE = "user_role"
    GROUP_ROLE = "group_role"

    @property
    def relation(self) -> RelationSchema:
        return _EDGE_RELATIONS[self]

    @property
    def a_kind(self) -> SubjectKind:
        return SubjectKind.GROUP if self is EdgeKind.GROUP_ROLE else SubjectKind.USER

    @property
    def b_kind(self) -> SubjectKind:
        return SubjectKind.GROUP if self is EdgeKind.USER_GROUP else SubjectKind.ROLE

    @property
    def a_column(self) -> str:
        return f"{self.a_kind.value}_id"

    @property
    def b_column(self) -> str:
        return f"{self.b_kind.value}_id"

    @classmethod
    def between(cls, a_kind: SubjectKind, b_kind: SubjectKind) -> EdgeKind:
        for kind in cls:
            if kind.a_kind is a_kind and kind.b_kind is b_kind:
                return kind
        raise InvalidArgumentError(
            f"No membership edge from {a_kind.value} to {b_kind.value}"
        )


_EDGE_RELATIONS = {
    EdgeKind.USER_GROUP: USER_GROUP_RELATION,
    EdgeKind.USER_ROLE: USER_ROLE_RELATION,
    EdgeKind.GROUP_ROLE: GROUP_ROLE_RELATION,
}


class Decision(Enum):
    """Outcome of an authorization check."""

    ALLOWED = "allowed"
    DENIED = "denied"
    NOT_FOUND = "not_found"

    def __bool__(self) -> bool:
        return self is Decision.ALLOWED


@dataclass(frozen=True)
class User:
    id: int
    username: str
    password_digest: str


@dataclass(frozen=True)
class Group:
    id: int
    name: str


@dataclass(frozen=True)
class Role:
    id: int
    name: str


@dataclass(frozen=True)
class Membership:
    """A membership edge: subject a_id belongs to subject b_id."""

    kind: EdgeKind
    a_id: int
    b_id: int


@dataclass(frozen=True)
class Grant:
    """One (subject, table, right) authorization record.

    Attributes:
        id: Grant identifier
        subject_kind: Ledger the grant lives in
        subject_id: User, group or role id
        object_id: Object id of the table
        right: Canonical right (never ALL)
    """

    id: int
    subject_kind: SubjectKind
    subject_id: int
    object_id: int
    right: Right

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subject_kind": self.subject_kind.value,
            "subject_id": self.subject_id,
            "object_id": self.object_id,
            "right": self.right.value,
        }


@dataclass(frozen=True)
class RevokeOutcome:
    right: Right
    revoked: bool


@dataclass(frozen=True)
class RevokeResult:
    """Per-right outcome of a revoke.

    The revoke succeeded only if every requested right was revoked.
    Rights revoked before a missing one stay revoked.
    """

    subject_kind: SubjectKind
    subject_id: int
    object_id: int
    outcomes: Tuple[RevokeOutcome, ...]

    @property
    def success(self) -> bool:
        return bool(self.outcomes) and all(o.revoked for o in self.outcomes)

    @property
    def revoked_rights(self) -> Tuple[Right, ...]:
        return tuple(o.right for o in self.outcomes if o.revoked)

    @property
    def missing_rights(self) -> Tuple[Right, ...]:
        return tuple(o.right for o in self.outcomes if not o.revoked)

    def raise_for_status(self) -> None:
        """Raise NotFoundError if any requested right was not held."""
        if not self.success:
            missing = ", ".join(r.value for r in self.missing_rights)
            raise NotFoundError(
                f"No {missing} grant for {self.subject_kind.value} {self.subject_id} "
                f"on object {self.object_id}",
                kind="grant",
                name=[r.value for r in self.missing_rights],
            )

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "outcomes": [
                {"right": o.right.value, "revoked": o.revoked} for o in self.outcomes
            ],
        }
