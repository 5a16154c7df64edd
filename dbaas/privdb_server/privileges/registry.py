"""
Identity registry for PrivDB.

The IdentityRegistry is the authority for users, groups and roles.
It provides:
- Creation with name-uniqueness enforcement and id assignment
- Name -> id resolution (the only place names are compared)
- Removal by name
- Identity-preserving rename
- Password verification for users

Invariants:
    - Names are unique within a subject kind; the store enforces it, so
      concurrent creators in other processes get AlreadyExistsError too
    - Ids are assigned by the record store unless an explicit id is given
    - Rename changes only the name column; the id never changes
    - Removal does not touch memberships or grants (callers cascade first)

How to change safely:
    - Keep name lookups here; everything downstream works on ids
    - Never re-create an entity to rename it
"""

from __future__ import annotations

import logging
from typing import List, Optional, Union

from ..errors import AlreadyExistsError, InvalidArgumentError, NotFoundError
from ..hasher import CredentialHasher, Sha256Hasher, verify
from ..store.base import FieldValue, RecordStore, Row
from .types import Group, Role, SubjectKind, User

logger = logging.getLogger(__name__)

Entity = Union[User, Group, Role]


class IdentityRegistry:
    """CRUD for users, groups and roles.

    Thread safety:
        Uniqueness checks and inserts are not serialized here; the
        statement executor is the single writer for identities.

    Example:
        >>> registry = IdentityRegistry(store)
        >>> registry.add_user("alice", "pw1")
        1
        >>> registry.add_group("readers")
        1
        >>> registry.get_user_id("alice")
        1
    """

    def __init__(
        self,
        store: RecordStore,
        hasher: Optional[CredentialHasher] = None,
    ) -> None:
        self.store = store
        self.hasher = hasher or Sha256Hasher()

    # Lookup

    def _find_row(self, kind: SubjectKind, name: str) -> Optional[Row]:
        relation = kind.entity_relation.name
        for row in self.store.scan(relation):
            if row.get_text(kind.name_column) == name:
                return row
        return None

    def _id_in_use(self, kind: SubjectKind, entity_id: int) -> bool:
        return any(
            row.get_int("id") == entity_id for row in self.store.scan(kind.entity_relation.name)
        )

    def find_id(self, kind: SubjectKind, name: str) -> Optional[int]:
        """Resolve a name to an id, or None if unknown."""
        row = self._find_row(kind, name)
        return row.get_int("id") if row is not None else None

    def get_id(self, kind: SubjectKind, name: str) -> int:
        """Resolve a name to an id.

        Raises:
            NotFoundError: If no entity of that kind has the name
        """
        entity_id = self.find_id(kind, name)
        if entity_id is None:
            raise NotFoundError(f"{kind.value.capitalize()} '{name}' does not exist", kind=kind.value, name=name)
        return entity_id

    def get_user_id(self, username: str) -> int:
        return self.get_id(SubjectKind.USER, username)

    def get_group_id(self, name: str) -> int:
        return self.get_id(SubjectKind.GROUP, name)

    def get_role_id(self, name: str) -> int:
        return self.get_id(SubjectKind.ROLE, name)

    def get(self, kind: SubjectKind, name: str) -> Entity:
        """Fetch the full record for a name.

        Raises:
            NotFoundError: If no entity of that kind has the name
        """
        row = self._find_row(kind, name)
        if row is None:
            raise NotFoundError(f"{kind.value.capitalize()} '{name}' does not exist", kind=kind.value, name=name)
        return self._to_entity(kind, row)

    def get_user(self, username: str) -> User:
        return self.get(SubjectKind.USER, username)  # type: ignore[return-value]

    def get_group(self, name: str) -> Group:
        return self.get(SubjectKind.GROUP, name)  # type: ignore[return-value]

    def get_role(self, name: str) -> Role:
        return self.get(SubjectKind.ROLE, name)  # type: ignore[return-value]

    def list(self, kind: SubjectKind) -> List[Entity]:
        """All entities of a kind, in creation order."""
        return [self._to_entity(kind, row) for row in self.store.scan(kind.entity_relation.name)]

    def name_of(self, kind: SubjectKind, entity_id: int) -> Optional[str]:
        """Reverse lookup, for reporting."""
        for row in self.store.scan(kind.entity_relation.name):
            if row.get_int("id") == entity_id:
                return row.get_text(kind.name_column)
        return None

    @staticmethod
    def _to_entity(kind: SubjectKind, row: Row) -> Entity:
        if kind is SubjectKind.USER:
            return User(
                id=row.get_int("id"),
                username=row.get_text("username"),
                password_digest=row.get_text("password"),
            )
        if kind is SubjectKind.GROUP:
            return Group(id=row.get_int("id"), name=row.get_text("name"))
        return Role(id=row.get_int("id"), name=row.get_text("name"))

    # Creation

    def _add(
        self,
        kind: SubjectKind,
        name: str,
        extra: dict,
        explicit_id: Optional[int],
    ) -> int:
        if not name:
            raise InvalidArgumentError(f"{kind.value.capitalize()} name must not be empty")

        if self.find_id(kind, name) is not None:
            logger.info(f"{kind.value.capitalize()} name '{name}' is not available")
            raise AlreadyExistsError(
                f"{kind.value.capitalize()} '{name}' already exists", kind=kind.value, name=name
            )

        relation = kind.entity_relation.name
        if explicit_id:
            if self._id_in_use(kind, explicit_id):
                raise AlreadyExistsError(
                    f"{kind.value.capitalize()} ID {explicit_id} is already in use",
                    kind=kind.value,
                    name=name,
                )
            entity_id = explicit_id
        else:
            entity_id = self.store.allocate_id(relation)

        values = {
            "id": FieldValue.int_(entity_id),
            kind.name_column: FieldValue.text(name),
            **extra,
        }
        try:
            self.store.insert_row(relation, values)
        except AlreadyExistsError as e:
            # Created concurrently by another writer after the check above
            raise AlreadyExistsError(
                f"{kind.value.capitalize()} '{name}' or ID {entity_id} already exists",
                kind=kind.value,
                name=name,
            ) from e
        logger.info(f"Added {kind.value} '{name}' under ID {entity_id}")
        return entity_id

    def add_user(self, username: str, password: str, explicit_id: Optional[int] = None) -> int:
        """Create a user.

        Args:
            username: Unique username
            password: Plaintext password (only its digest is stored)
            explicit_id: Id to use instead of allocating one

        Returns:
            The user id

        Raises:
            AlreadyExistsError: If the username or explicit id is taken
        """
        digest = self.hasher.hash(password)
        return self._add(
            SubjectKind.USER,
            username,
            {"password": FieldValue.text(digest)},
            explicit_id,
        )

    def add_group(self, name: str, explicit_id: Optional[int] = None) -> int:
        """Create a group. See add_user for the id rules."""
        return self._add(SubjectKind.GROUP, name, {}, explicit_id)

    def add_role(self, name: str, explicit_id: Optional[int] = None) -> int:
        """Create a role. See add_user for the id rules."""
        return self._add(SubjectKind.ROLE, name, {}, explicit_id)

    # Removal

    def remove(self, kind: SubjectKind, name: str) -> int:
        """Delete an entity by name.

        Memberships and grants referencing the id are left alone.

        Returns:
            The removed entity's id

        Raises:
            NotFoundError: If no entity of that kind has the name
        """
        entity_id = self.get_id(kind, name)
        self.store.delete_rows(kind.entity_relation.name, **{kind.name_column: name})
        logger.info(f"Removed {kind.value} '{name}' under ID {entity_id}")
        return entity_id

    def remove_user(self, username: str) -> int:
        return self.remove(SubjectKind.USER, username)

    def remove_group(self, name: str) -> int:
        return self.remove(SubjectKind.GROUP, name)

    def remove_role(self, name: str) -> int:
        return self.remove(SubjectKind.ROLE, name)

    # Rename

    def rename(self, kind: SubjectKind, old_name: str, new_name: str) -> int:
        """Rename an entity in place, keeping its id.

        Returns:
            The (unchanged) entity id

        Raises:
            InvalidArgumentError: If old and new names are equal or new is empty
            NotFoundError: If old_name does not exist
            AlreadyExistsError: If new_name is taken
        """
        if old_name == new_name:
            raise InvalidArgumentError("Please choose a different name")
        if not new_name:
            raise InvalidArgumentError(f"{kind.value.capitalize()} name must not be empty")

        entity_id = self.get_id(kind, old_name)
        if self.find_id(kind, new_name) is not None:
            raise AlreadyExistsError(
                f"{kind.value.capitalize()} '{new_name}' already exists",
                kind=kind.value,
                name=new_name,
            )

        try:
            self.store.update_rows(
                kind.entity_relation.name,
                {"id": entity_id},
                {kind.name_column: FieldValue.text(new_name)},
            )
        except AlreadyExistsError as e:
            raise AlreadyExistsError(
                f"{kind.value.capitalize()} '{new_name}' already exists",
                kind=kind.value,
                name=new_name,
            ) from e
        logger.info(f"Renamed {kind.value} '{old_name}' to '{new_name}' under ID {entity_id}")
        return entity_id

    def rename_user(self, old_name: str, new_name: str) -> int:
        return self.rename(SubjectKind.USER, old_name, new_name)

    def rename_group(self, old_name: str, new_name: str) -> int:
        return self.rename(SubjectKind.GROUP, old_name, new_name)

    def rename_role(self, old_name: str, new_name: str) -> int:
        return self.rename(SubjectKind.ROLE, old_name, new_name)

    # Credentials

    def check_password(self, username: str, password: str) -> bool:
        """Whether the password matches the stored digest for the user.

        Unknown users simply fail verification.
        """
        row = self._find_row(SubjectKind.USER, username)
        if row is None:
            logger.info(f"Password check for unknown user '{username}'")
            return False

        valid = verify(self.hasher, password, row.get_text("password"))
        if not valid:
            logger.info(f"Incorrect password for user '{username}'")
        return valid

    def set_password(self, username: str, password: str) -> None:
        """Replace a user's password digest.

        Raises:
            NotFoundError: If the user does not exist
        """
        user_id = self.get_user_id(username)
        self.store.update_rows(
            SubjectKind.USER.entity_relation.name,
            {"id": user_id},
            {"password": FieldValue.text(self.hasher.hash(password))},
        )
        logger.info(f"Changed password for user '{username}' under ID {user_id}")
