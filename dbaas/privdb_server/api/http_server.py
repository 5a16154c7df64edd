"""
Admin HTTP API for PrivDB.

FastAPI application exposing the privilege manager over REST:
- User, group and role administration
- Group and role membership
- GRANT / REVOKE
- Authorization checks
- Table catalog registration

Invariants:
    - Every PrivilegeError maps to a JSON body {"error", "error_code", "details"}
    - Handlers are synchronous; FastAPI runs them in its threadpool
    - A REVOKE that leaves any requested right unrevoked answers 404

How to change safely:
    - Add the status mapping for a new error code in ERROR_STATUS
    - Keep request models flat; the CLI sends the same shapes
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .._version import __version__
from ..config import ServerConfig
from ..errors import InvalidArgumentError, PrivilegeError
from ..privileges import PrivilegeManager, SubjectKind

logger = logging.getLogger(__name__)

ERROR_STATUS: Dict[str, int] = {
    "NOT_FOUND": 404,
    "ALREADY_EXISTS": 409,
    "INVALID_ARGUMENT": 400,
    "HAS_DEPENDENCIES": 400,
    "INCONSISTENT_STATE": 500,
    "STORE_ERROR": 500,
}

router = APIRouter(tags=["PrivDB Admin"])


# --- Request/Response Models ---


class UserCreateRequest(BaseModel):
    """Request to create a user."""

    username: str = Field(..., min_length=1, description="Unique username")
    password: str = Field(..., description="Plaintext password")
    id: Optional[int] = Field(None, ge=1, description="Explicit user ID")


class NamedCreateRequest(BaseModel):
    """Request to create a group or role."""

    name: str = Field(..., min_length=1, description="Unique name")
    id: Optional[int] = Field(None, ge=1, description="Explicit ID")


class RenameRequest(BaseModel):
    """Request to rename a user, group or role."""

    new_name: str = Field(..., description="New name")


class PasswordRequest(BaseModel):
    """Password to verify."""

    password: str


class GroupMemberRequest(BaseModel):
    """Request to add a user to a group."""

    username: str


class RoleMemberRequest(BaseModel):
    """Request to assign a role to a user or group."""

    subject_kind: str = Field(..., description="'user' or 'group'")
    name: str


class PrivilegeRequest(BaseModel):
    """GRANT / REVOKE body."""

    subject_kind: str = Field(..., description="'user', 'group' or 'role'")
    subject: str = Field(..., description="Subject name")
    table: str = Field(..., description="Table name")
    right: str = Field(..., description="SELECT, INSERT, UPDATE, DELETE or ALL")


class TableCreateRequest(BaseModel):
    """Request to register a table in the catalog."""

    name: str = Field(..., min_length=1)
    object_id: Optional[int] = Field(None, ge=1, description="Explicit object ID")


class IdResponse(BaseModel):
    id: int


class DecisionResponse(BaseModel):
    decision: str
    allowed: bool


# --- Dependencies ---


def get_manager(request: Request) -> PrivilegeManager:
    """Get the privilege manager from app state."""
    return request.app.state.manager


def _role_member_kind(value: str) -> SubjectKind:
    kind = SubjectKind.parse(value)
    if kind is SubjectKind.ROLE:
        raise InvalidArgumentError("Roles cannot be members of roles")
    return kind


# --- Users ---


@router.post("/users", response_model=IdResponse, status_code=201)
def create_user(body: UserCreateRequest, manager: PrivilegeManager = Depends(get_manager)):
    """Create a user. The password is stored as a digest only."""
    return {"id": manager.add_user(body.username, body.password, body.id)}


@router.delete("/users/{name}", response_model=IdResponse)
def drop_user(
    name: str,
    cascade: bool = Query(False, description="Revoke grants and memberships first"),
    manager: PrivilegeManager = Depends(get_manager),
):
    return {"id": manager.drop_user(name, cascade=cascade)}


@router.post("/users/{name}/rename", response_model=IdResponse)
def rename_user(name: str, body: RenameRequest, manager: PrivilegeManager = Depends(get_manager)):
    return {"id": manager.rename(SubjectKind.USER, name, body.new_name)}


@router.post("/users/{name}/verify")
def verify_password(
    name: str, body: PasswordRequest, manager: PrivilegeManager = Depends(get_manager)
):
    """Check a password against the stored digest."""
    return {"valid": manager.check_password(name, body.password)}


# --- Groups ---


@router.post("/groups", response_model=IdResponse, status_code=201)
def create_group(body: NamedCreateRequest, manager: PrivilegeManager = Depends(get_manager)):
    return {"id": manager.add_group(body.name, body.id)}


@router.delete("/groups/{name}", response_model=IdResponse)
def drop_group(
    name: str,
    cascade: bool = Query(False),
    manager: PrivilegeManager = Depends(get_manager),
):
    return {"id": manager.drop_group(name, cascade=cascade)}


@router.post("/groups/{name}/rename", response_model=IdResponse)
def rename_group(name: str, body: RenameRequest, manager: PrivilegeManager = Depends(get_manager)):
    return {"id": manager.rename(SubjectKind.GROUP, name, body.new_name)}


@router.post("/groups/{group}/members", status_code=201)
def add_group_member(
    group: str, body: GroupMemberRequest, manager: PrivilegeManager = Depends(get_manager)
):
    manager.add_user_to_group(body.username, group)
    return {"group": group, "username": body.username}


@router.delete("/groups/{group}/members/{username}", status_code=204)
def remove_group_member(
    group: str, username: str, manager: PrivilegeManager = Depends(get_manager)
):
    manager.remove_user_from_group(username, group)


# --- Roles ---


@router.post("/roles", response_model=IdResponse, status_code=201)
def create_role(body: NamedCreateRequest, manager: PrivilegeManager = Depends(get_manager)):
    return {"id": manager.add_role(body.name, body.id)}


@router.delete("/roles/{name}", response_model=IdResponse)
def drop_role(
    name: str,
    cascade: bool = Query(False),
    manager: PrivilegeManager = Depends(get_manager),
):
    return {"id": manager.drop_role(name, cascade=cascade)}


@router.post("/roles/{name}/rename", response_model=IdResponse)
def rename_role(name: str, body: RenameRequest, manager: PrivilegeManager = Depends(get_manager)):
    return {"id": manager.rename(SubjectKind.ROLE, name, body.new_name)}


@router.post("/roles/{role}/members", status_code=201)
def add_role_member(
    role: str, body: RoleMemberRequest, manager: PrivilegeManager = Depends(get_manager)
):
    """Assign a role to a user or a group."""
    kind = _role_member_kind(body.subject_kind)
    if kind is SubjectKind.USER:
        manager.assign_role_to_user(body.name, role)
    else:
        manager.assign_role_to_group(body.name, role)
    return {"role": role, "subject_kind": kind.value, "name": body.name}


@router.delete("/roles/{role}/members/{subject_kind}/{name}", status_code=204)
def remove_role_member(
    role: str,
    subject_kind: str,
    name: str,
    manager: PrivilegeManager = Depends(get_manager),
):
    kind = _role_member_kind(subject_kind)
    if kind is SubjectKind.USER:
        manager.remove_role_from_user(name, role)
    else:
        manager.remove_role_from_group(name, role)


# --- Privileges ---


@router.post("/grants", status_code=201)
def grant(body: PrivilegeRequest, manager: PrivilegeManager = Depends(get_manager)):
    """
    GRANT a right on a table.

    ALL expands to UPDATE, DELETE, INSERT, SELECT. Rights already held
    are returned unchanged.
    """
    kind = SubjectKind.parse(body.subject_kind)
    grants = manager.grant(kind, body.subject, body.table, body.right)
    return {"grants": [g.to_dict() for g in grants]}


@router.post("/revocations")
def revoke(body: PrivilegeRequest, manager: PrivilegeManager = Depends(get_manager)):
    """
    REVOKE a right on a table.

    Answers 404 with the per-right outcome when any requested right was
    not held. Rights revoked before the missing one stay revoked.
    """
    kind = SubjectKind.parse(body.subject_kind)
    result = manager.revoke(kind, body.subject, body.table, body.right)
    if not result.success:
        return JSONResponse(status_code=404, content=result.to_dict())
    return result.to_dict()


@router.get("/check", response_model=DecisionResponse)
def check(
    user: str = Query(..., description="Username"),
    table: str = Query(..., description="Table name"),
    right: str = Query(..., description="Right to check"),
    via_roles: bool = Query(True, description="Follow role memberships"),
    manager: PrivilegeManager = Depends(get_manager),
):
    """Decide whether a user holds a right on a table."""
    decision = manager.check_privilege(user, table, right, via_roles=via_roles)
    return {"decision": decision.value, "allowed": bool(decision)}


# --- Catalog ---


@router.post("/tables", response_model=IdResponse, status_code=201)
def register_table(body: TableCreateRequest, manager: PrivilegeManager = Depends(get_manager)):
    return {"id": manager.add_table(body.name, body.object_id)}


def _privilege_error_handler(request: Request, exc: PrivilegeError) -> JSONResponse:
    status_code = ERROR_STATUS.get(exc.code, 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_app(
    manager: PrivilegeManager,
    config: Optional[ServerConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        manager: Privilege manager serving every request
        config: Server configuration (CORS origins); defaults apply if None
    """
    config = config or ServerConfig()

    app = FastAPI(
        title="PrivDB Admin",
        description="Users, groups, roles and table privileges.",
        version=__version__,
    )
    app.state.manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.http.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PrivilegeError, _privilege_error_handler)
    app.include_router(router, prefix="/v1")

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"status": "healthy", "service": "privdb", "version": __version__}

    return app

