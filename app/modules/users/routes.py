from fastapi import APIRouter, Depends
from app.config.permissions_config import ADMIN_ROLES, ROLE_HIERARCHY, PERMISSION_MATRIX
from app.core.dependencies import require_roles, require_superadmin_or_admin_token
from app.database.supabase_client import get_service_supabase
from app.modules.notifications.service import NotificationService
from app.modules.users.schemas import (
    UserCreate, UserUpdate, UserListResponse, UserCreateResponse, MessageResponse,
    RoleSetRequest, RoleSetResponse
)
from app.modules.users.service import UserService
from supabase import Client
from typing import Dict

router = APIRouter(tags=["users"])

USER_EDITORS = ADMIN_ROLES
USER_DELETERS = ("admin", "superadmin")


def get_user_service(supabase: Client = Depends(get_service_supabase)) -> UserService:
    return UserService(supabase, NotificationService())


@router.get("/users", response_model=UserListResponse)
async def list_users(
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: UserService = Depends(get_user_service)
):
    """All accounts with their profile"""
    return service.list_users()


@router.post("/users", response_model=UserCreateResponse, status_code=201)
async def create_user(
    body: UserCreate,
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: UserService = Depends(get_user_service)
):
    """Create a confirmed account; a password is generated when none is given"""
    return service.create_user(body, current)


@router.put("/users/{user_id}", response_model=MessageResponse)
async def update_user(
    user_id: str,
    body: UserUpdate,
    current: Dict = Depends(require_roles(*USER_EDITORS)),
    service: UserService = Depends(get_user_service)
):
    return service.update_user(user_id, body, current)


@router.delete("/users/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: str,
    current: Dict = Depends(require_roles(*USER_DELETERS)),
    service: UserService = Depends(get_user_service)
):
    return service.delete_user(user_id, current["id"])


@router.get("/roles")
async def list_roles(current: Dict = Depends(require_roles(*USER_EDITORS))):
    """Roles the caller may assign: those below their own level; superadmin sees all"""
    roles = PERMISSION_MATRIX["roles"]
    if current["role"] != "superadmin":
        level = ROLE_HIERARCHY[current["role"]]
        roles = [r for r in roles if r["level"] < level]
    return {"roles": roles, "permissions": PERMISSION_MATRIX["permissions"]}


@router.post("/admin/roles/set", response_model=RoleSetResponse)
async def set_role(
    body: RoleSetRequest,
    current: Dict = Depends(require_superadmin_or_admin_token),
    service: UserService = Depends(get_user_service)
):
    return service.set_role(body.userId, body.newRole, current["id"], current["role"], body.note)
