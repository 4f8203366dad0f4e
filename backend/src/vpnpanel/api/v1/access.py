"""Administrator access control API v1 endpoints (super admin only)."""

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from vpnpanel.access.service import access_service
from vpnpanel.api.v1.auth import UserResponse
from vpnpanel.api.v1.schemas import Page, to_page
from vpnpanel.auth.middleware import require_super_admin
from vpnpanel.auth.models import User, UserRole

router = APIRouter(prefix="/access", tags=["access"])


# ==================== MODELS ====================


class AdminCreateRequest(BaseModel):
    telegram_id: str = Field(..., pattern=r"^\d{1,20}$")
    role: UserRole = UserRole.ADMIN
    username: str | None = Field(default=None, min_length=3, max_length=64)
    password: str | None = Field(default=None, min_length=8, max_length=100)
    first_name: str | None = None
    last_name: str | None = None


class AdminUpdateRequest(BaseModel):
    role: UserRole | None = None
    is_active: bool | None = None


# ==================== ENDPOINTS ====================


@router.get("/admins", response_model=Page[UserResponse])
async def list_admins(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: UserRole | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    admin: User = Depends(require_super_admin),
):
    result = access_service.list_admins(page, limit, role=role, is_active=is_active, search=search)
    return to_page(result, UserResponse)


@router.post("/admins", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_admin(body: AdminCreateRequest, admin: User = Depends(require_super_admin)):
    """Grant admin rights to a Telegram user, creating the account if needed."""
    return access_service.create_admin(**body.model_dump(), created_by=admin.id)


@router.patch("/admins/{user_id}", response_model=UserResponse)
async def update_admin(user_id: int, body: AdminUpdateRequest, admin: User = Depends(require_super_admin)):
    return access_service.update_admin(user_id, role=body.role, is_active=body.is_active, actor_id=admin.id)


@router.post("/admins/{user_id}/deactivate", response_model=UserResponse)
async def deactivate_admin(user_id: int, admin: User = Depends(require_super_admin)):
    return access_service.deactivate_admin(user_id, actor_id=admin.id)


@router.delete("/admins/{user_id}", response_model=UserResponse)
async def revoke_admin(user_id: int, admin: User = Depends(require_super_admin)):
    """Revoke admin rights; the account stays as a regular user."""
    return access_service.revoke_admin(user_id, actor_id=admin.id)
