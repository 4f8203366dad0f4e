"""Admin user management API v1 endpoints."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from vpnpanel.api.v1.auth import UserResponse
from vpnpanel.api.v1.schemas import Page, to_page
from vpnpanel.auth.middleware import require_admin
from vpnpanel.auth.models import User, UserRole
from vpnpanel.users.service import user_service

router = APIRouter(prefix="/users", tags=["users"])


# ==================== MODELS ====================


class UserUpdateRequest(BaseModel):
    first_name: str | None = Field(default=None, max_length=128)
    last_name: str | None = Field(default=None, max_length=128)
    language: str | None = Field(default=None, min_length=2, max_length=5)
    photo_url: str | None = Field(default=None, max_length=512)


class UserOverviewResponse(BaseModel):
    user: UserResponse
    active_subscriptions: int
    payments_count: int
    total_spent: float


# ==================== ENDPOINTS ====================


@router.get("", response_model=Page[UserResponse])
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: UserRole | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    admin: User = Depends(require_admin),
):
    result = user_service.list_users(page, limit, role=role, is_active=is_active, search=search)
    return to_page(result, UserResponse)


@router.get("/{user_id}", response_model=UserOverviewResponse)
async def get_user(user_id: int, admin: User = Depends(require_admin)):
    overview = user_service.get_user_overview(user_id)
    return UserOverviewResponse(**{**overview, "user": UserResponse.model_validate(overview["user"])})


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(user_id: int, body: UserUpdateRequest, admin: User = Depends(require_admin)):
    return user_service.update_user(user_id, **body.model_dump(exclude_unset=True))


@router.post("/{user_id}/block", response_model=UserResponse)
async def block_user(user_id: int, admin: User = Depends(require_admin)):
    return user_service.block_user(user_id, actor_id=admin.id)


@router.post("/{user_id}/unblock", response_model=UserResponse)
async def unblock_user(user_id: int, admin: User = Depends(require_admin)):
    return user_service.unblock_user(user_id, actor_id=admin.id)
