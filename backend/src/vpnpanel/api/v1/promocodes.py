"""Promocode API v1 endpoints (admin)."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from vpnpanel.api.v1.schemas import ORMModel, Page, to_page
from vpnpanel.auth.middleware import require_admin
from vpnpanel.auth.models import User
from vpnpanel.promocodes.models import PromocodeRewardType
from vpnpanel.promocodes.service import promocode_service

router = APIRouter(prefix="/promocodes", tags=["promocodes"])


# ==================== MODELS ====================


class PromocodeCreateRequest(BaseModel):
    code: str = Field(..., min_length=3, max_length=32)
    description: str | None = None
    reward_type: PromocodeRewardType
    reward_value: float = Field(..., gt=0)
    plan_id: int | None = None
    max_uses: int | None = Field(default=None, ge=1)
    max_uses_per_user: int = Field(default=1, ge=1)
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    is_active: bool = True


class PromocodeUpdateRequest(BaseModel):
    code: str | None = Field(default=None, min_length=3, max_length=32)
    description: str | None = None
    reward_type: PromocodeRewardType | None = None
    reward_value: float | None = Field(default=None, gt=0)
    plan_id: int | None = None
    max_uses: int | None = Field(default=None, ge=1)
    max_uses_per_user: int | None = Field(default=None, ge=1)
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    is_active: bool | None = None


class PromocodeResponse(ORMModel):
    id: int
    code: str
    description: str | None = None
    reward_type: PromocodeRewardType
    reward_value: float
    plan_id: int | None = None
    max_uses: int | None = None
    used_count: int
    remaining_uses: int | None = None
    max_uses_per_user: int
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    is_active: bool
    created_by: int | None = None
    created_at: datetime | None = None


class ActivationResponse(ORMModel):
    id: int
    promocode_id: int
    user_id: int
    payment_id: int | None = None
    subscription_id: int | None = None
    discount_amount: float
    bonus_days: int
    created_at: datetime | None = None


class PromocodeStatsResponse(BaseModel):
    promocode_id: int
    code: str
    used_count: int
    remaining_uses: int | None = None
    activations: int
    unique_users: int
    total_discount: float
    total_bonus_days: int


# ==================== ENDPOINTS ====================


@router.get("", response_model=Page[PromocodeResponse])
async def list_promocodes(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    is_active: bool | None = None,
    search: str | None = None,
    admin: User = Depends(require_admin),
):
    return to_page(promocode_service.list_promocodes(page, limit, is_active, search), PromocodeResponse)


@router.get("/{promocode_id}", response_model=PromocodeResponse)
async def get_promocode(promocode_id: int, admin: User = Depends(require_admin)):
    return promocode_service.get_promocode(promocode_id)


@router.post("", response_model=PromocodeResponse, status_code=status.HTTP_201_CREATED)
async def create_promocode(body: PromocodeCreateRequest, admin: User = Depends(require_admin)):
    return promocode_service.create_promocode(created_by=admin.id, **body.model_dump())


@router.patch("/{promocode_id}", response_model=PromocodeResponse)
async def update_promocode(promocode_id: int, body: PromocodeUpdateRequest, admin: User = Depends(require_admin)):
    return promocode_service.update_promocode(promocode_id, **body.model_dump(exclude_unset=True))


@router.post("/{promocode_id}/toggle", response_model=PromocodeResponse)
async def toggle_promocode(promocode_id: int, admin: User = Depends(require_admin)):
    return promocode_service.toggle_promocode(promocode_id)


@router.delete("/{promocode_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_promocode(promocode_id: int, admin: User = Depends(require_admin)):
    promocode_service.delete_promocode(promocode_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{promocode_id}/activations", response_model=Page[ActivationResponse])
async def promocode_activations(
    promocode_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: User = Depends(require_admin),
):
    promocode_service.get_promocode(promocode_id)
    result = promocode_service.list_activations(page, limit, promocode_id=promocode_id)
    return to_page(result, ActivationResponse)


@router.get("/{promocode_id}/stats", response_model=PromocodeStatsResponse)
async def promocode_stats(promocode_id: int, admin: User = Depends(require_admin)):
    return promocode_service.get_promocode_stats(promocode_id)
