"""Plan API v1 endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from vpnpanel.api.v1.schemas import ORMModel, Page, to_page
from vpnpanel.auth.middleware import require_admin
from vpnpanel.auth.models import User
from vpnpanel.plans.service import plan_service

router = APIRouter(prefix="/plans", tags=["plans"])


# ==================== MODELS ====================


class PlanCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    price: float = Field(..., ge=0)
    currency: str = Field(default="RUB", min_length=3, max_length=3)
    duration_days: int = Field(..., gt=0)
    traffic_limit_gb: int | None = Field(default=None, ge=0)
    device_limit: int = Field(default=1, ge=1)
    is_active: bool = True
    display_order: int = 0


class PlanUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    price: float | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    duration_days: int | None = Field(default=None, gt=0)
    traffic_limit_gb: int | None = Field(default=None, ge=0)
    device_limit: int | None = Field(default=None, ge=1)
    is_active: bool | None = None
    display_order: int | None = None


class PlanResponse(ORMModel):
    id: int
    name: str
    description: str | None = None
    price: float
    currency: str
    duration_days: int
    traffic_limit_gb: int | None = None
    device_limit: int
    is_active: bool
    display_order: int
    created_at: datetime | None = None


# ==================== ENDPOINTS ====================


@router.get("", response_model=Page[PlanResponse])
async def list_plans(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    is_active: bool | None = None,
    admin: User = Depends(require_admin),
):
    return to_page(plan_service.list_plans(page, limit, is_active), PlanResponse)


@router.get("/{plan_id}", response_model=PlanResponse)
async def get_plan(plan_id: int, admin: User = Depends(require_admin)):
    return plan_service.get_plan(plan_id)


@router.post("", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
async def create_plan(body: PlanCreateRequest, admin: User = Depends(require_admin)):
    return plan_service.create_plan(**body.model_dump())


@router.patch("/{plan_id}", response_model=PlanResponse)
async def update_plan(plan_id: int, body: PlanUpdateRequest, admin: User = Depends(require_admin)):
    return plan_service.update_plan(plan_id, **body.model_dump(exclude_unset=True))


@router.delete("/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_plan(plan_id: int, admin: User = Depends(require_admin)):
    plan_service.delete_plan(plan_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
