"""Payment gateway API v1 endpoints (admin)."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from vpnpanel.api.v1.schemas import ORMModel
from vpnpanel.auth.middleware import require_admin
from vpnpanel.auth.models import User
from vpnpanel.gateways.models import GatewayType
from vpnpanel.gateways.service import gateway_service

router = APIRouter(prefix="/gateways", tags=["gateways"])


# ==================== MODELS ====================


class GatewayCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: GatewayType
    is_active: bool = True
    is_default: bool = False
    config: dict[str, Any] = Field(default_factory=dict)
    display_order: int = 0
    icon_url: str | None = None
    description: str | None = None
    supported_currencies: list[str] = Field(default_factory=list)
    min_amount: float | None = Field(default=None, ge=0)
    max_amount: float | None = Field(default=None, ge=0)
    fee_percent: float = Field(default=0.0, ge=0, le=100)
    fee_fixed: float = Field(default=0.0, ge=0)


class GatewayUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    type: GatewayType | None = None
    is_active: bool | None = None
    is_default: bool | None = None
    config: dict[str, Any] | None = None
    display_order: int | None = None
    icon_url: str | None = None
    description: str | None = None
    supported_currencies: list[str] | None = None
    min_amount: float | None = Field(default=None, ge=0)
    max_amount: float | None = Field(default=None, ge=0)
    fee_percent: float | None = Field(default=None, ge=0, le=100)
    fee_fixed: float | None = Field(default=None, ge=0)


class PublicGatewayResponse(ORMModel):
    """Gateway as shown to clients (no credentials)."""
    id: int
    name: str
    type: GatewayType
    is_default: bool
    display_order: int
    icon_url: str | None = None
    description: str | None = None
    supported_currencies: list[str] = []
    min_amount: float | None = None
    max_amount: float | None = None
    fee_percent: float
    fee_fixed: float


class GatewayResponse(PublicGatewayResponse):
    is_active: bool
    config: dict[str, Any] = {}
    created_at: datetime | None = None


class FeeResponse(BaseModel):
    amount: float
    fee: float
    total: float


# ==================== ENDPOINTS ====================


@router.get("", response_model=list[GatewayResponse])
async def list_gateways(
    type: GatewayType | None = None,
    is_active: bool | None = None,
    admin: User = Depends(require_admin),
):
    return gateway_service.list_gateways(type=type, is_active=is_active)


@router.get("/default", response_model=GatewayResponse | None)
async def get_default_gateway(admin: User = Depends(require_admin)):
    return gateway_service.get_default_gateway()


@router.get("/{gateway_id}", response_model=GatewayResponse)
async def get_gateway(gateway_id: int, admin: User = Depends(require_admin)):
    return gateway_service.get_gateway(gateway_id)


@router.post("", response_model=GatewayResponse, status_code=status.HTTP_201_CREATED)
async def create_gateway(body: GatewayCreateRequest, admin: User = Depends(require_admin)):
    return gateway_service.create_gateway(**body.model_dump())


@router.patch("/{gateway_id}", response_model=GatewayResponse)
async def update_gateway(gateway_id: int, body: GatewayUpdateRequest, admin: User = Depends(require_admin)):
    return gateway_service.update_gateway(gateway_id, **body.model_dump(exclude_unset=True))


@router.delete("/{gateway_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_gateway(gateway_id: int, admin: User = Depends(require_admin)):
    gateway_service.delete_gateway(gateway_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{gateway_id}/toggle", response_model=GatewayResponse)
async def toggle_gateway(gateway_id: int, admin: User = Depends(require_admin)):
    return gateway_service.toggle_gateway(gateway_id)


@router.post("/{gateway_id}/default", response_model=GatewayResponse)
async def set_default_gateway(gateway_id: int, admin: User = Depends(require_admin)):
    return gateway_service.set_default_gateway(gateway_id)


@router.get("/{gateway_id}/fee", response_model=FeeResponse)
async def calculate_fee(gateway_id: int, amount: float = Query(..., gt=0), admin: User = Depends(require_admin)):
    return gateway_service.calculate_fee(gateway_id, amount)
