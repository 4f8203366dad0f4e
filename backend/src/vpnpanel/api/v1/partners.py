"""Partner program API v1 endpoints (admin)."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from vpnpanel.api.v1.schemas import ORMModel, Page, to_page
from vpnpanel.auth.middleware import require_admin
from vpnpanel.auth.models import User
from vpnpanel.errors import NotFoundError
from vpnpanel.partners.models import EarningStatus, PartnerStatus, PayoutMethod, PayoutStatus
from vpnpanel.partners.service import partner_service

router = APIRouter(prefix="/partners", tags=["partners"])


# ==================== MODELS ====================


class PartnerSettingsResponse(ORMModel):
    is_enabled: bool
    level1_percent: float
    level2_percent: float
    level3_percent: float
    tax_percent: float
    min_payout_amount: float
    payment_system_fee: float
    updated_at: datetime | None = None


class PartnerSettingsUpdate(BaseModel):
    is_enabled: bool | None = None
    level1_percent: float | None = Field(default=None, ge=0, le=100)
    level2_percent: float | None = Field(default=None, ge=0, le=100)
    level3_percent: float | None = Field(default=None, ge=0, le=100)
    tax_percent: float | None = Field(default=None, ge=0, le=100)
    min_payout_amount: float | None = Field(default=None, ge=0)
    payment_system_fee: float | None = Field(default=None, ge=0, le=100)


class PartnerResponse(ORMModel):
    id: int
    user_id: int
    username: str | None = None
    referral_code: str
    status: PartnerStatus
    commission_rate: float | None = None
    balance: float
    total_earnings: float
    pending_earnings: float
    paid_earnings: float
    referral_count: int
    payout_method: PayoutMethod | None = None
    payout_details: dict[str, Any] | None = None
    notes: str | None = None
    activated_at: datetime | None = None
    activated_by: int | None = None
    created_at: datetime | None = None

    @classmethod
    def from_partner(cls, partner) -> "PartnerResponse":
        response = cls.model_validate(partner)
        response.username = partner.user.username if partner.user else None
        return response


class EarningResponse(ORMModel):
    id: int
    partner_id: int
    from_user_id: int | None = None
    level: int
    source_amount: float
    commission_percent: float
    gross_amount: float
    tax_amount: float
    amount: float
    status: EarningStatus
    created_at: datetime | None = None
    paid_at: datetime | None = None


class PayoutResponse(ORMModel):
    id: int
    partner_id: int
    amount: float
    fee: float
    net_amount: float
    method: PayoutMethod
    details: dict[str, Any] | None = None
    status: PayoutStatus
    transaction_id: str | None = None
    notes: str | None = None
    processed_by: int | None = None
    processed_at: datetime | None = None
    created_at: datetime | None = None


class ActivationLogResponse(ORMModel):
    id: int
    user_id: int
    action: str
    performed_by: int | None = None
    notes: str | None = None
    created_at: datetime | None = None


class ActivateRequest(BaseModel):
    user_id: int
    notes: str | None = None
    commission_rate: float | None = Field(default=None, ge=0, le=100)


class StatusChangeRequest(BaseModel):
    notes: str | None = None


class PartnerUpdateRequest(BaseModel):
    commission_rate: float | None = Field(default=None, ge=0, le=100)
    payout_method: PayoutMethod | None = None
    payout_details: dict[str, Any] | None = None
    notes: str | None = None


class ProcessPayoutRequest(BaseModel):
    status: PayoutStatus
    notes: str | None = None
    transaction_id: str | None = Field(default=None, max_length=255)


def _partner_page(result: dict[str, Any]) -> dict[str, Any]:
    return {**result, "data": [PartnerResponse.from_partner(p) for p in result["data"]]}


# ==================== SETTINGS ====================


@router.get("/settings", response_model=PartnerSettingsResponse)
async def get_settings(admin: User = Depends(require_admin)):
    return partner_service.get_settings()


@router.put("/settings", response_model=PartnerSettingsResponse)
async def update_settings(body: PartnerSettingsUpdate, admin: User = Depends(require_admin)):
    return partner_service.update_settings(admin_id=admin.id, **body.model_dump(exclude_unset=True))


# ==================== PARTNERS ====================


@router.get("", response_model=Page[PartnerResponse])
async def list_partners(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: PartnerStatus | None = None,
    search: str | None = None,
    admin: User = Depends(require_admin),
):
    return _partner_page(partner_service.list_partners(page, limit, status=status, search=search))


@router.get("/stats")
async def program_stats(admin: User = Depends(require_admin)):
    """Program-wide totals."""
    return partner_service.get_program_stats()


@router.get("/by-code/{code}", response_model=PartnerResponse)
async def get_partner_by_code(code: str, admin: User = Depends(require_admin)):
    partner = partner_service.find_by_referral_code(code)
    if not partner:
        raise NotFoundError("Partner with code", code)
    return PartnerResponse.from_partner(partner)


@router.post("/activate", response_model=PartnerResponse)
async def activate_partner(body: ActivateRequest, admin: User = Depends(require_admin)):
    partner = partner_service.activate_partner(
        body.user_id, admin.id, notes=body.notes, commission_rate=body.commission_rate
    )
    return PartnerResponse.from_partner(partner)


@router.post("/users/{user_id}/deactivate", response_model=PartnerResponse)
async def deactivate_partner(user_id: int, body: StatusChangeRequest | None = None, admin: User = Depends(require_admin)):
    partner = partner_service.deactivate_partner(user_id, admin.id, reason=body.notes if body else None)
    return PartnerResponse.from_partner(partner)


@router.get("/users/{user_id}/history", response_model=list[ActivationLogResponse])
async def activation_history(user_id: int, admin: User = Depends(require_admin)):
    return partner_service.get_activation_history(user_id)


# ==================== PAYOUTS ====================


@router.get("/payouts", response_model=Page[PayoutResponse])
async def list_payouts(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: PayoutStatus | None = None,
    partner_id: int | None = None,
    admin: User = Depends(require_admin),
):
    return to_page(partner_service.list_payouts(page, limit, status=status, partner_id=partner_id), PayoutResponse)


@router.post("/payouts/{payout_id}/process", response_model=PayoutResponse)
async def process_payout(payout_id: int, body: ProcessPayoutRequest, admin: User = Depends(require_admin)):
    return partner_service.process_payout(
        payout_id,
        admin.id,
        body.status,
        notes=body.notes,
        transaction_id=body.transaction_id,
    )


# ==================== PARTNER DETAIL ====================


@router.get("/{partner_id}", response_model=PartnerResponse)
async def get_partner(partner_id: int, admin: User = Depends(require_admin)):
    return PartnerResponse.from_partner(partner_service.get_partner(partner_id))


@router.get("/{partner_id}/stats")
async def partner_stats(partner_id: int, admin: User = Depends(require_admin)):
    return partner_service.get_partner_stats(partner_id)


@router.patch("/{partner_id}", response_model=PartnerResponse)
async def update_partner(partner_id: int, body: PartnerUpdateRequest, admin: User = Depends(require_admin)):
    partner = partner_service.update_partner(partner_id, **body.model_dump(exclude_unset=True))
    return PartnerResponse.from_partner(partner)


@router.post("/{partner_id}/approve", response_model=PartnerResponse)
async def approve_partner(partner_id: int, body: StatusChangeRequest | None = None, admin: User = Depends(require_admin)):
    partner = partner_service.approve_partner(partner_id, admin.id, body.notes if body else None)
    return PartnerResponse.from_partner(partner)


@router.post("/{partner_id}/reject", response_model=PartnerResponse)
async def reject_partner(partner_id: int, body: StatusChangeRequest | None = None, admin: User = Depends(require_admin)):
    partner = partner_service.reject_partner(partner_id, admin.id, body.notes if body else None)
    return PartnerResponse.from_partner(partner)


@router.post("/{partner_id}/suspend", response_model=PartnerResponse)
async def suspend_partner(partner_id: int, body: StatusChangeRequest | None = None, admin: User = Depends(require_admin)):
    partner = partner_service.suspend_partner(partner_id, admin.id, body.notes if body else None)
    return PartnerResponse.from_partner(partner)


@router.get("/{partner_id}/earnings", response_model=Page[EarningResponse])
async def partner_earnings(
    partner_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: EarningStatus | None = None,
    admin: User = Depends(require_admin),
):
    return to_page(partner_service.list_earnings(page, limit, partner_id=partner_id, status=status), EarningResponse)
