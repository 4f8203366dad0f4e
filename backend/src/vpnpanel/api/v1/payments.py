"""Payment API v1 endpoints (admin)."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from vpnpanel.api.v1.schemas import ORMModel, Page, to_page
from vpnpanel.auth.middleware import require_admin
from vpnpanel.auth.models import User
from vpnpanel.payments.models import PaymentStatus
from vpnpanel.payments.service import payment_service

router = APIRouter(prefix="/payments", tags=["payments"])


# ==================== MODELS ====================


class PaymentResponse(ORMModel):
    id: int
    user_id: int
    plan_id: int
    gateway_id: int | None = None
    promocode_id: int | None = None
    amount: float
    discount: float
    fee: float
    total: float
    currency: str
    status: PaymentStatus
    payment_url: str | None = None
    external_id: str | None = None
    subscription_id: int | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None


class CompletePaymentRequest(BaseModel):
    external_id: str | None = Field(default=None, max_length=255)


class FailPaymentRequest(BaseModel):
    reason: str | None = None


# ==================== ENDPOINTS ====================


@router.get("", response_model=Page[PaymentResponse])
async def list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: PaymentStatus | None = None,
    user_id: int | None = None,
    gateway_id: int | None = None,
    admin: User = Depends(require_admin),
):
    result = payment_service.list_payments(page, limit, status=status, user_id=user_id, gateway_id=gateway_id)
    return to_page(result, PaymentResponse)


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(payment_id: int, admin: User = Depends(require_admin)):
    return payment_service.get_payment(payment_id)


@router.post("/{payment_id}/complete", response_model=PaymentResponse)
async def complete_payment(
    payment_id: int,
    body: CompletePaymentRequest | None = None,
    admin: User = Depends(require_admin),
):
    """Mark a payment as paid and grant its subscription."""
    payment = payment_service.complete_payment(payment_id, body.external_id if body else None)
    await payment_service.provision_payment(payment)
    return payment


@router.post("/{payment_id}/fail", response_model=PaymentResponse)
async def fail_payment(payment_id: int, body: FailPaymentRequest | None = None, admin: User = Depends(require_admin)):
    return payment_service.fail_payment(payment_id, body.reason if body else None)


@router.post("/{payment_id}/cancel", response_model=PaymentResponse)
async def cancel_payment(payment_id: int, admin: User = Depends(require_admin)):
    return payment_service.cancel_payment(payment_id)
