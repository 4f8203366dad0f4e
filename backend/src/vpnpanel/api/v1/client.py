"""Client dashboard API v1 endpoints.

Everything here is scoped to the authenticated user.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from vpnpanel.api.v1.auth import UserResponse
from vpnpanel.api.v1.banners import BannerResponse
from vpnpanel.api.v1.gateways import PublicGatewayResponse
from vpnpanel.api.v1.notifications import NotificationResponse
from vpnpanel.api.v1.partners import EarningResponse, PartnerResponse, PayoutResponse
from vpnpanel.api.v1.payments import PaymentResponse
from vpnpanel.api.v1.plans import PlanResponse
from vpnpanel.api.v1.promocodes import ActivationResponse
from vpnpanel.api.v1.referrals import RewardResponse
from vpnpanel.api.v1.schemas import Page, to_page
from vpnpanel.api.v1.subscriptions import SubscriptionResponse
from vpnpanel.auth.middleware import require_auth
from vpnpanel.auth.models import User
from vpnpanel.banners.models import BannerPosition
from vpnpanel.client.service import client_service
from vpnpanel.partners.models import PayoutMethod
from vpnpanel.payments.service import payment_service
from vpnpanel.promocodes.models import PromocodeRewardType

router = APIRouter(prefix="/client", tags=["client"])


# ==================== MODELS ====================


class ProfileResponse(BaseModel):
    user: UserResponse
    active_subscription: SubscriptionResponse | None = None
    partner_status: str | None = None
    unread_notifications: int


class PurchaseRequest(BaseModel):
    plan_id: int
    gateway_id: int | None = None
    promocode: str | None = Field(default=None, max_length=32)


class PromocodeQuoteResponse(BaseModel):
    code: str
    description: str | None = None
    reward_type: PromocodeRewardType
    reward_value: float
    bonus_days: int
    discount: float | None = None
    final_amount: float | None = None


class PromocodeActivateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=32)


class PromocodeActivationResult(BaseModel):
    activation: ActivationResponse
    subscription: SubscriptionResponse


class TrialStatusResponse(BaseModel):
    enabled: bool
    eligible: bool
    trial_days: int


class ReferralInfoResponse(BaseModel):
    referral_code: str | None = None
    referral_link: str | None = None
    referred_by: int | None = None
    levels: dict[str, int]
    rewards_paid: float
    rewards_pending: float
    rewards: list[RewardResponse]


class PartnerDashboardResponse(BaseModel):
    partner: PartnerResponse
    stats: dict[str, Any]
    recent_earnings: list[EarningResponse]
    recent_payouts: list[PayoutResponse]
    program: dict[str, Any]


class PayoutRequest(BaseModel):
    amount: float = Field(..., gt=0)
    method: PayoutMethod
    details: dict[str, Any] | None = None


class MarkReadRequest(BaseModel):
    notification_ids: list[int] | None = None


class MarkReadResponse(BaseModel):
    updated: int


# ==================== ACCOUNT ====================


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(user: User = Depends(require_auth)):
    return client_service.get_profile(user)


@router.get("/subscriptions", response_model=list[SubscriptionResponse])
async def my_subscriptions(user: User = Depends(require_auth)):
    return client_service.get_subscriptions(user.id)


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
async def my_subscription(subscription_id: int, user: User = Depends(require_auth)):
    return client_service.get_subscription(user.id, subscription_id)


# ==================== PURCHASE ====================


@router.get("/plans", response_model=list[PlanResponse])
async def available_plans(user: User = Depends(require_auth)):
    return client_service.get_available_plans()


@router.get("/gateways", response_model=list[PublicGatewayResponse])
async def available_gateways(user: User = Depends(require_auth)):
    return client_service.get_gateways()


@router.post("/payments", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(body: PurchaseRequest, user: User = Depends(require_auth)):
    return client_service.create_payment(user.id, body.plan_id, body.gateway_id, body.promocode)


@router.get("/payments", response_model=Page[PaymentResponse])
async def payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_auth),
):
    return to_page(client_service.get_payment_history(user.id, page, limit), PaymentResponse)


@router.post("/payments/{payment_id}/cancel", response_model=PaymentResponse)
async def cancel_payment(payment_id: int, user: User = Depends(require_auth)):
    return payment_service.cancel_payment(payment_id, user_id=user.id)


# ==================== PROMOCODES & TRIAL ====================


@router.get("/promocodes/validate", response_model=PromocodeQuoteResponse)
async def validate_promocode(
    code: str = Query(..., min_length=1, max_length=32),
    plan_id: int | None = None,
    user: User = Depends(require_auth),
):
    """What a code would give, without redeeming it."""
    return client_service.validate_promocode(user.id, code, plan_id)


@router.post("/promocodes/activate", response_model=PromocodeActivationResult)
async def activate_promocode(body: PromocodeActivateRequest, user: User = Depends(require_auth)):
    return client_service.activate_promocode(user.id, body.code)


@router.get("/promocodes/history", response_model=Page[ActivationResponse])
async def promocode_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_auth),
):
    return to_page(client_service.get_promocode_history(user.id, page, limit), ActivationResponse)


@router.get("/trial", response_model=TrialStatusResponse)
async def trial_status(user: User = Depends(require_auth)):
    return client_service.get_trial_status(user.id)


@router.post("/trial", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def claim_trial(user: User = Depends(require_auth)):
    return client_service.claim_trial(user.id)


# ==================== REFERRALS ====================


@router.get("/referral", response_model=ReferralInfoResponse)
async def referral_info(user: User = Depends(require_auth)):
    return client_service.get_referral_info(user.id)


# ==================== PARTNER ====================


@router.post("/partner/apply", response_model=PartnerResponse, status_code=status.HTTP_201_CREATED)
async def apply_for_partnership(user: User = Depends(require_auth)):
    return PartnerResponse.from_partner(client_service.apply_for_partnership(user.id))


@router.get("/partner", response_model=PartnerDashboardResponse)
async def partner_dashboard(user: User = Depends(require_auth)):
    dashboard = client_service.get_partner_dashboard(user.id)
    dashboard["partner"] = PartnerResponse.from_partner(dashboard["partner"])
    return dashboard


@router.get("/partner/earnings", response_model=Page[EarningResponse])
async def partner_earnings(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_auth),
):
    return to_page(client_service.get_partner_earnings(user.id, page, limit), EarningResponse)


@router.get("/partner/payouts", response_model=Page[PayoutResponse])
async def partner_payouts(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_auth),
):
    return to_page(client_service.get_partner_payouts(user.id, page, limit), PayoutResponse)


@router.post("/partner/payouts", response_model=PayoutResponse, status_code=status.HTTP_201_CREATED)
async def request_payout(body: PayoutRequest, user: User = Depends(require_auth)):
    return client_service.request_payout(user.id, body.amount, body.method, body.details)


# ==================== CONTENT ====================


@router.get("/notifications", response_model=Page[NotificationResponse])
async def my_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = False,
    user: User = Depends(require_auth),
):
    result = client_service.get_notifications(user.id, page, limit, unread_only)
    return to_page(result, NotificationResponse)


@router.post("/notifications/read", response_model=MarkReadResponse)
async def mark_notifications_read(body: MarkReadRequest, user: User = Depends(require_auth)):
    return {"updated": client_service.mark_notifications_read(user.id, body.notification_ids)}


@router.get("/banners", response_model=list[BannerResponse])
async def my_banners(position: BannerPosition | None = None, user: User = Depends(require_auth)):
    return client_service.get_banners(position)
