"""Subscription API v1 endpoints (admin)."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from vpnpanel.api.v1.schemas import ORMModel, Page, to_page
from vpnpanel.auth.middleware import require_admin
from vpnpanel.auth.models import User
from vpnpanel.subscriptions.models import SubscriptionStatus, SubscriptionType
from vpnpanel.subscriptions.service import subscription_service

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


# ==================== MODELS ====================


class SubscriptionCreateRequest(BaseModel):
    """Grant a plan to a user."""
    user_id: int
    plan_id: int
    subscription_type: SubscriptionType = SubscriptionType.GIFT


class SubscriptionResponse(ORMModel):
    id: int
    user_id: int
    plan_id: int
    status: SubscriptionStatus
    subscription_type: SubscriptionType
    start_date: datetime
    end_date: datetime
    days_left: int
    device_count: int
    traffic_limit_gb: int | None = None
    traffic_used_gb: float
    remnawave_uuid: str | None = None
    subscription_url: str | None = None
    renewed_from_id: int | None = None
    created_at: datetime | None = None


class ExpireResponse(BaseModel):
    expired: int


class TrialGrantRequest(BaseModel):
    user_id: int
    plan_id: int | None = None
    days: int | None = Field(default=None, gt=0)


class TrialStatsResponse(BaseModel):
    enabled: bool
    trial_days: int
    total_trial_users: int
    active_trials: int
    converted_users: int
    conversion_rate: float


# ==================== ENDPOINTS ====================


@router.get("", response_model=Page[SubscriptionResponse])
async def list_subscriptions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: int | None = None,
    status: SubscriptionStatus | None = None,
    plan_id: int | None = None,
    admin: User = Depends(require_admin),
):
    result = subscription_service.list_subscriptions(page, limit, user_id=user_id, status=status, plan_id=plan_id)
    return to_page(result, SubscriptionResponse)


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(subscription_id: int, admin: User = Depends(require_admin)):
    return subscription_service.get_subscription(subscription_id)


@router.post("", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def create_subscription(body: SubscriptionCreateRequest, admin: User = Depends(require_admin)):
    return subscription_service.create_subscription(
        user_id=body.user_id,
        plan_id=body.plan_id,
        subscription_type=body.subscription_type,
    )


@router.post("/{subscription_id}/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(subscription_id: int, admin: User = Depends(require_admin)):
    return subscription_service.cancel_subscription(subscription_id)


@router.post("/{subscription_id}/renew", response_model=SubscriptionResponse)
async def renew_subscription(subscription_id: int, admin: User = Depends(require_admin)):
    return subscription_service.renew_subscription(subscription_id)


@router.post("/{subscription_id}/provision", response_model=SubscriptionResponse)
async def provision_subscription(subscription_id: int, admin: User = Depends(require_admin)):
    """Create or update the subscription's account on the VPN panel."""
    return await subscription_service.provision(subscription_id)


@router.post("/expire-overdue", response_model=ExpireResponse)
async def expire_overdue(admin: User = Depends(require_admin)):
    return ExpireResponse(expired=subscription_service.expire_overdue())


@router.post("/trial", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def grant_trial(body: TrialGrantRequest, admin: User = Depends(require_admin)):
    """Give a user their one trial, also while self-service trials are disabled."""
    return subscription_service.grant_trial(body.user_id, body.plan_id, body.days, granted_by=admin.id)


@router.get("/trial/stats", response_model=TrialStatsResponse)
async def trial_stats(admin: User = Depends(require_admin)):
    return subscription_service.get_trial_stats()
