"""Referral API v1 endpoints (admin)."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from vpnpanel.api.v1.schemas import ORMModel, Page, to_page
from vpnpanel.auth.middleware import require_admin
from vpnpanel.auth.models import User
from vpnpanel.referral.models import ReferralRuleType, ReferralStatus, RewardRecipient, RewardStatus
from vpnpanel.referral.service import referral_service

router = APIRouter(prefix="/referrals", tags=["referrals"])


# ==================== MODELS ====================


class RuleRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    rule_type: ReferralRuleType = ReferralRuleType.FIRST_PURCHASE
    referrer_reward: float = Field(default=0.0, ge=0)
    referred_reward: float = Field(default=0.0, ge=0)
    min_purchase_amount: float = Field(default=0.0, ge=0)
    applies_to_plans: list[int] = Field(default_factory=list)
    is_active: bool = True
    valid_from: datetime | None = None
    valid_until: datetime | None = None


class RuleUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    rule_type: ReferralRuleType | None = None
    referrer_reward: float | None = Field(default=None, ge=0)
    referred_reward: float | None = Field(default=None, ge=0)
    min_purchase_amount: float | None = Field(default=None, ge=0)
    applies_to_plans: list[int] | None = None
    is_active: bool | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None


class RuleResponse(ORMModel):
    id: int
    name: str
    description: str | None = None
    rule_type: ReferralRuleType
    referrer_reward: float
    referred_reward: float
    min_purchase_amount: float
    applies_to_plans: list[int] | None = None
    is_active: bool
    valid_from: datetime | None = None
    valid_until: datetime | None = None


class ReferralCreateRequest(BaseModel):
    referrer_id: int
    referred_id: int
    referral_code: str | None = None
    rule_id: int | None = None
    notes: str | None = None


class ReferralResponse(ORMModel):
    id: int
    referrer_id: int
    referred_id: int
    referral_code: str | None = None
    status: ReferralStatus
    rule_id: int | None = None
    referrer_reward: float
    referred_reward: float
    notes: str | None = None
    cancel_reason: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


class RewardResponse(ORMModel):
    id: int
    referral_id: int
    user_id: int
    recipient: RewardRecipient
    amount: float
    status: RewardStatus
    approved_by: int | None = None
    approved_at: datetime | None = None
    paid_by: int | None = None
    paid_at: datetime | None = None
    payment_method: str | None = None
    transaction_id: str | None = None
    created_at: datetime | None = None


class PayRewardRequest(BaseModel):
    payment_method: str | None = Field(default=None, max_length=50)
    transaction_id: str | None = Field(default=None, max_length=255)


# ==================== RULES ====================


@router.get("/rules", response_model=list[RuleResponse])
async def list_rules(is_active: bool | None = None, admin: User = Depends(require_admin)):
    return referral_service.list_rules(is_active)


@router.post("/rules", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(body: RuleRequest, admin: User = Depends(require_admin)):
    return referral_service.create_rule(**body.model_dump())


@router.get("/rules/{rule_id}", response_model=RuleResponse)
async def get_rule(rule_id: int, admin: User = Depends(require_admin)):
    return referral_service.get_rule(rule_id)


@router.patch("/rules/{rule_id}", response_model=RuleResponse)
async def update_rule(rule_id: int, body: RuleUpdateRequest, admin: User = Depends(require_admin)):
    return referral_service.update_rule(rule_id, **body.model_dump(exclude_unset=True))


@router.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(rule_id: int, admin: User = Depends(require_admin)):
    referral_service.delete_rule(rule_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ==================== REWARDS ====================


@router.get("/rewards", response_model=Page[RewardResponse])
async def list_rewards(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: int | None = None,
    status: RewardStatus | None = None,
    admin: User = Depends(require_admin),
):
    return to_page(referral_service.list_rewards(page, limit, user_id=user_id, status=status), RewardResponse)


@router.post("/rewards/{reward_id}/approve", response_model=RewardResponse)
async def approve_reward(reward_id: int, admin: User = Depends(require_admin)):
    return referral_service.approve_reward(reward_id, admin.id)


@router.post("/rewards/{reward_id}/pay", response_model=RewardResponse)
async def pay_reward(reward_id: int, body: PayRewardRequest, admin: User = Depends(require_admin)):
    return referral_service.mark_reward_paid(
        reward_id,
        admin.id,
        payment_method=body.payment_method,
        transaction_id=body.transaction_id,
    )


# ==================== TREE / STATS ====================


@router.get("/statistics")
async def statistics(admin: User = Depends(require_admin)) -> dict[str, Any]:
    return referral_service.get_statistics()


@router.get("/top")
async def top_referrers(limit: int = Query(10, ge=1, le=100), admin: User = Depends(require_admin)):
    return referral_service.get_top_referrers(limit)


@router.get("/users/{user_id}/chain")
async def referral_chain(user_id: int, depth: int = Query(3, ge=1, le=3), admin: User = Depends(require_admin)):
    """Referrers above a user, nearest first."""
    return referral_service.get_referral_chain(user_id, depth)


@router.get("/users/{user_id}/level/{level}")
async def referrals_by_level(user_id: int, level: int, admin: User = Depends(require_admin)):
    return referral_service.get_referrals_by_level(user_id, level)


# ==================== REFERRALS ====================


@router.get("", response_model=Page[ReferralResponse])
async def list_referrals(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    referrer_id: int | None = None,
    status: ReferralStatus | None = None,
    admin: User = Depends(require_admin),
):
    return to_page(referral_service.list_referrals(page, limit, referrer_id=referrer_id, status=status), ReferralResponse)


@router.post("", response_model=ReferralResponse, status_code=status.HTTP_201_CREATED)
async def create_referral(body: ReferralCreateRequest, admin: User = Depends(require_admin)):
    return referral_service.create_referral(**body.model_dump())


@router.get("/{referral_id}", response_model=ReferralResponse)
async def get_referral(referral_id: int, admin: User = Depends(require_admin)):
    return referral_service.get_referral(referral_id)


@router.post("/{referral_id}/complete", response_model=ReferralResponse)
async def complete_referral(referral_id: int, admin: User = Depends(require_admin)):
    return referral_service.complete_referral(referral_id)


@router.post("/{referral_id}/cancel", response_model=ReferralResponse)
async def cancel_referral(referral_id: int, body: CancelRequest | None = None, admin: User = Depends(require_admin)):
    return referral_service.cancel_referral(referral_id, body.reason if body else None)
