"""Referral system database models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)

from vpnpanel.storage.db import Base


class ReferralRuleType(str, Enum):
    """When a referral rule pays out."""
    FIRST_PURCHASE = "first_purchase"
    CUMULATIVE = "cumulative"
    SUBSCRIPTION = "subscription"


class ReferralStatus(str, Enum):
    """Referral states."""
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RewardStatus(str, Enum):
    """Reward states."""
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


class RewardRecipient(str, Enum):
    """Side of the referral a reward goes to."""
    REFERRER = "referrer"
    REFERRED = "referred"


class ReferralRule(Base):
    """Reward configuration applied to new referrals."""
    __tablename__ = "referral_rules"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    rule_type = Column(SQLEnum(ReferralRuleType), default=ReferralRuleType.FIRST_PURCHASE, nullable=False)

    referrer_reward = Column(Float, default=0.0, nullable=False)
    referred_reward = Column(Float, default=0.0, nullable=False)
    min_purchase_amount = Column(Float, default=0.0, nullable=False)
    applies_to_plans = Column(JSON, default=list)  # plan ids; empty = all plans

    is_active = Column(Boolean, default=True, nullable=False)
    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<ReferralRule(id={self.id}, name={self.name}, type={self.rule_type})>"

    def is_in_window(self, now: datetime) -> bool:
        if self.valid_from and now < self.valid_from:
            return False
        if self.valid_until and now > self.valid_until:
            return False
        return True

    def applies_to(self, plan_id: int | None, amount: float | None) -> bool:
        if self.applies_to_plans and plan_id is not None and plan_id not in self.applies_to_plans:
            return False
        if amount is not None and amount < (self.min_purchase_amount or 0):
            return False
        return True


class Referral(Base):
    """Referral relationship between two users.

    A user can be referred only once; referrer links form a tree that is
    walked up to three levels for partner commissions.
    """
    __tablename__ = "referrals"

    id = Column(Integer, primary_key=True)
    referrer_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    referred_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    referral_code = Column(String(32), nullable=True)

    status = Column(SQLEnum(ReferralStatus), default=ReferralStatus.ACTIVE, nullable=False, index=True)
    rule_id = Column(Integer, ForeignKey("referral_rules.id", ondelete="SET NULL"), nullable=True)
    referrer_reward = Column(Float, default=0.0, nullable=False)
    referred_reward = Column(Float, default=0.0, nullable=False)

    notes = Column(Text, nullable=True)
    cancel_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Referral(referrer={self.referrer_id}, referred={self.referred_id}, status={self.status})>"


class ReferralReward(Base):
    """Reward owed to one side of a completed referral."""
    __tablename__ = "referral_rewards"

    id = Column(Integer, primary_key=True)
    referral_id = Column(Integer, ForeignKey("referrals.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient = Column(SQLEnum(RewardRecipient), nullable=False)
    amount = Column(Float, nullable=False)
    status = Column(SQLEnum(RewardStatus), default=RewardStatus.PENDING, nullable=False, index=True)

    approved_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    paid_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    paid_at = Column(DateTime, nullable=True)
    payment_method = Column(String(50), nullable=True)
    transaction_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<ReferralReward(id={self.id}, user_id={self.user_id}, amount={self.amount}, status={self.status})>"
