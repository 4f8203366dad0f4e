"""Subscription database models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from vpnpanel.storage.db import Base


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states."""
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class SubscriptionType(str, Enum):
    """How the subscription was obtained."""
    REGULAR = "regular"
    TRIAL = "trial"
    GIFT = "gift"
    REFERRAL = "referral"


class Subscription(Base):
    """A user's access period on a plan."""
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False, index=True)

    status = Column(SQLEnum(SubscriptionStatus), default=SubscriptionStatus.PENDING, nullable=False, index=True)
    subscription_type = Column(SQLEnum(SubscriptionType), default=SubscriptionType.REGULAR, nullable=False)

    # Period
    start_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    end_date = Column(DateTime, nullable=False, index=True)

    # Limits copied from the plan at purchase time
    device_count = Column(Integer, default=1, nullable=False)
    traffic_limit_gb = Column(Integer, nullable=True)
    traffic_used_gb = Column(Float, default=0.0, nullable=False)

    # Panel account
    remnawave_uuid = Column(String(64), nullable=True, index=True)
    subscription_url = Column(String(512), nullable=True)

    renewed_from_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    cancelled_at = Column(DateTime, nullable=True)

    # Relationships
    plan = relationship("Plan", lazy="joined", innerjoin=True)

    def __repr__(self):
        return f"<Subscription(id={self.id}, user_id={self.user_id}, status={self.status})>"

    @property
    def days_left(self) -> int:
        if self.status != SubscriptionStatus.ACTIVE:
            return 0
        delta = self.end_date - datetime.utcnow()
        return max(0, delta.days)
