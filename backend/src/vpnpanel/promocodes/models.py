"""Promocode database models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, Float, ForeignKey, Integer, String, Text

from vpnpanel.storage.db import Base


class PromocodeRewardType(str, Enum):
    """What a promocode gives."""
    DURATION = "duration"  # bonus days
    PURCHASE_DISCOUNT = "purchase_discount"  # percent off one payment


class Promocode(Base):
    """Redeemable code with usage limits and an optional validity window."""
    __tablename__ = "promocodes"

    id = Column(Integer, primary_key=True)
    code = Column(String(32), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)

    reward_type = Column(SQLEnum(PromocodeRewardType), nullable=False)
    reward_value = Column(Float, nullable=False)
    plan_id = Column(Integer, ForeignKey("plans.id", ondelete="SET NULL"), nullable=True)

    # Limits (NULL max_uses = unlimited)
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, default=0, nullable=False)
    max_uses_per_user = Column(Integer, default=1, nullable=False)

    # Window (NULL = unbounded)
    starts_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Promocode(id={self.id}, code={self.code}, reward_type={self.reward_type})>"

    @property
    def remaining_uses(self) -> int | None:
        if self.max_uses is None:
            return None
        return max(0, self.max_uses - self.used_count)


class PromocodeActivation(Base):
    """One redemption of a promocode by a user."""
    __tablename__ = "promocode_activations"

    id = Column(Integer, primary_key=True)
    promocode_id = Column(Integer, ForeignKey("promocodes.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id", ondelete="SET NULL"), nullable=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True)

    discount_amount = Column(Float, default=0.0, nullable=False)
    bonus_days = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<PromocodeActivation(id={self.id}, promocode_id={self.promocode_id}, user_id={self.user_id})>"
