"""Payment database models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, Float, ForeignKey, Integer, String, Text

from vpnpanel.storage.db import Base


class PaymentStatus(str, Enum):
    """Payment states."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Payment(Base):
    """Plan purchase through a gateway."""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False)
    gateway_id = Column(Integer, ForeignKey("gateways.id", ondelete="SET NULL"), nullable=True)
    promocode_id = Column(Integer, ForeignKey("promocodes.id", ondelete="SET NULL"), nullable=True)

    # Money (amount is the plan price minus the promocode discount)
    amount = Column(Float, nullable=False)
    discount = Column(Float, default=0.0, nullable=False)
    fee = Column(Float, default=0.0, nullable=False)
    total = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False)

    status = Column(SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False, index=True)
    payment_url = Column(String(512), nullable=True)
    external_id = Column(String(255), nullable=True, index=True)
    failure_reason = Column(Text, nullable=True)

    subscription_id = Column(Integer, ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Payment(id={self.id}, user_id={self.user_id}, total={self.total}, status={self.status})>"
