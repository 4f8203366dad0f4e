"""Partner program database models."""

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
from sqlalchemy.orm import relationship

from vpnpanel.storage.db import Base


class PartnerStatus(str, Enum):
    """Partner account states."""
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REJECTED = "rejected"


class EarningStatus(str, Enum):
    """Commission earning states."""
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class PayoutStatus(str, Enum):
    """Payout request states."""
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    REJECTED = "rejected"


class PayoutMethod(str, Enum):
    """Ways a partner can be paid."""
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    PAYPAL = "paypal"
    CRYPTO = "crypto"
    OTHER = "other"


class PartnerSettings(Base):
    """Program-wide partner settings (single row)."""
    __tablename__ = "partner_settings"

    id = Column(Integer, primary_key=True)
    is_enabled = Column(Boolean, default=False, nullable=False)

    # Commission percent per referral level
    level1_percent = Column(Float, default=10.0, nullable=False)
    level2_percent = Column(Float, default=5.0, nullable=False)
    level3_percent = Column(Float, default=2.0, nullable=False)

    tax_percent = Column(Float, default=0.0, nullable=False)
    min_payout_amount = Column(Float, default=100.0, nullable=False)
    payment_system_fee = Column(Float, default=0.0, nullable=False)

    updated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def level_percent(self, level: int) -> float:
        return {1: self.level1_percent, 2: self.level2_percent, 3: self.level3_percent}[level]


class Partner(Base):
    """User enrolled in the affiliate program.

    balance is what the partner can withdraw now; pending_earnings tracks
    commissions not yet paid out; paid_earnings what payouts settled.
    """
    __tablename__ = "partners"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    referral_code = Column(String(32), unique=True, nullable=False, index=True)
    status = Column(SQLEnum(PartnerStatus), default=PartnerStatus.PENDING, nullable=False, index=True)

    # Level 1 percent override (NULL = use settings)
    commission_rate = Column(Float, nullable=True)

    # Ledger
    balance = Column(Float, default=0.0, nullable=False)
    total_earnings = Column(Float, default=0.0, nullable=False)
    pending_earnings = Column(Float, default=0.0, nullable=False)
    paid_earnings = Column(Float, default=0.0, nullable=False)
    referral_count = Column(Integer, default=0, nullable=False)

    # Payout preferences
    payout_method = Column(SQLEnum(PayoutMethod), nullable=True)
    payout_details = Column(JSON, default=dict)

    notes = Column(Text, nullable=True)
    activated_at = Column(DateTime, nullable=True)
    activated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", foreign_keys=[user_id], lazy="joined", innerjoin=True)

    def __repr__(self):
        return f"<Partner(id={self.id}, code={self.referral_code}, status={self.status})>"


class PartnerEarning(Base):
    """Commission earned from a referred user's payment."""
    __tablename__ = "partner_earnings"

    id = Column(Integer, primary_key=True)
    partner_id = Column(Integer, ForeignKey("partners.id", ondelete="CASCADE"), nullable=False, index=True)
    from_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    level = Column(Integer, nullable=False)
    source_amount = Column(Float, nullable=False)
    commission_percent = Column(Float, nullable=False)
    gross_amount = Column(Float, nullable=False)
    tax_amount = Column(Float, default=0.0, nullable=False)
    amount = Column(Float, nullable=False)  # net, credited to balance

    status = Column(SQLEnum(EarningStatus), default=EarningStatus.PENDING, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    paid_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<PartnerEarning(partner_id={self.partner_id}, amount={self.amount}, level={self.level})>"


class PartnerPayout(Base):
    """Withdrawal request of a partner."""
    __tablename__ = "partner_payouts"

    id = Column(Integer, primary_key=True)
    partner_id = Column(Integer, ForeignKey("partners.id", ondelete="CASCADE"), nullable=False, index=True)

    amount = Column(Float, nullable=False)
    fee = Column(Float, default=0.0, nullable=False)
    net_amount = Column(Float, nullable=False)

    method = Column(SQLEnum(PayoutMethod), nullable=False)
    details = Column(JSON, default=dict)
    status = Column(SQLEnum(PayoutStatus), default=PayoutStatus.PENDING, nullable=False, index=True)
    transaction_id = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    processed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<PartnerPayout(id={self.id}, amount={self.amount}, status={self.status})>"


class PartnerActivationLog(Base):
    """Audit trail of partner status changes."""
    __tablename__ = "partner_activation_logs"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String(32), nullable=False)  # activated, deactivated, approved, rejected, suspended
    performed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
