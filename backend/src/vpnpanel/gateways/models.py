"""Payment gateway configuration models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, Enum as SQLEnum, Float, Integer, String, Text

from vpnpanel.storage.db import Base


class GatewayType(str, Enum):
    """Supported payment providers."""
    STRIPE = "stripe"
    PAYPAL = "paypal"
    CRYPTOMUS = "cryptomus"
    YOOKASSA = "yookassa"
    CUSTOM = "custom"


class Gateway(Base):
    """Configured payment provider."""
    __tablename__ = "gateways"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False)
    type = Column(SQLEnum(GatewayType), nullable=False, index=True)

    is_active = Column(Boolean, default=True, nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)

    # Provider credentials and options; never exposed to clients
    config = Column(JSON, default=dict)

    # Display
    display_order = Column(Integer, default=0, nullable=False)
    icon_url = Column(String(512), nullable=True)
    description = Column(Text, nullable=True)

    # Limits and fees
    supported_currencies = Column(JSON, default=list)  # empty = any currency
    min_amount = Column(Float, nullable=True)
    max_amount = Column(Float, nullable=True)
    fee_percent = Column(Float, default=0.0, nullable=False)
    fee_fixed = Column(Float, default=0.0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Gateway(id={self.id}, name={self.name}, type={self.type})>"

    def calculate_fee(self, amount: float) -> float:
        """Fee charged on top of the amount, rounded to cents."""
        return round(amount * (self.fee_percent or 0) / 100 + (self.fee_fixed or 0), 2)
