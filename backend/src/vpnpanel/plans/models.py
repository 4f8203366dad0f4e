"""Plan database models."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text

from vpnpanel.storage.db import Base


class Plan(Base):
    """Sellable VPN tariff."""
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=True)

    # Pricing
    price = Column(Float, nullable=False)
    currency = Column(String(3), default="RUB", nullable=False)
    duration_days = Column(Integer, nullable=False)

    # Limits (NULL = unlimited)
    traffic_limit_gb = Column(Integer, nullable=True)
    device_limit = Column(Integer, default=1, nullable=False)

    # Display
    is_active = Column(Boolean, default=True, nullable=False)
    display_order = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Plan(id={self.id}, name={self.name}, price={self.price})>"
