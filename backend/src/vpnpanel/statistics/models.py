"""Daily statistics snapshots."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Float, Integer

from vpnpanel.storage.db import Base


class DailyStatistics(Base):
    """Key figures for one calendar day (UTC)."""
    __tablename__ = "daily_statistics"

    id = Column(Integer, primary_key=True)
    date = Column(Date, unique=True, nullable=False, index=True)

    # Users
    total_users = Column(Integer, default=0, nullable=False)
    new_users = Column(Integer, default=0, nullable=False)

    # Subscriptions
    active_subscriptions = Column(Integer, default=0, nullable=False)
    new_subscriptions = Column(Integer, default=0, nullable=False)

    # Money
    revenue = Column(Float, default=0.0, nullable=False)
    payments_count = Column(Integer, default=0, nullable=False)
    partner_earnings = Column(Float, default=0.0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<DailyStatistics(date={self.date}, revenue={self.revenue})>"
