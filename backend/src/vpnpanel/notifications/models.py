"""Notification database models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, String, Text

from vpnpanel.storage.db import Base


class NotificationType(str, Enum):
    """Notification categories."""
    SYSTEM = "system"
    SUBSCRIPTION = "subscription"
    PAYMENT = "payment"
    PROMOCODE = "promocode"
    REFERRAL = "referral"
    PARTNER = "partner"
    SECURITY = "security"
    ANNOUNCEMENT = "announcement"


class Notification(Base):
    """In-app message; user_id NULL means broadcast to everyone."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    type = Column(SQLEnum(NotificationType), default=NotificationType.SYSTEM, nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    link_url = Column(String(512), nullable=True)
    # "metadata" is reserved by the declarative base
    extra = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    read_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Notification(id={self.id}, user_id={self.user_id}, type={self.type})>"

    @property
    def is_broadcast(self) -> bool:
        return self.user_id is None
