"""Authentication models for user accounts."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, Integer, String

from vpnpanel.storage.db import Base


class UserRole(str, Enum):
    """User role levels."""
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


ADMIN_ROLES = (UserRole.ADMIN, UserRole.SUPER_ADMIN)


class User(Base):
    """Account of a client or an administrator.

    Clients usually arrive through Telegram WebApp auth and are identified by
    their Telegram ID; administrators log in with username and password.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)

    # Identity
    username = Column(String(64), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=True)
    telegram_id = Column(String(32), unique=True, nullable=True, index=True)
    first_name = Column(String(128), nullable=True)
    last_name = Column(String(128), nullable=True)
    photo_url = Column(String(512), nullable=True)
    language = Column(String(5), default="ru")

    # Access
    role = Column(SQLEnum(UserRole), default=UserRole.USER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_login_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username}, role={self.role})>"

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN
