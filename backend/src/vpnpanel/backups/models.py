"""Database backup models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, String, Text

from vpnpanel.storage.db import Base


class BackupStatus(str, Enum):
    """Backup run states."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class BackupType(str, Enum):
    """What started the backup."""
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class BackupSchedule(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


class BackupConfig(Base):
    """Scheduled backup settings (single row)."""
    __tablename__ = "backup_config"

    id = Column(Integer, primary_key=True)
    is_enabled = Column(Boolean, default=False, nullable=False)
    schedule = Column(SQLEnum(BackupSchedule), default=BackupSchedule.DAILY, nullable=False)
    backup_time = Column(String(5), default="02:00", nullable=False)  # HH:MM, UTC
    retention_count = Column(Integer, default=7, nullable=False)

    updated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Backup(Base):
    """One pg_dump archive on disk."""
    __tablename__ = "backups"

    id = Column(Integer, primary_key=True)
    filename = Column(String(255), unique=True, nullable=False)
    size_bytes = Column(BigInteger, default=0, nullable=False)
    status = Column(SQLEnum(BackupStatus), default=BackupStatus.PENDING, nullable=False, index=True)
    backup_type = Column(SQLEnum(BackupType), default=BackupType.MANUAL, nullable=False)
    error_message = Column(Text, nullable=True)

    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Backup(id={self.id}, filename={self.filename}, status={self.status})>"
