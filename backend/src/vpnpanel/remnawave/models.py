"""Links between local users and Remnawave panel accounts."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from vpnpanel.storage.db import Base


class RemnawaveUserLink(Base):
    """One panel account owned by a local user.

    A user may own several panel accounts (one per device group or legacy
    purchase); exactly one of them is primary.
    """
    __tablename__ = "remnawave_user_links"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    telegram_id = Column(String(32), nullable=True, index=True)
    remnawave_uuid = Column(String(64), unique=True, nullable=False)
    remnawave_username = Column(String(128), nullable=True)
    is_primary = Column(Boolean, default=False, nullable=False)

    # Last known panel state
    panel_status = Column(String(32), nullable=True)
    expire_at = Column(DateTime, nullable=True)
    subscription_url = Column(String(512), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_synced_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<RemnawaveUserLink(user_id={self.user_id}, uuid={self.remnawave_uuid})>"


class SyncLog(Base):
    """Report of one full panel sync run."""
    __tablename__ = "remnawave_sync_logs"

    id = Column(Integer, primary_key=True)
    status = Column(String(20), nullable=False)  # completed, failed
    total = Column(Integer, default=0)
    created = Column(Integer, default=0)
    linked = Column(Integer, default=0)
    skipped = Column(Integer, default=0)
    errors = Column(Integer, default=0)
    error_details = Column(JSON, default=list)
    error_message = Column(Text, nullable=True)
    started_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    started_at = Column(DateTime, default=datetime.utcnow)
    finished_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<SyncLog(id={self.id}, status={self.status}, total={self.total})>"
