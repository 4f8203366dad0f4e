"""Banner database models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, Integer, String, Text

from vpnpanel.storage.db import Base


class BannerPosition(str, Enum):
    """Where a banner is rendered in the client app."""
    HOME_TOP = "home_top"
    HOME_BOTTOM = "home_bottom"
    PLANS_PAGE = "plans_page"
    SIDEBAR = "sidebar"


class Banner(Base):
    """Promotional banner with an optional schedule window."""
    __tablename__ = "banners"

    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False)
    subtitle = Column(Text, nullable=True)
    image_url = Column(String(512), nullable=True)
    link_url = Column(String(512), nullable=True)

    position = Column(SQLEnum(BannerPosition), default=BannerPosition.HOME_TOP, nullable=False, index=True)
    display_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Schedule (NULL = unbounded)
    starts_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)

    # Counters
    impression_count = Column(Integer, default=0, nullable=False)
    click_count = Column(Integer, default=0, nullable=False)

    # Colors
    background_color = Column(String(32), nullable=True)
    text_color = Column(String(32), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Banner(id={self.id}, title={self.title}, position={self.position})>"

    @property
    def ctr(self) -> float:
        """Click-through rate in percent."""
        if not self.impression_count:
            return 0.0
        return round(self.click_count / self.impression_count * 100, 2)
