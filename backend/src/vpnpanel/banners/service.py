"""Banner service."""

from datetime import datetime
from typing import Any

from sqlalchemy import func, or_

from vpnpanel.banners.models import Banner, BannerPosition
from vpnpanel.errors import NotFoundError, ValidationError
from vpnpanel.logging_config import get_logger
from vpnpanel.storage.db import db
from vpnpanel.storage.pagination import paginate

logger = get_logger(__name__)

_FIELDS = (
    "title",
    "subtitle",
    "image_url",
    "link_url",
    "position",
    "display_order",
    "is_active",
    "starts_at",
    "ends_at",
    "background_color",
    "text_color",
)


class BannerService:
    """CRUD, scheduling and click tracking for banners."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def _validate_window(self, starts_at: datetime | None, ends_at: datetime | None) -> None:
        if starts_at and ends_at and starts_at >= ends_at:
            raise ValidationError("Banner start must be before its end")

    def list_banners(
        self,
        page: int = 1,
        limit: int = 20,
        position: BannerPosition | None = None,
        is_active: bool | None = None,
        search: str | None = None,
    ) -> dict[str, Any]:
        with db.session() as session:
            query = session.query(Banner)
            if position is not None:
                query = query.filter(Banner.position == position)
            if is_active is not None:
                query = query.filter(Banner.is_active == is_active)
            if search:
                pattern = f"%{search}%"
                query = query.filter(or_(Banner.title.ilike(pattern), Banner.subtitle.ilike(pattern)))
            query = query.order_by(Banner.position.asc(), Banner.display_order.asc(), Banner.id.asc())
            return paginate(query, page, limit)

    def get_banner(self, banner_id: int) -> Banner:
        with db.session() as session:
            banner = session.get(Banner, banner_id)
            if not banner:
                raise NotFoundError("Banner", banner_id)
            return banner

    def get_active_banners(self, position: BannerPosition | None = None, now: datetime | None = None) -> list[Banner]:
        """Active banners whose schedule window contains now."""
        now = now or datetime.utcnow()
        with db.session() as session:
            query = session.query(Banner).filter(
                Banner.is_active == True,
                or_(Banner.starts_at.is_(None), Banner.starts_at <= now),
                or_(Banner.ends_at.is_(None), Banner.ends_at >= now),
            )
            if position is not None:
                query = query.filter(Banner.position == position)
            return query.order_by(Banner.display_order.asc(), Banner.id.asc()).all()

    def create_banner(self, **data: Any) -> Banner:
        self._validate_window(data.get("starts_at"), data.get("ends_at"))
        with db.session() as session:
            banner = Banner(**{k: v for k, v in data.items() if k in _FIELDS and v is not None})
            session.add(banner)
            session.commit()
            session.refresh(banner)

            self.logger.info("banner_created", banner_id=banner.id, position=banner.position.value)
            return banner

    def update_banner(self, banner_id: int, **data: Any) -> Banner:
        with db.session() as session:
            banner = session.get(Banner, banner_id)
            if not banner:
                raise NotFoundError("Banner", banner_id)

            self._validate_window(
                data.get("starts_at") or banner.starts_at,
                data.get("ends_at") or banner.ends_at,
            )
            for field in _FIELDS:
                if data.get(field) is not None:
                    setattr(banner, field, data[field])
            session.commit()
            session.refresh(banner)

            self.logger.info("banner_updated", banner_id=banner_id)
            return banner

    def delete_banner(self, banner_id: int) -> None:
        with db.session() as session:
            banner = session.get(Banner, banner_id)
            if not banner:
                raise NotFoundError("Banner", banner_id)
            session.delete(banner)
            self.logger.info("banner_deleted", banner_id=banner_id)

    def _increment(self, banner_id: int, column) -> None:
        with db.session() as session:
            updated = (
                session.query(Banner)
                .filter(Banner.id == banner_id)
                .update({column: column + 1}, synchronize_session=False)
            )
            if not updated:
                raise NotFoundError("Banner", banner_id)

    def record_impression(self, banner_id: int) -> None:
        self._increment(banner_id, Banner.impression_count)

    def record_click(self, banner_id: int) -> None:
        self._increment(banner_id, Banner.click_count)

    def get_statistics(self) -> dict[str, Any]:
        """Impressions, clicks and CTR overall and per banner."""
        with db.session() as session:
            banners = session.query(Banner).order_by(Banner.id.asc()).all()
            active = session.query(func.count(Banner.id)).filter(Banner.is_active == True).scalar()

        impressions = sum(b.impression_count for b in banners)
        clicks = sum(b.click_count for b in banners)
        return {
            "total_banners": len(banners),
            "active_banners": active,
            "total_impressions": impressions,
            "total_clicks": clicks,
            "ctr": round(clicks / impressions * 100, 2) if impressions else 0.0,
            "banners": [
                {
                    "id": b.id,
                    "title": b.title,
                    "position": b.position.value,
                    "impressions": b.impression_count,
                    "clicks": b.click_count,
                    "ctr": b.ctr,
                }
                for b in banners
            ],
        }


banner_service = BannerService()
