"""Notification service."""

from datetime import datetime
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from vpnpanel.auth.models import User
from vpnpanel.errors import NotFoundError
from vpnpanel.logging_config import get_logger
from vpnpanel.notifications.models import Notification, NotificationType
from vpnpanel.storage.db import db
from vpnpanel.storage.pagination import paginate

logger = get_logger(__name__)


class NotificationService:
    """Create, list and mark notifications."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def list_notifications(
        self,
        page: int = 1,
        limit: int = 20,
        user_id: int | None = None,
        type: NotificationType | None = None,
        is_read: bool | None = None,
        search: str | None = None,
    ) -> dict[str, Any]:
        with db.session() as session:
            query = session.query(Notification)
            if user_id is not None:
                query = query.filter(Notification.user_id == user_id)
            if type is not None:
                query = query.filter(Notification.type == type)
            if is_read is not None:
                query = query.filter(Notification.is_read == is_read)
            if search:
                pattern = f"%{search}%"
                query = query.filter(or_(
                    Notification.title.ilike(pattern),
                    Notification.message.ilike(pattern),
                ))
            query = query.order_by(Notification.created_at.desc(), Notification.id.desc())
            return paginate(query, page, limit)

    def get_user_feed(self, user_id: int, page: int = 1, limit: int = 20, unread_only: bool = False) -> dict[str, Any]:
        """The user's own notifications plus broadcasts."""
        with db.session() as session:
            query = session.query(Notification).filter(or_(
                Notification.user_id == user_id,
                Notification.user_id.is_(None),
            ))
            if unread_only:
                query = query.filter(Notification.is_read == False)
            query = query.order_by(Notification.created_at.desc(), Notification.id.desc())
            return paginate(query, page, limit)

    def get_notification(self, notification_id: int) -> Notification:
        with db.session() as session:
            notification = session.get(Notification, notification_id)
            if not notification:
                raise NotFoundError("Notification", notification_id)
            return notification

    def create_notification(
        self,
        title: str,
        message: str,
        user_id: int | None = None,
        type: NotificationType = NotificationType.SYSTEM,
        link_url: str | None = None,
        metadata: dict | None = None,
        session: Session | None = None,
    ) -> Notification:
        """Store a notification; ``user_id=None`` addresses everyone.

        With ``session`` the row joins the caller's transaction.
        """
        if session is not None:
            notification = self._create_notification(session, title, message, user_id, type, link_url, metadata)
        else:
            with db.session() as own_session:
                notification = self._create_notification(
                    own_session, title, message, user_id, type, link_url, metadata
                )
                own_session.commit()
                own_session.refresh(notification)

        self.logger.info(
            "notification_created",
            notification_id=notification.id,
            user_id=user_id,
            type=type.value,
        )
        return notification

    def _create_notification(
        self,
        session: Session,
        title: str,
        message: str,
        user_id: int | None,
        type: NotificationType,
        link_url: str | None,
        metadata: dict | None,
    ) -> Notification:
        if user_id is not None and not session.get(User, user_id):
            raise NotFoundError("User", user_id)

        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            link_url=link_url,
            extra=metadata or {},
        )
        session.add(notification)
        session.flush()
        return notification

    def broadcast(
        self,
        title: str,
        message: str,
        type: NotificationType = NotificationType.ANNOUNCEMENT,
        link_url: str | None = None,
        metadata: dict | None = None,
    ) -> Notification:
        return self.create_notification(
            title=title,
            message=message,
            user_id=None,
            type=type,
            link_url=link_url,
            metadata=metadata,
        )

    def update_notification(self, notification_id: int, **data: Any) -> Notification:
        with db.session() as session:
            notification = session.get(Notification, notification_id)
            if not notification:
                raise NotFoundError("Notification", notification_id)

            for field in ("title", "message", "type", "link_url", "is_read"):
                if data.get(field) is not None:
                    setattr(notification, field, data[field])
            if data.get("metadata") is not None:
                notification.extra = data["metadata"]
            if data.get("is_read") is not None:
                notification.read_at = datetime.utcnow() if data["is_read"] else None

            session.commit()
            session.refresh(notification)
            return notification

    def delete_notification(self, notification_id: int) -> None:
        with db.session() as session:
            notification = session.get(Notification, notification_id)
            if not notification:
                raise NotFoundError("Notification", notification_id)
            session.delete(notification)
            self.logger.info("notification_deleted", notification_id=notification_id)

    def mark_read(self, user_id: int, notification_ids: list[int] | None = None) -> int:
        """Mark a user's notifications as read.

        Only rows owned by the user are touched; broadcasts are shared and
        stay unread. With no ids every unread notification of the user is
        marked.

        Returns:
            Number of updated notifications
        """
        with db.session() as session:
            query = session.query(Notification).filter(
                Notification.user_id == user_id,
                Notification.is_read == False,
            )
            if notification_ids is not None:
                if not notification_ids:
                    return 0
                query = query.filter(Notification.id.in_(notification_ids))
            count = query.update(
                {Notification.is_read: True, Notification.read_at: datetime.utcnow()},
                synchronize_session=False,
            )

        self.logger.info("notifications_marked_read", user_id=user_id, count=count)
        return count

    def get_counts(self, user_id: int | None = None) -> dict[str, Any]:
        """Totals, read/unread split and per-type counts."""
        with db.session() as session:
            base = session.query(Notification)
            if user_id is not None:
                base = base.filter(Notification.user_id == user_id)

            total = base.count()
            unread = base.filter(Notification.is_read == False).count()

            type_query = session.query(Notification.type, func.count(Notification.id))
            if user_id is not None:
                type_query = type_query.filter(Notification.user_id == user_id)
            by_type = {t.value: c for t, c in type_query.group_by(Notification.type).all()}

            return {
                "total": total,
                "unread": unread,
                "read": total - unread,
                "by_type": by_type,
            }


notification_service = NotificationService()
