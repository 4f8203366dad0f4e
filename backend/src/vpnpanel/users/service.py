"""Admin-side user management."""

from typing import Any

from sqlalchemy import func, or_

from vpnpanel.auth.models import User, UserRole
from vpnpanel.errors import NotFoundError, PermissionDeniedError, ValidationError
from vpnpanel.logging_config import get_logger
from vpnpanel.payments.models import Payment, PaymentStatus
from vpnpanel.storage.db import db
from vpnpanel.storage.pagination import paginate
from vpnpanel.subscriptions.models import Subscription, SubscriptionStatus

logger = get_logger(__name__)


def search_filter(query, search: str):
    """Match username, names or Telegram ID."""
    pattern = f"%{search}%"
    return query.filter(or_(
        User.username.ilike(pattern),
        User.first_name.ilike(pattern),
        User.last_name.ilike(pattern),
        User.telegram_id.ilike(pattern),
    ))


class UserService:
    """List, inspect, edit and block users."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def list_users(
        self,
        page: int = 1,
        limit: int = 20,
        role: UserRole | None = None,
        is_active: bool | None = None,
        search: str | None = None,
    ) -> dict[str, Any]:
        with db.session() as session:
            query = session.query(User)
            if role is not None:
                query = query.filter(User.role == role)
            if is_active is not None:
                query = query.filter(User.is_active == is_active)
            if search:
                query = search_filter(query, search)
            query = query.order_by(User.created_at.desc(), User.id.desc())
            return paginate(query, page, limit)

    def get_user(self, user_id: int) -> User:
        with db.session() as session:
            user = session.get(User, user_id)
            if not user:
                raise NotFoundError("User", user_id)
            return user

    def get_user_overview(self, user_id: int) -> dict[str, Any]:
        """User with subscription and payment counters."""
        user = self.get_user(user_id)
        with db.session() as session:
            active_subscriptions = (
                session.query(func.count(Subscription.id))
                .filter(
                    Subscription.user_id == user_id,
                    Subscription.status == SubscriptionStatus.ACTIVE,
                )
                .scalar()
            )
            payments_count, total_spent = (
                session.query(func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0.0))
                .filter(Payment.user_id == user_id, Payment.status == PaymentStatus.COMPLETED)
                .one()
            )
        return {
            "user": user,
            "active_subscriptions": active_subscriptions,
            "payments_count": payments_count,
            "total_spent": round(total_spent, 2),
        }

    def update_user(self, user_id: int, **data: Any) -> User:
        """Update profile fields; roles are managed through access control."""
        with db.session() as session:
            user = session.get(User, user_id)
            if not user:
                raise NotFoundError("User", user_id)

            for field in ("first_name", "last_name", "language", "photo_url"):
                if data.get(field) is not None:
                    setattr(user, field, data[field])
            session.commit()
            session.refresh(user)

            self.logger.info("user_updated", user_id=user_id)
            return user

    def _set_active(self, user_id: int, is_active: bool, actor_id: int | None) -> User:
        with db.session() as session:
            user = session.get(User, user_id)
            if not user:
                raise NotFoundError("User", user_id)
            if not is_active:
                if user_id == actor_id:
                    raise ValidationError("You cannot block yourself")
                if user.role == UserRole.SUPER_ADMIN:
                    raise PermissionDeniedError("Super admins cannot be blocked")

            user.is_active = is_active
            session.commit()
            session.refresh(user)

            self.logger.info(
                "user_unblocked" if is_active else "user_blocked",
                user_id=user_id,
                actor_id=actor_id,
            )
            return user

    def block_user(self, user_id: int, actor_id: int | None = None) -> User:
        return self._set_active(user_id, False, actor_id)

    def unblock_user(self, user_id: int, actor_id: int | None = None) -> User:
        return self._set_active(user_id, True, actor_id)


user_service = UserService()
