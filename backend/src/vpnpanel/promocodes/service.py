"""Promocode service: code management, validation and redemption."""

import re
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from vpnpanel.errors import ConflictError, NotFoundError, ValidationError
from vpnpanel.logging_config import get_logger
from vpnpanel.notifications.models import NotificationType
from vpnpanel.notifications.service import notification_service
from vpnpanel.payments.models import Payment
from vpnpanel.plans.models import Plan
from vpnpanel.promocodes.models import Promocode, PromocodeActivation, PromocodeRewardType
from vpnpanel.storage.db import db
from vpnpanel.storage.pagination import paginate
from vpnpanel.subscriptions.models import Subscription, SubscriptionStatus
from vpnpanel.subscriptions.service import subscription_service

logger = get_logger(__name__)

CODE_PATTERN = re.compile(r"^[A-Z0-9_-]{3,32}$")

_FIELDS = (
    "code",
    "description",
    "reward_type",
    "reward_value",
    "plan_id",
    "max_uses",
    "max_uses_per_user",
    "starts_at",
    "expires_at",
    "is_active",
)


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def _money(value: float) -> float:
    return round(value, 2)


class PromocodeService:
    """Admin CRUD plus the client side: checking, quoting and redeeming codes."""

    def __init__(self):
        self.logger = get_logger(__name__)

    # ==================== ADMIN ====================

    def _validate(self, session: Session, values: dict[str, Any]) -> None:
        if values.get("reward_type") is None:
            raise ValidationError("reward_type is required")
        if not CODE_PATTERN.match(values["code"]):
            raise ValidationError("Code must be 3-32 characters: letters, digits, '-' or '_'")

        value = values.get("reward_value")
        if value is None or value <= 0:
            raise ValidationError("reward_value must be positive")
        if values["reward_type"] == PromocodeRewardType.PURCHASE_DISCOUNT and value >= 100:
            raise ValidationError("Discount must be below 100 percent")
        if values["reward_type"] == PromocodeRewardType.DURATION and value != int(value):
            raise ValidationError("Bonus days must be a whole number")

        if values.get("max_uses") is not None and values["max_uses"] < 1:
            raise ValidationError("max_uses must be at least 1")
        if values.get("max_uses_per_user") is not None and values["max_uses_per_user"] < 1:
            raise ValidationError("max_uses_per_user must be at least 1")

        starts_at, expires_at = values.get("starts_at"), values.get("expires_at")
        if starts_at and expires_at and starts_at >= expires_at:
            raise ValidationError("Promocode start must be before its expiry")

        plan_id = values.get("plan_id")
        if plan_id is not None and not session.get(Plan, plan_id):
            raise NotFoundError("Plan", plan_id)

    def list_promocodes(
        self,
        page: int = 1,
        limit: int = 20,
        is_active: bool | None = None,
        search: str | None = None,
    ) -> dict[str, Any]:
        with db.session() as session:
            query = session.query(Promocode)
            if is_active is not None:
                query = query.filter(Promocode.is_active == is_active)
            if search:
                pattern = f"%{search}%"
                query = query.filter(or_(Promocode.code.ilike(pattern), Promocode.description.ilike(pattern)))
            query = query.order_by(Promocode.created_at.desc(), Promocode.id.desc())
            return paginate(query, page, limit)

    def get_promocode(self, promocode_id: int) -> Promocode:
        with db.session() as session:
            promocode = session.get(Promocode, promocode_id)
            if not promocode:
                raise NotFoundError("Promocode", promocode_id)
            return promocode

    def create_promocode(self, created_by: int | None = None, **data: Any) -> Promocode:
        """Create a promocode; codes are stored upper-case.

        Raises:
            ValidationError: If the code, reward or limits are invalid
            ConflictError: If the code already exists
        """
        values = {k: v for k, v in data.items() if k in _FIELDS and v is not None}
        values["code"] = normalize_code(values.get("code"))

        with db.session() as session:
            self._validate(session, values)
            if session.query(Promocode.id).filter(Promocode.code == values["code"]).first():
                raise ConflictError(f"Promocode '{values['code']}' already exists")

            promocode = Promocode(created_by=created_by, **values)
            session.add(promocode)
            session.commit()
            session.refresh(promocode)

            self.logger.info(
                "promocode_created",
                promocode_id=promocode.id,
                code=promocode.code,
                reward_type=promocode.reward_type.value,
                created_by=created_by,
            )
            return promocode

    def update_promocode(self, promocode_id: int, **data: Any) -> Promocode:
        with db.session() as session:
            promocode = session.get(Promocode, promocode_id)
            if not promocode:
                raise NotFoundError("Promocode", promocode_id)

            changes = {k: v for k, v in data.items() if k in _FIELDS and v is not None}
            if "code" in changes:
                changes["code"] = normalize_code(changes["code"])
                clash = (
                    session.query(Promocode.id)
                    .filter(Promocode.code == changes["code"], Promocode.id != promocode_id)
                    .first()
                )
                if clash:
                    raise ConflictError(f"Promocode '{changes['code']}' already exists")

            merged = {field: getattr(promocode, field) for field in _FIELDS}
            merged.update(changes)
            self._validate(session, merged)

            for field, value in changes.items():
                setattr(promocode, field, value)
            session.commit()
            session.refresh(promocode)

            self.logger.info("promocode_updated", promocode_id=promocode_id, fields=sorted(changes))
            return promocode

    def toggle_promocode(self, promocode_id: int) -> Promocode:
        with db.session() as session:
            promocode = session.get(Promocode, promocode_id)
            if not promocode:
                raise NotFoundError("Promocode", promocode_id)
            promocode.is_active = not promocode.is_active
            session.commit()
            session.refresh(promocode)

            self.logger.info("promocode_toggled", promocode_id=promocode_id, is_active=promocode.is_active)
            return promocode

    def delete_promocode(self, promocode_id: int) -> None:
        """Delete a code nobody redeemed.

        Raises:
            ConflictError: If the code has activations
        """
        with db.session() as session:
            promocode = session.get(Promocode, promocode_id)
            if not promocode:
                raise NotFoundError("Promocode", promocode_id)
            used = (
                session.query(PromocodeActivation.id)
                .filter(PromocodeActivation.promocode_id == promocode_id)
                .first()
            )
            if used:
                raise ConflictError("Promocode has been used; deactivate it instead")
            if session.query(Payment.id).filter(Payment.promocode_id == promocode_id).first():
                raise ConflictError("Promocode is attached to payments; deactivate it instead")

            session.delete(promocode)
            self.logger.info("promocode_deleted", promocode_id=promocode_id)

    def list_activations(
        self,
        page: int = 1,
        limit: int = 20,
        promocode_id: int | None = None,
        user_id: int | None = None,
    ) -> dict[str, Any]:
        with db.session() as session:
            query = session.query(PromocodeActivation)
            if promocode_id is not None:
                query = query.filter(PromocodeActivation.promocode_id == promocode_id)
            if user_id is not None:
                query = query.filter(PromocodeActivation.user_id == user_id)
            query = query.order_by(PromocodeActivation.created_at.desc(), PromocodeActivation.id.desc())
            return paginate(query, page, limit)

    def get_promocode_stats(self, promocode_id: int) -> dict[str, Any]:
        promocode = self.get_promocode(promocode_id)
        with db.session() as session:
            activations, users, discount, days = (
                session.query(
                    func.count(PromocodeActivation.id),
                    func.count(func.distinct(PromocodeActivation.user_id)),
                    func.coalesce(func.sum(PromocodeActivation.discount_amount), 0.0),
                    func.coalesce(func.sum(PromocodeActivation.bonus_days), 0),
                )
                .filter(PromocodeActivation.promocode_id == promocode_id)
                .one()
            )

        return {
            "promocode_id": promocode.id,
            "code": promocode.code,
            "used_count": promocode.used_count,
            "remaining_uses": promocode.remaining_uses,
            "activations": activations,
            "unique_users": users,
            "total_discount": _money(float(discount)),
            "total_bonus_days": int(days),
        }

    # ==================== CHECKING ====================

    def _find(self, session: Session, code: str) -> Promocode:
        normalized = normalize_code(code)
        promocode = session.query(Promocode).filter(Promocode.code == normalized).first()
        if not promocode:
            raise ValidationError(f"Promocode '{normalized}' is invalid or expired")
        return promocode

    def _check(
        self,
        session: Session,
        promocode: Promocode,
        user_id: int,
        plan_id: int | None,
        now: datetime,
    ) -> None:
        """Raise ValidationError unless the user may redeem the code now."""
        if not promocode.is_active:
            raise ValidationError(f"Promocode '{promocode.code}' is invalid or expired")
        if promocode.starts_at and promocode.starts_at > now:
            raise ValidationError(f"Promocode '{promocode.code}' is not active yet")
        if promocode.expires_at and promocode.expires_at < now:
            raise ValidationError(f"Promocode '{promocode.code}' is invalid or expired")
        if promocode.max_uses is not None and promocode.used_count >= promocode.max_uses:
            raise ValidationError(f"Promocode '{promocode.code}' has reached its usage limit")
        if promocode.plan_id is not None and plan_id != promocode.plan_id:
            raise ValidationError(f"Promocode '{promocode.code}' is not valid for this plan")

        used_by_user = (
            session.query(func.count(PromocodeActivation.id))
            .filter(
                PromocodeActivation.promocode_id == promocode.id,
                PromocodeActivation.user_id == user_id,
            )
            .scalar()
        )
        if used_by_user >= promocode.max_uses_per_user:
            raise ValidationError(f"Promocode '{promocode.code}' was already used")

    def discount_for(self, promocode: Promocode, price: float) -> float:
        if promocode.reward_type != PromocodeRewardType.PURCHASE_DISCOUNT:
            return 0.0
        return _money(price * promocode.reward_value / 100)

    def bonus_days_for(self, promocode: Promocode) -> int:
        if promocode.reward_type != PromocodeRewardType.DURATION:
            return 0
        return int(promocode.reward_value)

    def quote(
        self,
        session: Session,
        code: str,
        user_id: int,
        plan: Plan,
        now: datetime | None = None,
    ) -> tuple[Promocode, float]:
        """Checked promocode and the discount it gives on a plan purchase."""
        promocode = self._find(session, code)
        self._check(session, promocode, user_id, plan.id, now or datetime.utcnow())
        return promocode, self.discount_for(promocode, plan.price)

    def validate_promocode(self, code: str, user_id: int, plan_id: int | None = None) -> dict[str, Any]:
        """What the code would give the user, without redeeming it."""
        with db.session() as session:
            promocode = self._find(session, code)
            plan = session.get(Plan, plan_id) if plan_id is not None else None
            if plan_id is not None and not plan:
                raise NotFoundError("Plan", plan_id)
            self._check(session, promocode, user_id, plan_id, datetime.utcnow())

            result = {
                "code": promocode.code,
                "description": promocode.description,
                "reward_type": promocode.reward_type,
                "reward_value": promocode.reward_value,
                "bonus_days": self.bonus_days_for(promocode),
                "discount": None,
                "final_amount": None,
            }
            if plan:
                discount = self.discount_for(promocode, plan.price)
                result["discount"] = discount
                result["final_amount"] = _money(plan.price - discount)
            return result

    # ==================== REDEMPTION ====================

    def record_activation(
        self,
        session: Session,
        promocode_id: int,
        user_id: int,
        payment_id: int | None = None,
        subscription_id: int | None = None,
        discount_amount: float = 0.0,
        bonus_days: int = 0,
    ) -> PromocodeActivation:
        """Count one use of a code inside the caller's transaction."""
        promocode = (
            session.query(Promocode)
            .filter(Promocode.id == promocode_id)
            .with_for_update()
            .first()
        )
        if not promocode:
            raise NotFoundError("Promocode", promocode_id)

        promocode.used_count += 1
        activation = PromocodeActivation(
            promocode_id=promocode_id,
            user_id=user_id,
            payment_id=payment_id,
            subscription_id=subscription_id,
            discount_amount=_money(discount_amount),
            bonus_days=bonus_days,
        )
        session.add(activation)
        session.flush()
        return activation

    def activate_promocode(self, user_id: int, code: str) -> dict[str, Any]:
        """Redeem a bonus-days code against the user's active subscription.

        Discount codes only apply when creating a payment.

        Raises:
            ValidationError: If the code cannot be used or there is no active
                subscription to extend
        """
        now = datetime.utcnow()
        with db.session() as session:
            promocode = self._find(session, code)
            if promocode.reward_type != PromocodeRewardType.DURATION:
                raise ValidationError("Discount codes are applied when paying for a plan")

            query = session.query(Subscription).filter(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.ACTIVE,
            )
            if promocode.plan_id is not None:
                query = query.filter(Subscription.plan_id == promocode.plan_id)
            subscription = query.order_by(Subscription.end_date.desc()).with_for_update().first()
            if not subscription:
                raise ValidationError("An active subscription is required to use this promocode")

            self._check(session, promocode, user_id, subscription.plan_id, now)

            days = self.bonus_days_for(promocode)
            subscription_service.extend_subscription(session, subscription, days)
            activation = self.record_activation(
                session,
                promocode.id,
                user_id,
                subscription_id=subscription.id,
                bonus_days=days,
            )
            notification_service.create_notification(
                user_id=user_id,
                type=NotificationType.PROMOCODE,
                title="Promocode activated",
                message=f"{days} bonus days added. Subscription active until {subscription.end_date:%Y-%m-%d}.",
                metadata={"promocode": promocode.code, "subscription_id": subscription.id},
                session=session,
            )
            session.commit()
            session.refresh(activation)
            session.refresh(subscription)

        self.logger.info(
            "promocode_activated",
            promocode_id=activation.promocode_id,
            user_id=user_id,
            subscription_id=subscription.id,
            bonus_days=days,
        )
        return {"activation": activation, "subscription": subscription}


promocode_service = PromocodeService()
