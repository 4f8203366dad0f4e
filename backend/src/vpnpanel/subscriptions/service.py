"""Subscription service: grants, renewals, expiry and panel provisioning."""

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from vpnpanel.auth.models import User
from vpnpanel.errors import ConflictError, NotFoundError, ValidationError
from vpnpanel.logging_config import get_logger
from vpnpanel.plans.models import Plan
from vpnpanel.settings import settings
from vpnpanel.storage.db import db
from vpnpanel.storage.pagination import paginate
from vpnpanel.subscriptions.models import Subscription, SubscriptionStatus, SubscriptionType

logger = get_logger(__name__)

CANCELLABLE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.PENDING)


class SubscriptionService:
    """Manage user subscriptions."""

    def __init__(self):
        self.logger = get_logger(__name__)

    # ==================== QUERIES ====================

    def list_subscriptions(
        self,
        page: int = 1,
        limit: int = 20,
        user_id: int | None = None,
        status: SubscriptionStatus | None = None,
        plan_id: int | None = None,
    ) -> dict[str, Any]:
        with db.session() as session:
            query = session.query(Subscription)
            if user_id is not None:
                query = query.filter(Subscription.user_id == user_id)
            if status is not None:
                query = query.filter(Subscription.status == status)
            if plan_id is not None:
                query = query.filter(Subscription.plan_id == plan_id)
            query = query.order_by(Subscription.created_at.desc(), Subscription.id.desc())
            return paginate(query, page, limit)

    def get_subscription(self, subscription_id: int) -> Subscription:
        with db.session() as session:
            subscription = session.get(Subscription, subscription_id)
            if not subscription:
                raise NotFoundError("Subscription", subscription_id)
            return subscription

    def get_user_subscriptions(self, user_id: int) -> list[Subscription]:
        with db.session() as session:
            return (
                session.query(Subscription)
                .filter(Subscription.user_id == user_id)
                .order_by(Subscription.created_at.desc(), Subscription.id.desc())
                .all()
            )

    def get_active_subscription(self, user_id: int, plan_id: int | None = None) -> Subscription | None:
        """Latest-ending active subscription of a user, optionally on one plan."""
        with db.session() as session:
            query = session.query(Subscription).filter(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.ACTIVE,
            )
            if plan_id is not None:
                query = query.filter(Subscription.plan_id == plan_id)
            return query.order_by(Subscription.end_date.desc()).first()

    # ==================== LIFECYCLE ====================

    def _create_subscription(
        self,
        session: Session,
        user_id: int,
        plan_id: int,
        subscription_type: SubscriptionType = SubscriptionType.REGULAR,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        start_date: datetime | None = None,
        renewed_from_id: int | None = None,
        duration_days: int | None = None,
    ) -> Subscription:
        if not session.get(User, user_id):
            raise NotFoundError("User", user_id)
        plan = session.get(Plan, plan_id)
        if not plan:
            raise NotFoundError("Plan", plan_id)

        start = start_date or datetime.utcnow()
        subscription = Subscription(
            user_id=user_id,
            plan_id=plan_id,
            status=status,
            subscription_type=subscription_type,
            start_date=start,
            end_date=start + timedelta(days=duration_days or plan.duration_days),
            device_count=plan.device_limit,
            traffic_limit_gb=plan.traffic_limit_gb,
            renewed_from_id=renewed_from_id,
        )
        session.add(subscription)
        session.flush()
        return subscription

    def create_subscription(
        self,
        user_id: int,
        plan_id: int,
        subscription_type: SubscriptionType = SubscriptionType.REGULAR,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        start_date: datetime | None = None,
        renewed_from_id: int | None = None,
    ) -> Subscription:
        """Grant a plan to a user.

        The period and limits are copied from the plan so that later plan
        edits do not change subscriptions already sold.
        """
        with db.session() as session:
            subscription = self._create_subscription(
                session,
                user_id,
                plan_id,
                subscription_type=subscription_type,
                status=status,
                start_date=start_date,
                renewed_from_id=renewed_from_id,
            )
            session.commit()
            session.refresh(subscription)

        self.logger.info(
            "subscription_created",
            subscription_id=subscription.id,
            user_id=user_id,
            plan_id=plan_id,
            type=subscription_type.value,
        )
        return subscription

    def cancel_subscription(self, subscription_id: int) -> Subscription:
        with db.session() as session:
            subscription = session.get(Subscription, subscription_id)
            if not subscription:
                raise NotFoundError("Subscription", subscription_id)
            if subscription.status not in CANCELLABLE_STATUSES:
                raise ValidationError(
                    f"Cannot cancel subscription in status '{subscription.status.value}'"
                )

            subscription.status = SubscriptionStatus.CANCELLED
            subscription.cancelled_at = datetime.utcnow()
            session.commit()
            session.refresh(subscription)

            self.logger.info("subscription_cancelled", subscription_id=subscription_id)
            return subscription

    def _renew_subscription(
        self,
        session: Session,
        subscription: Subscription,
        now: datetime,
        extra_days: int = 0,
    ) -> Subscription:
        if subscription.status == SubscriptionStatus.CANCELLED:
            raise ValidationError("Cannot renew a cancelled subscription")

        plan = session.get(Plan, subscription.plan_id)
        base = max(now, subscription.end_date)
        subscription.end_date = base + timedelta(days=plan.duration_days + extra_days)
        subscription.status = SubscriptionStatus.ACTIVE
        session.flush()
        return subscription

    def renew_subscription(self, subscription_id: int, now: datetime | None = None) -> Subscription:
        """Extend a subscription by its plan duration.

        The extension starts at the current end date, or now if it already
        passed. Expired subscriptions become active again.
        """
        now = now or datetime.utcnow()
        with db.session() as session:
            subscription = session.get(Subscription, subscription_id)
            if not subscription:
                raise NotFoundError("Subscription", subscription_id)
            self._renew_subscription(session, subscription, now)
            session.commit()
            session.refresh(subscription)

        self.logger.info(
            "subscription_renewed",
            subscription_id=subscription_id,
            end_date=subscription.end_date.isoformat(),
        )
        return subscription

    def grant_purchase(
        self,
        session: Session,
        user_id: int,
        plan_id: int,
        bonus_days: int = 0,
        now: datetime | None = None,
    ) -> Subscription:
        """Subscription bought by a payment, inside the caller's transaction.

        An active paid subscription on the plan is extended; trials are left
        to run out. Otherwise a new one starts now and points at the user's
        latest expired one on that plan.
        """
        now = now or datetime.utcnow()
        active = (
            session.query(Subscription)
            .filter(
                Subscription.user_id == user_id,
                Subscription.plan_id == plan_id,
                Subscription.status == SubscriptionStatus.ACTIVE,
                Subscription.subscription_type != SubscriptionType.TRIAL,
            )
            .order_by(Subscription.end_date.desc())
            .with_for_update()
            .first()
        )
        if active:
            return self._renew_subscription(session, active, now, extra_days=bonus_days)

        previous = (
            session.query(Subscription.id)
            .filter(
                Subscription.user_id == user_id,
                Subscription.plan_id == plan_id,
                Subscription.status == SubscriptionStatus.EXPIRED,
            )
            .order_by(Subscription.end_date.desc())
            .first()
        )
        subscription = self._create_subscription(
            session,
            user_id,
            plan_id,
            start_date=now,
            renewed_from_id=previous.id if previous else None,
        )
        if bonus_days:
            subscription.end_date += timedelta(days=bonus_days)
            session.flush()
        return subscription

    def extend_subscription(self, session: Session, subscription: Subscription, days: int) -> Subscription:
        """Add days to a subscription inside the caller's transaction."""
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise ValidationError("Only active subscriptions can be extended")
        subscription.end_date += timedelta(days=days)
        session.flush()
        return subscription

    def expire_overdue(self, now: datetime | None = None) -> int:
        """Mark active subscriptions past their end date as expired.

        Returns:
            Number of expired subscriptions
        """
        now = now or datetime.utcnow()
        with db.session() as session:
            count = (
                session.query(Subscription)
                .filter(
                    Subscription.status == SubscriptionStatus.ACTIVE,
                    Subscription.end_date < now,
                )
                .update({Subscription.status: SubscriptionStatus.EXPIRED}, synchronize_session=False)
            )

        if count:
            self.logger.info("subscriptions_expired", count=count)
        return count

    # ==================== TRIALS ====================

    def has_used_trial(self, user_id: int) -> bool:
        with db.session() as session:
            return session.query(Subscription.id).filter(
                Subscription.user_id == user_id,
                Subscription.subscription_type == SubscriptionType.TRIAL,
            ).first() is not None

    def _trial_plan(self, session: Session, plan_id: int | None) -> Plan:
        plan_id = plan_id or settings.trial_plan_id
        if plan_id is not None:
            plan = session.get(Plan, plan_id)
            if not plan:
                raise NotFoundError("Plan", plan_id)
            return plan
        plan = (
            session.query(Plan)
            .filter(Plan.is_active == True)
            .order_by(Plan.display_order.asc(), Plan.id.asc())
            .first()
        )
        if not plan:
            raise ValidationError("No plan available for a trial")
        return plan

    def grant_trial(
        self,
        user_id: int,
        plan_id: int | None = None,
        days: int | None = None,
        granted_by: int | None = None,
    ) -> Subscription:
        """Give a user their one trial subscription.

        The plan defaults to TRIAL_PLAN_ID, else the first active plan; the
        length defaults to TRIAL_DAYS.

        Raises:
            ValidationError: If trials are disabled or the length is not positive
            ConflictError: If the user already had a trial
        """
        if granted_by is None and not settings.trial_enabled:
            raise ValidationError("Trials are disabled")
        days = days or settings.trial_days
        if days <= 0:
            raise ValidationError("Trial length must be positive")

        with db.session() as session:
            user = session.query(User).filter(User.id == user_id).with_for_update().first()
            if not user:
                raise NotFoundError("User", user_id)
            used = session.query(Subscription.id).filter(
                Subscription.user_id == user_id,
                Subscription.subscription_type == SubscriptionType.TRIAL,
            ).first()
            if used:
                raise ConflictError("Trial already used")

            plan = self._trial_plan(session, plan_id)
            subscription = self._create_subscription(
                session,
                user_id,
                plan.id,
                subscription_type=SubscriptionType.TRIAL,
                duration_days=days,
            )
            session.commit()
            session.refresh(subscription)

        self.logger.info(
            "trial_granted",
            subscription_id=subscription.id,
            user_id=user_id,
            days=days,
            granted_by=granted_by,
        )
        return subscription

    def get_trial_stats(self) -> dict[str, Any]:
        """Trial users and how many of them later paid."""
        from vpnpanel.payments.models import Payment, PaymentStatus

        with db.session() as session:
            trial_users = select(Subscription.user_id).where(
                Subscription.subscription_type == SubscriptionType.TRIAL,
            )
            total = (
                session.query(func.count(func.distinct(Subscription.user_id)))
                .filter(Subscription.subscription_type == SubscriptionType.TRIAL)
                .scalar()
            )
            active = (
                session.query(func.count(Subscription.id))
                .filter(
                    Subscription.subscription_type == SubscriptionType.TRIAL,
                    Subscription.status == SubscriptionStatus.ACTIVE,
                )
                .scalar()
            )
            converted = (
                session.query(func.count(func.distinct(Payment.user_id)))
                .filter(
                    Payment.status == PaymentStatus.COMPLETED,
                    Payment.user_id.in_(trial_users),
                )
                .scalar()
            )

        return {
            "enabled": settings.trial_enabled,
            "trial_days": settings.trial_days,
            "total_trial_users": total,
            "active_trials": active,
            "converted_users": converted,
            "conversion_rate": round(converted / total * 100, 1) if total else 0.0,
        }

    # ==================== PANEL ====================

    async def provision(self, subscription_id: int, client=None) -> Subscription:
        """Create or update the panel account backing a subscription.

        Args:
            subscription_id: Subscription ID
            client: Optional RemnawaveClient (a configured one is created otherwise)

        Returns:
            Subscription with remnawave_uuid and subscription_url set
        """
        from vpnpanel.remnawave.client import RemnawaveClient
        from vpnpanel.remnawave.models import RemnawaveUserLink

        owns_client = client is None
        if owns_client:
            client = RemnawaveClient()

        try:
            with db.session() as session:
                subscription = session.get(Subscription, subscription_id)
                if not subscription:
                    raise NotFoundError("Subscription", subscription_id)
                user = session.get(User, subscription.user_id)
                link = (
                    session.query(RemnawaveUserLink)
                    .filter(
                        RemnawaveUserLink.user_id == user.id,
                        RemnawaveUserLink.is_primary == True,
                    )
                    .first()
                )
                uuid = subscription.remnawave_uuid or (link.remnawave_uuid if link else None)

                if uuid:
                    panel_user = await client.update_user(
                        uuid,
                        expire_at=subscription.end_date,
                        traffic_limit_gb=subscription.traffic_limit_gb or 0,
                        status="ACTIVE",
                    )
                else:
                    panel_user = await client.create_user(
                        username=user.username,
                        expire_at=subscription.end_date,
                        traffic_limit_gb=subscription.traffic_limit_gb,
                        telegram_id=user.telegram_id,
                        hwid_device_limit=subscription.device_count,
                    )
                    uuid = panel_user.get("uuid")
                    if link is None and uuid:
                        session.add(RemnawaveUserLink(
                            user_id=user.id,
                            telegram_id=user.telegram_id,
                            remnawave_uuid=uuid,
                            remnawave_username=panel_user.get("username", user.username),
                            is_primary=True,
                        ))

                subscription.remnawave_uuid = uuid
                subscription.subscription_url = (
                    (panel_user or {}).get("subscriptionUrl") or subscription.subscription_url
                )
                session.commit()
                session.refresh(subscription)

            self.logger.info("subscription_provisioned", subscription_id=subscription_id, uuid=uuid)
            return subscription
        finally:
            if owns_client:
                await client.close()


subscription_service = SubscriptionService()
