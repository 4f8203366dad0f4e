"""Dashboard and reporting statistics."""

from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Any

from sqlalchemy import func

from vpnpanel.auth.models import User
from vpnpanel.errors import ValidationError
from vpnpanel.logging_config import get_logger
from vpnpanel.partners.models import Partner, PartnerEarning, PartnerStatus
from vpnpanel.payments.models import Payment, PaymentStatus
from vpnpanel.plans.models import Plan
from vpnpanel.statistics.models import DailyStatistics
from vpnpanel.storage.db import db
from vpnpanel.subscriptions.models import Subscription, SubscriptionStatus

logger = get_logger(__name__)

DEFAULT_RANGE_DAYS = 30


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def _growth(current: float, previous: float) -> float:
    if previous:
        return round((current - previous) / previous * 100, 2)
    return 100.0 if current else 0.0


class StatisticsService:
    """Aggregate figures for the admin dashboard."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def _revenue_between(self, session, start: datetime | None, end: datetime) -> tuple[float, int]:
        query = session.query(
            func.coalesce(func.sum(Payment.amount), 0.0),
            func.count(Payment.id),
        ).filter(
            Payment.status == PaymentStatus.COMPLETED,
            Payment.completed_at < end,
        )
        if start is not None:
            query = query.filter(Payment.completed_at >= start)
        total, count = query.one()
        return round(total, 2), count

    def get_dashboard(self, now: datetime | None = None) -> dict[str, Any]:
        """Headline numbers: users, subscriptions, revenue, partners."""
        now = now or datetime.utcnow()
        today_start, _ = _day_bounds(now.date())
        month_start = today_start.replace(day=1)

        with db.session() as session:
            total_users = session.query(func.count(User.id)).scalar()
            new_today = session.query(func.count(User.id)).filter(User.created_at >= today_start).scalar()
            active_subscriptions = (
                session.query(func.count(Subscription.id))
                .filter(Subscription.status == SubscriptionStatus.ACTIVE)
                .scalar()
            )
            revenue_total, payments_total = self._revenue_between(session, None, now + timedelta(seconds=1))
            revenue_today, _ = self._revenue_between(session, today_start, now + timedelta(seconds=1))
            revenue_month, _ = self._revenue_between(session, month_start, now + timedelta(seconds=1))
            pending_payments = (
                session.query(func.count(Payment.id))
                .filter(Payment.status == PaymentStatus.PENDING)
                .scalar()
            )
            active_partners = (
                session.query(func.count(Partner.id))
                .filter(Partner.status == PartnerStatus.ACTIVE)
                .scalar()
            )

        return {
            "users": {"total": total_users, "new_today": new_today},
            "subscriptions": {"active": active_subscriptions},
            "revenue": {
                "total": revenue_total,
                "today": revenue_today,
                "month": revenue_month,
                "completed_payments": payments_total,
                "pending_payments": pending_payments,
            },
            "partners": {"active": active_partners},
        }

    def get_revenue_stats(self, start: date | None = None, end: date | None = None) -> dict[str, Any]:
        """Revenue per day in [start, end] with growth against the previous equal period."""
        end = end or datetime.utcnow().date()
        start = start or end - timedelta(days=DEFAULT_RANGE_DAYS - 1)
        if start > end:
            raise ValidationError("start must not be after end")
        range_start, _ = _day_bounds(start)
        _, range_end = _day_bounds(end)
        span = range_end - range_start

        with db.session() as session:
            rows = (
                session.query(Payment.completed_at, Payment.amount)
                .filter(
                    Payment.status == PaymentStatus.COMPLETED,
                    Payment.completed_at >= range_start,
                    Payment.completed_at < range_end,
                )
                .all()
            )
            previous_total, previous_count = self._revenue_between(session, range_start - span, range_start)

        per_day: dict[date, list[float]] = defaultdict(list)
        for completed_at, amount in rows:
            per_day[completed_at.date()].append(amount)

        total = round(sum(amount for _, amount in rows), 2)
        count = len(rows)
        days = []
        day = start
        while day <= end:
            amounts = per_day.get(day, [])
            days.append({"date": day.isoformat(), "revenue": round(sum(amounts), 2), "payments": len(amounts)})
            day += timedelta(days=1)

        return {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "total": total,
            "payments": count,
            "average_payment": round(total / count, 2) if count else 0.0,
            "previous_total": previous_total,
            "growth_percent": _growth(total, previous_total),
            "by_day": days,
        }

    def get_user_stats(self, start: date | None = None, end: date | None = None) -> dict[str, Any]:
        end = end or datetime.utcnow().date()
        start = start or end - timedelta(days=DEFAULT_RANGE_DAYS - 1)
        range_start, _ = _day_bounds(start)
        _, range_end = _day_bounds(end)

        with db.session() as session:
            total = session.query(func.count(User.id)).scalar()
            active = session.query(func.count(User.id)).filter(User.is_active == True).scalar()
            with_telegram = session.query(func.count(User.id)).filter(User.telegram_id.isnot(None)).scalar()
            new_in_range = (
                session.query(func.count(User.id))
                .filter(User.created_at >= range_start, User.created_at < range_end)
                .scalar()
            )
            by_role = {
                role.value: count
                for role, count in session.query(User.role, func.count(User.id)).group_by(User.role).all()
            }
            paying = (
                session.query(func.count(func.distinct(Payment.user_id)))
                .filter(Payment.status == PaymentStatus.COMPLETED)
                .scalar()
            )

        return {
            "total": total,
            "active": active,
            "blocked": total - active,
            "with_telegram": with_telegram,
            "paying": paying,
            "new_in_range": new_in_range,
            "by_role": by_role,
        }

    def get_subscription_stats(self) -> dict[str, Any]:
        with db.session() as session:
            by_status = {
                status.value: count
                for status, count in session.query(Subscription.status, func.count(Subscription.id))
                .group_by(Subscription.status)
                .all()
            }
            by_plan = [
                {"plan_id": plan_id, "plan_name": name, "active": count}
                for plan_id, name, count in session.query(Plan.id, Plan.name, func.count(Subscription.id))
                .join(Subscription, Subscription.plan_id == Plan.id)
                .filter(Subscription.status == SubscriptionStatus.ACTIVE)
                .group_by(Plan.id, Plan.name)
                .order_by(func.count(Subscription.id).desc())
                .all()
            ]

        return {
            "total": sum(by_status.values()),
            "by_status": {s.value: by_status.get(s.value, 0) for s in SubscriptionStatus},
            "by_plan": by_plan,
        }

    def snapshot_daily(self, day: date | None = None) -> DailyStatistics:
        """Compute (or recompute) the statistics row for one day."""
        day = day or datetime.utcnow().date()
        start, end = _day_bounds(day)

        with db.session() as session:
            revenue, payments_count = self._revenue_between(session, start, end)
            values = {
                "total_users": session.query(func.count(User.id)).filter(User.created_at < end).scalar(),
                "new_users": session.query(func.count(User.id))
                .filter(User.created_at >= start, User.created_at < end)
                .scalar(),
                "active_subscriptions": session.query(func.count(Subscription.id))
                .filter(
                    Subscription.status == SubscriptionStatus.ACTIVE,
                    Subscription.start_date < end,
                    Subscription.end_date >= start,
                )
                .scalar(),
                "new_subscriptions": session.query(func.count(Subscription.id))
                .filter(Subscription.created_at >= start, Subscription.created_at < end)
                .scalar(),
                "revenue": revenue,
                "payments_count": payments_count,
                "partner_earnings": round(
                    session.query(func.coalesce(func.sum(PartnerEarning.amount), 0.0))
                    .filter(PartnerEarning.created_at >= start, PartnerEarning.created_at < end)
                    .scalar(),
                    2,
                ),
            }

            row = session.query(DailyStatistics).filter(DailyStatistics.date == day).first()
            if row is None:
                row = DailyStatistics(date=day)
                session.add(row)
            for field, value in values.items():
                setattr(row, field, value)
            session.commit()
            session.refresh(row)

            self.logger.info("daily_statistics_snapshot", date=day.isoformat(), revenue=revenue)
            return row

    def list_daily(self, start: date | None = None, end: date | None = None) -> list[DailyStatistics]:
        end = end or datetime.utcnow().date()
        start = start or end - timedelta(days=DEFAULT_RANGE_DAYS - 1)
        with db.session() as session:
            return (
                session.query(DailyStatistics)
                .filter(DailyStatistics.date >= start, DailyStatistics.date <= end)
                .order_by(DailyStatistics.date.asc())
                .all()
            )


statistics_service = StatisticsService()
