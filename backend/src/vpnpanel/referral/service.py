"""Referral service: referral tree, reward rules and rewards."""

from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from vpnpanel.auth.models import User
from vpnpanel.errors import ConflictError, NotFoundError, ValidationError
from vpnpanel.logging_config import get_logger
from vpnpanel.partners.models import Partner
from vpnpanel.referral.models import (
    Referral,
    ReferralReward,
    ReferralRule,
    ReferralStatus,
    RewardRecipient,
    RewardStatus,
)
from vpnpanel.storage.db import db
from vpnpanel.storage.pagination import paginate

logger = get_logger(__name__)

MAX_LEVEL = 3
_RULE_FIELDS = (
    "name",
    "description",
    "rule_type",
    "referrer_reward",
    "referred_reward",
    "min_purchase_amount",
    "applies_to_plans",
    "is_active",
    "valid_from",
    "valid_until",
)


class ReferralService:
    """Service for referral relationships and their rewards."""

    def __init__(self):
        """Initialize referral service."""
        self.logger = get_logger(__name__)

    # ==================== RULES ====================

    def _validate_rule(self, data: dict[str, Any]) -> None:
        for field in ("referrer_reward", "referred_reward", "min_purchase_amount"):
            if data.get(field) is not None and data[field] < 0:
                raise ValidationError(f"{field} cannot be negative")
        if data.get("valid_from") and data.get("valid_until") and data["valid_from"] >= data["valid_until"]:
            raise ValidationError("valid_from must be before valid_until")

    def list_rules(self, is_active: bool | None = None) -> list[ReferralRule]:
        with db.session() as session:
            query = session.query(ReferralRule)
            if is_active is not None:
                query = query.filter(ReferralRule.is_active == is_active)
            return query.order_by(ReferralRule.created_at.desc(), ReferralRule.id.desc()).all()

    def get_rule(self, rule_id: int) -> ReferralRule:
        with db.session() as session:
            rule = session.get(ReferralRule, rule_id)
            if not rule:
                raise NotFoundError("Referral rule", rule_id)
            return rule

    def create_rule(self, **data: Any) -> ReferralRule:
        self._validate_rule(data)
        with db.session() as session:
            rule = ReferralRule(**{k: v for k, v in data.items() if k in _RULE_FIELDS and v is not None})
            session.add(rule)
            session.commit()
            session.refresh(rule)

            self.logger.info("referral_rule_created", rule_id=rule.id, name=rule.name)
            return rule

    def update_rule(self, rule_id: int, **data: Any) -> ReferralRule:
        with db.session() as session:
            rule = session.get(ReferralRule, rule_id)
            if not rule:
                raise NotFoundError("Referral rule", rule_id)

            self._validate_rule({
                "valid_from": rule.valid_from,
                "valid_until": rule.valid_until,
                **{k: v for k, v in data.items() if v is not None},
            })
            for field in _RULE_FIELDS:
                if data.get(field) is not None:
                    setattr(rule, field, data[field])
            session.commit()
            session.refresh(rule)

            self.logger.info("referral_rule_updated", rule_id=rule_id)
            return rule

    def delete_rule(self, rule_id: int) -> None:
        with db.session() as session:
            rule = session.get(ReferralRule, rule_id)
            if not rule:
                raise NotFoundError("Referral rule", rule_id)
            session.delete(rule)
            self.logger.info("referral_rule_deleted", rule_id=rule_id)

    def _current_rule(self, session: Session, now: datetime) -> ReferralRule | None:
        rules = (
            session.query(ReferralRule)
            .filter(ReferralRule.is_active == True)
            .order_by(ReferralRule.created_at.desc(), ReferralRule.id.desc())
            .all()
        )
        for rule in rules:
            if rule.is_in_window(now):
                return rule
        return None

    # ==================== REFERRALS ====================

    def _ancestors(self, session: Session, user_id: int, depth: int | None = None) -> list[tuple[int, Referral]]:
        """Referrer links above a user as (level, referral) pairs."""
        chain = []
        seen = {user_id}
        current = user_id
        level = 1
        while depth is None or level <= depth:
            referral = (
                session.query(Referral)
                .filter(
                    Referral.referred_id == current,
                    Referral.status != ReferralStatus.CANCELLED,
                )
                .first()
            )
            if not referral or referral.referrer_id in seen:
                break
            chain.append((level, referral))
            seen.add(referral.referrer_id)
            current = referral.referrer_id
            level += 1
        return chain

    def create_referral(
        self,
        referrer_id: int,
        referred_id: int,
        referral_code: str | None = None,
        rule_id: int | None = None,
        notes: str | None = None,
    ) -> Referral:
        """Record that referrer brought in referred.

        Raises:
            ValidationError: On self-referral or when the link would close a cycle
            ConflictError: If the referred user already has a referrer
        """
        if referrer_id == referred_id:
            raise ValidationError("Users cannot refer themselves")

        with db.session() as session:
            for user_id in (referrer_id, referred_id):
                if not session.get(User, user_id):
                    raise NotFoundError("User", user_id)

            if session.query(Referral.id).filter(Referral.referred_id == referred_id).first():
                raise ConflictError("User has already been referred")

            if any(ref.referrer_id == referred_id for _, ref in self._ancestors(session, referrer_id)):
                raise ValidationError("Referral would create a cycle")

            if rule_id is not None:
                rule = session.get(ReferralRule, rule_id)
                if not rule:
                    raise NotFoundError("Referral rule", rule_id)
            else:
                rule = self._current_rule(session, datetime.utcnow())

            referral = Referral(
                referrer_id=referrer_id,
                referred_id=referred_id,
                referral_code=referral_code,
                status=ReferralStatus.ACTIVE,
                rule_id=rule.id if rule else None,
                referrer_reward=rule.referrer_reward if rule else 0.0,
                referred_reward=rule.referred_reward if rule else 0.0,
                notes=notes,
            )
            session.add(referral)

            session.query(Partner).filter(Partner.user_id == referrer_id).update(
                {Partner.referral_count: Partner.referral_count + 1},
                synchronize_session=False,
            )
            session.commit()
            session.refresh(referral)

            self.logger.info(
                "referral_created",
                referral_id=referral.id,
                referrer_id=referrer_id,
                referred_id=referred_id,
                rule_id=referral.rule_id,
            )
            return referral

    def get_referral(self, referral_id: int) -> Referral:
        with db.session() as session:
            referral = session.get(Referral, referral_id)
            if not referral:
                raise NotFoundError("Referral", referral_id)
            return referral

    def list_referrals(
        self,
        page: int = 1,
        limit: int = 20,
        referrer_id: int | None = None,
        status: ReferralStatus | None = None,
    ) -> dict[str, Any]:
        with db.session() as session:
            query = session.query(Referral)
            if referrer_id is not None:
                query = query.filter(Referral.referrer_id == referrer_id)
            if status is not None:
                query = query.filter(Referral.status == status)
            query = query.order_by(Referral.created_at.desc(), Referral.id.desc())
            return paginate(query, page, limit)

    def _complete_referral(self, session: Session, referral: Referral) -> Referral:
        if referral.status != ReferralStatus.ACTIVE:
            raise ValidationError(f"Cannot complete referral in status '{referral.status.value}'")

        referral.status = ReferralStatus.COMPLETED
        referral.completed_at = datetime.utcnow()
        session.add_all([
            ReferralReward(
                referral_id=referral.id,
                user_id=referral.referrer_id,
                recipient=RewardRecipient.REFERRER,
                amount=referral.referrer_reward,
            ),
            ReferralReward(
                referral_id=referral.id,
                user_id=referral.referred_id,
                recipient=RewardRecipient.REFERRED,
                amount=referral.referred_reward,
            ),
        ])
        session.flush()
        return referral

    def complete_referral(self, referral_id: int) -> Referral:
        """Complete an active referral and create both sides' rewards."""
        with db.session() as session:
            referral = (
                session.query(Referral)
                .filter(Referral.id == referral_id)
                .with_for_update()
                .first()
            )
            if not referral:
                raise NotFoundError("Referral", referral_id)
            self._complete_referral(session, referral)
            session.commit()
            session.refresh(referral)

        self.logger.info("referral_completed", referral_id=referral_id)
        return referral

    def _complete_for_user(
        self,
        session: Session,
        referred_id: int,
        purchase_amount: float | None,
        plan_id: int | None,
    ) -> Referral | None:
        referral = (
            session.query(Referral)
            .filter(
                Referral.referred_id == referred_id,
                Referral.status == ReferralStatus.ACTIVE,
            )
            .with_for_update()
            .first()
        )
        if not referral:
            return None
        rule = session.get(ReferralRule, referral.rule_id) if referral.rule_id else None
        if rule and not rule.applies_to(plan_id, purchase_amount):
            self.logger.debug("referral_rule_not_satisfied", referral_id=referral.id, rule_id=rule.id)
            return None
        return self._complete_referral(session, referral)

    def complete_referral_for_user(
        self,
        referred_id: int,
        purchase_amount: float | None = None,
        plan_id: int | None = None,
        session: Session | None = None,
    ) -> Referral | None:
        """Complete the active referral of a buyer if its rule accepts the purchase.

        With ``session`` the completion joins the caller's transaction.
        """
        if session is not None:
            referral = self._complete_for_user(session, referred_id, purchase_amount, plan_id)
        else:
            with db.session() as own_session:
                referral = self._complete_for_user(own_session, referred_id, purchase_amount, plan_id)

        if referral:
            self.logger.info("referral_completed", referral_id=referral.id, referred_id=referred_id)
        return referral

    def cancel_referral(self, referral_id: int, reason: str | None = None) -> Referral:
        with db.session() as session:
            referral = session.get(Referral, referral_id)
            if not referral:
                raise NotFoundError("Referral", referral_id)
            if referral.status != ReferralStatus.ACTIVE:
                raise ValidationError(f"Cannot cancel referral in status '{referral.status.value}'")

            referral.status = ReferralStatus.CANCELLED
            referral.cancelled_at = datetime.utcnow()
            referral.cancel_reason = reason
            session.commit()
            session.refresh(referral)

            self.logger.info("referral_cancelled", referral_id=referral_id, reason=reason)
            return referral

    # ==================== REWARDS ====================

    def list_rewards(
        self,
        page: int = 1,
        limit: int = 20,
        user_id: int | None = None,
        status: RewardStatus | None = None,
    ) -> dict[str, Any]:
        with db.session() as session:
            query = session.query(ReferralReward)
            if user_id is not None:
                query = query.filter(ReferralReward.user_id == user_id)
            if status is not None:
                query = query.filter(ReferralReward.status == status)
            query = query.order_by(ReferralReward.created_at.desc(), ReferralReward.id.desc())
            return paginate(query, page, limit)

    def approve_reward(self, reward_id: int, admin_id: int | None) -> ReferralReward:
        with db.session() as session:
            reward = session.get(ReferralReward, reward_id)
            if not reward:
                raise NotFoundError("Reward", reward_id)
            if reward.status != RewardStatus.PENDING:
                raise ValidationError(f"Cannot approve reward in status '{reward.status.value}'")

            reward.status = RewardStatus.APPROVED
            reward.approved_by = admin_id
            reward.approved_at = datetime.utcnow()
            session.commit()
            session.refresh(reward)

            self.logger.info("referral_reward_approved", reward_id=reward_id, admin_id=admin_id)
            return reward

    def mark_reward_paid(
        self,
        reward_id: int,
        admin_id: int | None,
        payment_method: str | None = None,
        transaction_id: str | None = None,
    ) -> ReferralReward:
        with db.session() as session:
            reward = session.get(ReferralReward, reward_id)
            if not reward:
                raise NotFoundError("Reward", reward_id)
            if reward.status not in (RewardStatus.PENDING, RewardStatus.APPROVED):
                raise ValidationError(f"Cannot pay reward in status '{reward.status.value}'")

            reward.status = RewardStatus.PAID
            reward.paid_by = admin_id
            reward.paid_at = datetime.utcnow()
            reward.payment_method = payment_method
            reward.transaction_id = transaction_id
            session.commit()
            session.refresh(reward)

            self.logger.info("referral_reward_paid", reward_id=reward_id, admin_id=admin_id)
            return reward

    # ==================== TREE ====================

    def get_referral_chain(self, user_id: int, depth: int = MAX_LEVEL) -> list[dict[str, Any]]:
        """Referrers above a user, nearest first."""
        with db.session() as session:
            chain = []
            for level, referral in self._ancestors(session, user_id, depth):
                referrer = session.get(User, referral.referrer_id)
                chain.append({
                    "level": level,
                    "user_id": referral.referrer_id,
                    "username": referrer.username if referrer else None,
                    "referral_id": referral.id,
                })
            return chain

    def _referred_ids(self, session: Session, user_ids: list[int]) -> list[int]:
        if not user_ids:
            return []
        return [
            row[0]
            for row in session.query(Referral.referred_id)
            .filter(
                Referral.referrer_id.in_(user_ids),
                Referral.status != ReferralStatus.CANCELLED,
            )
            .all()
        ]

    def get_referrals_by_level(self, user_id: int, level: int) -> list[dict[str, Any]]:
        """Users exactly `level` steps below a user in the referral tree."""
        if level < 1 or level > MAX_LEVEL:
            raise ValidationError(f"Level must be between 1 and {MAX_LEVEL}")

        with db.session() as session:
            parents = [user_id]
            for _ in range(level - 1):
                parents = self._referred_ids(session, parents)
            if not parents:
                return []

            rows = (
                session.query(Referral, User)
                .join(User, User.id == Referral.referred_id)
                .filter(
                    Referral.referrer_id.in_(parents),
                    Referral.status != ReferralStatus.CANCELLED,
                )
                .order_by(Referral.created_at.desc())
                .all()
            )
            return [
                {
                    "level": level,
                    "user_id": user.id,
                    "username": user.username,
                    "first_name": user.first_name,
                    "referrer_id": referral.referrer_id,
                    "status": referral.status.value,
                    "referred_at": referral.created_at,
                }
                for referral, user in rows
            ]

    def get_level_counts(self, user_id: int) -> dict[str, int]:
        with db.session() as session:
            counts = {}
            parents = [user_id]
            for level in range(1, MAX_LEVEL + 1):
                parents = self._referred_ids(session, parents)
                counts[str(level)] = len(parents)
            return counts

    # ==================== STATISTICS ====================

    def get_top_referrers(self, limit: int = 10) -> list[dict[str, Any]]:
        with db.session() as session:
            rows = (
                session.query(
                    Referral.referrer_id,
                    User.username,
                    func.count(Referral.id).label("referrals"),
                )
                .join(User, User.id == Referral.referrer_id)
                .filter(Referral.status != ReferralStatus.CANCELLED)
                .group_by(Referral.referrer_id, User.username)
                .order_by(func.count(Referral.id).desc())
                .limit(limit)
                .all()
            )
            return [
                {"user_id": user_id, "username": username, "referrals": count}
                for user_id, username, count in rows
            ]

    def get_statistics(self) -> dict[str, Any]:
        """Program-wide referral statistics."""
        with db.session() as session:
            by_status = dict(
                session.query(Referral.status, func.count(Referral.id)).group_by(Referral.status).all()
            )
            rewards = dict(
                session.query(ReferralReward.status, func.coalesce(func.sum(ReferralReward.amount), 0.0))
                .group_by(ReferralReward.status)
                .all()
            )

        return {
            "total_referrals": sum(by_status.values()),
            "active_referrals": by_status.get(ReferralStatus.ACTIVE, 0),
            "completed_referrals": by_status.get(ReferralStatus.COMPLETED, 0),
            "cancelled_referrals": by_status.get(ReferralStatus.CANCELLED, 0),
            "rewards_paid": round(rewards.get(RewardStatus.PAID, 0.0), 2),
            "rewards_pending": round(
                rewards.get(RewardStatus.PENDING, 0.0) + rewards.get(RewardStatus.APPROVED, 0.0), 2
            ),
            "top_referrers": self.get_top_referrers(),
        }

    def get_user_summary(self, user_id: int) -> dict[str, Any]:
        """Referral overview of a single user."""
        with db.session() as session:
            rewards = dict(
                session.query(ReferralReward.status, func.coalesce(func.sum(ReferralReward.amount), 0.0))
                .filter(ReferralReward.user_id == user_id)
                .group_by(ReferralReward.status)
                .all()
            )
            referred_by = (
                session.query(Referral.referrer_id)
                .filter(Referral.referred_id == user_id)
                .scalar()
            )

        return {
            "referred_by": referred_by,
            "levels": self.get_level_counts(user_id),
            "rewards_paid": round(rewards.get(RewardStatus.PAID, 0.0), 2),
            "rewards_pending": round(
                rewards.get(RewardStatus.PENDING, 0.0) + rewards.get(RewardStatus.APPROVED, 0.0), 2
            ),
        }


referral_service = ReferralService()
