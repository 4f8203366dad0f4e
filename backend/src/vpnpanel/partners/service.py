"""Partner program: enrollment, commission ledger and payouts."""

import re
import secrets
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from vpnpanel.auth.models import User
from vpnpanel.errors import ConflictError, NotFoundError, ValidationError
from vpnpanel.logging_config import get_logger
from vpnpanel.partners.models import (
    EarningStatus,
    Partner,
    PartnerActivationLog,
    PartnerEarning,
    PartnerPayout,
    PartnerSettings,
    PartnerStatus,
    PayoutMethod,
    PayoutStatus,
)
from vpnpanel.referral.models import Referral, ReferralStatus
from vpnpanel.storage.db import db
from vpnpanel.storage.pagination import paginate

logger = get_logger(__name__)

MAX_LEVEL = 3
_PERCENT_FIELDS = ("level1_percent", "level2_percent", "level3_percent", "tax_percent", "payment_system_fee")
_SETTINGS_FIELDS = _PERCENT_FIELDS + ("is_enabled", "min_payout_amount")


def _money(value: float) -> float:
    return round(value, 2)


class PartnerService:
    """Partner enrollment, commissions and payouts.

    All balance changes happen inside one transaction with the partner row
    locked, so concurrent payouts cannot overdraw a balance.
    """

    def __init__(self):
        """Initialize partner service."""
        self.logger = get_logger(__name__)

    # ==================== SETTINGS ====================

    def _get_or_create_settings(self, session: Session) -> PartnerSettings:
        program = session.query(PartnerSettings).order_by(PartnerSettings.id.asc()).first()
        if program is None:
            program = PartnerSettings()
            session.add(program)
            session.flush()
        return program

    def get_settings(self) -> PartnerSettings:
        """Program settings, created with defaults on first read."""
        with db.session() as session:
            program = self._get_or_create_settings(session)
            session.commit()
            session.refresh(program)
            return program

    def update_settings(self, admin_id: int | None = None, **data: Any) -> PartnerSettings:
        """Update program settings.

        Raises:
            ValidationError: If a percent is outside 0..100 or the minimum payout is negative
        """
        for field in _PERCENT_FIELDS:
            value = data.get(field)
            if value is not None and not 0 <= value <= 100:
                raise ValidationError(f"{field} must be between 0 and 100")
        if data.get("min_payout_amount") is not None and data["min_payout_amount"] < 0:
            raise ValidationError("min_payout_amount cannot be negative")

        with db.session() as session:
            program = self._get_or_create_settings(session)
            for field in _SETTINGS_FIELDS:
                if data.get(field) is not None:
                    setattr(program, field, data[field])
            program.updated_by = admin_id
            session.commit()
            session.refresh(program)

            self.logger.info(
                "partner_settings_updated",
                admin_id=admin_id,
                fields=sorted(k for k, v in data.items() if v is not None),
            )
            return program

    # ==================== LOOKUP ====================

    def generate_referral_code(self, session: Session, username: str | None) -> str:
        """Referral code from a username: first 8 alphanumerics, lowercased.

        Clashes get a numeric suffix; after 1000 attempts a random suffix is
        used instead.
        """
        base = re.sub(r"[^a-zA-Z0-9]", "", username or "")[:8].lower()
        if not base:
            base = secrets.token_hex(4)

        code = base
        counter = 1
        while session.query(Partner.id).filter(Partner.referral_code == code).first():
            code = f"{base}{counter}"
            counter += 1
            if counter > 1000:
                return f"{base}{secrets.token_hex(3)}"
        return code

    def find_by_referral_code(self, code: str) -> Partner | None:
        if not code:
            return None
        with db.session() as session:
            return (
                session.query(Partner)
                .filter(Partner.referral_code == code.strip().lower())
                .first()
            )

    def get_partner(self, partner_id: int) -> Partner:
        with db.session() as session:
            partner = session.get(Partner, partner_id)
            if not partner:
                raise NotFoundError("Partner", partner_id)
            return partner

    def get_partner_by_user(self, user_id: int) -> Partner:
        with db.session() as session:
            partner = session.query(Partner).filter(Partner.user_id == user_id).first()
            if not partner:
                raise NotFoundError("Partner for user", user_id)
            return partner

    def is_partner(self, user_id: int) -> bool:
        with db.session() as session:
            return session.query(Partner.id).filter(
                Partner.user_id == user_id,
                Partner.status == PartnerStatus.ACTIVE,
            ).first() is not None

    # ==================== ENROLLMENT ====================

    def _log_action(self, session: Session, user_id: int, action: str, admin_id: int | None, notes: str | None) -> None:
        session.add(PartnerActivationLog(
            user_id=user_id,
            action=action,
            performed_by=admin_id,
            notes=notes,
        ))

    def apply(self, user_id: int) -> Partner:
        """Client request to join the program; creates a pending partner."""
        with db.session() as session:
            user = session.get(User, user_id)
            if not user:
                raise NotFoundError("User", user_id)
            if session.query(Partner.id).filter(Partner.user_id == user_id).first():
                raise ConflictError("Partner application already exists")

            partner = Partner(
                user_id=user_id,
                referral_code=self.generate_referral_code(session, user.username),
                status=PartnerStatus.PENDING,
            )
            session.add(partner)
            self._log_action(session, user_id, "applied", None, None)
            session.commit()
            session.refresh(partner)

            self.logger.info("partner_applied", user_id=user_id, partner_id=partner.id)
            return partner

    def activate_partner(
        self,
        user_id: int,
        admin_id: int | None,
        notes: str | None = None,
        commission_rate: float | None = None,
    ) -> Partner:
        """Make a user an active partner.

        A pending, suspended or rejected partner row is reactivated; a new one
        gets a referral code derived from the username.

        Raises:
            ConflictError: If the user is already an active partner
        """
        if commission_rate is not None and not 0 <= commission_rate <= 100:
            raise ValidationError("commission_rate must be between 0 and 100")

        with db.session() as session:
            user = session.get(User, user_id)
            if not user:
                raise NotFoundError("User", user_id)

            partner = session.query(Partner).filter(Partner.user_id == user_id).first()
            if partner and partner.status == PartnerStatus.ACTIVE:
                raise ConflictError("User is already a partner")

            if partner is None:
                partner = Partner(
                    user_id=user_id,
                    referral_code=self.generate_referral_code(session, user.username),
                )
                session.add(partner)

            partner.status = PartnerStatus.ACTIVE
            partner.activated_at = datetime.utcnow()
            partner.activated_by = admin_id
            partner.referral_count = (
                session.query(func.count(Referral.id))
                .filter(Referral.referrer_id == user_id)
                .scalar()
            )
            if notes is not None:
                partner.notes = notes
            if commission_rate is not None:
                partner.commission_rate = commission_rate

            self._log_action(session, user_id, "activated", admin_id, notes)
            session.commit()
            session.refresh(partner)

            self.logger.info(
                "partner_activated",
                user_id=user_id,
                partner_id=partner.id,
                admin_id=admin_id,
                code=partner.referral_code,
            )
            return partner

    def deactivate_partner(self, user_id: int, admin_id: int | None, reason: str | None = None) -> Partner:
        """Suspend a user's partner account."""
        with db.session() as session:
            partner = session.query(Partner).filter(Partner.user_id == user_id).first()
            if not partner:
                raise NotFoundError("Partner for user", user_id)
            if partner.status != PartnerStatus.ACTIVE:
                raise ValidationError("User is not an active partner")

            partner.status = PartnerStatus.SUSPENDED
            self._log_action(session, user_id, "deactivated", admin_id, reason)
            session.commit()
            session.refresh(partner)

            self.logger.info("partner_deactivated", user_id=user_id, admin_id=admin_id)
            return partner

    def _transition(
        self,
        partner_id: int,
        admin_id: int | None,
        expected: PartnerStatus,
        target: PartnerStatus,
        action: str,
        notes: str | None,
    ) -> Partner:
        with db.session() as session:
            partner = session.get(Partner, partner_id)
            if not partner:
                raise NotFoundError("Partner", partner_id)
            if partner.status != expected:
                raise ValidationError(
                    f"Partner must be {expected.value} to be {action}, not {partner.status.value}"
                )

            partner.status = target
            if target == PartnerStatus.ACTIVE:
                partner.activated_at = datetime.utcnow()
                partner.activated_by = admin_id
            if notes is not None:
                partner.notes = notes

            self._log_action(session, partner.user_id, action, admin_id, notes)
            session.commit()
            session.refresh(partner)

            self.logger.info(f"partner_{action}", partner_id=partner_id, admin_id=admin_id)
            return partner

    def approve_partner(self, partner_id: int, admin_id: int | None, notes: str | None = None) -> Partner:
        return self._transition(partner_id, admin_id, PartnerStatus.PENDING, PartnerStatus.ACTIVE, "approved", notes)

    def reject_partner(self, partner_id: int, admin_id: int | None, notes: str | None = None) -> Partner:
        return self._transition(partner_id, admin_id, PartnerStatus.PENDING, PartnerStatus.REJECTED, "rejected", notes)

    def suspend_partner(self, partner_id: int, admin_id: int | None, notes: str | None = None) -> Partner:
        return self._transition(partner_id, admin_id, PartnerStatus.ACTIVE, PartnerStatus.SUSPENDED, "suspended", notes)

    def update_partner(self, partner_id: int, **data: Any) -> Partner:
        rate = data.get("commission_rate")
        if rate is not None and not 0 <= rate <= 100:
            raise ValidationError("commission_rate must be between 0 and 100")

        with db.session() as session:
            partner = session.get(Partner, partner_id)
            if not partner:
                raise NotFoundError("Partner", partner_id)

            for field in ("commission_rate", "payout_method", "payout_details", "notes"):
                if field in data and data[field] is not None:
                    setattr(partner, field, data[field])
            session.commit()
            session.refresh(partner)

            self.logger.info("partner_updated", partner_id=partner_id)
            return partner

    def get_activation_history(self, user_id: int) -> list[PartnerActivationLog]:
        with db.session() as session:
            return (
                session.query(PartnerActivationLog)
                .filter(PartnerActivationLog.user_id == user_id)
                .order_by(PartnerActivationLog.created_at.desc(), PartnerActivationLog.id.desc())
                .all()
            )

    # ==================== COMMISSIONS ====================

    def _add_commission(
        self,
        session: Session,
        partner: Partner,
        program: PartnerSettings,
        from_user_id: int | None,
        amount: float,
        level: int,
    ) -> PartnerEarning:
        if level < 1 or level > MAX_LEVEL:
            raise ValidationError(f"Referral level must be between 1 and {MAX_LEVEL}")
        if amount <= 0:
            raise ValidationError("Amount must be positive")

        percent = program.level_percent(level)
        if level == 1 and partner.commission_rate is not None:
            percent = partner.commission_rate

        gross = _money(amount * percent / 100)
        net = _money(gross * (1 - program.tax_percent / 100))

        earning = PartnerEarning(
            partner_id=partner.id,
            from_user_id=from_user_id,
            level=level,
            source_amount=_money(amount),
            commission_percent=percent,
            gross_amount=gross,
            tax_amount=_money(gross - net),
            amount=net,
            status=EarningStatus.PENDING,
        )
        session.add(earning)

        partner.balance = _money(partner.balance + net)
        partner.pending_earnings = _money(partner.pending_earnings + net)
        partner.total_earnings = _money(partner.total_earnings + net)
        return earning

    def add_commission(self, partner_id: int, from_user_id: int | None, amount: float, level: int) -> PartnerEarning:
        """Credit a partner with a commission on a payment.

        Args:
            partner_id: Partner ID
            from_user_id: User whose payment produced the commission
            amount: Payment amount the percent applies to
            level: Referral depth of the payer below the partner (1-3)

        Returns:
            Created earning (net of tax)
        """
        with db.session() as session:
            partner = (
                session.query(Partner)
                .filter(Partner.id == partner_id)
                .with_for_update()
                .first()
            )
            if not partner:
                raise NotFoundError("Partner", partner_id)

            program = self._get_or_create_settings(session)
            earning = self._add_commission(session, partner, program, from_user_id, amount, level)
            session.commit()
            session.refresh(earning)

            self.logger.info(
                "partner_commission_added",
                partner_id=partner_id,
                from_user_id=from_user_id,
                level=level,
                amount=earning.amount,
            )
            return earning

    def _distribute_commissions(self, session: Session, paying_user_id: int, amount: float) -> list[PartnerEarning]:
        program = self._get_or_create_settings(session)
        if not program.is_enabled or amount <= 0:
            return []

        earnings = []
        current_user_id = paying_user_id
        for level in range(1, MAX_LEVEL + 1):
            referral = (
                session.query(Referral)
                .filter(
                    Referral.referred_id == current_user_id,
                    Referral.status != ReferralStatus.CANCELLED,
                )
                .first()
            )
            if not referral:
                break

            partner = (
                session.query(Partner)
                .filter(
                    Partner.user_id == referral.referrer_id,
                    Partner.status == PartnerStatus.ACTIVE,
                )
                .with_for_update()
                .first()
            )
            if partner:
                earnings.append(
                    self._add_commission(session, partner, program, paying_user_id, amount, level)
                )
            current_user_id = referral.referrer_id

        session.flush()
        return earnings

    def distribute_commissions(
        self,
        paying_user_id: int,
        amount: float,
        session: Session | None = None,
    ) -> list[PartnerEarning]:
        """Pay commissions up the referral chain of a paying user.

        Walks referrer links up to three levels; only active partners earn.
        Nothing happens while the program is disabled. With ``session`` the
        earnings join the caller's transaction and are not committed here.
        """
        if session is not None:
            earnings = self._distribute_commissions(session, paying_user_id, amount)
        else:
            with db.session() as own_session:
                earnings = self._distribute_commissions(own_session, paying_user_id, amount)

        if earnings:
            self.logger.info(
                "partner_commissions_distributed",
                paying_user_id=paying_user_id,
                amount=amount,
                count=len(earnings),
            )
        return earnings

    # ==================== PAYOUTS ====================

    def request_payout(
        self,
        partner_id: int,
        amount: float,
        method: PayoutMethod,
        details: dict | None = None,
    ) -> PartnerPayout:
        """Reserve part of the balance for withdrawal.

        Raises:
            ValidationError: If the amount is not positive, below the minimum
                payout or above the balance
        """
        if amount <= 0:
            raise ValidationError("Payout amount must be positive")

        with db.session() as session:
            partner = (
                session.query(Partner)
                .filter(Partner.id == partner_id)
                .with_for_update()
                .first()
            )
            if not partner:
                raise NotFoundError("Partner", partner_id)
            if partner.status != PartnerStatus.ACTIVE:
                raise ValidationError("Only active partners can request payouts")

            program = self._get_or_create_settings(session)
            amount = _money(amount)
            if amount > _money(partner.balance):
                raise ValidationError("Insufficient balance")
            if amount < program.min_payout_amount:
                raise ValidationError(f"Minimum payout amount is {program.min_payout_amount}")

            fee = _money(amount * program.payment_system_fee / 100)
            payout = PartnerPayout(
                partner_id=partner.id,
                amount=amount,
                fee=fee,
                net_amount=_money(amount - fee),
                method=method,
                details=details or partner.payout_details or {},
                status=PayoutStatus.PENDING,
            )
            session.add(payout)

            partner.balance = _money(partner.balance - amount)
            partner.pending_earnings = _money(max(0.0, partner.pending_earnings - amount))

            session.commit()
            session.refresh(payout)

            self.logger.info(
                "partner_payout_requested",
                partner_id=partner_id,
                payout_id=payout.id,
                amount=amount,
                method=method.value,
            )
            return payout

    def process_payout(
        self,
        payout_id: int,
        admin_id: int | None,
        status: PayoutStatus,
        notes: str | None = None,
        transaction_id: str | None = None,
    ) -> PartnerPayout:
        """Approve, complete or reject a pending payout.

        Rejection returns the reserved amount to the balance. Approval adds
        the amount to paid earnings and marks the oldest pending earnings
        paid until the amount is covered.
        """
        if status == PayoutStatus.PENDING:
            raise ValidationError("Target status must be approved, completed or rejected")

        with db.session() as session:
            payout = (
                session.query(PartnerPayout)
                .filter(PartnerPayout.id == payout_id)
                .with_for_update()
                .first()
            )
            if not payout:
                raise NotFoundError("Payout", payout_id)
            if payout.status != PayoutStatus.PENDING:
                raise ConflictError("Payout has already been processed")

            partner = (
                session.query(Partner)
                .filter(Partner.id == payout.partner_id)
                .with_for_update()
                .first()
            )

            now = datetime.utcnow()
            payout.status = status
            payout.processed_by = admin_id
            payout.processed_at = now
            if notes is not None:
                payout.notes = notes
            if transaction_id is not None:
                payout.transaction_id = transaction_id

            if status == PayoutStatus.REJECTED:
                partner.balance = _money(partner.balance + payout.amount)
                partner.pending_earnings = _money(partner.pending_earnings + payout.amount)
            else:
                partner.paid_earnings = _money(partner.paid_earnings + payout.amount)
                remaining = payout.amount
                pending = (
                    session.query(PartnerEarning)
                    .filter(
                        PartnerEarning.partner_id == partner.id,
                        PartnerEarning.status == EarningStatus.PENDING,
                    )
                    .order_by(PartnerEarning.created_at.asc(), PartnerEarning.id.asc())
                    .all()
                )
                for earning in pending:
                    if earning.amount > remaining + 0.005:
                        break
                    earning.status = EarningStatus.PAID
                    earning.paid_at = now
                    remaining = _money(remaining - earning.amount)

            session.commit()
            session.refresh(payout)

            self.logger.info(
                "partner_payout_processed",
                payout_id=payout_id,
                admin_id=admin_id,
                status=status.value,
            )
            return payout

    # ==================== LISTINGS ====================

    def list_partners(
        self,
        page: int = 1,
        limit: int = 20,
        status: PartnerStatus | None = None,
        search: str | None = None,
    ) -> dict[str, Any]:
        with db.session() as session:
            query = session.query(Partner).join(User, User.id == Partner.user_id)
            if status is not None:
                query = query.filter(Partner.status == status)
            if search:
                pattern = f"%{search}%"
                query = query.filter(or_(
                    User.username.ilike(pattern),
                    User.first_name.ilike(pattern),
                    User.last_name.ilike(pattern),
                    User.telegram_id.ilike(pattern),
                    Partner.referral_code.ilike(pattern),
                ))
            query = query.order_by(Partner.created_at.desc(), Partner.id.desc())
            return paginate(query, page, limit)

    def list_payouts(
        self,
        page: int = 1,
        limit: int = 20,
        status: PayoutStatus | None = None,
        partner_id: int | None = None,
    ) -> dict[str, Any]:
        with db.session() as session:
            query = session.query(PartnerPayout)
            if status is not None:
                query = query.filter(PartnerPayout.status == status)
            if partner_id is not None:
                query = query.filter(PartnerPayout.partner_id == partner_id)
            query = query.order_by(PartnerPayout.created_at.desc(), PartnerPayout.id.desc())
            return paginate(query, page, limit)

    def list_earnings(
        self,
        page: int = 1,
        limit: int = 20,
        partner_id: int | None = None,
        status: EarningStatus | None = None,
    ) -> dict[str, Any]:
        with db.session() as session:
            query = session.query(PartnerEarning)
            if partner_id is not None:
                query = query.filter(PartnerEarning.partner_id == partner_id)
            if status is not None:
                query = query.filter(PartnerEarning.status == status)
            query = query.order_by(PartnerEarning.created_at.desc(), PartnerEarning.id.desc())
            return paginate(query, page, limit)

    # ==================== STATS ====================

    def get_partner_stats(self, partner_id: int) -> dict[str, Any]:
        """Ledger totals and per-level breakdown for one partner."""
        with db.session() as session:
            partner = session.get(Partner, partner_id)
            if not partner:
                raise NotFoundError("Partner", partner_id)

            by_level = {
                level: {"count": count, "amount": _money(total or 0)}
                for level, count, total in session.query(
                    PartnerEarning.level,
                    func.count(PartnerEarning.id),
                    func.sum(PartnerEarning.amount),
                )
                .filter(PartnerEarning.partner_id == partner_id)
                .group_by(PartnerEarning.level)
                .all()
            }
            pending_payouts = (
                session.query(func.coalesce(func.sum(PartnerPayout.amount), 0.0))
                .filter(
                    PartnerPayout.partner_id == partner_id,
                    PartnerPayout.status == PayoutStatus.PENDING,
                )
                .scalar()
            )

            return {
                "partner_id": partner.id,
                "referral_code": partner.referral_code,
                "status": partner.status.value,
                "balance": partner.balance,
                "total_earnings": partner.total_earnings,
                "pending_earnings": partner.pending_earnings,
                "paid_earnings": partner.paid_earnings,
                "referral_count": partner.referral_count,
                "pending_payouts": _money(pending_payouts),
                "earnings_by_level": {
                    str(level): by_level.get(level, {"count": 0, "amount": 0.0})
                    for level in range(1, MAX_LEVEL + 1)
                },
            }

    def get_program_stats(self) -> dict[str, Any]:
        """Program-wide partner totals."""
        with db.session() as session:
            by_status = dict(
                session.query(Partner.status, func.count(Partner.id)).group_by(Partner.status).all()
            )
            totals = session.query(
                func.coalesce(func.sum(Partner.total_earnings), 0.0),
                func.coalesce(func.sum(Partner.paid_earnings), 0.0),
                func.coalesce(func.sum(Partner.pending_earnings), 0.0),
                func.coalesce(func.sum(Partner.referral_count), 0),
            ).one()
            pending_payouts = (
                session.query(func.count(PartnerPayout.id))
                .filter(PartnerPayout.status == PayoutStatus.PENDING)
                .scalar()
            )

            return {
                "total_partners": sum(by_status.values()),
                "pending_partners": by_status.get(PartnerStatus.PENDING, 0),
                "active_partners": by_status.get(PartnerStatus.ACTIVE, 0),
                "suspended_partners": by_status.get(PartnerStatus.SUSPENDED, 0),
                "rejected_partners": by_status.get(PartnerStatus.REJECTED, 0),
                "total_earnings": _money(totals[0]),
                "total_paid": _money(totals[1]),
                "total_pending": _money(totals[2]),
                "total_referrals": int(totals[3]),
                "pending_payout_requests": pending_payouts,
            }

    def get_dashboard(self, user_id: int) -> dict[str, Any]:
        """Partner's own overview: ledger, recent activity and payout rules."""
        partner = self.get_partner_by_user(user_id)
        program = self.get_settings()

        with db.session() as session:
            recent_earnings = (
                session.query(PartnerEarning)
                .filter(PartnerEarning.partner_id == partner.id)
                .order_by(PartnerEarning.created_at.desc(), PartnerEarning.id.desc())
                .limit(10)
                .all()
            )
            recent_payouts = (
                session.query(PartnerPayout)
                .filter(PartnerPayout.partner_id == partner.id)
                .order_by(PartnerPayout.created_at.desc(), PartnerPayout.id.desc())
                .limit(10)
                .all()
            )

        return {
            "partner": partner,
            "stats": self.get_partner_stats(partner.id),
            "recent_earnings": recent_earnings,
            "recent_payouts": recent_payouts,
            "program": {
                "is_enabled": program.is_enabled,
                "level1_percent": partner.commission_rate if partner.commission_rate is not None else program.level1_percent,
                "level2_percent": program.level2_percent,
                "level3_percent": program.level3_percent,
                "min_payout_amount": program.min_payout_amount,
                "payment_system_fee": program.payment_system_fee,
            },
        }


partner_service = PartnerService()
