"""Client service: everything the client dashboard shows about its own account."""

from typing import Any

from vpnpanel.auth.models import User
from vpnpanel.banners.models import Banner, BannerPosition
from vpnpanel.banners.service import banner_service
from vpnpanel.errors import NotFoundError
from vpnpanel.gateways.models import Gateway
from vpnpanel.gateways.service import gateway_service
from vpnpanel.logging_config import get_logger
from vpnpanel.notifications.service import notification_service
from vpnpanel.partners.models import Partner, PartnerPayout, PayoutMethod
from vpnpanel.partners.service import partner_service
from vpnpanel.payments.models import Payment
from vpnpanel.payments.service import payment_service
from vpnpanel.plans.models import Plan
from vpnpanel.plans.service import plan_service
from vpnpanel.promocodes.service import promocode_service
from vpnpanel.referral.service import referral_service
from vpnpanel.settings import settings
from vpnpanel.storage.db import db
from vpnpanel.subscriptions.models import Subscription
from vpnpanel.subscriptions.service import subscription_service

logger = get_logger(__name__)


class ClientService:
    """Scope every query to the calling user."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def _partner_or_none(self, user_id: int) -> Partner | None:
        with db.session() as session:
            return session.query(Partner).filter(Partner.user_id == user_id).first()

    # ==================== ACCOUNT ====================

    def get_profile(self, user: User) -> dict[str, Any]:
        partner = self._partner_or_none(user.id)
        counts = notification_service.get_counts(user_id=user.id)
        return {
            "user": user,
            "active_subscription": subscription_service.get_active_subscription(user.id),
            "partner_status": partner.status.value if partner else None,
            "unread_notifications": counts["unread"],
        }

    def get_subscriptions(self, user_id: int) -> list[Subscription]:
        return subscription_service.get_user_subscriptions(user_id)

    def get_subscription(self, user_id: int, subscription_id: int) -> Subscription:
        subscription = subscription_service.get_subscription(subscription_id)
        if subscription.user_id != user_id:
            raise NotFoundError("Subscription", subscription_id)
        return subscription

    # ==================== PURCHASE ====================

    def get_available_plans(self) -> list[Plan]:
        return plan_service.get_active_plans()

    def get_gateways(self) -> list[Gateway]:
        return gateway_service.get_active_gateways()

    def create_payment(
        self,
        user_id: int,
        plan_id: int,
        gateway_id: int | None = None,
        promocode: str | None = None,
    ) -> Payment:
        return payment_service.create_payment(user_id, plan_id, gateway_id, promocode)

    def get_payment_history(self, user_id: int, page: int = 1, limit: int = 20) -> dict[str, Any]:
        return payment_service.get_user_payments(user_id, page, limit)

    # ==================== PROMOCODES & TRIAL ====================

    def validate_promocode(self, user_id: int, code: str, plan_id: int | None = None) -> dict[str, Any]:
        return promocode_service.validate_promocode(code, user_id, plan_id)

    def activate_promocode(self, user_id: int, code: str) -> dict[str, Any]:
        return promocode_service.activate_promocode(user_id, code)

    def get_promocode_history(self, user_id: int, page: int = 1, limit: int = 20) -> dict[str, Any]:
        return promocode_service.list_activations(page, limit, user_id=user_id)

    def get_trial_status(self, user_id: int) -> dict[str, Any]:
        used = subscription_service.has_used_trial(user_id)
        return {
            "enabled": settings.trial_enabled,
            "eligible": settings.trial_enabled and not used,
            "trial_days": settings.trial_days,
        }

    def claim_trial(self, user_id: int) -> Subscription:
        return subscription_service.grant_trial(user_id)

    # ==================== REFERRALS ====================

    def get_referral_info(self, user_id: int) -> dict[str, Any]:
        """Own referral code and link, referral counts per level and rewards."""
        partner = self._partner_or_none(user_id)
        code = partner.referral_code if partner else None
        summary = referral_service.get_user_summary(user_id)
        return {
            "referral_code": code,
            "referral_link": f"{settings.public_base_url.rstrip('/')}/?ref={code}" if code else None,
            "referred_by": summary["referred_by"],
            "levels": summary["levels"],
            "rewards_paid": summary["rewards_paid"],
            "rewards_pending": summary["rewards_pending"],
            "rewards": referral_service.list_rewards(user_id=user_id, limit=50)["data"],
        }

    # ==================== PARTNER ====================

    def apply_for_partnership(self, user_id: int) -> Partner:
        return partner_service.apply(user_id)

    def get_partner_dashboard(self, user_id: int) -> dict[str, Any]:
        return partner_service.get_dashboard(user_id)

    def get_partner_earnings(self, user_id: int, page: int = 1, limit: int = 20) -> dict[str, Any]:
        partner = partner_service.get_partner_by_user(user_id)
        return partner_service.list_earnings(page=page, limit=limit, partner_id=partner.id)

    def get_partner_payouts(self, user_id: int, page: int = 1, limit: int = 20) -> dict[str, Any]:
        partner = partner_service.get_partner_by_user(user_id)
        return partner_service.list_payouts(page=page, limit=limit, partner_id=partner.id)

    def request_payout(
        self,
        user_id: int,
        amount: float,
        method: PayoutMethod,
        details: dict | None = None,
    ) -> PartnerPayout:
        partner = partner_service.get_partner_by_user(user_id)
        return partner_service.request_payout(partner.id, amount, method, details)

    # ==================== CONTENT ====================

    def get_notifications(self, user_id: int, page: int = 1, limit: int = 20, unread_only: bool = False) -> dict[str, Any]:
        return notification_service.get_user_feed(user_id, page, limit, unread_only)

    def mark_notifications_read(self, user_id: int, notification_ids: list[int] | None = None) -> int:
        return notification_service.mark_read(user_id, notification_ids)

    def get_banners(self, position: BannerPosition | None = None) -> list[Banner]:
        return banner_service.get_active_banners(position)


client_service = ClientService()
