"""Client purchase flow: payment creation and completion."""

from datetime import datetime
from typing import Any

from vpnpanel.errors import ExternalServiceError, NotFoundError, ValidationError
from vpnpanel.gateways.models import Gateway
from vpnpanel.gateways.service import gateway_service
from vpnpanel.logging_config import get_logger
from vpnpanel.notifications.models import NotificationType
from vpnpanel.notifications.service import notification_service
from vpnpanel.partners.service import partner_service
from vpnpanel.payments.models import Payment, PaymentStatus
from vpnpanel.plans.models import Plan
from vpnpanel.promocodes.models import Promocode
from vpnpanel.promocodes.service import promocode_service
from vpnpanel.referral.service import referral_service
from vpnpanel.settings import settings
from vpnpanel.storage.db import db
from vpnpanel.storage.pagination import paginate
from vpnpanel.subscriptions.service import subscription_service

logger = get_logger(__name__)


class PaymentService:
    """Create payments and settle completed ones."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def create_payment(
        self,
        user_id: int,
        plan_id: int,
        gateway_id: int | None = None,
        promocode: str | None = None,
    ) -> Payment:
        """Open a pending payment for a plan.

        Args:
            user_id: Paying user
            plan_id: Active plan to buy
            gateway_id: Gateway to pay through (the default one when omitted)
            promocode: Optional code; discounts lower the amount, bonus days
                are added when the payment completes

        Returns:
            Pending payment with a payment URL
        """
        with db.session() as session:
            plan = session.get(Plan, plan_id)
            if not plan:
                raise NotFoundError("Plan", plan_id)
            if not plan.is_active:
                raise ValidationError("Plan is not available")

            if gateway_id is not None:
                gateway = session.get(Gateway, gateway_id)
                if not gateway:
                    raise NotFoundError("Gateway", gateway_id)
            else:
                gateway = (
                    session.query(Gateway)
                    .filter(Gateway.is_default == True, Gateway.is_active == True)
                    .first()
                )
                if not gateway:
                    raise ValidationError("No payment gateway available")
            if not gateway.is_active:
                raise ValidationError("Gateway is not available")

            code, discount = None, 0.0
            if promocode:
                code, discount = promocode_service.quote(session, promocode, user_id, plan)
            amount = round(plan.price - discount, 2)

            gateway_service.validate_amount(gateway, amount, plan.currency)
            fee = gateway.calculate_fee(amount)

            payment = Payment(
                user_id=user_id,
                plan_id=plan.id,
                gateway_id=gateway.id,
                promocode_id=code.id if code else None,
                amount=amount,
                discount=discount,
                fee=fee,
                total=round(amount + fee, 2),
                currency=plan.currency,
                status=PaymentStatus.PENDING,
            )
            session.add(payment)
            session.flush()
            # Gateways have no checkout protocol; clients are sent to the panel's pay page
            payment.payment_url = f"{settings.public_base_url.rstrip('/')}/payment/{payment.id}/pay"
            session.commit()
            session.refresh(payment)

            self.logger.info(
                "payment_created",
                payment_id=payment.id,
                user_id=user_id,
                plan_id=plan_id,
                gateway_id=gateway.id,
                promocode=code.code if code else None,
                total=payment.total,
            )
            return payment

    def get_payment(self, payment_id: int) -> Payment:
        with db.session() as session:
            payment = session.get(Payment, payment_id)
            if not payment:
                raise NotFoundError("Payment", payment_id)
            return payment

    def complete_payment(self, payment_id: int, external_id: str | None = None) -> Payment:
        """Settle a payment.

        Grants or renews the subscription, records the promocode use, pays
        partner commissions, completes the buyer's referral and notifies the
        buyer. All of it commits together with the status change, so a failed
        step leaves the payment pending. Completing an already completed
        payment returns it unchanged.
        """
        with db.session() as session:
            payment = (
                session.query(Payment)
                .filter(Payment.id == payment_id)
                .with_for_update()
                .first()
            )
            if not payment:
                raise NotFoundError("Payment", payment_id)
            if payment.status == PaymentStatus.COMPLETED:
                return payment
            if payment.status != PaymentStatus.PENDING:
                raise ValidationError(f"Cannot complete payment in status '{payment.status.value}'")

            now = datetime.utcnow()
            code = session.get(Promocode, payment.promocode_id) if payment.promocode_id else None
            bonus_days = promocode_service.bonus_days_for(code) if code else 0

            subscription = subscription_service.grant_purchase(
                session,
                payment.user_id,
                payment.plan_id,
                bonus_days=bonus_days,
                now=now,
            )
            if code:
                promocode_service.record_activation(
                    session,
                    code.id,
                    payment.user_id,
                    payment_id=payment.id,
                    subscription_id=subscription.id,
                    discount_amount=payment.discount,
                    bonus_days=bonus_days,
                )

            partner_service.distribute_commissions(payment.user_id, payment.amount, session=session)
            referral_service.complete_referral_for_user(
                payment.user_id,
                purchase_amount=payment.amount,
                plan_id=payment.plan_id,
                session=session,
            )
            notification_service.create_notification(
                user_id=payment.user_id,
                type=NotificationType.PAYMENT,
                title="Payment received",
                message=f"Payment of {payment.total:.2f} {payment.currency} completed. "
                        f"Subscription active until {subscription.end_date:%Y-%m-%d}.",
                metadata={"payment_id": payment.id, "subscription_id": subscription.id},
                session=session,
            )

            payment.status = PaymentStatus.COMPLETED
            payment.completed_at = now
            payment.subscription_id = subscription.id
            if external_id:
                payment.external_id = external_id
            session.commit()
            session.refresh(payment)

        self.logger.info(
            "payment_completed",
            payment_id=payment.id,
            user_id=payment.user_id,
            subscription_id=payment.subscription_id,
        )
        return payment

    async def provision_payment(self, payment: Payment) -> None:
        """Push the paid subscription to the VPN panel when one is configured.

        Panel failures are logged; the payment stays completed and the
        subscription can be provisioned again later.
        """
        if not settings.remnawave_enabled or not payment.subscription_id:
            return
        try:
            await subscription_service.provision(payment.subscription_id)
        except ExternalServiceError as e:
            self.logger.error(
                "subscription_provisioning_failed",
                payment_id=payment.id,
                subscription_id=payment.subscription_id,
                error=e.message,
            )

    def fail_payment(self, payment_id: int, reason: str | None = None) -> Payment:
        with db.session() as session:
            payment = session.get(Payment, payment_id)
            if not payment:
                raise NotFoundError("Payment", payment_id)
            if payment.status != PaymentStatus.PENDING:
                raise ValidationError(f"Cannot fail payment in status '{payment.status.value}'")

            payment.status = PaymentStatus.FAILED
            payment.failure_reason = reason
            session.commit()
            session.refresh(payment)

            self.logger.warning("payment_failed", payment_id=payment_id, reason=reason)
            return payment

    def cancel_payment(self, payment_id: int, user_id: int | None = None) -> Payment:
        """Cancel a pending payment; when user_id is given it must own it."""
        with db.session() as session:
            payment = session.get(Payment, payment_id)
            if not payment or (user_id is not None and payment.user_id != user_id):
                raise NotFoundError("Payment", payment_id)
            if payment.status != PaymentStatus.PENDING:
                raise ValidationError("Only pending payments can be cancelled")

            payment.status = PaymentStatus.CANCELLED
            session.commit()
            session.refresh(payment)

            self.logger.info("payment_cancelled", payment_id=payment_id)
            return payment

    def get_user_payments(self, user_id: int, page: int = 1, limit: int = 20) -> dict[str, Any]:
        with db.session() as session:
            query = (
                session.query(Payment)
                .filter(Payment.user_id == user_id)
                .order_by(Payment.created_at.desc(), Payment.id.desc())
            )
            return paginate(query, page, limit)

    def list_payments(
        self,
        page: int = 1,
        limit: int = 20,
        status: PaymentStatus | None = None,
        user_id: int | None = None,
        gateway_id: int | None = None,
    ) -> dict[str, Any]:
        with db.session() as session:
            query = session.query(Payment)
            if status is not None:
                query = query.filter(Payment.status == status)
            if user_id is not None:
                query = query.filter(Payment.user_id == user_id)
            if gateway_id is not None:
                query = query.filter(Payment.gateway_id == gateway_id)
            query = query.order_by(Payment.created_at.desc(), Payment.id.desc())
            return paginate(query, page, limit)


payment_service = PaymentService()
