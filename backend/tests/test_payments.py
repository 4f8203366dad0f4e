from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from vpnpanel.errors import NotFoundError, ValidationError
from vpnpanel.notifications.models import NotificationType
from vpnpanel.notifications.service import notification_service
from vpnpanel.partners.service import partner_service
from vpnpanel.payments.models import PaymentStatus
from vpnpanel.payments.service import payment_service
from vpnpanel.plans.service import plan_service
from vpnpanel.referral.models import ReferralStatus
from vpnpanel.referral.service import referral_service
from vpnpanel.subscriptions.models import SubscriptionStatus, SubscriptionType
from vpnpanel.subscriptions.service import subscription_service


# ==================== SUBSCRIPTIONS ====================


def test_subscription_copies_plan_terms(user, plan):
    start = datetime(2026, 1, 1)
    subscription = subscription_service.create_subscription(user.id, plan.id, start_date=start)

    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.end_date == start + timedelta(days=30)
    assert (subscription.device_count, subscription.traffic_limit_gb) == (3, 100)

    plan_service.update_plan(plan.id, duration_days=60, device_limit=5)
    unchanged = subscription_service.get_subscription(subscription.id)
    assert unchanged.device_count == 3


def test_renew_extends_from_end_date(user, plan):
    now = datetime.utcnow()
    subscription = subscription_service.create_subscription(user.id, plan.id, start_date=now)

    renewed = subscription_service.renew_subscription(subscription.id, now=now)
    assert renewed.end_date == now + timedelta(days=60)


def test_expire_and_renew_from_now(user, plan):
    now = datetime.utcnow()
    subscription = subscription_service.create_subscription(
        user.id, plan.id, start_date=now - timedelta(days=40)
    )

    assert subscription_service.expire_overdue(now=now) == 1
    assert subscription_service.get_subscription(subscription.id).status == SubscriptionStatus.EXPIRED
    assert subscription_service.expire_overdue(now=now) == 0

    renewed = subscription_service.renew_subscription(subscription.id, now=now)
    assert renewed.status == SubscriptionStatus.ACTIVE
    assert renewed.end_date == now + timedelta(days=30)


def test_cancelled_subscription_cannot_be_renewed(user, plan):
    subscription = subscription_service.create_subscription(user.id, plan.id)
    subscription_service.cancel_subscription(subscription.id)

    with pytest.raises(ValidationError):
        subscription_service.renew_subscription(subscription.id)
    with pytest.raises(ValidationError):
        subscription_service.cancel_subscription(subscription.id)


# ==================== PAYMENTS ====================


def test_create_payment_uses_default_gateway(user, plan, gateway):
    payment = payment_service.create_payment(user.id, plan.id)

    assert payment.status == PaymentStatus.PENDING
    assert payment.gateway_id == gateway.id
    assert (payment.amount, payment.fee, payment.total) == (300.0, 10.5, 310.5)
    assert payment.payment_url.endswith(f"/payment/{payment.id}/pay")


def test_create_payment_requires_gateway_and_active_plan(user, plan):
    with pytest.raises(ValidationError, match="gateway"):
        payment_service.create_payment(user.id, plan.id)

    plan_service.update_plan(plan.id, is_active=False)
    with pytest.raises(ValidationError, match="Plan"):
        payment_service.create_payment(user.id, plan.id)


def test_complete_payment_grants_subscription(user, plan, gateway):
    payment = payment_service.create_payment(user.id, plan.id)

    completed = payment_service.complete_payment(payment.id, external_id="ext-1")

    assert completed.status == PaymentStatus.COMPLETED
    assert completed.external_id == "ext-1"
    subscription = subscription_service.get_subscription(completed.subscription_id)
    assert subscription.user_id == user.id
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.subscription_type == SubscriptionType.REGULAR

    feed = notification_service.get_user_feed(user.id)["data"]
    assert [n.type for n in feed] == [NotificationType.PAYMENT]
    assert feed[0].extra["payment_id"] == payment.id


def test_complete_payment_is_idempotent(user, plan, gateway):
    payment = payment_service.create_payment(user.id, plan.id)
    first = payment_service.complete_payment(payment.id)
    second = payment_service.complete_payment(payment.id)

    assert second.subscription_id == first.subscription_id
    assert len(subscription_service.get_user_subscriptions(user.id)) == 1


def test_second_purchase_renews_active_subscription(user, plan, gateway):
    first = payment_service.complete_payment(payment_service.create_payment(user.id, plan.id).id)
    before = subscription_service.get_subscription(first.subscription_id).end_date

    second = payment_service.complete_payment(payment_service.create_payment(user.id, plan.id).id)

    assert second.subscription_id == first.subscription_id
    after = subscription_service.get_subscription(first.subscription_id).end_date
    assert after == before + timedelta(days=30)


def test_purchase_after_expiry_links_previous_subscription(user, plan, gateway):
    old = subscription_service.create_subscription(
        user.id, plan.id, start_date=datetime.utcnow() - timedelta(days=40)
    )
    subscription_service.expire_overdue()

    payment = payment_service.complete_payment(payment_service.create_payment(user.id, plan.id).id)

    new = subscription_service.get_subscription(payment.subscription_id)
    assert new.id != old.id
    assert new.renewed_from_id == old.id


def test_completion_pays_commissions_and_completes_referral(make_user, user, plan, gateway, enable_program):
    referrer = make_user("referrer")
    partner = partner_service.activate_partner(referrer.id, admin_id=None)
    referral = referral_service.create_referral(referrer.id, user.id, referral_code=partner.referral_code)

    payment_service.complete_payment(payment_service.create_payment(user.id, plan.id).id)

    refreshed = partner_service.get_partner(partner.id)
    assert refreshed.balance == 30.0
    assert referral_service.get_referral(referral.id).status == ReferralStatus.COMPLETED


def test_failed_settlement_rolls_back(make_user, user, plan, gateway, enable_program):
    referrer = make_user("referrer")
    partner = partner_service.activate_partner(referrer.id, admin_id=None)
    referral = referral_service.create_referral(referrer.id, user.id, referral_code=partner.referral_code)
    payment = payment_service.create_payment(user.id, plan.id)

    with patch.object(notification_service, "create_notification", side_effect=RuntimeError("smtp down")):
        with pytest.raises(RuntimeError):
            payment_service.complete_payment(payment.id)

    unchanged = payment_service.get_payment(payment.id)
    assert unchanged.status == PaymentStatus.PENDING
    assert unchanged.subscription_id is None
    assert subscription_service.get_user_subscriptions(user.id) == []
    assert partner_service.get_partner(partner.id).balance == 0.0
    assert referral_service.get_referral(referral.id).status == ReferralStatus.ACTIVE

    retried = payment_service.complete_payment(payment.id)
    assert retried.status == PaymentStatus.COMPLETED
    assert len(subscription_service.get_user_subscriptions(user.id)) == 1
    assert partner_service.get_partner(partner.id).balance == 30.0


def test_failed_commissions_leave_no_subscription(user, plan, gateway):
    payment = payment_service.create_payment(user.id, plan.id)

    with patch.object(partner_service, "_distribute_commissions", side_effect=RuntimeError("db gone")):
        with pytest.raises(RuntimeError):
            payment_service.complete_payment(payment.id)

    assert payment_service.get_payment(payment.id).status == PaymentStatus.PENDING
    assert subscription_service.get_user_subscriptions(user.id) == []
    assert notification_service.get_user_feed(user.id)["total"] == 0


def test_only_pending_payments_can_fail_or_cancel(user, plan, gateway):
    payment = payment_service.create_payment(user.id, plan.id)
    payment_service.complete_payment(payment.id)

    with pytest.raises(ValidationError):
        payment_service.fail_payment(payment.id, reason="declined")
    with pytest.raises(ValidationError):
        payment_service.cancel_payment(payment.id)

    failed = payment_service.fail_payment(payment_service.create_payment(user.id, plan.id).id, "declined")
    assert failed.status == PaymentStatus.FAILED
    with pytest.raises(ValidationError):
        payment_service.complete_payment(failed.id)


def test_cancel_checks_owner(make_user, user, plan, gateway):
    payment = payment_service.create_payment(user.id, plan.id)
    stranger = make_user("stranger")

    with pytest.raises(NotFoundError):
        payment_service.cancel_payment(payment.id, user_id=stranger.id)
    assert payment_service.cancel_payment(payment.id, user_id=user.id).status == PaymentStatus.CANCELLED


# ==================== API ====================


def test_purchase_flow_through_api(client, auth_headers, user, admin, plan, gateway):
    created = client.post("/api/v1/client/payments", json={"plan_id": plan.id}, headers=auth_headers(user))
    assert created.status_code == 201
    payment_id = created.json()["id"]

    completed = client.post(f"/api/v1/payments/{payment_id}/complete", json={}, headers=auth_headers(admin))
    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"

    subscriptions = client.get("/api/v1/client/subscriptions", headers=auth_headers(user)).json()
    assert len(subscriptions) == 1
    assert subscriptions[0]["days_left"] >= 29

    profile = client.get("/api/v1/client/profile", headers=auth_headers(user)).json()
    assert profile["active_subscription"]["id"] == subscriptions[0]["id"]
    assert profile["unread_notifications"] == 1

    history = client.get("/api/v1/client/payments", headers=auth_headers(user)).json()
    assert history["total"] == 1


def test_client_cannot_complete_payments(client, auth_headers, user, plan, gateway):
    payment = payment_service.create_payment(user.id, plan.id)
    response = client.post(f"/api/v1/payments/{payment.id}/complete", headers=auth_headers(user))
    assert response.status_code == 403


def test_subscription_admin_endpoints(client, auth_headers, admin, user, plan):
    headers = auth_headers(admin)
    created = client.post("/api/v1/subscriptions", json={"user_id": user.id, "plan_id": plan.id}, headers=headers)
    assert created.status_code == 201
    assert created.json()["subscription_type"] == "gift"

    subscription_id = created.json()["id"]
    cancelled = client.post(f"/api/v1/subscriptions/{subscription_id}/cancel", headers=headers)
    assert cancelled.json()["status"] == "cancelled"
    assert client.post(f"/api/v1/subscriptions/{subscription_id}/renew", headers=headers).status_code == 400

    expired = client.post("/api/v1/subscriptions/expire-overdue", headers=headers)
    assert expired.json() == {"expired": 0}
