from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from vpnpanel.errors import ConflictError, NotFoundError, ValidationError
from vpnpanel.notifications.models import NotificationType
from vpnpanel.notifications.service import notification_service
from vpnpanel.payments.models import PaymentStatus
from vpnpanel.payments.service import payment_service
from vpnpanel.plans.service import plan_service
from vpnpanel.promocodes.models import PromocodeRewardType
from vpnpanel.promocodes.service import promocode_service
from vpnpanel.settings import settings
from vpnpanel.subscriptions.models import SubscriptionStatus, SubscriptionType
from vpnpanel.subscriptions.service import subscription_service


def discount_code(code: str = "SPRING10", percent: float = 10.0, **kwargs):
    return promocode_service.create_promocode(
        code=code, reward_type=PromocodeRewardType.PURCHASE_DISCOUNT, reward_value=percent, **kwargs
    )


def bonus_code(code: str = "WEEK", days: int = 7, **kwargs):
    return promocode_service.create_promocode(
        code=code, reward_type=PromocodeRewardType.DURATION, reward_value=days, **kwargs
    )


def buy(user, plan, code: str | None = None):
    payment = payment_service.create_payment(user.id, plan.id, promocode=code)
    return payment_service.complete_payment(payment.id)


# ==================== ADMIN ====================


def test_create_normalizes_code():
    promocode = discount_code(code=" spring10 ", description="Spring sale")

    assert promocode.code == "SPRING10"
    assert (promocode.used_count, promocode.max_uses_per_user, promocode.is_active) == (0, 1, True)
    assert promocode.remaining_uses is None

    with pytest.raises(ConflictError):
        discount_code(code="Spring10")


def test_create_validation(plan):
    with pytest.raises(ValidationError, match="3-32"):
        discount_code(code="a!")
    with pytest.raises(ValidationError, match="below 100"):
        discount_code(percent=100)
    with pytest.raises(ValidationError, match="whole number"):
        bonus_code(days=1.5)
    with pytest.raises(ValidationError, match="reward_type"):
        promocode_service.create_promocode(code="NOTYPE", reward_value=5)
    with pytest.raises(ValidationError, match="before its expiry"):
        discount_code(starts_at=datetime(2026, 5, 1), expires_at=datetime(2026, 4, 1))
    with pytest.raises(NotFoundError):
        discount_code(plan_id=9999)

    assert discount_code(plan_id=plan.id, max_uses=10).remaining_uses == 10


def test_update_and_toggle():
    promocode = discount_code()
    bonus_code(code="TAKEN")

    updated = promocode_service.update_promocode(promocode.id, reward_value=25, description="Bigger")
    assert (updated.reward_value, updated.description) == (25, "Bigger")

    with pytest.raises(ConflictError):
        promocode_service.update_promocode(promocode.id, code="taken")
    with pytest.raises(ValidationError):
        promocode_service.update_promocode(promocode.id, reward_value=150)

    assert promocode_service.toggle_promocode(promocode.id).is_active is False
    assert promocode_service.list_promocodes(is_active=False)["total"] == 1
    assert promocode_service.list_promocodes(search="tak")["total"] == 1


# ==================== PURCHASES ====================


def test_discount_lowers_payment_amount(user, plan, gateway):
    promocode = discount_code()

    payment = payment_service.create_payment(user.id, plan.id, promocode="spring10")

    assert (payment.amount, payment.discount, payment.promocode_id) == (270.0, 30.0, promocode.id)
    assert payment.total == round(payment.amount + payment.fee, 2)
    assert promocode_service.get_promocode(promocode.id).used_count == 0

    completed = payment_service.complete_payment(payment.id)

    [activation] = promocode_service.list_activations(promocode_id=promocode.id)["data"]
    assert (activation.payment_id, activation.subscription_id) == (payment.id, completed.subscription_id)
    assert (activation.discount_amount, activation.bonus_days) == (30.0, 0)
    assert promocode_service.get_promocode(promocode.id).used_count == 1


def test_bonus_days_added_when_payment_completes(user, plan, gateway):
    bonus_code()

    payment = buy(user, plan, code="week")

    assert payment.amount == 300.0
    subscription = subscription_service.get_subscription(payment.subscription_id)
    assert subscription.end_date - subscription.start_date == timedelta(days=37)
    [activation] = promocode_service.list_activations(user_id=user.id)["data"]
    assert activation.bonus_days == 7


def test_code_is_single_use_per_user(make_user, user, plan, gateway):
    discount_code()
    buy(user, plan, code="SPRING10")

    with pytest.raises(ValidationError, match="already used"):
        payment_service.create_payment(user.id, plan.id, promocode="SPRING10")

    other = make_user("other")
    assert payment_service.create_payment(other.id, plan.id, promocode="SPRING10").amount == 270.0


def test_usage_limit(make_user, user, plan, gateway):
    promocode = discount_code(max_uses=1)
    buy(user, plan, code="SPRING10")
    assert promocode_service.get_promocode(promocode.id).remaining_uses == 0

    with pytest.raises(ValidationError, match="usage limit"):
        payment_service.create_payment(make_user("late").id, plan.id, promocode="SPRING10")


def test_unusable_codes_are_rejected(user, plan, gateway):
    now = datetime.utcnow()
    discount_code(code="OLD", expires_at=now - timedelta(days=1), starts_at=now - timedelta(days=10))
    discount_code(code="SOON", starts_at=now + timedelta(days=1))
    promocode_service.toggle_promocode(discount_code(code="OFF").id)
    other_plan = plan_service.create_plan(name="Yearly", price=2500, duration_days=365)
    discount_code(code="YEARLY", plan_id=other_plan.id)

    for code, message in [
        ("OLD", "invalid or expired"),
        ("SOON", "not active yet"),
        ("OFF", "invalid or expired"),
        ("YEARLY", "not valid for this plan"),
        ("MISSING", "invalid or expired"),
    ]:
        with pytest.raises(ValidationError, match=message):
            payment_service.create_payment(user.id, plan.id, promocode=code)

    assert payment_service.create_payment(user.id, other_plan.id, promocode="yearly").amount == 2250.0


def test_validate_quotes_without_redeeming(user, plan):
    promocode = discount_code()

    quote = promocode_service.validate_promocode("spring10", user.id, plan.id)

    assert (quote["discount"], quote["final_amount"], quote["bonus_days"]) == (30.0, 270.0, 0)
    assert promocode_service.validate_promocode("SPRING10", user.id)["final_amount"] is None
    assert promocode_service.get_promocode(promocode.id).used_count == 0


# ==================== ACTIVATION ====================


def test_activate_bonus_code_extends_subscription(user, plan):
    subscription = subscription_service.create_subscription(user.id, plan.id)
    bonus_code()

    result = promocode_service.activate_promocode(user.id, "week")

    assert result["subscription"].id == subscription.id
    assert result["subscription"].end_date == subscription.end_date + timedelta(days=7)
    assert result["activation"].payment_id is None
    feed = notification_service.get_user_feed(user.id)["data"]
    assert [n.type for n in feed] == [NotificationType.PROMOCODE]

    with pytest.raises(ValidationError, match="already used"):
        promocode_service.activate_promocode(user.id, "WEEK")


def test_activation_requirements(make_user, user, plan):
    bonus_code()
    discount_code()

    with pytest.raises(ValidationError, match="active subscription"):
        promocode_service.activate_promocode(user.id, "WEEK")

    subscription_service.create_subscription(user.id, plan.id)
    with pytest.raises(ValidationError, match="when paying"):
        promocode_service.activate_promocode(user.id, "SPRING10")

    other_plan = plan_service.create_plan(name="Yearly", price=2500, duration_days=365)
    bonus_code(code="YEARWEEK", plan_id=other_plan.id)
    with pytest.raises(ValidationError, match="active subscription"):
        promocode_service.activate_promocode(user.id, "YEARWEEK")


def test_delete_guards(user, plan, gateway):
    unused = bonus_code(code="UNUSED")
    promocode_service.delete_promocode(unused.id)
    with pytest.raises(NotFoundError):
        promocode_service.get_promocode(unused.id)

    pending = discount_code(code="PENDING")
    payment_service.create_payment(user.id, plan.id, promocode="PENDING")
    with pytest.raises(ConflictError, match="payments"):
        promocode_service.delete_promocode(pending.id)

    used = bonus_code()
    subscription_service.create_subscription(user.id, plan.id)
    promocode_service.activate_promocode(user.id, "WEEK")
    with pytest.raises(ConflictError, match="used"):
        promocode_service.delete_promocode(used.id)


def test_stats(make_user, user, plan, gateway):
    promocode = discount_code()
    buy(user, plan, code="SPRING10")
    buy(make_user("bob"), plan, code="SPRING10")

    stats = promocode_service.get_promocode_stats(promocode.id)

    assert (stats["used_count"], stats["activations"], stats["unique_users"]) == (2, 2, 2)
    assert (stats["total_discount"], stats["total_bonus_days"]) == (60.0, 0)


# ==================== TRIALS ====================


def test_trial_is_granted_once(user, plan):
    trial = subscription_service.grant_trial(user.id)

    assert trial.subscription_type == SubscriptionType.TRIAL
    assert trial.status == SubscriptionStatus.ACTIVE
    assert trial.plan_id == plan.id
    assert trial.end_date - trial.start_date == timedelta(days=settings.trial_days)
    assert subscription_service.has_used_trial(user.id) is True

    with pytest.raises(ConflictError):
        subscription_service.grant_trial(user.id)


def test_disabled_trials_need_an_admin(user, admin, plan):
    with patch.object(settings, "trial_enabled", False):
        with pytest.raises(ValidationError, match="disabled"):
            subscription_service.grant_trial(user.id)

        trial = subscription_service.grant_trial(user.id, days=7, granted_by=admin.id)

    assert trial.end_date - trial.start_date == timedelta(days=7)


def test_trial_needs_a_plan(user):
    with pytest.raises(ValidationError, match="No plan"):
        subscription_service.grant_trial(user.id)
    with pytest.raises(ValidationError, match="positive"):
        subscription_service.grant_trial(user.id, days=-1)


def test_trial_conversion_stats(make_user, user, plan, gateway):
    subscription_service.grant_trial(user.id)
    subscription_service.grant_trial(make_user("tourist").id)
    payment = buy(user, plan)
    paid = subscription_service.get_subscription(payment.subscription_id)
    assert paid.subscription_type == SubscriptionType.REGULAR
    assert len(subscription_service.get_user_subscriptions(user.id)) == 2

    stats = subscription_service.get_trial_stats()

    assert (stats["total_trial_users"], stats["active_trials"]) == (2, 2)
    assert (stats["converted_users"], stats["conversion_rate"]) == (1, 50.0)


# ==================== API ====================


def test_promocode_admin_endpoints(client, auth_headers, admin, user, plan, gateway):
    headers = auth_headers(admin)

    created = client.post(
        "/api/v1/promocodes",
        json={"code": "spring10", "reward_type": "purchase_discount", "reward_value": 10, "max_uses": 5},
        headers=headers,
    )
    assert created.status_code == 201
    assert created.json()["code"] == "SPRING10"
    assert created.json()["created_by"] == admin.id
    promocode_id = created.json()["id"]

    invalid = client.post(
        "/api/v1/promocodes", json={"code": "BIG", "reward_type": "purchase_discount", "reward_value": 100},
        headers=headers,
    )
    assert invalid.status_code == 400

    patched = client.patch(f"/api/v1/promocodes/{promocode_id}", json={"description": "Sale"}, headers=headers)
    assert patched.json()["description"] == "Sale"

    buy(user, plan, code="SPRING10")

    assert client.get("/api/v1/promocodes", headers=headers).json()["total"] == 1
    activations = client.get(f"/api/v1/promocodes/{promocode_id}/activations", headers=headers).json()
    assert [a["user_id"] for a in activations["data"]] == [user.id]
    stats = client.get(f"/api/v1/promocodes/{promocode_id}/stats", headers=headers).json()
    assert (stats["used_count"], stats["remaining_uses"]) == (1, 4)

    toggled = client.post(f"/api/v1/promocodes/{promocode_id}/toggle", headers=headers)
    assert toggled.json()["is_active"] is False
    assert client.delete(f"/api/v1/promocodes/{promocode_id}", headers=headers).status_code == 409

    assert client.get("/api/v1/promocodes", headers=auth_headers(user)).status_code == 403


def test_client_promocode_endpoints(client, auth_headers, user, plan, gateway):
    discount_code()
    bonus_code()
    headers = auth_headers(user)

    quote = client.get(
        "/api/v1/client/promocodes/validate", params={"code": "spring10", "plan_id": plan.id}, headers=headers
    )
    assert quote.status_code == 200
    assert quote.json()["final_amount"] == 270.0

    purchase = client.post(
        "/api/v1/client/payments", json={"plan_id": plan.id, "promocode": "spring10"}, headers=headers
    )
    assert purchase.status_code == 201
    assert (purchase.json()["amount"], purchase.json()["discount"]) == (270.0, 30.0)

    payment_service.complete_payment(purchase.json()["id"])

    activated = client.post("/api/v1/client/promocodes/activate", json={"code": "week"}, headers=headers)
    assert activated.status_code == 200
    assert activated.json()["activation"]["bonus_days"] == 7
    assert activated.json()["subscription"]["status"] == "active"

    again = client.post("/api/v1/client/promocodes/activate", json={"code": "week"}, headers=headers)
    assert again.status_code == 400

    history = client.get("/api/v1/client/promocodes/history", headers=headers).json()
    assert history["total"] == 2


def test_trial_endpoints(client, auth_headers, make_user, user, admin, plan):
    headers = auth_headers(user)

    assert client.get("/api/v1/client/trial", headers=headers).json() == {
        "enabled": True, "eligible": True, "trial_days": settings.trial_days,
    }
    claimed = client.post("/api/v1/client/trial", headers=headers)
    assert claimed.status_code == 201
    assert claimed.json()["subscription_type"] == "trial"
    assert client.get("/api/v1/client/trial", headers=headers).json()["eligible"] is False
    assert client.post("/api/v1/client/trial", headers=headers).status_code == 409

    guest = make_user("guest")
    granted = client.post(
        "/api/v1/subscriptions/trial", json={"user_id": guest.id, "days": 14}, headers=auth_headers(admin)
    )
    assert granted.status_code == 201
    assert granted.json()["days_left"] >= 13

    stats = client.get("/api/v1/subscriptions/trial/stats", headers=auth_headers(admin)).json()
    assert stats["total_trial_users"] == 2
    assert client.get("/api/v1/subscriptions/trial/stats", headers=headers).status_code == 403


def test_payment_keeps_code_after_cancel(user, plan, gateway):
    promocode = discount_code()
    payment = payment_service.create_payment(user.id, plan.id, promocode="SPRING10")
    cancelled = payment_service.cancel_payment(payment.id)

    assert cancelled.status == PaymentStatus.CANCELLED
    assert cancelled.promocode_id == promocode.id
    assert promocode_service.get_promocode(promocode.id).used_count == 0
