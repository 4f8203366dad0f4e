import pytest

from vpnpanel.errors import ConflictError, ValidationError
from vpnpanel.gateways.models import GatewayType
from vpnpanel.gateways.service import gateway_service
from vpnpanel.payments.service import payment_service
from vpnpanel.plans.service import plan_service
from vpnpanel.subscriptions.service import subscription_service


def make_gateway(name: str, **kwargs):
    kwargs.setdefault("type", GatewayType.CUSTOM)
    return gateway_service.create_gateway(name=name, **kwargs)


# ==================== GATEWAYS ====================


def test_single_default_gateway(gateway):
    second = make_gateway("Crypto", type=GatewayType.CRYPTOMUS, is_default=True)

    assert gateway_service.get_gateway(gateway.id).is_default is False
    assert gateway_service.get_default_gateway().id == second.id

    gateway_service.set_default_gateway(gateway.id)
    defaults = [g.id for g in gateway_service.list_gateways() if g.is_default]
    assert defaults == [gateway.id]


def test_duplicate_name_conflicts(gateway):
    with pytest.raises(ConflictError):
        make_gateway("YooKassa")


def test_default_gateway_cannot_be_deleted(gateway):
    with pytest.raises(ConflictError):
        gateway_service.delete_gateway(gateway.id)

    other = make_gateway("Manual")
    gateway_service.delete_gateway(other.id)
    assert [g.id for g in gateway_service.list_gateways()] == [gateway.id]


def test_inactive_gateway_cannot_become_default():
    inactive = make_gateway("Paused", is_active=False)
    with pytest.raises(ValidationError):
        gateway_service.set_default_gateway(inactive.id)


def test_toggle(gateway):
    assert gateway_service.toggle_gateway(gateway.id).is_active is False
    assert gateway_service.get_active_gateways() == []
    assert gateway_service.toggle_gateway(gateway.id).is_active is True


def test_fee_calculation():
    gw = make_gateway("Stripe", type=GatewayType.STRIPE, fee_percent=2.9, fee_fixed=30)
    assert gateway_service.calculate_fee(gw.id, 1000) == {"amount": 1000, "fee": 59.0, "total": 1059.0}


def test_limits_validated_on_create_and_update():
    with pytest.raises(ValidationError):
        make_gateway("Broken", min_amount=500, max_amount=100)

    gw = make_gateway("Limited", max_amount=1000)
    with pytest.raises(ValidationError):
        gateway_service.update_gateway(gw.id, min_amount=2000)


def test_validate_amount():
    gw = make_gateway("Rub only", supported_currencies=["rub"], min_amount=100, max_amount=10_000)

    gateway_service.validate_amount(gw, 300, "RUB")
    with pytest.raises(ValidationError, match="does not support"):
        gateway_service.validate_amount(gw, 300, "USD")
    with pytest.raises(ValidationError, match="Minimum"):
        gateway_service.validate_amount(gw, 50, "RUB")
    with pytest.raises(ValidationError, match="Maximum"):
        gateway_service.validate_amount(gw, 50_000, "RUB")
    with pytest.raises(ValidationError):
        gateway_service.validate_amount(gw, 0, "RUB")


# ==================== PLANS ====================


def test_plan_validation_and_uniqueness(plan):
    with pytest.raises(ConflictError):
        plan_service.create_plan(name="Monthly", price=100, duration_days=30)
    with pytest.raises(ValidationError):
        plan_service.create_plan(name="Free lunch", price=-1, duration_days=30)
    with pytest.raises(ValidationError):
        plan_service.create_plan(name="Zero", price=100, duration_days=0)


def test_active_plans_in_display_order(plan):
    yearly = plan_service.create_plan(name="Yearly", price=2500, duration_days=365, display_order=-1)
    plan_service.create_plan(name="Legacy", price=100, duration_days=30, is_active=False)

    assert [p.id for p in plan_service.get_active_plans()] == [yearly.id, plan.id]


def test_plan_in_use_cannot_be_deleted(plan, user):
    subscription_service.create_subscription(user.id, plan.id)
    with pytest.raises(ConflictError):
        plan_service.delete_plan(plan.id)

    unused = plan_service.create_plan(name="Weekly", price=100, duration_days=7)
    plan_service.delete_plan(unused.id)


def test_plan_with_payments_cannot_be_deleted(client, auth_headers, admin, plan, user, gateway):
    payment = payment_service.create_payment(user.id, plan.id)
    payment_service.cancel_payment(payment.id)

    with pytest.raises(ConflictError, match="payments"):
        plan_service.delete_plan(plan.id)
    assert client.delete(f"/api/v1/plans/{plan.id}", headers=auth_headers(admin)).status_code == 409
    assert payment_service.get_payment(payment.id).plan_id == plan.id


# ==================== API ====================


def test_gateway_endpoints(client, auth_headers, admin):
    headers = auth_headers(admin)

    created = client.post(
        "/api/v1/gateways",
        json={"name": "PayPal", "type": "paypal", "is_default": True, "fee_percent": 5},
        headers=headers,
    )
    assert created.status_code == 201
    gateway_id = created.json()["id"]

    fee = client.get(f"/api/v1/gateways/{gateway_id}/fee", params={"amount": 200}, headers=headers)
    assert fee.json() == {"amount": 200.0, "fee": 10.0, "total": 210.0}

    assert client.delete(f"/api/v1/gateways/{gateway_id}", headers=headers).status_code == 409
    assert client.get("/api/v1/gateways/9999", headers=headers).status_code == 404


def test_plan_endpoints(client, auth_headers, admin, user):
    created = client.post(
        "/api/v1/plans",
        json={"name": "Quarter", "price": 750, "duration_days": 90},
        headers=auth_headers(admin),
    )
    assert created.status_code == 201
    plan_id = created.json()["id"]

    assert client.post(
        "/api/v1/plans",
        json={"name": "Quarter", "price": 750, "duration_days": 90},
        headers=auth_headers(admin),
    ).status_code == 409
    assert client.patch(
        f"/api/v1/plans/{plan_id}", json={"price": 700}, headers=auth_headers(admin)
    ).json()["price"] == 700
    assert client.delete(f"/api/v1/plans/{plan_id}", headers=auth_headers(user)).status_code == 403
    assert client.delete(f"/api/v1/plans/{plan_id}", headers=auth_headers(admin)).status_code == 204
