import pytest

from vpnpanel.errors import ConflictError, ValidationError
from vpnpanel.partners.models import EarningStatus, PartnerStatus, PayoutMethod, PayoutStatus
from vpnpanel.partners.service import partner_service
from vpnpanel.referral.service import referral_service


def make_chain(make_user, length: int):
    """Users u0 <- u1 <- ... where each one referred the next."""
    users = [make_user(f"chain{i}") for i in range(length)]
    for referrer, referred in zip(users, users[1:]):
        referral_service.create_referral(referrer.id, referred.id)
    return users


# ==================== ENROLLMENT ====================


def test_referral_code_derived_from_username(make_user):
    first = make_user("John.Smith-99")
    second = make_user("johnsmith2")

    assert partner_service.activate_partner(first.id, admin_id=None).referral_code == "johnsmit"
    assert partner_service.activate_partner(second.id, admin_id=None).referral_code == "johnsmit1"


def test_activate_twice_conflicts(user):
    partner_service.activate_partner(user.id, admin_id=None)
    with pytest.raises(ConflictError):
        partner_service.activate_partner(user.id, admin_id=None)


def test_activation_counts_existing_referrals(make_user):
    referrer, referred = make_user("ref"), make_user("friend")
    referral_service.create_referral(referrer.id, referred.id)

    partner = partner_service.activate_partner(referrer.id, admin_id=None)
    assert partner.referral_count == 1


def test_apply_then_approve(user, admin):
    partner = partner_service.apply(user.id)
    assert partner.status == PartnerStatus.PENDING
    assert not partner_service.is_partner(user.id)

    with pytest.raises(ConflictError):
        partner_service.apply(user.id)

    approved = partner_service.approve_partner(partner.id, admin.id, notes="ok")
    assert approved.status == PartnerStatus.ACTIVE
    assert approved.activated_by == admin.id
    assert partner_service.is_partner(user.id)

    with pytest.raises(ValidationError):
        partner_service.reject_partner(partner.id, admin.id)

    actions = [log.action for log in partner_service.get_activation_history(user.id)]
    assert actions == ["approved", "applied"]


def test_deactivate_and_reactivate(user, admin):
    partner = partner_service.activate_partner(user.id, admin.id)
    suspended = partner_service.deactivate_partner(user.id, admin.id, reason="fraud check")
    assert suspended.status == PartnerStatus.SUSPENDED

    with pytest.raises(ValidationError):
        partner_service.deactivate_partner(user.id, admin.id)

    again = partner_service.activate_partner(user.id, admin.id)
    assert again.id == partner.id
    assert again.status == PartnerStatus.ACTIVE


# ==================== SETTINGS ====================


def test_settings_defaults_and_validation():
    program = partner_service.get_settings()
    assert program.is_enabled is False
    assert (program.level1_percent, program.level2_percent, program.level3_percent) == (10.0, 5.0, 2.0)

    with pytest.raises(ValidationError):
        partner_service.update_settings(level1_percent=150)
    with pytest.raises(ValidationError):
        partner_service.update_settings(min_payout_amount=-1)

    updated = partner_service.update_settings(tax_percent=13, is_enabled=True)
    assert updated.tax_percent == 13
    assert updated.is_enabled is True
    assert updated.level1_percent == 10.0


# ==================== COMMISSIONS ====================


def test_distribute_commissions_over_three_levels(make_user, enable_program):
    a, b, c, d = make_chain(make_user, 4)
    partners = {u.id: partner_service.activate_partner(u.id, admin_id=None) for u in (a, b, c)}

    earnings = partner_service.distribute_commissions(d.id, 1000.0)

    assert [(e.level, e.amount) for e in earnings] == [(1, 100.0), (2, 50.0), (3, 20.0)]
    assert partner_service.get_partner(partners[c.id].id).balance == 100.0
    assert partner_service.get_partner(partners[b.id].id).balance == 50.0
    assert partner_service.get_partner(partners[a.id].id).balance == 20.0


def test_distribute_skips_inactive_partner_but_keeps_walking(make_user, enable_program):
    a, b, c = make_chain(make_user, 3)
    partner_a = partner_service.activate_partner(a.id, admin_id=None)

    earnings = partner_service.distribute_commissions(c.id, 1000.0)

    assert [(e.partner_id, e.level) for e in earnings] == [(partner_a.id, 2)]


def test_distribute_does_nothing_when_disabled(make_user):
    a, b = make_chain(make_user, 2)
    partner_service.activate_partner(a.id, admin_id=None)

    assert partner_service.distribute_commissions(b.id, 1000.0) == []


def test_personal_rate_and_tax(make_user, enable_program):
    partner_service.update_settings(tax_percent=13)
    a, b = make_chain(make_user, 2)
    partner = partner_service.activate_partner(a.id, admin_id=None, commission_rate=20)

    [earning] = partner_service.distribute_commissions(b.id, 1000.0)

    assert earning.commission_percent == 20
    assert earning.gross_amount == 200.0
    assert earning.tax_amount == 26.0
    assert earning.amount == 174.0
    refreshed = partner_service.get_partner(partner.id)
    assert refreshed.total_earnings == refreshed.pending_earnings == refreshed.balance == 174.0


def test_add_commission_rejects_bad_level(user):
    partner = partner_service.activate_partner(user.id, admin_id=None)
    with pytest.raises(ValidationError):
        partner_service.add_commission(partner.id, None, 100.0, level=4)


# ==================== PAYOUTS ====================


@pytest.fixture
def funded_partner(user):
    partner = partner_service.activate_partner(user.id, admin_id=None)
    partner_service.add_commission(partner.id, None, 600.0, level=1)
    partner_service.add_commission(partner.id, None, 500.0, level=1)
    return partner_service.get_partner(partner.id)


def test_request_payout_reserves_balance(funded_partner):
    partner_service.update_settings(payment_system_fee=2)
    payout = partner_service.request_payout(funded_partner.id, 100.0, PayoutMethod.CARD, {"card": "4111"})

    assert payout.status == PayoutStatus.PENDING
    assert (payout.fee, payout.net_amount) == (2.0, 98.0)
    partner = partner_service.get_partner(funded_partner.id)
    assert partner.balance == 10.0
    assert partner.pending_earnings == 10.0


def test_request_payout_limits(funded_partner):
    with pytest.raises(ValidationError, match="Insufficient"):
        partner_service.request_payout(funded_partner.id, 500.0, PayoutMethod.CARD)
    with pytest.raises(ValidationError, match="Minimum"):
        partner_service.request_payout(funded_partner.id, 50.0, PayoutMethod.CARD)
    with pytest.raises(ValidationError):
        partner_service.request_payout(funded_partner.id, 0, PayoutMethod.CARD)


def test_suspended_partner_cannot_request_payout(funded_partner):
    partner_service.deactivate_partner(funded_partner.user_id, admin_id=None)
    with pytest.raises(ValidationError):
        partner_service.request_payout(funded_partner.id, 100.0, PayoutMethod.CARD)


def test_completed_payout_marks_oldest_earnings_paid(funded_partner, admin):
    payout = partner_service.request_payout(funded_partner.id, 100.0, PayoutMethod.CRYPTO)

    processed = partner_service.process_payout(payout.id, admin.id, PayoutStatus.COMPLETED, transaction_id="tx-1")

    assert processed.status == PayoutStatus.COMPLETED
    assert processed.transaction_id == "tx-1"
    partner = partner_service.get_partner(funded_partner.id)
    assert partner.paid_earnings == 100.0
    earnings = partner_service.list_earnings(partner_id=partner.id)["data"]
    statuses = {e.amount: e.status for e in earnings}
    assert statuses == {60.0: EarningStatus.PAID, 50.0: EarningStatus.PENDING}

    with pytest.raises(ConflictError):
        partner_service.process_payout(payout.id, admin.id, PayoutStatus.REJECTED)


def test_rejected_payout_restores_balance(funded_partner, admin):
    payout = partner_service.request_payout(funded_partner.id, 100.0, PayoutMethod.CARD)
    partner_service.process_payout(payout.id, admin.id, PayoutStatus.REJECTED, notes="wrong card")

    partner = partner_service.get_partner(funded_partner.id)
    assert partner.balance == 110.0
    assert partner.pending_earnings == 110.0
    assert partner.paid_earnings == 0.0


def test_process_payout_rejects_pending_target(funded_partner, admin):
    payout = partner_service.request_payout(funded_partner.id, 100.0, PayoutMethod.CARD)
    with pytest.raises(ValidationError):
        partner_service.process_payout(payout.id, admin.id, PayoutStatus.PENDING)


def test_partner_stats(funded_partner):
    stats = partner_service.get_partner_stats(funded_partner.id)
    assert stats["earnings_by_level"]["1"] == {"count": 2, "amount": 110.0}
    assert stats["earnings_by_level"]["3"] == {"count": 0, "amount": 0.0}

    program = partner_service.get_program_stats()
    assert program["active_partners"] == 1
    assert program["total_earnings"] == 110.0


# ==================== API ====================


def test_admin_partner_endpoints(client, auth_headers, admin, user):
    headers = auth_headers(admin)

    response = client.post("/api/v1/partners/activate", json={"user_id": user.id}, headers=headers)
    assert response.status_code == 200
    partner = response.json()
    assert partner["username"] == "alice"
    assert partner["status"] == "active"

    listed = client.get("/api/v1/partners", headers=headers).json()
    assert listed["total"] == 1

    by_code = client.get(f"/api/v1/partners/by-code/{partner['referral_code']}", headers=headers)
    assert by_code.json()["id"] == partner["id"]

    again = client.post("/api/v1/partners/activate", json={"user_id": user.id}, headers=headers)
    assert again.status_code == 409


def test_partner_settings_endpoint_validates(client, auth_headers, admin):
    response = client.put("/api/v1/partners/settings", json={"level1_percent": 120}, headers=auth_headers(admin))
    assert response.status_code == 422

    response = client.put("/api/v1/partners/settings", json={"is_enabled": True}, headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["is_enabled"] is True


def test_partner_endpoints_require_admin(client, auth_headers, user):
    assert client.get("/api/v1/partners", headers=auth_headers(user)).status_code == 403
    assert client.get("/api/v1/partners").status_code == 401
