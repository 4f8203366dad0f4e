from datetime import datetime

import pytest

from vpnpanel.errors import ConflictError, NotFoundError, ValidationError
from vpnpanel.referral.models import ReferralStatus, RewardRecipient, RewardStatus
from vpnpanel.referral.service import referral_service


@pytest.fixture
def trio(make_user):
    return make_user("top"), make_user("middle"), make_user("bottom")


# ==================== RELATIONSHIPS ====================


def test_self_referral_rejected(user):
    with pytest.raises(ValidationError):
        referral_service.create_referral(user.id, user.id)


def test_user_can_only_be_referred_once(trio):
    top, middle, bottom = trio
    referral_service.create_referral(top.id, bottom.id)
    with pytest.raises(ConflictError):
        referral_service.create_referral(middle.id, bottom.id)


def test_cycle_rejected(trio):
    top, middle, bottom = trio
    referral_service.create_referral(top.id, middle.id)
    referral_service.create_referral(middle.id, bottom.id)

    with pytest.raises(ValidationError, match="cycle"):
        referral_service.create_referral(bottom.id, top.id)


def test_unknown_user_rejected(user):
    with pytest.raises(NotFoundError):
        referral_service.create_referral(user.id, 9999)


def test_referral_snapshots_current_rule(trio):
    top, middle, _ = trio
    rule = referral_service.create_rule(name="Launch", referrer_reward=50, referred_reward=25)

    referral = referral_service.create_referral(top.id, middle.id, referral_code="top")

    assert referral.rule_id == rule.id
    assert (referral.referrer_reward, referral.referred_reward) == (50, 25)
    assert referral.status == ReferralStatus.ACTIVE


def test_rule_window_validated():
    with pytest.raises(ValidationError):
        referral_service.create_rule(
            name="Broken",
            valid_from=datetime(2026, 2, 1),
            valid_until=datetime(2026, 1, 1),
        )


# ==================== TREE ====================


def test_chain_and_levels(make_user):
    users = [make_user(f"u{i}") for i in range(4)]
    for referrer, referred in zip(users, users[1:]):
        referral_service.create_referral(referrer.id, referred.id)

    chain = referral_service.get_referral_chain(users[3].id)
    assert [(c["level"], c["username"]) for c in chain] == [(1, "u2"), (2, "u1"), (3, "u0")]

    assert referral_service.get_level_counts(users[0].id) == {"1": 1, "2": 1, "3": 1}
    level2 = referral_service.get_referrals_by_level(users[0].id, 2)
    assert [row["username"] for row in level2] == ["u2"]

    with pytest.raises(ValidationError):
        referral_service.get_referrals_by_level(users[0].id, 4)


def test_cancelled_referral_breaks_chain(trio):
    top, middle, bottom = trio
    referral_service.create_referral(top.id, middle.id)
    second = referral_service.create_referral(middle.id, bottom.id)

    referral_service.cancel_referral(second.id, reason="duplicate account")

    assert referral_service.get_referral_chain(bottom.id) == []
    with pytest.raises(ValidationError):
        referral_service.cancel_referral(second.id)


# ==================== REWARDS ====================


def test_complete_creates_both_rewards(trio, admin):
    top, middle, _ = trio
    referral_service.create_rule(name="Launch", referrer_reward=50, referred_reward=25)
    referral = referral_service.create_referral(top.id, middle.id)

    completed = referral_service.complete_referral(referral.id)
    assert completed.status == ReferralStatus.COMPLETED
    assert completed.completed_at is not None

    rewards = referral_service.list_rewards()["data"]
    by_recipient = {r.recipient: r for r in rewards}
    assert by_recipient[RewardRecipient.REFERRER].user_id == top.id
    assert by_recipient[RewardRecipient.REFERRER].amount == 50
    assert by_recipient[RewardRecipient.REFERRED].user_id == middle.id

    with pytest.raises(ValidationError):
        referral_service.complete_referral(referral.id)


def test_reward_lifecycle(trio, admin):
    top, middle, _ = trio
    referral = referral_service.create_referral(top.id, middle.id)
    referral_service.complete_referral(referral.id)
    reward = referral_service.list_rewards(user_id=top.id)["data"][0]

    approved = referral_service.approve_reward(reward.id, admin.id)
    assert approved.status == RewardStatus.APPROVED
    with pytest.raises(ValidationError):
        referral_service.approve_reward(reward.id, admin.id)

    paid = referral_service.mark_reward_paid(reward.id, admin.id, payment_method="card", transaction_id="t1")
    assert paid.status == RewardStatus.PAID
    with pytest.raises(ValidationError):
        referral_service.mark_reward_paid(reward.id, admin.id)


def test_complete_for_user_respects_rule_minimum(trio, plan):
    top, middle, _ = trio
    referral_service.create_rule(name="Big buyers", referrer_reward=10, min_purchase_amount=500)
    referral_service.create_referral(top.id, middle.id)

    assert referral_service.complete_referral_for_user(middle.id, purchase_amount=300, plan_id=plan.id) is None
    completed = referral_service.complete_referral_for_user(middle.id, purchase_amount=600, plan_id=plan.id)
    assert completed.status == ReferralStatus.COMPLETED


def test_statistics(trio):
    top, middle, bottom = trio
    referral_service.create_referral(top.id, middle.id)
    referral = referral_service.create_referral(top.id, bottom.id)
    referral_service.complete_referral(referral.id)

    stats = referral_service.get_statistics()
    assert stats["total_referrals"] == 2
    assert stats["completed_referrals"] == 1
    assert stats["top_referrers"][0] == {"user_id": top.id, "username": "top", "referrals": 2}


# ==================== API ====================


def test_referral_endpoints(client, auth_headers, admin, trio):
    top, middle, _ = trio
    headers = auth_headers(admin)

    response = client.post(
        "/api/v1/referrals",
        json={"referrer_id": top.id, "referred_id": middle.id},
        headers=headers,
    )
    assert response.status_code == 201
    referral_id = response.json()["id"]

    duplicate = client.post(
        "/api/v1/referrals",
        json={"referrer_id": top.id, "referred_id": middle.id},
        headers=headers,
    )
    assert duplicate.status_code == 409

    chain = client.get(f"/api/v1/referrals/users/{middle.id}/chain", headers=headers).json()
    assert chain[0]["user_id"] == top.id

    completed = client.post(f"/api/v1/referrals/{referral_id}/complete", headers=headers)
    assert completed.json()["status"] == "completed"

    assert client.get("/api/v1/referrals/9999", headers=headers).status_code == 404
