import json
import time
from urllib.parse import urlencode

import pytest

from vpnpanel.auth.local import auth_service
from vpnpanel.auth.telegram import (
    InvalidTelegramDataError,
    login_with_telegram,
    parse_init_data,
    sign_init_data,
)
from vpnpanel.errors import ConflictError, PermissionDeniedError
from vpnpanel.partners.service import partner_service
from vpnpanel.referral.service import referral_service
from vpnpanel.users.service import user_service

BOT_TOKEN = "123456:TEST"


def make_init_data(user: dict, auth_date: int | None = None, bot_token: str = BOT_TOKEN) -> str:
    fields = {
        "auth_date": str(auth_date if auth_date is not None else int(time.time())),
        "query_id": "AAH",
        "user": json.dumps(user),
    }
    fields["hash"] = sign_init_data(fields, bot_token)
    return urlencode(fields)


# ==================== LOCAL ACCOUNTS ====================


def test_create_user_rejects_duplicate_username():
    auth_service.create_user("bob", password="password123")
    with pytest.raises(ConflictError):
        auth_service.create_user("bob", password="password123")


def test_authenticate_checks_password_and_active_flag():
    user = auth_service.create_user("bob", password="password123")

    assert auth_service.authenticate("bob", "password123").id == user.id
    assert auth_service.authenticate("bob", "wrong-password") is None

    user_service.block_user(user.id)
    assert auth_service.authenticate("bob", "password123") is None


def test_token_resolves_only_active_users():
    user = auth_service.create_user("bob", password="password123")
    token = auth_service.create_access_token(user)
    assert auth_service.get_user_from_token(token).id == user.id

    user_service.block_user(user.id)
    assert auth_service.get_user_from_token(token) is None
    assert auth_service.get_user_from_token("not-a-token") is None


def test_register_with_partner_code_creates_referral(make_user):
    referrer = make_user("partner_one")
    partner = partner_service.activate_partner(referrer.id, admin_id=None)

    user = auth_service.register("newbie", "password123", referral_code=partner.referral_code.upper())

    chain = referral_service.get_referral_chain(user.id)
    assert [(c["level"], c["user_id"]) for c in chain] == [(1, referrer.id)]
    assert partner_service.get_partner(partner.id).referral_count == 1


def test_register_ignores_unknown_referral_code():
    user = auth_service.register("newbie", "password123", referral_code="nosuchcode")
    assert referral_service.get_referral_chain(user.id) == []


# ==================== TELEGRAM ====================


def test_parse_init_data_returns_user():
    data = make_init_data({"id": 42, "first_name": "Ann", "username": "ann"})
    assert parse_init_data(data)["id"] == 42


def test_parse_init_data_rejects_forged_signature():
    data = make_init_data({"id": 42, "first_name": "Ann"}, bot_token="999:OTHER")
    with pytest.raises(InvalidTelegramDataError):
        parse_init_data(data)


def test_parse_init_data_rejects_stale_payload():
    data = make_init_data({"id": 42, "first_name": "Ann"}, auth_date=1_000)
    with pytest.raises(InvalidTelegramDataError, match="expired"):
        parse_init_data(data, max_age=60, now=10_000)


def test_parse_init_data_requires_first_name():
    data = make_init_data({"id": 42})
    with pytest.raises(InvalidTelegramDataError):
        parse_init_data(data)


def test_login_with_telegram_upserts_user():
    data = make_init_data({"id": 42, "first_name": "Ann", "username": "ann", "language_code": "ru"})
    user = login_with_telegram(data)
    assert user.telegram_id == "42"
    assert user.username == "ann"
    assert user.language == "ru"

    again = login_with_telegram(make_init_data({"id": 42, "first_name": "Anna"}))
    assert again.id == user.id
    assert again.first_name == "Anna"


def test_login_with_telegram_rejects_blocked_user():
    user = login_with_telegram(make_init_data({"id": 42, "first_name": "Ann"}))
    user_service.block_user(user.id)
    with pytest.raises(PermissionDeniedError):
        login_with_telegram(make_init_data({"id": 42, "first_name": "Ann"}))


# ==================== API ====================


def test_register_login_and_me(client):
    response = client.post("/api/v1/auth/register", json={"username": "carol", "password": "password123"})
    assert response.status_code == 201
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["role"] == "user"

    response = client.post("/api/v1/auth/login", json={"username": "carol", "password": "password123"})
    assert response.status_code == 200
    token = response.json()["access_token"]

    me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["username"] == "carol"


def test_register_validates_payload(client):
    response = client.post("/api/v1/auth/register", json={"username": "bad name", "password": "short"})
    assert response.status_code == 422


def test_register_duplicate_returns_conflict(client):
    client.post("/api/v1/auth/register", json={"username": "carol", "password": "password123"})
    response = client.post("/api/v1/auth/register", json={"username": "carol", "password": "password123"})
    assert response.status_code == 409


def test_login_with_bad_password_is_unauthorized(client):
    auth_service.create_user("carol", password="password123")
    response = client.post("/api/v1/auth/login", json={"username": "carol", "password": "nope-nope"})
    assert response.status_code == 401


def test_telegram_endpoint(client):
    data = make_init_data({"id": 77, "first_name": "Tg"})
    response = client.post("/api/v1/auth/telegram", json={"init_data": data})
    assert response.status_code == 200
    assert response.json()["user"]["telegram_id"] == "77"

    bad = client.post("/api/v1/auth/telegram", json={"init_data": data.replace("hash=", "hash=0")})
    assert bad.status_code == 400


def test_me_requires_token(client):
    assert client.get("/api/v1/auth/me").status_code == 401
