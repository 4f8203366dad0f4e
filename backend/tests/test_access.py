import pytest

from vpnpanel.access.service import access_service
from vpnpanel.auth.models import UserRole
from vpnpanel.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from vpnpanel.payments.service import payment_service
from vpnpanel.users.service import user_service


# ==================== USERS ====================


def test_block_and_unblock(user, admin):
    blocked = user_service.block_user(user.id, actor_id=admin.id)
    assert blocked.is_active is False

    assert user_service.unblock_user(user.id, actor_id=admin.id).is_active is True


def test_block_guards(admin, super_admin):
    with pytest.raises(ValidationError):
        user_service.block_user(admin.id, actor_id=admin.id)
    with pytest.raises(PermissionDeniedError):
        user_service.block_user(super_admin.id, actor_id=admin.id)
    with pytest.raises(NotFoundError):
        user_service.block_user(9999)


def test_update_user_profile_only(user):
    updated = user_service.update_user(user.id, first_name="Alice", language="en", role=UserRole.SUPER_ADMIN)
    assert (updated.first_name, updated.language) == ("Alice", "en")
    assert updated.role == UserRole.USER


def test_user_overview(user, plan, gateway):
    payment_service.complete_payment(payment_service.create_payment(user.id, plan.id).id)
    payment_service.create_payment(user.id, plan.id)

    overview = user_service.get_user_overview(user.id)
    assert overview["user"].id == user.id
    assert overview["active_subscriptions"] == 1
    assert (overview["payments_count"], overview["total_spent"]) == (1, 300.0)


def test_list_users_search(make_user, user):
    make_user("bob", first_name="Robert")

    assert [u.username for u in user_service.list_users(search="rob")["data"]] == ["bob"]
    assert user_service.list_users(search="1001")["data"][0].id == user.id


# ==================== ADMINS ====================


def test_create_admin_promotes_existing_user(user):
    promoted = access_service.create_admin(telegram_id="1001", role=UserRole.ADMIN)
    assert promoted.id == user.id
    assert promoted.role == UserRole.ADMIN

    with pytest.raises(ConflictError):
        access_service.create_admin(telegram_id="1001")


def test_create_admin_creates_missing_user():
    created = access_service.create_admin(telegram_id=777, role=UserRole.SUPER_ADMIN, password="s3cret-pass")
    assert created.username == "admin_777"
    assert created.telegram_id == "777"
    assert created.password_hash is not None


def test_create_admin_rejects_user_role():
    with pytest.raises(ValidationError):
        access_service.create_admin(telegram_id="42", role=UserRole.USER)


def test_last_super_admin_is_protected(super_admin, make_user):
    with pytest.raises(ConflictError):
        access_service.update_admin(super_admin.id, role=UserRole.ADMIN)
    with pytest.raises(ConflictError):
        access_service.deactivate_admin(super_admin.id)
    with pytest.raises(ConflictError):
        access_service.revoke_admin(super_admin.id)

    make_user("root2", role=UserRole.SUPER_ADMIN)
    assert access_service.update_admin(super_admin.id, role=UserRole.ADMIN).role == UserRole.ADMIN


def test_revoke_and_list_admins(admin, super_admin, user):
    admins = access_service.list_admins()["data"]
    assert {a.id for a in admins} == {admin.id, super_admin.id}

    revoked = access_service.revoke_admin(admin.id)
    assert revoked.role == UserRole.USER
    with pytest.raises(NotFoundError):
        access_service.revoke_admin(admin.id)
    with pytest.raises(NotFoundError):
        access_service.update_admin(user.id, is_active=False)


# ==================== API ====================


def test_user_endpoints(client, auth_headers, admin, user):
    headers = auth_headers(admin)

    listed = client.get("/api/v1/users", params={"role": "user"}, headers=headers).json()
    assert [u["id"] for u in listed["data"]] == [user.id]

    overview = client.get(f"/api/v1/users/{user.id}", headers=headers).json()
    assert overview["user"]["username"] == "alice"
    assert overview["total_spent"] == 0.0

    patched = client.patch(f"/api/v1/users/{user.id}", json={"first_name": "Alice"}, headers=headers)
    assert patched.json()["first_name"] == "Alice"

    assert client.post(f"/api/v1/users/{user.id}/block", headers=headers).json()["is_active"] is False
    assert client.get("/api/v1/auth/me", headers=auth_headers(user)).status_code == 401
    assert client.post(f"/api/v1/users/{user.id}/unblock", headers=headers).json()["is_active"] is True

    assert client.post(f"/api/v1/users/{admin.id}/block", headers=headers).status_code == 400


def test_access_endpoints(client, auth_headers, super_admin, admin):
    headers = auth_headers(super_admin)

    assert client.get("/api/v1/access/admins", headers=auth_headers(admin)).status_code == 403

    created = client.post("/api/v1/access/admins", json={"telegram_id": "4242"}, headers=headers)
    assert created.status_code == 201
    new_id = created.json()["id"]
    assert created.json()["role"] == "admin"

    assert client.post("/api/v1/access/admins", json={"telegram_id": "abc"}, headers=headers).status_code == 422
    assert client.post("/api/v1/access/admins", json={"telegram_id": "4242"}, headers=headers).status_code == 409

    listed = client.get("/api/v1/access/admins", headers=headers).json()
    assert listed["total"] == 3

    deactivated = client.post(f"/api/v1/access/admins/{new_id}/deactivate", headers=headers)
    assert deactivated.json()["is_active"] is False

    demote_self = client.patch(f"/api/v1/access/admins/{super_admin.id}", json={"role": "admin"}, headers=headers)
    assert demote_self.status_code == 409

    revoked = client.delete(f"/api/v1/access/admins/{new_id}", headers=headers)
    assert revoked.json()["role"] == "user"
