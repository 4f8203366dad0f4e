import pytest

from vpnpanel.errors import NotFoundError
from vpnpanel.notifications.models import NotificationType
from vpnpanel.notifications.service import notification_service


# ==================== SERVICE ====================


def test_create_requires_existing_user():
    with pytest.raises(NotFoundError):
        notification_service.create_notification("Hi", "Hello", user_id=9999)


def test_metadata_is_stored(user):
    notification = notification_service.create_notification(
        "Payment received", "Thanks", user_id=user.id, type=NotificationType.PAYMENT, metadata={"payment_id": 7}
    )
    assert notification.extra == {"payment_id": 7}
    assert notification.is_read is False


def test_feed_includes_broadcasts(make_user, user):
    other = make_user("other")
    own = notification_service.create_notification("Own", "for alice", user_id=user.id)
    notification_service.create_notification("Foreign", "for other", user_id=other.id)
    broadcast = notification_service.broadcast("News", "for everyone")

    feed = notification_service.get_user_feed(user.id)
    assert {n.id for n in feed["data"]} == {own.id, broadcast.id}
    assert broadcast.type == NotificationType.ANNOUNCEMENT


def test_mark_read_touches_only_own_rows(make_user, user):
    other = make_user("other")
    mine = [notification_service.create_notification(f"n{i}", "x", user_id=user.id) for i in range(3)]
    theirs = notification_service.create_notification("t", "x", user_id=other.id)
    notification_service.broadcast("News", "x")

    assert notification_service.mark_read(user.id, [mine[0].id, theirs.id]) == 1
    assert notification_service.mark_read(user.id, []) == 0
    assert notification_service.mark_read(user.id) == 2
    assert notification_service.mark_read(user.id) == 0

    assert notification_service.get_notification(theirs.id).is_read is False
    unread = notification_service.get_user_feed(user.id, unread_only=True)["data"]
    assert [n.user_id for n in unread] == [None]


def test_counts(user):
    notification_service.create_notification("a", "x", user_id=user.id, type=NotificationType.PAYMENT)
    notification_service.create_notification("b", "x", user_id=user.id, type=NotificationType.PAYMENT)
    notification_service.create_notification("c", "x", user_id=user.id)
    notification_service.mark_read(user.id)
    notification_service.create_notification("d", "x", user_id=user.id)

    counts = notification_service.get_counts(user.id)
    assert (counts["total"], counts["unread"], counts["read"]) == (4, 1, 3)
    assert counts["by_type"] == {"payment": 2, "system": 2}


def test_update_and_delete(user):
    notification = notification_service.create_notification("Draft", "x", user_id=user.id)

    updated = notification_service.update_notification(notification.id, title="Final", is_read=True)
    assert updated.title == "Final"
    assert updated.read_at is not None

    notification_service.delete_notification(notification.id)
    with pytest.raises(NotFoundError):
        notification_service.get_notification(notification.id)
    with pytest.raises(NotFoundError):
        notification_service.delete_notification(notification.id)


# ==================== API ====================


def test_admin_notification_endpoints(client, auth_headers, admin, user):
    headers = auth_headers(admin)

    created = client.post(
        "/api/v1/notifications",
        json={"user_id": user.id, "title": "Hello", "message": "Welcome", "metadata": {"source": "admin"}},
        headers=headers,
    )
    assert created.status_code == 201
    assert created.json()["metadata"] == {"source": "admin"}
    notification_id = created.json()["id"]

    broadcast = client.post(
        "/api/v1/notifications/broadcast",
        json={"user_id": user.id, "title": "News", "message": "Everyone"},
        headers=headers,
    )
    assert broadcast.status_code == 201
    assert broadcast.json()["user_id"] is None
    assert broadcast.json()["type"] == "announcement"

    listed = client.get("/api/v1/notifications", params={"user_id": user.id}, headers=headers).json()
    assert listed["total"] == 1

    marked = client.post("/api/v1/notifications/mark-read", json={"user_id": user.id}, headers=headers)
    assert marked.json() == {"updated": 1}

    counts = client.get("/api/v1/notifications/counts", params={"user_id": user.id}, headers=headers).json()
    assert counts["unread"] == 0

    patched = client.patch(f"/api/v1/notifications/{notification_id}", json={"title": "Hi"}, headers=headers)
    assert patched.json()["title"] == "Hi"

    assert client.delete(f"/api/v1/notifications/{notification_id}", headers=headers).status_code == 204
    assert client.get(f"/api/v1/notifications/{notification_id}", headers=headers).status_code == 404


def test_empty_title_rejected(client, auth_headers, admin):
    response = client.post(
        "/api/v1/notifications", json={"title": "", "message": "x"}, headers=auth_headers(admin)
    )
    assert response.status_code == 422


def test_client_feed_and_mark_read(client, auth_headers, user):
    own = notification_service.create_notification("Own", "x", user_id=user.id)
    notification_service.broadcast("News", "x")
    headers = auth_headers(user)

    feed = client.get("/api/v1/client/notifications", headers=headers).json()
    assert feed["total"] == 2

    marked = client.post("/api/v1/client/notifications/read", json={"notification_ids": [own.id]}, headers=headers)
    assert marked.json() == {"updated": 1}

    unread = client.get("/api/v1/client/notifications", params={"unread_only": True}, headers=headers).json()
    assert [n["user_id"] for n in unread["data"]] == [None]


def test_notification_admin_requires_role(client, auth_headers, user):
    assert client.get("/api/v1/notifications", headers=auth_headers(user)).status_code == 403
