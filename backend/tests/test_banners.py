from datetime import datetime, timedelta

import pytest

from vpnpanel.banners.models import BannerPosition
from vpnpanel.banners.service import banner_service
from vpnpanel.errors import NotFoundError, ValidationError


NOW = datetime(2026, 6, 15, 12, 0)


def test_schedule_window_validated():
    with pytest.raises(ValidationError):
        banner_service.create_banner(title="Backwards", starts_at=NOW, ends_at=NOW - timedelta(days=1))

    banner = banner_service.create_banner(title="Summer", ends_at=NOW)
    with pytest.raises(ValidationError):
        banner_service.update_banner(banner.id, starts_at=NOW + timedelta(days=1))


def test_active_banners_respect_window_and_position():
    current = banner_service.create_banner(
        title="Current", starts_at=NOW - timedelta(days=1), ends_at=NOW + timedelta(days=1)
    )
    banner_service.create_banner(title="Upcoming", starts_at=NOW + timedelta(days=1))
    banner_service.create_banner(title="Finished", ends_at=NOW - timedelta(days=1))
    banner_service.create_banner(title="Hidden", is_active=False)
    sidebar = banner_service.create_banner(title="Side", position=BannerPosition.SIDEBAR, display_order=-1)

    assert [b.id for b in banner_service.get_active_banners(now=NOW)] == [sidebar.id, current.id]
    assert [b.id for b in banner_service.get_active_banners(BannerPosition.HOME_TOP, now=NOW)] == [current.id]


def test_statistics_and_ctr():
    first = banner_service.create_banner(title="First")
    second = banner_service.create_banner(title="Second", is_active=False)
    for _ in range(4):
        banner_service.record_impression(first.id)
    banner_service.record_click(first.id)

    stats = banner_service.get_statistics()
    assert (stats["total_banners"], stats["active_banners"]) == (2, 1)
    assert (stats["total_impressions"], stats["total_clicks"], stats["ctr"]) == (4, 1, 25.0)
    per_banner = {b["id"]: b["ctr"] for b in stats["banners"]}
    assert per_banner == {first.id: 25.0, second.id: 0.0}


def test_statistics_without_impressions():
    assert banner_service.get_statistics()["ctr"] == 0.0


def test_tracking_unknown_banner():
    with pytest.raises(NotFoundError):
        banner_service.record_click(9999)


# ==================== API ====================


def test_banner_endpoints(client, auth_headers, admin, user):
    headers = auth_headers(admin)

    created = client.post(
        "/api/v1/banners",
        json={"title": "Promo", "position": "plans_page", "link_url": "https://example.com"},
        headers=headers,
    )
    assert created.status_code == 201
    banner_id = created.json()["id"]

    assert client.post(f"/api/v1/banners/{banner_id}/impression").status_code == 204
    assert client.post(f"/api/v1/banners/{banner_id}/click").status_code == 204
    assert client.post("/api/v1/banners/9999/click").status_code == 404

    active = client.get("/api/v1/banners/active", params={"position": "plans_page"}).json()
    assert [b["ctr"] for b in active] == [100.0]

    mine = client.get("/api/v1/client/banners", headers=auth_headers(user)).json()
    assert [b["id"] for b in mine] == [banner_id]

    stats = client.get("/api/v1/banners/statistics", headers=headers).json()
    assert stats["total_clicks"] == 1

    patched = client.patch(f"/api/v1/banners/{banner_id}", json={"is_active": False}, headers=headers)
    assert patched.json()["is_active"] is False
    assert client.get("/api/v1/banners/active").json() == []

    assert client.get("/api/v1/banners", headers=auth_headers(user)).status_code == 403
    assert client.delete(f"/api/v1/banners/{banner_id}", headers=headers).status_code == 204
    assert client.get(f"/api/v1/banners/{banner_id}", headers=headers).status_code == 404
