"""Shared fixtures: a throwaway SQLite database and API client."""

import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="vpnpanel-tests-")

os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR}/test.db"
os.environ["ENV"] = "test"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-with-enough-length-0123456789"
os.environ["TELEGRAM_BOT_TOKEN"] = "123456:TEST"
os.environ["REMNAWAVE_MAX_RETRIES"] = "1"
os.environ["BACKUP_DIR"] = os.path.join(_TMP_DIR, "backups")
os.environ.pop("REMNAWAVE_API_URL", None)
os.environ.pop("REMNAWAVE_API_TOKEN", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from vpnpanel.api.main import app  # noqa: E402
from vpnpanel.auth.local import auth_service  # noqa: E402
from vpnpanel.auth.models import UserRole  # noqa: E402
from vpnpanel.gateways.models import GatewayType  # noqa: E402
from vpnpanel.gateways.service import gateway_service  # noqa: E402
from vpnpanel.partners.service import partner_service  # noqa: E402
from vpnpanel.plans.service import plan_service  # noqa: E402
from vpnpanel.storage.db import db  # noqa: E402


@pytest.fixture(autouse=True)
def clean_db():
    db.drop_tables()
    db.create_tables()
    yield


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers():
    def _headers(user) -> dict[str, str]:
        return {"Authorization": f"Bearer {auth_service.create_access_token(user)}"}

    return _headers


@pytest.fixture
def make_user():
    counter = {"n": 0}

    def _make(username: str | None = None, role: UserRole = UserRole.USER, **kwargs):
        counter["n"] += 1
        return auth_service.create_user(username=username or f"user{counter['n']}", role=role, **kwargs)

    return _make


@pytest.fixture
def user(make_user):
    return make_user("alice", telegram_id="1001")


@pytest.fixture
def admin(make_user):
    return make_user("admin", role=UserRole.ADMIN, telegram_id="2001")


@pytest.fixture
def super_admin(make_user):
    return make_user("root", role=UserRole.SUPER_ADMIN, telegram_id="3001")


@pytest.fixture
def plan():
    return plan_service.create_plan(
        name="Monthly",
        price=300.0,
        currency="RUB",
        duration_days=30,
        traffic_limit_gb=100,
        device_limit=3,
    )


@pytest.fixture
def gateway():
    return gateway_service.create_gateway(
        name="YooKassa",
        type=GatewayType.YOOKASSA,
        is_default=True,
        supported_currencies=["RUB"],
        fee_percent=3.5,
    )


@pytest.fixture
def enable_program():
    """Turn the partner program on with 10/5/2 percent levels and no tax."""
    return partner_service.update_settings(
        is_enabled=True,
        level1_percent=10.0,
        level2_percent=5.0,
        level3_percent=2.0,
        tax_percent=0.0,
        min_payout_amount=100.0,
    )
