"""Statistics API v1 endpoints (admin)."""

from datetime import date, datetime

from fastapi import APIRouter, Depends

from vpnpanel.api.v1.schemas import ORMModel
from vpnpanel.auth.middleware import require_admin
from vpnpanel.auth.models import User
from vpnpanel.statistics.service import statistics_service

router = APIRouter(prefix="/statistics", tags=["statistics"])


class DailyStatisticsResponse(ORMModel):
    date: date
    total_users: int
    new_users: int
    active_subscriptions: int
    new_subscriptions: int
    revenue: float
    payments_count: int
    partner_earnings: float
    updated_at: datetime | None = None


@router.get("/dashboard")
async def dashboard(admin: User = Depends(require_admin)):
    return statistics_service.get_dashboard()


@router.get("/revenue")
async def revenue(start: date | None = None, end: date | None = None, admin: User = Depends(require_admin)):
    return statistics_service.get_revenue_stats(start, end)


@router.get("/users")
async def users(start: date | None = None, end: date | None = None, admin: User = Depends(require_admin)):
    return statistics_service.get_user_stats(start, end)


@router.get("/subscriptions")
async def subscriptions(admin: User = Depends(require_admin)):
    return statistics_service.get_subscription_stats()


@router.get("/daily", response_model=list[DailyStatisticsResponse])
async def daily(start: date | None = None, end: date | None = None, admin: User = Depends(require_admin)):
    return statistics_service.list_daily(start, end)


@router.post("/daily/snapshot", response_model=DailyStatisticsResponse)
async def snapshot(day: date | None = None, admin: User = Depends(require_admin)):
    return statistics_service.snapshot_daily(day)
