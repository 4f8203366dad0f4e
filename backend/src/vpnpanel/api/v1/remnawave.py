"""Remnawave panel API v1 endpoints (admin)."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from vpnpanel.api.v1.schemas import ORMModel, Page, to_page
from vpnpanel.auth.middleware import require_admin
from vpnpanel.auth.models import User
from vpnpanel.remnawave.client import RemnawaveClient
from vpnpanel.remnawave.sync import remnawave_sync_service

router = APIRouter(prefix="/remnawave", tags=["remnawave"])


# ==================== MODELS ====================


class SyncReport(BaseModel):
    total: int
    created: int
    linked: int
    skipped: int
    errors: int
    error_details: list[dict[str, Any]] = []


class SyncLogResponse(ORMModel):
    id: int
    status: str
    total: int
    created: int
    linked: int
    skipped: int
    errors: int
    error_details: list[dict[str, Any]] | None = None
    error_message: str | None = None
    started_by: int | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


class LinkResponse(ORMModel):
    id: int
    user_id: int
    telegram_id: str | None = None
    remnawave_uuid: str
    remnawave_username: str | None = None
    is_primary: bool
    panel_status: str | None = None
    expire_at: datetime | None = None
    subscription_url: str | None = None
    last_synced_at: datetime | None = None
    created_at: datetime | None = None


class PanelAccount(BaseModel):
    uuid: str | None = None
    username: str | None = None
    status: str | None = None
    expire_at: str | None = None
    subscription_url: str | None = None
    is_linked: bool
    link_id: int | None = None
    user_id: int | None = None
    is_primary: bool


class LinkRequest(BaseModel):
    remnawave_uuid: str = Field(..., min_length=1, max_length=64)
    telegram_id: str = Field(..., min_length=1, max_length=32)
    user_id: int | None = None


# ==================== SYNC ====================


@router.post("/sync", response_model=SyncReport)
async def sync_users(admin: User = Depends(require_admin)):
    """Import every panel user and link it to a local account."""
    return await remnawave_sync_service.sync_all_users(started_by=admin.id)


@router.get("/status")
async def sync_status(admin: User = Depends(require_admin)):
    return await remnawave_sync_service.get_sync_status()


@router.get("/sync/logs", response_model=list[SyncLogResponse])
async def sync_logs(limit: int = Query(20, ge=1, le=100), admin: User = Depends(require_admin)):
    return remnawave_sync_service.get_sync_logs(limit)


# ==================== LINKS ====================


@router.get("/users/telegram/{telegram_id}", response_model=list[PanelAccount])
async def panel_users_by_telegram(telegram_id: str, admin: User = Depends(require_admin)):
    return await remnawave_sync_service.get_users_by_telegram_id(telegram_id)


@router.post("/links", response_model=LinkResponse, status_code=status.HTTP_201_CREATED)
async def link_account(body: LinkRequest, admin: User = Depends(require_admin)):
    return await remnawave_sync_service.link_telegram_to_remnawave(
        body.remnawave_uuid,
        body.telegram_id,
        user_id=body.user_id,
    )


@router.get("/links", response_model=Page[LinkResponse])
async def list_links(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: int | None = None,
    admin: User = Depends(require_admin),
):
    return to_page(remnawave_sync_service.list_links(page, limit, user_id=user_id), LinkResponse)


@router.post("/users/{user_id}/links/{link_id}/primary", response_model=LinkResponse)
async def set_primary_link(user_id: int, link_id: int, admin: User = Depends(require_admin)):
    return remnawave_sync_service.set_primary_link(user_id, link_id)


@router.delete("/links/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_link(link_id: int, admin: User = Depends(require_admin)):
    remnawave_sync_service.delete_link(link_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ==================== PANEL ====================


@router.get("/nodes")
async def list_nodes(admin: User = Depends(require_admin)):
    async with RemnawaveClient() as client:
        return await client.get_nodes()


@router.get("/system")
async def system_stats(admin: User = Depends(require_admin)):
    async with RemnawaveClient() as client:
        return await client.get_system_stats()
