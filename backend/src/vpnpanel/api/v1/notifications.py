"""Notification API v1 endpoints (admin)."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from vpnpanel.api.v1.schemas import ORMModel, Page, to_page
from vpnpanel.auth.middleware import require_admin
from vpnpanel.auth.models import User
from vpnpanel.notifications.models import NotificationType
from vpnpanel.notifications.service import notification_service

router = APIRouter(prefix="/notifications", tags=["notifications"])


# ==================== MODELS ====================


class NotificationCreateRequest(BaseModel):
    """Notification for one user, or a broadcast when user_id is omitted."""
    user_id: int | None = None
    type: NotificationType = NotificationType.SYSTEM
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    link_url: str | None = Field(default=None, max_length=512)
    metadata: dict[str, Any] | None = None


class NotificationUpdateRequest(BaseModel):
    type: NotificationType | None = None
    title: str | None = Field(default=None, min_length=1, max_length=255)
    message: str | None = Field(default=None, min_length=1)
    link_url: str | None = Field(default=None, max_length=512)
    is_read: bool | None = None
    metadata: dict[str, Any] | None = None


class NotificationResponse(ORMModel):
    id: int
    user_id: int | None = None
    type: NotificationType
    title: str
    message: str
    is_read: bool
    link_url: str | None = None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="extra")
    created_at: datetime | None = None
    read_at: datetime | None = None


class MarkReadRequest(BaseModel):
    user_id: int
    notification_ids: list[int] | None = None


class CountResponse(BaseModel):
    updated: int


# ==================== ENDPOINTS ====================


@router.get("", response_model=Page[NotificationResponse])
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: int | None = None,
    type: NotificationType | None = None,
    is_read: bool | None = None,
    search: str | None = None,
    admin: User = Depends(require_admin),
):
    result = notification_service.list_notifications(
        page, limit, user_id=user_id, type=type, is_read=is_read, search=search
    )
    return to_page(result, NotificationResponse)


@router.get("/counts")
async def notification_counts(user_id: int | None = None, admin: User = Depends(require_admin)):
    return notification_service.get_counts(user_id)


@router.post("", response_model=NotificationResponse, status_code=status.HTTP_201_CREATED)
async def create_notification(body: NotificationCreateRequest, admin: User = Depends(require_admin)):
    return notification_service.create_notification(**body.model_dump())


@router.post("/broadcast", response_model=NotificationResponse, status_code=status.HTTP_201_CREATED)
async def broadcast(body: NotificationCreateRequest, admin: User = Depends(require_admin)):
    """Send a notification to every user."""
    data = body.model_dump(exclude={"user_id"}, exclude_unset=True)
    return notification_service.broadcast(**data)


@router.post("/mark-read", response_model=CountResponse)
async def mark_read(body: MarkReadRequest, admin: User = Depends(require_admin)):
    return CountResponse(updated=notification_service.mark_read(body.user_id, body.notification_ids))


@router.get("/{notification_id}", response_model=NotificationResponse)
async def get_notification(notification_id: int, admin: User = Depends(require_admin)):
    return notification_service.get_notification(notification_id)


@router.patch("/{notification_id}", response_model=NotificationResponse)
async def update_notification(
    notification_id: int,
    body: NotificationUpdateRequest,
    admin: User = Depends(require_admin),
):
    return notification_service.update_notification(notification_id, **body.model_dump(exclude_unset=True))


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(notification_id: int, admin: User = Depends(require_admin)):
    notification_service.delete_notification(notification_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
