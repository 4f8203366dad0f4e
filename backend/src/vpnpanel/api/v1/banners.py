"""Banner API v1 endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from vpnpanel.api.v1.schemas import ORMModel, Page, to_page
from vpnpanel.auth.middleware import require_admin
from vpnpanel.auth.models import User
from vpnpanel.banners.models import BannerPosition
from vpnpanel.banners.service import banner_service

router = APIRouter(prefix="/banners", tags=["banners"])


# ==================== MODELS ====================


class BannerCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    subtitle: str | None = None
    image_url: str | None = Field(default=None, max_length=512)
    link_url: str | None = Field(default=None, max_length=512)
    position: BannerPosition = BannerPosition.HOME_TOP
    display_order: int = 0
    is_active: bool = True
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    background_color: str | None = Field(default=None, max_length=32)
    text_color: str | None = Field(default=None, max_length=32)


class BannerUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    subtitle: str | None = None
    image_url: str | None = Field(default=None, max_length=512)
    link_url: str | None = Field(default=None, max_length=512)
    position: BannerPosition | None = None
    display_order: int | None = None
    is_active: bool | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    background_color: str | None = Field(default=None, max_length=32)
    text_color: str | None = Field(default=None, max_length=32)


class BannerResponse(ORMModel):
    id: int
    title: str
    subtitle: str | None = None
    image_url: str | None = None
    link_url: str | None = None
    position: BannerPosition
    display_order: int
    is_active: bool
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    impression_count: int
    click_count: int
    ctr: float
    background_color: str | None = None
    text_color: str | None = None
    created_at: datetime | None = None


# ==================== ADMIN ====================


@router.get("", response_model=Page[BannerResponse])
async def list_banners(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    position: BannerPosition | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    admin: User = Depends(require_admin),
):
    result = banner_service.list_banners(page, limit, position=position, is_active=is_active, search=search)
    return to_page(result, BannerResponse)


@router.get("/statistics")
async def banner_statistics(admin: User = Depends(require_admin)):
    return banner_service.get_statistics()


@router.get("/active", response_model=list[BannerResponse])
async def active_banners(position: BannerPosition | None = None):
    """Banners currently on display; public."""
    return banner_service.get_active_banners(position)


@router.post("", response_model=BannerResponse, status_code=status.HTTP_201_CREATED)
async def create_banner(body: BannerCreateRequest, admin: User = Depends(require_admin)):
    return banner_service.create_banner(**body.model_dump())


@router.get("/{banner_id}", response_model=BannerResponse)
async def get_banner(banner_id: int, admin: User = Depends(require_admin)):
    return banner_service.get_banner(banner_id)


@router.patch("/{banner_id}", response_model=BannerResponse)
async def update_banner(banner_id: int, body: BannerUpdateRequest, admin: User = Depends(require_admin)):
    return banner_service.update_banner(banner_id, **body.model_dump(exclude_unset=True))


@router.delete("/{banner_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_banner(banner_id: int, admin: User = Depends(require_admin)):
    banner_service.delete_banner(banner_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ==================== TRACKING ====================


@router.post("/{banner_id}/impression", status_code=status.HTTP_204_NO_CONTENT)
async def record_impression(banner_id: int):
    banner_service.record_impression(banner_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{banner_id}/click", status_code=status.HTTP_204_NO_CONTENT)
async def record_click(banner_id: int):
    banner_service.record_click(banner_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
