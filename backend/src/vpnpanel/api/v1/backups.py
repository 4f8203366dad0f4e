"""Backup API v1 endpoints (super admin only)."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from vpnpanel.api.v1.schemas import ORMModel, Page, to_page
from vpnpanel.auth.middleware import require_super_admin
from vpnpanel.auth.models import User
from vpnpanel.backups.models import BackupSchedule, BackupStatus, BackupType
from vpnpanel.backups.service import backup_service

router = APIRouter(prefix="/backups", tags=["backups"])


# ==================== MODELS ====================


class BackupResponse(ORMModel):
    id: int
    filename: str
    size_bytes: int
    status: BackupStatus
    backup_type: BackupType
    error_message: str | None = None
    created_by: int | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None


class BackupConfigResponse(ORMModel):
    is_enabled: bool
    schedule: BackupSchedule
    backup_time: str
    retention_count: int
    updated_at: datetime | None = None


class BackupConfigUpdate(BaseModel):
    is_enabled: bool | None = None
    schedule: str | None = None
    backup_time: str | None = Field(default=None, max_length=5)
    retention_count: int | None = None


class RestoreResponse(BaseModel):
    success: bool
    message: str


# ==================== ENDPOINTS ====================


@router.get("", response_model=Page[BackupResponse])
async def list_backups(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: BackupStatus | None = None,
    admin: User = Depends(require_super_admin),
):
    return to_page(backup_service.list_backups(page, limit, status), BackupResponse)


@router.get("/stats")
async def backup_stats(admin: User = Depends(require_super_admin)):
    return backup_service.get_stats()


@router.get("/config", response_model=BackupConfigResponse)
async def get_config(admin: User = Depends(require_super_admin)):
    return backup_service.get_config()


@router.put("/config", response_model=BackupConfigResponse)
async def update_config(body: BackupConfigUpdate, admin: User = Depends(require_super_admin)):
    return backup_service.update_config(admin_id=admin.id, **body.model_dump(exclude_unset=True))


@router.post("", response_model=BackupResponse, status_code=status.HTTP_201_CREATED)
def create_backup(admin: User = Depends(require_super_admin)):
    """Run a manual backup (blocking; runs in the threadpool)."""
    return backup_service.run_backup(BackupType.MANUAL, created_by=admin.id)


@router.get("/{backup_id}", response_model=BackupResponse)
async def get_backup(backup_id: int, admin: User = Depends(require_super_admin)):
    return backup_service.get_backup(backup_id)


@router.get("/{backup_id}/download")
async def download_backup(backup_id: int, admin: User = Depends(require_super_admin)):
    path = backup_service.get_backup_path(backup_id)
    return FileResponse(path, media_type="application/gzip", filename=path.name)


@router.post("/{backup_id}/restore", response_model=RestoreResponse)
def restore_backup(backup_id: int, admin: User = Depends(require_super_admin)):
    return backup_service.restore_backup(backup_id)


@router.delete("/{backup_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_backup(backup_id: int, admin: User = Depends(require_super_admin)):
    backup_service.delete_backup(backup_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
