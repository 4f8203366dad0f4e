"""PostgreSQL backups with pg_dump/psql, gzip archives and retention."""

import gzip
import re
import shutil
import subprocess
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from sqlalchemy import func
from sqlalchemy.engine import make_url

from vpnpanel.backups.models import Backup, BackupConfig, BackupSchedule, BackupStatus, BackupType
from vpnpanel.errors import ConflictError, ExternalServiceError, NotFoundError, ValidationError
from vpnpanel.logging_config import get_logger
from vpnpanel.settings import settings
from vpnpanel.storage.db import db
from vpnpanel.storage.pagination import paginate

logger = get_logger(__name__)

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def libpq_url(database_url: str) -> str:
    """Strip the SQLAlchemy driver suffix so pg_dump/psql accept the URL."""
    url = make_url(database_url)
    return url.set(drivername=url.get_backend_name()).render_as_string(hide_password=False)


def _wait(process: subprocess.Popen, timeout: int) -> int:
    try:
        return process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        process.kill()
        raise


def _read_errors(errors) -> str:
    errors.seek(0)
    return errors.read().decode(errors="replace").strip()[:500]


class BackupService:
    """Create, restore and prune database backups."""

    def __init__(self, backup_dir: str | None = None):
        self.logger = get_logger(__name__)
        self.backup_dir = Path(backup_dir or settings.backup_dir)

    def _path(self, backup: Backup) -> Path:
        return self.backup_dir / backup.filename

    # ==================== CONFIG ====================

    def _get_or_create_config(self, session) -> BackupConfig:
        config = session.query(BackupConfig).order_by(BackupConfig.id.asc()).first()
        if config is None:
            config = BackupConfig()
            session.add(config)
            session.flush()
        return config

    def get_config(self) -> BackupConfig:
        with db.session() as session:
            config = self._get_or_create_config(session)
            session.commit()
            session.refresh(config)
            return config

    def update_config(self, admin_id: int | None = None, **data: Any) -> BackupConfig:
        """Update scheduled backup settings.

        Raises:
            ValidationError: On a malformed time, retention outside 1..100 or unknown schedule
        """
        if data.get("backup_time") is not None and not _TIME_RE.match(data["backup_time"]):
            raise ValidationError("backup_time must be in HH:MM format")
        if data.get("retention_count") is not None and not 1 <= data["retention_count"] <= 100:
            raise ValidationError("retention_count must be between 1 and 100")
        if data.get("schedule") is not None:
            try:
                data["schedule"] = BackupSchedule(data["schedule"])
            except ValueError:
                raise ValidationError("schedule must be 'daily' or 'weekly'")

        with db.session() as session:
            config = self._get_or_create_config(session)
            for field in ("is_enabled", "schedule", "backup_time", "retention_count"):
                if data.get(field) is not None:
                    setattr(config, field, data[field])
            config.updated_by = admin_id
            session.commit()
            session.refresh(config)

            self.logger.info("backup_config_updated", admin_id=admin_id)
            return config

    # ==================== QUERIES ====================

    def list_backups(self, page: int = 1, limit: int = 20, status: BackupStatus | None = None) -> dict[str, Any]:
        with db.session() as session:
            query = session.query(Backup)
            if status is not None:
                query = query.filter(Backup.status == status)
            query = query.order_by(Backup.created_at.desc(), Backup.id.desc())
            return paginate(query, page, limit)

    def get_backup(self, backup_id: int) -> Backup:
        with db.session() as session:
            backup = session.get(Backup, backup_id)
            if not backup:
                raise NotFoundError("Backup", backup_id)
            return backup

    def get_backup_path(self, backup_id: int) -> Path:
        """Path of a completed backup archive that exists on disk."""
        backup = self.get_backup(backup_id)
        path = self._path(backup)
        if backup.status != BackupStatus.COMPLETED or not path.exists():
            raise ValidationError("Backup file is not available")
        return path

    def get_stats(self) -> dict[str, Any]:
        with db.session() as session:
            by_status = dict(
                session.query(Backup.status, func.count(Backup.id)).group_by(Backup.status).all()
            )
            total_size = (
                session.query(func.coalesce(func.sum(Backup.size_bytes), 0))
                .filter(Backup.status == BackupStatus.COMPLETED)
                .scalar()
            )
            last = (
                session.query(Backup)
                .filter(Backup.status == BackupStatus.COMPLETED)
                .order_by(Backup.completed_at.desc())
                .first()
            )

        return {
            "total": sum(by_status.values()),
            "completed": by_status.get(BackupStatus.COMPLETED, 0),
            "failed": by_status.get(BackupStatus.FAILED, 0),
            "in_progress": by_status.get(BackupStatus.IN_PROGRESS, 0),
            "total_size_bytes": int(total_size),
            "last_backup_at": last.completed_at if last else None,
        }

    # ==================== BACKUP ====================

    def create_backup(self, backup_type: BackupType = BackupType.MANUAL, created_by: int | None = None) -> Backup:
        """Register a pending backup.

        Raises:
            ConflictError: If another backup is pending or in progress
        """
        with db.session() as session:
            running = (
                session.query(Backup.id)
                .filter(Backup.status.in_((BackupStatus.PENDING, BackupStatus.IN_PROGRESS)))
                .first()
            )
            if running:
                raise ConflictError("Another backup is already in progress")

            backup = Backup(
                filename=f"backup_{datetime.utcnow():%Y%m%d_%H%M%S_%f}.sql.gz",
                status=BackupStatus.PENDING,
                backup_type=backup_type,
                created_by=created_by,
            )
            session.add(backup)
            session.commit()
            session.refresh(backup)

            self.logger.info("backup_created", backup_id=backup.id, type=backup_type.value)
            return backup

    def _set_status(self, backup_id: int, **values: Any) -> Backup:
        with db.session() as session:
            backup = session.get(Backup, backup_id)
            for field, value in values.items():
                setattr(backup, field, value)
            session.commit()
            session.refresh(backup)
            return backup

    def execute_backup(self, backup_id: int) -> Backup:
        """Stream pg_dump output into the backup's gzip archive.

        Failures are recorded on the backup row rather than raised.
        """
        backup = self.get_backup(backup_id)
        if backup.status != BackupStatus.PENDING:
            raise ValidationError(f"Cannot execute backup in status '{backup.status.value}'")

        backup = self._set_status(backup_id, status=BackupStatus.IN_PROGRESS)
        path = self._path(backup)
        self.logger.info("backup_started", backup_id=backup_id, path=str(path))

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.TemporaryFile() as errors:
                with subprocess.Popen(
                    [
                        settings.pg_dump_path,
                        "--no-owner",
                        "--no-privileges",
                        "--clean",
                        "--if-exists",
                        "--dbname",
                        libpq_url(settings.database_url),
                    ],
                    stdout=subprocess.PIPE,
                    stderr=errors,
                ) as process:
                    with gzip.open(path, "wb") as archive:
                        shutil.copyfileobj(process.stdout, archive)
                    returncode = _wait(process, settings.backup_timeout_seconds)
                if returncode != 0:
                    raise ExternalServiceError(f"pg_dump failed: {_read_errors(errors)}")
        except (ExternalServiceError, OSError, subprocess.TimeoutExpired) as e:
            message = e.message if isinstance(e, ExternalServiceError) else str(e)
            path.unlink(missing_ok=True)
            self.logger.error("backup_failed", backup_id=backup_id, error=message)
            return self._set_status(
                backup_id,
                status=BackupStatus.FAILED,
                error_message=message,
                completed_at=datetime.utcnow(),
            )

        backup = self._set_status(
            backup_id,
            status=BackupStatus.COMPLETED,
            size_bytes=path.stat().st_size,
            completed_at=datetime.utcnow(),
        )
        self.logger.info("backup_completed", backup_id=backup_id, size_bytes=backup.size_bytes)

        self.cleanup_old_backups()
        return backup

    def run_backup(self, backup_type: BackupType = BackupType.MANUAL, created_by: int | None = None) -> Backup:
        backup = self.create_backup(backup_type=backup_type, created_by=created_by)
        return self.execute_backup(backup.id)

    def cleanup_old_backups(self, retention: int | None = None) -> int:
        """Delete completed backups beyond the newest `retention` ones.

        Returns:
            Number of deleted backups
        """
        if retention is None:
            retention = self.get_config().retention_count

        with db.session() as session:
            stale = (
                session.query(Backup)
                .filter(Backup.status == BackupStatus.COMPLETED)
                .order_by(Backup.created_at.desc(), Backup.id.desc())
                .offset(retention)
                .all()
            )
            for backup in stale:
                self._path(backup).unlink(missing_ok=True)
                session.delete(backup)

        if stale:
            self.logger.info("old_backups_removed", count=len(stale), retention=retention)
        return len(stale)

    def delete_backup(self, backup_id: int) -> None:
        with db.session() as session:
            backup = session.get(Backup, backup_id)
            if not backup:
                raise NotFoundError("Backup", backup_id)
            if backup.status == BackupStatus.IN_PROGRESS:
                raise ConflictError("Cannot delete a backup in progress")

            self._path(backup).unlink(missing_ok=True)
            session.delete(backup)
            self.logger.info("backup_deleted", backup_id=backup_id)

    # ==================== RESTORE ====================

    def restore_backup(self, backup_id: int) -> dict[str, Any]:
        """Stream a completed backup into psql.

        Raises:
            ValidationError: If the backup is not completed or its file is missing
            ExternalServiceError: If psql fails
        """
        path = self.get_backup_path(backup_id)
        self.logger.warning("backup_restore_started", backup_id=backup_id)

        with tempfile.TemporaryFile() as errors:
            try:
                with gzip.open(path, "rb") as archive, subprocess.Popen(
                    [
                        settings.psql_path,
                        "--quiet",
                        "--single-transaction",
                        "-v",
                        "ON_ERROR_STOP=1",
                        "--dbname",
                        libpq_url(settings.database_url),
                    ],
                    stdin=subprocess.PIPE,
                    stdout=subprocess.DEVNULL,
                    stderr=errors,
                ) as process:
                    try:
                        shutil.copyfileobj(archive, process.stdin)
                        process.stdin.close()
                    except BrokenPipeError:
                        # psql stopped reading; its exit status and stderr report why
                        pass
                    returncode = _wait(process, settings.restore_timeout_seconds)
            except subprocess.TimeoutExpired:
                self.logger.error("backup_restore_timeout", backup_id=backup_id)
                raise ExternalServiceError("Restore timed out")

            if returncode != 0:
                error = _read_errors(errors)
                self.logger.error("backup_restore_failed", backup_id=backup_id, error=error)
                raise ExternalServiceError(f"psql failed: {error}")

        self.logger.warning("backup_restored", backup_id=backup_id)
        return {"success": True, "message": f"Restored backup {path.name}"}

    # ==================== SCHEDULE ====================

    def run_scheduled_backup(self, now: datetime | None = None) -> Backup | None:
        """Run the scheduled backup if it is due.

        Due means: scheduling is enabled, today's backup time has passed and
        no scheduled backup exists yet for the current day (daily) or since
        the previous weekly slot (weekly).

        Returns:
            The executed backup, or None when nothing was due
        """
        now = now or datetime.utcnow()
        config = self.get_config()
        if not config.is_enabled:
            return None

        hour, minute = (int(part) for part in config.backup_time.split(":"))
        due_at = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if now < due_at:
            return None

        if config.schedule == BackupSchedule.WEEKLY:
            period_start = due_at - timedelta(days=6)
        else:
            period_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

        with db.session() as session:
            already = (
                session.query(Backup.id)
                .filter(
                    Backup.backup_type == BackupType.SCHEDULED,
                    Backup.status != BackupStatus.FAILED,
                    Backup.created_at >= period_start,
                )
                .first()
            )
        if already:
            return None

        self.logger.info("scheduled_backup_due", schedule=config.schedule.value)
        return self.run_backup(backup_type=BackupType.SCHEDULED)


backup_service = BackupService()
