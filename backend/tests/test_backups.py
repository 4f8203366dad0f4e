import gzip
import io
import subprocess
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from vpnpanel.backups.models import Backup, BackupSchedule, BackupStatus, BackupType
from vpnpanel.backups.service import BackupService, libpq_url
from vpnpanel.errors import ConflictError, ExternalServiceError, ValidationError
from vpnpanel.storage.db import db

DUMP = b"-- PostgreSQL database dump\nSELECT 1;\n"


class StdinCapture(io.BytesIO):
    """Pipe end that keeps what was written after it is closed."""

    data = b""

    def close(self):
        if not self.closed:
            self.data = self.getvalue()
        super().close()


class FakeProcess:
    """subprocess.Popen stand-in for pg_dump and psql."""

    def __init__(self, args, returncode, stderr, kwargs):
        self.args = args
        self.kwargs = kwargs
        self.returncode = returncode
        self.stdout = io.BytesIO(DUMP if returncode == 0 else b"") if kwargs.get("stdout") == subprocess.PIPE else None
        self.stdin = StdinCapture() if kwargs.get("stdin") == subprocess.PIPE else None
        kwargs["stderr"].write(stderr)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def wait(self, timeout=None):
        return self.returncode

    def kill(self):
        pass


@pytest.fixture
def service(tmp_path):
    return BackupService(backup_dir=str(tmp_path))


@pytest.fixture
def pg():
    """Patch Popen; set returncode/stderr on the yielded state to make commands fail."""
    state = SimpleNamespace(returncode=0, stderr=b"", calls=[])

    def popen(args, **kwargs):
        process = FakeProcess(args, state.returncode, state.stderr, kwargs)
        state.calls.append(process)
        return process

    with patch("vpnpanel.backups.service.subprocess.Popen", side_effect=popen):
        yield state


def test_libpq_url_drops_driver():
    assert libpq_url("postgresql+psycopg2://u:p@db:5432/vpn") == "postgresql://u:p@db:5432/vpn"


# ==================== BACKUP ====================


def test_run_backup_writes_gzip_archive(service, pg, tmp_path):
    backup = service.run_backup(created_by=None)

    assert backup.status == BackupStatus.COMPLETED
    assert backup.completed_at is not None
    path = tmp_path / backup.filename
    assert backup.size_bytes == path.stat().st_size
    with gzip.open(path, "rb") as archive:
        assert archive.read() == DUMP

    dump = pg.calls[0]
    assert "--no-owner" in dump.args
    assert dump.kwargs["stdout"] == subprocess.PIPE


def test_failed_dump_is_recorded(service, pg, tmp_path):
    pg.returncode, pg.stderr = 1, b"connection refused"
    backup = service.run_backup()

    assert backup.status == BackupStatus.FAILED
    assert backup.error_message == "pg_dump failed: connection refused"
    assert not (tmp_path / backup.filename).exists()
    with pytest.raises(ValidationError):
        service.get_backup_path(backup.id)


def test_dump_timeout_kills_process(service, pg):
    with patch.object(FakeProcess, "wait", side_effect=subprocess.TimeoutExpired("pg_dump", 300)), \
            patch.object(FakeProcess, "kill") as kill:
        backup = service.run_backup()

    assert backup.status == BackupStatus.FAILED
    assert "timed out" in backup.error_message
    kill.assert_called_once()


def test_only_one_backup_in_progress(service):
    backup = service.create_backup()
    with pytest.raises(ConflictError):
        service.create_backup()

    with db.session() as session:
        session.get(Backup, backup.id).status = BackupStatus.IN_PROGRESS

    with pytest.raises(ConflictError):
        service.create_backup()
    with pytest.raises(ConflictError):
        service.delete_backup(backup.id)


def test_execute_requires_pending(service, pg):
    backup = service.run_backup()
    with pytest.raises(ValidationError):
        service.execute_backup(backup.id)


def test_retention_prunes_oldest(service, pg, tmp_path):
    service.update_config(retention_count=2)
    backups = [service.run_backup() for _ in range(3)]

    remaining = [b.id for b in service.list_backups()["data"]]
    assert remaining == [backups[2].id, backups[1].id]
    assert not (tmp_path / backups[0].filename).exists()


def test_delete_removes_file(service, pg, tmp_path):
    backup = service.run_backup()
    service.delete_backup(backup.id)

    assert not (tmp_path / backup.filename).exists()
    assert service.list_backups()["total"] == 0


def test_stats(service, pg):
    backup = service.run_backup()
    stats = service.get_stats()

    assert (stats["total"], stats["completed"], stats["failed"]) == (1, 1, 0)
    assert stats["total_size_bytes"] == backup.size_bytes
    assert stats["last_backup_at"] == backup.completed_at


# ==================== RESTORE ====================


def test_restore_streams_archive_to_psql(service, pg):
    backup = service.run_backup()

    result = service.restore_backup(backup.id)

    assert result["success"] is True
    restore = pg.calls[-1]
    assert "ON_ERROR_STOP=1" in restore.args
    assert restore.stdin.data == DUMP


def test_restore_failure_raises(service, pg):
    backup = service.run_backup()
    pg.returncode, pg.stderr = 3, b"syntax error"

    with pytest.raises(ExternalServiceError, match="syntax error"):
        service.restore_backup(backup.id)


def test_restore_timeout_raises(service, pg):
    backup = service.run_backup()

    with patch.object(FakeProcess, "wait", side_effect=subprocess.TimeoutExpired("psql", 600)):
        with pytest.raises(ExternalServiceError, match="timed out"):
            service.restore_backup(backup.id)


# ==================== CONFIG & SCHEDULE ====================


def test_config_defaults_and_validation(service):
    config = service.get_config()
    assert (config.is_enabled, config.schedule, config.backup_time, config.retention_count) == (
        False, BackupSchedule.DAILY, "02:00", 7,
    )

    with pytest.raises(ValidationError):
        service.update_config(backup_time="25:00")
    with pytest.raises(ValidationError):
        service.update_config(retention_count=0)
    with pytest.raises(ValidationError):
        service.update_config(schedule="hourly")

    updated = service.update_config(schedule="weekly", retention_count=30)
    assert updated.schedule == BackupSchedule.WEEKLY
    assert updated.retention_count == 30


def test_scheduled_backup_runs_once_per_period(service, pg):
    now = datetime.utcnow()
    assert service.run_scheduled_backup(now) is None

    service.update_config(is_enabled=True, backup_time="00:00")
    backup = service.run_scheduled_backup(now)
    assert backup.backup_type == BackupType.SCHEDULED
    assert backup.status == BackupStatus.COMPLETED

    assert service.run_scheduled_backup(now) is None


def test_scheduled_backup_waits_for_backup_time(service, pg):
    service.update_config(is_enabled=True, backup_time="23:59")
    assert service.run_scheduled_backup(datetime(2026, 3, 1, 10, 0)) is None
    assert pg.calls == []


# ==================== API ====================


def test_backup_endpoints_require_super_admin(client, auth_headers, admin):
    assert client.get("/api/v1/backups", headers=auth_headers(admin)).status_code == 403


def test_backup_endpoints(client, auth_headers, super_admin, pg):
    headers = auth_headers(super_admin)

    created = client.post("/api/v1/backups", headers=headers)
    assert created.status_code == 201
    assert created.json()["status"] == "completed"
    backup_id = created.json()["id"]

    download = client.get(f"/api/v1/backups/{backup_id}/download", headers=headers)
    assert download.status_code == 200
    assert gzip.decompress(download.content) == DUMP

    config = client.put("/api/v1/backups/config", json={"backup_time": "7am"}, headers=headers)
    assert config.status_code == 400

    restored = client.post(f"/api/v1/backups/{backup_id}/restore", headers=headers)
    assert restored.json()["success"] is True

    assert client.delete(f"/api/v1/backups/{backup_id}", headers=headers).status_code == 204
    assert client.get(f"/api/v1/backups/{backup_id}", headers=headers).status_code == 404
