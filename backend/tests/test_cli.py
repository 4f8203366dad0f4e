from typer.testing import CliRunner

from vpnpanel.auth.models import UserRole
from vpnpanel.cli import app
from vpnpanel.users.service import user_service

runner = CliRunner()


def test_create_super_admin():
    result = runner.invoke(app, ["create-super-admin", "--telegram-id", "900", "--username", "owner"])

    assert result.exit_code == 0
    assert "owner" in result.stdout
    [owner] = user_service.list_users(role=UserRole.SUPER_ADMIN)["data"]
    assert owner.telegram_id == "900"

    again = runner.invoke(app, ["create-super-admin", "--telegram-id", "900"])
    assert again.exit_code == 1


def test_expire_subscriptions():
    result = runner.invoke(app, ["expire-subscriptions"])
    assert result.exit_code == 0
    assert "Expired 0" in result.stdout


def test_backup_list_empty():
    result = runner.invoke(app, ["backup-list"])
    assert result.exit_code == 0
    assert "No backups found" in result.stdout


def test_snapshot_stats():
    result = runner.invoke(app, ["snapshot-stats", "--day", "2026-02-01"])
    assert result.exit_code == 0
    assert "2026-02-01" in result.stdout


def test_sync_without_panel_fails():
    result = runner.invoke(app, ["sync-remnawave"])
    assert result.exit_code == 1
