"""Command-line interface for the VPN panel.

Maintenance jobs meant for cron: panel sync, subscription expiry,
scheduled backups and the daily statistics snapshot.
"""

import asyncio
from datetime import date, datetime
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from vpnpanel.access.service import access_service
from vpnpanel.auth.models import UserRole
from vpnpanel.backups.models import BackupStatus, BackupType
from vpnpanel.backups.service import backup_service
from vpnpanel.errors import ServiceError
from vpnpanel.logging_config import configure_logging, get_logger
from vpnpanel.remnawave.sync import remnawave_sync_service
from vpnpanel.statistics.service import statistics_service
from vpnpanel.storage.db import db
from vpnpanel.subscriptions.service import subscription_service

configure_logging()
logger = get_logger(__name__)

app = typer.Typer(
    name="vpnpanel",
    help="VPN panel maintenance commands",
    no_args_is_help=True,
)

console = Console()


@app.command("init-db")
def init_database() -> None:
    """Create all database tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("create-super-admin")
def create_super_admin(
    telegram_id: Annotated[str, typer.Option("--telegram-id", "-t", help="Telegram user ID")],
    username: Annotated[str | None, typer.Option("--username", "-u", help="Login name")] = None,
    password: Annotated[str | None, typer.Option("--password", "-p", help="Password for local login")] = None,
) -> None:
    """Create (or promote) the first super admin."""
    try:
        user = access_service.create_admin(
            telegram_id,
            role=UserRole.SUPER_ADMIN,
            username=username,
            password=password,
        )
    except ServiceError as e:
        console.print(f"[bold red]✗[/bold red] {e.message}")
        raise typer.Exit(1)

    console.print(f"[bold green]✓[/bold green] Super admin ready: [bold]{user.username}[/bold] (ID {user.id})")


@app.command("sync-remnawave")
def sync_remnawave() -> None:
    """Import panel users and link them to local accounts."""
    console.print("[bold blue]Syncing Remnawave users...[/bold blue]")
    try:
        report = asyncio.run(remnawave_sync_service.sync_all_users())
    except ServiceError as e:
        console.print(f"[bold red]✗[/bold red] Sync failed: {e.message}")
        raise typer.Exit(1)

    table = Table(title="Remnawave sync")
    table.add_column("Total", justify="right")
    table.add_column("Created", justify="right", style="green")
    table.add_column("Linked", justify="right", style="cyan")
    table.add_column("Skipped", justify="right")
    table.add_column("Errors", justify="right", style="red")
    table.add_row(*(str(report[key]) for key in ("total", "created", "linked", "skipped", "errors")))
    console.print(table)

    for detail in report["error_details"]:
        console.print(f"  [red]{detail.get('uuid')}[/red]: {detail.get('error')}")


@app.command("expire-subscriptions")
def expire_subscriptions() -> None:
    """Mark active subscriptions past their end date as expired."""
    count = subscription_service.expire_overdue()
    console.print(f"[bold green]✓[/bold green] Expired {count} subscription(s)")


@app.command("backup")
def create_backup() -> None:
    """Run a manual database backup now."""
    try:
        backup = backup_service.run_backup(BackupType.MANUAL)
    except ServiceError as e:
        console.print(f"[bold red]✗[/bold red] {e.message}")
        raise typer.Exit(1)

    if backup.status != BackupStatus.COMPLETED:
        console.print(f"[bold red]✗[/bold red] Backup failed: {backup.error_message}")
        raise typer.Exit(1)
    console.print(f"[bold green]✓[/bold green] {backup.filename} ({backup.size_bytes} bytes)")


@app.command("scheduled-backup")
def scheduled_backup() -> None:
    """Run the scheduled backup if it is due; intended for cron."""
    backup = backup_service.run_scheduled_backup()
    if backup is None:
        console.print("[yellow]No backup due[/yellow]")
        return
    console.print(f"Backup {backup.filename}: {backup.status.value}")
    if backup.status != BackupStatus.COMPLETED:
        raise typer.Exit(1)


@app.command("backup-list")
def list_backups(
    limit: Annotated[int, typer.Option("--limit", "-l", help="Rows to show")] = 20,
) -> None:
    """List recent backups."""
    result = backup_service.list_backups(limit=limit)
    if not result["data"]:
        console.print("[yellow]No backups found[/yellow]")
        return

    table = Table(title="Backups")
    table.add_column("ID", style="cyan")
    table.add_column("File", style="green")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Size", justify="right")
    table.add_column("Created At")
    for backup in result["data"]:
        table.add_row(
            str(backup.id),
            backup.filename,
            backup.backup_type.value,
            backup.status.value,
            str(backup.size_bytes),
            backup.created_at.strftime("%Y-%m-%d %H:%M:%S") if backup.created_at else "",
        )
    console.print(table)


@app.command("snapshot-stats")
def snapshot_stats(
    day: Annotated[str | None, typer.Option("--day", "-d", help="Day as YYYY-MM-DD (default: today)")] = None,
) -> None:
    """Store the daily statistics row for one day."""
    target: date | None = datetime.strptime(day, "%Y-%m-%d").date() if day else None
    row = statistics_service.snapshot_daily(target)
    console.print(
        f"[bold green]✓[/bold green] {row.date.isoformat()}: "
        f"{row.new_users} new users, {row.payments_count} payments, revenue {row.revenue:.2f}"
    )


if __name__ == "__main__":
    app()
