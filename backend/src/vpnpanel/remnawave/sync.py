"""Reconcile Remnawave panel accounts with local users."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from vpnpanel.auth.local import unique_username
from vpnpanel.auth.models import User
from vpnpanel.errors import NotFoundError, ServiceError, ValidationError
from vpnpanel.logging_config import get_logger
from vpnpanel.remnawave.client import RemnawaveClient
from vpnpanel.remnawave.models import RemnawaveUserLink, SyncLog
from vpnpanel.settings import settings
from vpnpanel.storage.db import db
from vpnpanel.storage.pagination import paginate

logger = get_logger(__name__)

MAX_ERROR_DETAILS = 50


def parse_panel_datetime(value: str | None) -> datetime | None:
    """Parse panel ISO timestamps ("2025-01-01T00:00:00.000Z") to naive UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class RemnawaveSyncService:
    """Import panel users and maintain telegram-id based links."""

    def __init__(self, client: RemnawaveClient | None = None):
        self.logger = get_logger(__name__)
        self.client = client

    def _client(self) -> tuple[RemnawaveClient, bool]:
        """Return (client, owned); owned clients are closed by the caller."""
        if self.client is not None:
            return self.client, False
        if not settings.remnawave_enabled:
            raise ValidationError("Remnawave panel is not configured")
        return RemnawaveClient(), True

    # ==================== FULL SYNC ====================

    async def sync_all_users(self, started_by: int | None = None) -> dict[str, Any]:
        """Page through every panel user and link it to a local account.

        Panel users without a Telegram ID are skipped. A failure on one user
        is counted and does not stop the run.

        Returns:
            Report with total, created, linked, skipped and errors counts
        """
        report: dict[str, Any] = {
            "total": 0,
            "created": 0,
            "linked": 0,
            "skipped": 0,
            "errors": 0,
            "error_details": [],
        }
        started_at = datetime.utcnow()
        client, owned = self._client()
        self.logger.info("remnawave_sync_started", started_by=started_by)

        try:
            async for panel_user in client.iter_all_users():
                report["total"] += 1
                try:
                    outcome = self._sync_panel_user(panel_user)
                    report[outcome] += 1
                except Exception as e:
                    report["errors"] += 1
                    if len(report["error_details"]) < MAX_ERROR_DETAILS:
                        report["error_details"].append(
                            {"uuid": panel_user.get("uuid"), "error": str(e)}
                        )
                    self.logger.warning(
                        "remnawave_user_sync_failed",
                        uuid=panel_user.get("uuid"),
                        error=str(e),
                    )
        except ServiceError as e:
            self._store_log(report, "failed", started_at, started_by, error_message=e.message)
            self.logger.error("remnawave_sync_failed", error=e.message)
            raise
        finally:
            if owned:
                await client.close()

        self._store_log(report, "completed", started_at, started_by)
        self.logger.info(
            "remnawave_sync_completed",
            **{k: v for k, v in report.items() if k != "error_details"},
        )
        return report

    def _sync_panel_user(self, panel_user: dict) -> str:
        uuid = panel_user.get("uuid")
        telegram_id = panel_user.get("telegramId")
        if not uuid or not telegram_id:
            return "skipped"
        telegram_id = str(telegram_id)

        with db.session() as session:
            user = session.query(User).filter(User.telegram_id == telegram_id).first()
            if not user:
                user = User(
                    username=unique_username(session, panel_user.get("username")),
                    telegram_id=telegram_id,
                )
                session.add(user)
                session.flush()
                self.logger.info("user_imported_from_remnawave", user_id=user.id, telegram_id=telegram_id)

            link = (
                session.query(RemnawaveUserLink)
                .filter(RemnawaveUserLink.remnawave_uuid == uuid)
                .first()
            )
            if link:
                outcome = "linked"
                self._assign_link(session, link, user.id)
                link.telegram_id = telegram_id
            else:
                outcome = "created"
                link = RemnawaveUserLink(
                    user_id=user.id,
                    telegram_id=telegram_id,
                    remnawave_uuid=uuid,
                    is_primary=not self._has_primary(session, user.id),
                )
                session.add(link)

            self._apply_panel_state(link, panel_user)
            return outcome

    def _has_primary(self, session: Session, user_id: int) -> bool:
        return session.query(RemnawaveUserLink.id).filter(
            RemnawaveUserLink.user_id == user_id,
            RemnawaveUserLink.is_primary == True,
        ).first() is not None

    def _promote_successor(self, session: Session, user_id: int) -> None:
        """Make the user's oldest link primary."""
        successor = (
            session.query(RemnawaveUserLink)
            .filter(RemnawaveUserLink.user_id == user_id)
            .order_by(RemnawaveUserLink.id.asc())
            .first()
        )
        if successor:
            successor.is_primary = True

    def _assign_link(self, session: Session, link: RemnawaveUserLink, user_id: int) -> None:
        """Move a link to another user keeping exactly one primary link each."""
        previous_user_id = link.user_id
        if previous_user_id == user_id:
            return

        was_primary = link.is_primary
        link.is_primary = not self._has_primary(session, user_id)
        link.user_id = user_id
        session.flush()

        if was_primary:
            self._promote_successor(session, previous_user_id)
        self.logger.info(
            "remnawave_link_reassigned",
            link_id=link.id,
            from_user_id=previous_user_id,
            to_user_id=user_id,
        )

    def _apply_panel_state(self, link: RemnawaveUserLink, panel_user: dict) -> None:
        link.remnawave_username = panel_user.get("username") or link.remnawave_username
        link.panel_status = panel_user.get("status")
        link.expire_at = parse_panel_datetime(panel_user.get("expireAt"))
        link.subscription_url = panel_user.get("subscriptionUrl") or link.subscription_url
        link.last_synced_at = datetime.utcnow()

    def _store_log(
        self,
        report: dict[str, Any],
        status: str,
        started_at: datetime,
        started_by: int | None,
        error_message: str | None = None,
    ) -> None:
        with db.session() as session:
            session.add(SyncLog(
                status=status,
                total=report["total"],
                created=report["created"],
                linked=report["linked"],
                skipped=report["skipped"],
                errors=report["errors"],
                error_details=report["error_details"],
                error_message=error_message,
                started_by=started_by,
                started_at=started_at,
                finished_at=datetime.utcnow(),
            ))

    # ==================== LOOKUP / LINKING ====================

    async def get_users_by_telegram_id(self, telegram_id: str) -> list[dict[str, Any]]:
        """Panel accounts of a Telegram user, annotated with local link info."""
        client, owned = self._client()
        try:
            panel_users = await client.get_users_by_telegram_id(str(telegram_id))
        finally:
            if owned:
                await client.close()

        uuids = [u.get("uuid") for u in panel_users if u.get("uuid")]
        with db.session() as session:
            links = {
                link.remnawave_uuid: link
                for link in session.query(RemnawaveUserLink)
                .filter(RemnawaveUserLink.remnawave_uuid.in_(uuids))
                .all()
            } if uuids else {}

        result = []
        for panel_user in panel_users:
            link = links.get(panel_user.get("uuid"))
            result.append({
                "uuid": panel_user.get("uuid"),
                "username": panel_user.get("username"),
                "status": panel_user.get("status"),
                "expire_at": panel_user.get("expireAt"),
                "subscription_url": panel_user.get("subscriptionUrl"),
                "is_linked": link is not None,
                "link_id": link.id if link else None,
                "user_id": link.user_id if link else None,
                "is_primary": bool(link and link.is_primary),
            })
        return result

    async def link_telegram_to_remnawave(
        self,
        remnawave_uuid: str,
        telegram_id: str,
        user_id: int | None = None,
    ) -> RemnawaveUserLink:
        """Attach a panel account to a local user.

        The local user is given explicitly or resolved (and created if
        missing) by Telegram ID.

        Raises:
            NotFoundError: If the panel account or the given user is missing
        """
        telegram_id = str(telegram_id)
        client, owned = self._client()
        try:
            panel_user = await client.get_user_by_uuid(remnawave_uuid)
        finally:
            if owned:
                await client.close()
        if not panel_user:
            raise NotFoundError("Remnawave user", remnawave_uuid)

        with db.session() as session:
            if user_id is not None:
                user = session.get(User, user_id)
                if not user:
                    raise NotFoundError("User", user_id)
            else:
                user = session.query(User).filter(User.telegram_id == telegram_id).first()
                if not user:
                    user = User(
                        username=unique_username(session, panel_user.get("username")),
                        telegram_id=telegram_id,
                    )
                    session.add(user)
                    session.flush()

            link = (
                session.query(RemnawaveUserLink)
                .filter(RemnawaveUserLink.remnawave_uuid == remnawave_uuid)
                .first()
            )
            if link is None:
                link = RemnawaveUserLink(
                    user_id=user.id,
                    remnawave_uuid=remnawave_uuid,
                    is_primary=not self._has_primary(session, user.id),
                )
                session.add(link)
            else:
                self._assign_link(session, link, user.id)

            link.telegram_id = telegram_id
            self._apply_panel_state(link, panel_user)
            session.commit()
            session.refresh(link)

            self.logger.info(
                "remnawave_account_linked",
                user_id=user.id,
                uuid=remnawave_uuid,
                telegram_id=telegram_id,
            )
            return link

    def list_links(self, page: int = 1, limit: int = 20, user_id: int | None = None) -> dict[str, Any]:
        with db.session() as session:
            query = session.query(RemnawaveUserLink)
            if user_id is not None:
                query = query.filter(RemnawaveUserLink.user_id == user_id)
            query = query.order_by(RemnawaveUserLink.created_at.desc(), RemnawaveUserLink.id.desc())
            return paginate(query, page, limit)

    def get_user_links(self, user_id: int) -> list[RemnawaveUserLink]:
        with db.session() as session:
            return (
                session.query(RemnawaveUserLink)
                .filter(RemnawaveUserLink.user_id == user_id)
                .order_by(RemnawaveUserLink.is_primary.desc(), RemnawaveUserLink.id.asc())
                .all()
            )

    def set_primary_link(self, user_id: int, link_id: int) -> RemnawaveUserLink:
        """Make one of the user's links primary and clear the others.

        Raises:
            ValidationError: If the link belongs to another user
        """
        with db.session() as session:
            link = session.get(RemnawaveUserLink, link_id)
            if not link:
                raise NotFoundError("Link", link_id)
            if link.user_id != user_id:
                raise ValidationError("Link does not belong to this user")

            session.query(RemnawaveUserLink).filter(
                RemnawaveUserLink.user_id == user_id,
                RemnawaveUserLink.id != link_id,
            ).update({RemnawaveUserLink.is_primary: False}, synchronize_session=False)
            link.is_primary = True
            session.commit()
            session.refresh(link)

            self.logger.info("remnawave_primary_link_set", user_id=user_id, link_id=link_id)
            return link

    def delete_link(self, link_id: int) -> None:
        """Remove a link; the user's oldest remaining link becomes primary."""
        with db.session() as session:
            link = session.get(RemnawaveUserLink, link_id)
            if not link:
                raise NotFoundError("Link", link_id)

            user_id, was_primary = link.user_id, link.is_primary
            session.delete(link)
            session.flush()

            if was_primary:
                self._promote_successor(session, user_id)

            self.logger.info("remnawave_link_deleted", link_id=link_id, user_id=user_id)

    # ==================== STATUS ====================

    def get_last_sync(self) -> SyncLog | None:
        with db.session() as session:
            return session.query(SyncLog).order_by(SyncLog.started_at.desc(), SyncLog.id.desc()).first()

    def get_sync_logs(self, limit: int = 20) -> list[SyncLog]:
        with db.session() as session:
            return (
                session.query(SyncLog)
                .order_by(SyncLog.started_at.desc(), SyncLog.id.desc())
                .limit(limit)
                .all()
            )

    async def get_sync_status(self) -> dict[str, Any]:
        """Connection state of the panel plus the last sync report."""
        configured = self.client is not None or settings.remnawave_enabled
        connection = {"success": False, "message": "Remnawave panel is not configured"}
        if configured:
            client, owned = self._client()
            try:
                connection = await client.test_connection()
            finally:
                if owned:
                    await client.close()

        with db.session() as session:
            links_total = session.query(RemnawaveUserLink).count()

        last = self.get_last_sync()
        return {
            "configured": configured,
            "connection": connection,
            "links_total": links_total,
            "last_sync": {
                "status": last.status,
                "total": last.total,
                "created": last.created,
                "linked": last.linked,
                "skipped": last.skipped,
                "errors": last.errors,
                "started_at": last.started_at,
                "finished_at": last.finished_at,
            } if last else None,
        }


remnawave_sync_service = RemnawaveSyncService()
