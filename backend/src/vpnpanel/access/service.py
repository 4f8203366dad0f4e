"""Administrator management (super admin only)."""

from typing import Any

from sqlalchemy.orm import Session

from vpnpanel.auth.local import auth_service, unique_username
from vpnpanel.auth.models import ADMIN_ROLES, User, UserRole
from vpnpanel.errors import ConflictError, NotFoundError, ValidationError
from vpnpanel.logging_config import get_logger
from vpnpanel.storage.db import db
from vpnpanel.storage.pagination import paginate
from vpnpanel.users.service import search_filter

logger = get_logger(__name__)


class AccessService:
    """Grant, change and revoke admin roles.

    There is always at least one active super admin: demoting, deactivating
    or revoking the last one is refused.
    """

    def __init__(self):
        self.logger = get_logger(__name__)

    def _check_role(self, role: UserRole) -> None:
        if role not in ADMIN_ROLES:
            raise ValidationError("Role must be admin or super_admin")

    def _guard_last_super_admin(self, session: Session, user: User) -> None:
        if user.role != UserRole.SUPER_ADMIN or not user.is_active:
            return
        others = (
            session.query(User.id)
            .filter(
                User.role == UserRole.SUPER_ADMIN,
                User.is_active == True,
                User.id != user.id,
            )
            .first()
        )
        if not others:
            raise ConflictError("Cannot remove the last active super admin")

    def list_admins(
        self,
        page: int = 1,
        limit: int = 20,
        role: UserRole | None = None,
        is_active: bool | None = None,
        search: str | None = None,
    ) -> dict[str, Any]:
        with db.session() as session:
            query = session.query(User).filter(User.role.in_(ADMIN_ROLES))
            if role is not None:
                query = query.filter(User.role == role)
            if is_active is not None:
                query = query.filter(User.is_active == is_active)
            if search:
                query = search_filter(query, search)
            query = query.order_by(User.created_at.desc(), User.id.desc())
            return paginate(query, page, limit)

    def create_admin(
        self,
        telegram_id: str,
        role: UserRole = UserRole.ADMIN,
        username: str | None = None,
        password: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        created_by: int | None = None,
    ) -> User:
        """Promote the user with this Telegram ID, creating it when missing.

        Raises:
            ConflictError: If the Telegram ID already belongs to an admin
        """
        self._check_role(role)
        telegram_id = str(telegram_id)

        with db.session() as session:
            user = session.query(User).filter(User.telegram_id == telegram_id).first()
            if user:
                if user.role in ADMIN_ROLES:
                    raise ConflictError("User is already an administrator")
                user.role = role
                user.is_active = True
                if password:
                    user.password_hash = auth_service.hash_password(password)
                session.commit()
                session.refresh(user)

                self.logger.info("admin_promoted", user_id=user.id, role=role.value, by=created_by)
                return user

            username = username or unique_username(session, f"admin_{telegram_id}")

        user = auth_service.create_user(
            username=username,
            password=password,
            role=role,
            telegram_id=telegram_id,
            first_name=first_name,
            last_name=last_name,
        )
        self.logger.info("admin_created", user_id=user.id, role=role.value, by=created_by)
        return user

    def update_admin(
        self,
        user_id: int,
        role: UserRole | None = None,
        is_active: bool | None = None,
        actor_id: int | None = None,
    ) -> User:
        if role is not None:
            self._check_role(role)

        with db.session() as session:
            user = session.get(User, user_id)
            if not user or user.role not in ADMIN_ROLES:
                raise NotFoundError("Admin", user_id)

            demoting = role is not None and role != UserRole.SUPER_ADMIN
            deactivating = is_active is False
            if demoting or deactivating:
                self._guard_last_super_admin(session, user)

            if role is not None:
                user.role = role
            if is_active is not None:
                user.is_active = is_active
            session.commit()
            session.refresh(user)

            self.logger.info(
                "admin_updated",
                user_id=user_id,
                role=user.role.value,
                is_active=user.is_active,
                by=actor_id,
            )
            return user

    def deactivate_admin(self, user_id: int, actor_id: int | None = None) -> User:
        return self.update_admin(user_id, is_active=False, actor_id=actor_id)

    def revoke_admin(self, user_id: int, actor_id: int | None = None) -> User:
        """Turn an admin back into a regular user."""
        with db.session() as session:
            user = session.get(User, user_id)
            if not user or user.role not in ADMIN_ROLES:
                raise NotFoundError("Admin", user_id)
            self._guard_last_super_admin(session, user)

            user.role = UserRole.USER
            session.commit()
            session.refresh(user)

            self.logger.info("admin_revoked", user_id=user_id, by=actor_id)
            return user


access_service = AccessService()
