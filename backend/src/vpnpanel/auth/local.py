"""Local authentication service (username/password) and JWT tokens."""

import re
import secrets
from datetime import datetime, timedelta
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from vpnpanel.auth.models import User, UserRole
from vpnpanel.errors import ConflictError
from vpnpanel.logging_config import get_logger
from vpnpanel.settings import settings
from vpnpanel.storage.db import db

logger = get_logger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# JWT settings
JWT_ALGORITHM = "HS256"


def unique_username(session: Session, base: str | None) -> str:
    """Derive a free username from a base value.

    Panel usernames and Telegram handles may clash with local accounts, so a
    numeric suffix is appended until the name is unused.
    """
    cleaned = re.sub(r"[^A-Za-z0-9_.-]", "", base or "")[:48] or f"user_{secrets.token_hex(3)}"
    candidate = cleaned
    counter = 1
    while session.query(User.id).filter(User.username == candidate).first():
        candidate = f"{cleaned}_{counter}"
        counter += 1
    return candidate


class LocalAuthService:
    """Authentication service for username/password accounts."""

    def __init__(self):
        """Initialize auth service."""
        self.logger = get_logger(__name__)

    # ==================== PASSWORD ====================

    def _truncate_password(self, password: str) -> str:
        """Truncate password to 72 bytes (bcrypt limit)."""
        return password.encode("utf-8")[:72].decode("utf-8", errors="ignore")

    def hash_password(self, password: str) -> str:
        """Hash a password."""
        return pwd_context.hash(self._truncate_password(password))

    def verify_password(self, password: str, hashed: str) -> bool:
        """Verify a password against hash."""
        return pwd_context.verify(self._truncate_password(password), hashed)

    # ==================== USER MANAGEMENT ====================

    def create_user(
        self,
        username: str,
        password: str | None = None,
        role: UserRole = UserRole.USER,
        telegram_id: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> User:
        """Create a new user.

        Args:
            username: Unique username
            password: Plain password (None for Telegram-only accounts)
            role: User role
            telegram_id: Optional Telegram ID
            first_name: Optional first name
            last_name: Optional last name

        Returns:
            Created user

        Raises:
            ConflictError: If username or Telegram ID already exists
        """
        with db.session() as session:
            if session.query(User).filter(User.username == username).first():
                raise ConflictError("Username already registered")

            if telegram_id and session.query(User).filter(User.telegram_id == telegram_id).first():
                raise ConflictError("Telegram ID already registered")

            user = User(
                username=username,
                password_hash=self.hash_password(password) if password else None,
                role=role,
                telegram_id=telegram_id,
                first_name=first_name,
                last_name=last_name,
                is_active=True,
            )
            session.add(user)
            session.commit()
            session.refresh(user)

            self.logger.info("user_created", user_id=user.id, username=username, role=role.value)
            return user

    def register(self, username: str, password: str, referral_code: str | None = None) -> User:
        """Register a client account, optionally attributed to a partner code.

        An unknown referral code is ignored so that a typo never blocks signup.
        """
        user = self.create_user(username=username, password=password)

        if referral_code:
            from vpnpanel.partners.service import partner_service
            from vpnpanel.referral.service import referral_service

            partner = partner_service.find_by_referral_code(referral_code)
            if partner:
                referral_service.create_referral(
                    referrer_id=partner.user_id,
                    referred_id=user.id,
                    referral_code=partner.referral_code,
                )
            else:
                self.logger.warning("unknown_referral_code", code=referral_code, user_id=user.id)

        return user

    def authenticate(self, username: str, password: str) -> User | None:
        """Authenticate a user.

        Args:
            username: Username
            password: Plain password

        Returns:
            User if valid, None otherwise
        """
        with db.session() as session:
            user = session.query(User).filter(
                User.username == username,
                User.is_active == True,
            ).first()

            if not user or not user.password_hash:
                return None

            if not self.verify_password(password, user.password_hash):
                return None

            user.last_login_at = datetime.utcnow()
            session.commit()

            self.logger.info("user_authenticated", user_id=user.id)
            return user

    def get_user_by_id(self, user_id: int) -> User | None:
        """Get active user by ID."""
        with db.session() as session:
            return session.query(User).filter(
                User.id == user_id,
                User.is_active == True,
            ).first()

    # ==================== JWT TOKENS ====================

    def create_access_token(
        self,
        user: User,
        expires_delta: timedelta | None = None,
    ) -> str:
        """Create JWT access token.

        Args:
            user: User account
            expires_delta: Optional expiration time

        Returns:
            JWT token string
        """
        if expires_delta is None:
            expires_delta = timedelta(hours=settings.jwt_expire_hours)

        now = datetime.utcnow()
        payload = {
            "sub": str(user.id),
            "username": user.username,
            "role": user.role.value,
            "exp": now + expires_delta,
            "iat": now,
        }

        return jwt.encode(payload, settings.jwt_secret_key, algorithm=JWT_ALGORITHM)

    def verify_token(self, token: str) -> dict[str, Any] | None:
        """Verify and decode JWT token.

        Returns:
            Token payload or None if invalid
        """
        try:
            return jwt.decode(token, settings.jwt_secret_key, algorithms=[JWT_ALGORITHM])
        except JWTError as e:
            self.logger.debug("token_verification_failed", error=str(e))
            return None

    def get_user_from_token(self, token: str) -> User | None:
        """Get user from JWT token."""
        payload = self.verify_token(token)
        if not payload:
            return None

        try:
            user_id = int(payload["sub"])
        except (KeyError, ValueError):
            return None

        return self.get_user_by_id(user_id)


auth_service = LocalAuthService()
