"""Telegram WebApp initData verification."""

import hashlib
import hmac
import json
import time
from datetime import datetime
from urllib.parse import parse_qsl

from vpnpanel.auth.local import unique_username
from vpnpanel.auth.models import User
from vpnpanel.errors import PermissionDeniedError, ValidationError
from vpnpanel.logging_config import get_logger
from vpnpanel.settings import settings
from vpnpanel.storage.db import db

logger = get_logger(__name__)


class InvalidTelegramDataError(ValidationError):
    """initData is missing, forged, stale or malformed."""


def build_data_check_string(fields: dict[str, str]) -> str:
    """Sorted key=value lines of every field except hash."""
    return "\n".join(f"{key}={value}" for key, value in sorted(fields.items()) if key != "hash")


def sign_init_data(fields: dict[str, str], bot_token: str) -> str:
    """Compute the hex signature Telegram puts in the hash field."""
    secret = hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()
    return hmac.new(secret, build_data_check_string(fields).encode(), hashlib.sha256).hexdigest()


def parse_init_data(
    init_data: str,
    bot_token: str | None = None,
    max_age: int | None = None,
    now: float | None = None,
) -> dict:
    """Validate initData and return the embedded Telegram user.

    Args:
        init_data: Raw query string from Telegram.WebApp.initData
        bot_token: Bot token (defaults to settings)
        max_age: Max age of auth_date in seconds (defaults to settings)
        now: Current UNIX time, for tests

    Returns:
        Telegram user dict (id, first_name, ...)

    Raises:
        InvalidTelegramDataError: If validation fails
    """
    bot_token = bot_token or settings.telegram_bot_token
    if not bot_token:
        raise InvalidTelegramDataError("Telegram authentication is not configured")
    if not init_data:
        raise InvalidTelegramDataError("initData is required")

    fields = dict(parse_qsl(init_data, keep_blank_values=True))
    received_hash = fields.get("hash")
    if not received_hash:
        raise InvalidTelegramDataError("initData has no hash")

    if not hmac.compare_digest(sign_init_data(fields, bot_token), received_hash):
        logger.warning("telegram_signature_invalid")
        raise InvalidTelegramDataError("Invalid Telegram signature")

    max_age = settings.telegram_auth_max_age if max_age is None else max_age
    try:
        auth_date = int(fields.get("auth_date", "0"))
    except ValueError:
        raise InvalidTelegramDataError("Invalid auth_date")
    current = time.time() if now is None else now
    if max_age and current - auth_date > max_age:
        raise InvalidTelegramDataError("initData has expired")

    try:
        user = json.loads(fields.get("user", ""))
    except json.JSONDecodeError:
        raise InvalidTelegramDataError("Failed to parse user data")

    if not isinstance(user, dict) or "id" not in user or "first_name" not in user:
        raise InvalidTelegramDataError("Invalid user data: missing id or first_name")

    return user


def login_with_telegram(init_data: str) -> User:
    """Validate initData and upsert the matching local user."""
    tg_user = parse_init_data(init_data)
    telegram_id = str(tg_user["id"])

    with db.session() as session:
        user = session.query(User).filter(User.telegram_id == telegram_id).first()

        if user is None:
            user = User(
                username=unique_username(session, tg_user.get("username") or f"tg{telegram_id}"),
                telegram_id=telegram_id,
                is_active=True,
            )
            session.add(user)
            logger.info("telegram_user_created", telegram_id=telegram_id)

        if not user.is_active:
            raise PermissionDeniedError("User is blocked")

        user.first_name = tg_user.get("first_name")
        user.last_name = tg_user.get("last_name")
        user.photo_url = tg_user.get("photo_url")
        if tg_user.get("language_code"):
            user.language = tg_user["language_code"][:5]
        user.last_login_at = datetime.utcnow()

        session.commit()
        session.refresh(user)
        return user
