"""Authentication API v1 endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from vpnpanel.api.rate_limit import LOGIN_LIMIT, REGISTER_LIMIT, TELEGRAM_AUTH_LIMIT, limiter
from vpnpanel.api.v1.schemas import ORMModel
from vpnpanel.auth.local import auth_service
from vpnpanel.auth.middleware import require_auth
from vpnpanel.auth.models import User, UserRole
from vpnpanel.auth.telegram import login_with_telegram
from vpnpanel.logging_config import get_logger
from vpnpanel.settings import settings

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# ==================== MODELS ====================


class RegisterRequest(BaseModel):
    """Client registration request."""
    username: str = Field(..., min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_.-]+$")
    password: str = Field(..., min_length=8, max_length=100)
    referral_code: str | None = Field(default=None, max_length=32)


class LoginRequest(BaseModel):
    username: str
    password: str


class TelegramLoginRequest(BaseModel):
    """Raw Telegram.WebApp.initData string."""
    init_data: str = Field(..., min_length=1)


class UserResponse(ORMModel):
    id: int
    username: str
    telegram_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    photo_url: str | None = None
    language: str | None = None
    role: UserRole
    is_active: bool
    created_at: datetime | None = None
    last_login_at: datetime | None = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=auth_service.create_access_token(user),
        expires_in=settings.jwt_expire_hours * 3600,
        user=UserResponse.model_validate(user),
    )


# ==================== ENDPOINTS ====================


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(REGISTER_LIMIT)
async def register(request: Request, body: RegisterRequest):
    """Register a client account, optionally with a partner referral code."""
    user = auth_service.register(body.username, body.password, body.referral_code)
    logger.info("user_registered", user_id=user.id)
    return _token_response(user)


@router.post("/login", response_model=TokenResponse)
@limiter.limit(LOGIN_LIMIT)
async def login(request: Request, body: LoginRequest):
    """Log in with username and password."""
    user = auth_service.authenticate(body.username, body.password)
    if not user:
        logger.warning("login_failed", username=body.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )
    return _token_response(user)


@router.post("/telegram", response_model=TokenResponse)
@limiter.limit(TELEGRAM_AUTH_LIMIT)
async def telegram_login(request: Request, body: TelegramLoginRequest):
    """Log in from the Telegram WebApp using signed initData."""
    user = login_with_telegram(body.init_data)
    return _token_response(user)


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(require_auth)):
    """Current user."""
    return user
