"""FastAPI application for the VPN panel admin and client API."""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from vpnpanel import __version__
from vpnpanel.api.rate_limit import limiter
from vpnpanel.api.v1.access import router as access_router
from vpnpanel.api.v1.auth import router as auth_router
from vpnpanel.api.v1.backups import router as backups_router
from vpnpanel.api.v1.banners import router as banners_router
from vpnpanel.api.v1.client import router as client_router
from vpnpanel.api.v1.gateways import router as gateways_router
from vpnpanel.api.v1.notifications import router as notifications_router
from vpnpanel.api.v1.partners import router as partners_router
from vpnpanel.api.v1.payments import router as payments_router
from vpnpanel.api.v1.plans import router as plans_router
from vpnpanel.api.v1.promocodes import router as promocodes_router
from vpnpanel.api.v1.referrals import router as referrals_router
from vpnpanel.api.v1.remnawave import router as remnawave_router
from vpnpanel.api.v1.statistics import router as statistics_router
from vpnpanel.api.v1.subscriptions import router as subscriptions_router
from vpnpanel.api.v1.users import router as users_router
from vpnpanel.errors import ServiceError
from vpnpanel.logging_config import configure_logging, get_logger
from vpnpanel.settings import settings
from vpnpanel.storage.db import db

logger = get_logger(__name__)

ROUTERS = (
    auth_router,
    client_router,
    users_router,
    access_router,
    plans_router,
    subscriptions_router,
    gateways_router,
    payments_router,
    promocodes_router,
    partners_router,
    referrals_router,
    notifications_router,
    banners_router,
    remnawave_router,
    statistics_router,
    backups_router,
)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id to the log context and log slow or failed requests."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)

        if response.status_code >= 500 or elapsed_ms > 1000:
            logger.warning(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                elapsed_ms=elapsed_ms,
            )
        response.headers["X-Request-ID"] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # The client dashboard is embedded by Telegram WebApp
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "img-src 'self' data: https:; "
            "style-src 'self' 'unsafe-inline'; "
            "frame-ancestors 'self' https://web.telegram.org"
        )
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("app_starting", env=settings.env, version=__version__)

    db.create_tables()
    if not settings.remnawave_enabled:
        logger.warning("remnawave_not_configured")

    yield

    logger.info("app_shutting_down")


def cors_origins() -> list[str]:
    """Configured CORS origins; a wildcard is dropped in production."""
    origins = [origin.strip() for origin in settings.allowed_origins.split(",") if origin.strip()]
    if settings.env == "production" and "*" in origins:
        logger.error("cors_wildcard_blocked")
        origins = [origin for origin in origins if origin != "*"]
    return origins


def create_app() -> FastAPI:
    is_production = settings.env == "production"

    app = FastAPI(
        title="VPN Panel API",
        description="Admin and client API for a Remnawave-backed VPN service",
        version=__version__,
        docs_url=None if is_production else "/api/docs",
        redoc_url=None if is_production else "/api/redoc",
        openapi_url=None if is_production else "/api/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "X-Request-ID"],
        max_age=3600,
    )
    app.add_middleware(RequestContextMiddleware)

    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.warning("rate_limited", path=request.url.path, limit=str(exc.detail))
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"detail": "Too many requests. Please try again later."},
        )

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error("service_error", path=request.url.path, error=exc.message)
        else:
            logger.info("request_rejected", path=request.url.path, status=exc.status_code, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    for router in ROUTERS:
        app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health_check():
        """Liveness plus a database round trip; 503 when the database is down."""
        database_ok = db.ping()
        body = {
            "status": "healthy" if database_ok else "degraded",
            "version": __version__,
            "env": settings.env,
            "database": database_ok,
            "remnawave_configured": settings.remnawave_enabled,
        }
        code = status.HTTP_200_OK if database_ok else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(status_code=code, content=body)

    @app.get("/")
    async def root():
        return {
            "name": "VPN Panel API",
            "version": __version__,
            "docs": "/api/docs",
        }

    return app


app = create_app()
