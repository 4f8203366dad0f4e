"""structlog setup for the API, the CLI and background jobs."""

import logging
import sys

import structlog

from vpnpanel.settings import settings

# Event keys whose values never reach the log output
SENSITIVE_KEYS = frozenset({
    "password",
    "password_hash",
    "token",
    "access_token",
    "api_token",
    "init_data",
    "details",
    "payout_details",
    "config",
})

# Chatty third-party loggers kept at WARNING unless debugging
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "multipart")


def redact_sensitive(logger, method_name: str, event_dict: dict) -> dict:
    """Mask credentials and payout details passed as event keys."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def add_service(logger, method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", settings.app_name)
    event_dict.setdefault("env", settings.env)
    return event_dict


def configure_logging() -> None:
    """Configure structlog and the stdlib root logger from settings."""
    level = logging.getLevelName(settings.log_level.upper())

    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        redact_sensitive,
    ]
    if settings.log_format == "json":
        processors = shared + [
            add_service,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared + [
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(name)s %(levelname)s %(message)s", stream=sys.stdout, level=level)
    if level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
