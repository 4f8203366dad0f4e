"""Request rate limits.

Authenticated requests are counted per user, anonymous ones per client
address. Limits only apply in production.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from vpnpanel.settings import settings

LOGIN_LIMIT = "10/minute"
REGISTER_LIMIT = "5/minute"
TELEGRAM_AUTH_LIMIT = "20/minute"


def rate_limit_key(request: Request) -> str:
    user = getattr(request.state, "user", None)
    if user is not None:
        return f"user:{user.id}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=["300/minute"],
    storage_uri="memory://",
    enabled=settings.env == "production",
)
