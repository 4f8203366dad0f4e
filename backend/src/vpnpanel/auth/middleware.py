"""FastAPI dependencies resolving the bearer token to a panel user."""

from typing import Callable

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from vpnpanel.auth.local import auth_service
from vpnpanel.auth.models import ADMIN_ROLES, User, UserRole
from vpnpanel.logging_config import get_logger

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> User | None:
    """Active user behind the bearer token, or None.

    The user is kept on ``request.state`` for the rate limiter and bound to
    the log context of the request.
    """
    if credentials is None:
        return None

    user = auth_service.get_user_from_token(credentials.credentials)
    if user is not None:
        request.state.user = user
        structlog.contextvars.bind_contextvars(user_id=user.id)
    return user


def require_auth(user: User | None = Depends(get_current_user)) -> User:
    """401 unless a valid token of an active user was sent."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_role(*roles: UserRole, detail: str) -> Callable[[User], User]:
    """Dependency factory: 403 unless the user holds one of ``roles``."""

    def dependency(request: Request, user: User = Depends(require_auth)) -> User:
        if user.role not in roles:
            logger.warning(
                "access_denied",
                user_id=user.id,
                role=user.role.value,
                path=request.url.path,
            )
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
        return user

    return dependency


require_admin = require_role(*ADMIN_ROLES, detail="Admin access required")
require_super_admin = require_role(UserRole.SUPER_ADMIN, detail="Super admin access required")
