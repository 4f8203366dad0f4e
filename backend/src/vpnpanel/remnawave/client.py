"""Async HTTP client for the Remnawave panel API."""

from datetime import datetime
from typing import Any, AsyncIterator

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from vpnpanel.errors import ExternalServiceError, ValidationError
from vpnpanel.logging_config import get_logger
from vpnpanel.settings import settings

logger = get_logger(__name__)

GB = 1024 ** 3


class RemnawaveClient:
    """Thin wrapper over the panel REST API.

    Every panel response is wrapped in ``{"response": ...}``; the client
    unwraps it. Transport errors are retried, HTTP errors are not.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        base_url = base_url or settings.remnawave_api_url
        api_token = api_token or settings.remnawave_api_token
        if not base_url or not api_token:
            raise ValidationError("Remnawave panel is not configured")

        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.remnawave_timeout_seconds,
            headers={
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            transport=transport,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(settings.remnawave_max_retries),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        logger.debug("remnawave_request", method=method, path=path)
        return await self.client.request(method, path, **kwargs)

    async def _request(self, method: str, path: str, allow_404: bool = False, **kwargs: Any) -> Any:
        try:
            response = await self._send(method, path, **kwargs)
        except httpx.TransportError as e:
            logger.error("remnawave_unreachable", path=path, error=str(e))
            raise ExternalServiceError(f"Remnawave API unreachable: {e}")

        if response.status_code == 404 and allow_404:
            return None

        if response.status_code >= 400:
            logger.error("remnawave_api_error", path=path, status=response.status_code)
            raise ExternalServiceError(
                f"Remnawave API error: {response.status_code} {response.text[:200]}",
                upstream_status=response.status_code,
            )

        if "application/json" not in response.headers.get("content-type", ""):
            return {}

        payload = response.json()
        if isinstance(payload, dict) and "response" in payload:
            return payload["response"]
        return payload

    # ==================== USERS ====================

    async def get_users(self, start: int = 0, size: int = 100) -> tuple[list[dict], int]:
        """Get one page of panel users.

        Returns:
            Tuple of (users, total)
        """
        data = await self._request("GET", "/api/users", params={"start": start, "size": size})
        users = data.get("users", []) if isinstance(data, dict) else list(data or [])
        total = data.get("total", len(users)) if isinstance(data, dict) else len(users)
        return users, total

    async def iter_all_users(self, page_size: int | None = None) -> AsyncIterator[dict]:
        """Yield every panel user, page by page."""
        page_size = page_size or settings.remnawave_page_size
        start = 0
        while True:
            users, total = await self.get_users(start=start, size=page_size)
            for user in users:
                yield user
            start += len(users)
            if not users or start >= total:
                break

    async def get_user_by_uuid(self, uuid: str) -> dict | None:
        return await self._request("GET", f"/api/users/{uuid}", allow_404=True)

    async def get_users_by_telegram_id(self, telegram_id: str) -> list[dict]:
        data = await self._request("GET", f"/api/users/by-telegram-id/{telegram_id}", allow_404=True)
        if data is None:
            return []
        if isinstance(data, dict):
            return data.get("users", [])
        return list(data)

    async def create_user(
        self,
        username: str,
        expire_at: datetime,
        traffic_limit_gb: int | None = None,
        telegram_id: str | None = None,
        hwid_device_limit: int | None = None,
    ) -> dict:
        payload: dict[str, Any] = {
            "username": username,
            "expireAt": expire_at.strftime("%Y-%m-%dT%H:%M:%S.000Z"),
            "trafficLimitBytes": (traffic_limit_gb or 0) * GB,
        }
        if telegram_id:
            payload["telegramId"] = int(telegram_id)
        if hwid_device_limit:
            payload["hwidDeviceLimit"] = hwid_device_limit

        user = await self._request("POST", "/api/users", json=payload)
        logger.info("remnawave_user_created", uuid=user.get("uuid"), username=username)
        return user

    async def update_user(
        self,
        uuid: str,
        expire_at: datetime | None = None,
        traffic_limit_gb: int | None = None,
        status: str | None = None,
    ) -> dict:
        payload: dict[str, Any] = {"uuid": uuid}
        if expire_at is not None:
            payload["expireAt"] = expire_at.strftime("%Y-%m-%dT%H:%M:%S.000Z")
        if traffic_limit_gb is not None:
            payload["trafficLimitBytes"] = traffic_limit_gb * GB
        if status is not None:
            payload["status"] = status
        return await self._request("PATCH", "/api/users", json=payload)

    async def delete_user(self, uuid: str) -> None:
        await self._request("DELETE", f"/api/users/{uuid}")

    async def enable_user(self, uuid: str) -> None:
        await self._request("POST", f"/api/users/{uuid}/actions/enable")

    async def disable_user(self, uuid: str) -> None:
        await self._request("POST", f"/api/users/{uuid}/actions/disable")

    async def reset_user_traffic(self, uuid: str) -> None:
        await self._request("POST", f"/api/users/{uuid}/actions/reset-traffic")

    # ==================== NODES / SYSTEM ====================

    async def get_nodes(self) -> list[dict]:
        return await self._request("GET", "/api/nodes") or []

    async def get_system_stats(self) -> dict:
        return await self._request("GET", "/api/system/stats") or {}

    async def test_connection(self) -> dict[str, Any]:
        """Check that the panel answers with the configured token."""
        try:
            await self.get_system_stats()
            return {"success": True, "message": "Connected to Remnawave"}
        except ExternalServiceError as e:
            return {"success": False, "message": e.message}
