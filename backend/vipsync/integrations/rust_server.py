"""
Rust 游戏服务器 REST API 集成模块

服务器插件暴露以下接口（Bearer 令牌认证）：
- POST /addvip     {steamId, days, server}
- POST /removevip  {steamId, server}
- GET  /vipstatus?steamId=...&server=...

SteamID 必须是 17 位数字，不合法时直接返回失败，不会发起网络请求。
"""
from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from vipsync.core.config import settings
from vipsync.core.retry import RetryPolicy
from vipsync.integrations.result import ProvisionFailure, ProvisionResult

logger = logging.getLogger(__name__)

STEAM_ID_PATTERN = re.compile(r"^[0-9]{17}$")


def is_valid_steam_id(steam_id: str | None) -> bool:
    return bool(steam_id) and STEAM_ID_PATTERN.match(steam_id) is not None


class RustServerClient:
    def __init__(
        self,
        *,
        api_url: str | None,
        api_key: str | None,
        server_ip: str | None,
        timeout: float | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/") if api_url else None
        self._api_key = api_key
        self._server_ip = server_ip
        self._timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self._retry = retry or RetryPolicy.from_settings()

    @classmethod
    def from_settings(cls) -> RustServerClient:
        return cls(
            api_url=settings.RUST_API_URL,
            api_key=settings.RUST_API_KEY,
            server_ip=settings.RUST_SERVER_IP,
        )

    @property
    def configured(self) -> bool:
        return bool(self._api_url and self._api_key and self._server_ip)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._api_url}{path}"

        def send() -> dict[str, Any]:
            with httpx.Client(timeout=self._timeout) as client:
                r = client.post(url, json=payload, headers=self._headers())
                r.raise_for_status()
                return r.json()

        return self._retry.call(send)

    def _check(self, steam_id: str | None, action: str) -> ProvisionResult | None:
        """校验 SteamID 与配置，不通过时返回失败结果"""
        if not is_valid_steam_id(steam_id):
            logger.error(f"Rust {action} skipped: invalid SteamID {steam_id!r}")
            return ProvisionResult.failure(ProvisionFailure.INVALID_ID, f"invalid SteamID {steam_id!r}")
        if not self.configured:
            logger.error("Rust server API not configured")
            return ProvisionResult.failure(ProvisionFailure.NOT_CONFIGURED, "api url, key or server missing")
        return None

    def _provision(self, path: str, payload: dict[str, Any], steam_id: str, action: str) -> ProvisionResult:
        try:
            result = self._post(path, payload)
        except httpx.HTTPStatusError as e:
            logger.error(f"Rust {action} failed for {steam_id}: status {e.response.status_code}")
            return ProvisionResult.failure(ProvisionFailure.REJECTED, f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error(f"Rust {action} failed for {steam_id}: {e!r}")
            return ProvisionResult.failure(ProvisionFailure.TRANSPORT_ERROR, str(e))
        except ValueError as e:
            logger.error(f"Rust {action} returned invalid JSON for {steam_id}: {e}")
            return ProvisionResult.failure(ProvisionFailure.REJECTED, "invalid JSON response")

        if isinstance(result, dict) and result.get("success"):
            logger.info(f"Rust {action} succeeded for {steam_id}")
            return ProvisionResult.success()

        message = result.get("message") if isinstance(result, dict) else None
        logger.error(f"Rust {action} rejected for {steam_id}: {message or 'unknown error'}")
        return ProvisionResult.failure(ProvisionFailure.REJECTED, message or "success=false")

    def add_vip(self, steam_id: str | None, days: int = 30) -> ProvisionResult:
        """授予 VIP 权限（days 天）"""
        failed = self._check(steam_id, "addvip")
        if failed is not None:
            return failed
        payload = {"steamId": steam_id, "days": days, "server": self._server_ip}
        return self._provision("/addvip", payload, steam_id, "addvip")

    def remove_vip(self, steam_id: str | None) -> ProvisionResult:
        """撤销 VIP 权限"""
        failed = self._check(steam_id, "removevip")
        if failed is not None:
            return failed
        payload = {"steamId": steam_id, "server": self._server_ip}
        return self._provision("/removevip", payload, steam_id, "removevip")

    def vip_status(self, steam_id: str | None) -> dict[str, Any] | None:
        """查询玩家 VIP 状态，失败时返回 None"""
        if self._check(steam_id, "vipstatus") is not None:
            return None

        url = f"{self._api_url}/vipstatus"
        params = {"steamId": steam_id, "server": self._server_ip}

        def send() -> dict[str, Any]:
            with httpx.Client(timeout=self._timeout) as client:
                r = client.get(url, params=params, headers=self._headers())
                r.raise_for_status()
                return r.json()

        try:
            return self._retry.call(send)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Rust vipstatus failed for {steam_id}: {e!r}")
            return None


_rust_client: RustServerClient | None = None


def get_rust_client() -> RustServerClient:
    """获取全局 Rust 服务器客户端实例（首次调用时按配置创建）"""
    global _rust_client
    if _rust_client is None:
        _rust_client = RustServerClient.from_settings()
    return _rust_client
