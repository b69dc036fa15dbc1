"""
Discord 机器人 API 集成模块

通过机器人令牌管理服务器成员的 VIP 角色：
- 添加角色: PUT /guilds/{guild}/members/{member}/roles/{role}
- 移除角色: DELETE /guilds/{guild}/members/{member}/roles/{role}

Discord 对这两个接口返回 204 表示成功；移除时 404 表示成员本来就没有该角色，同样视为成功。
所有方法都不会抛出异常，失败时返回带原因的 ProvisionResult。
"""
from __future__ import annotations

import logging

import httpx

from vipsync.core.config import settings
from vipsync.core.retry import TRANSIENT_STATUS_CODES, RetryPolicy
from vipsync.integrations.result import ProvisionFailure, ProvisionResult

logger = logging.getLogger(__name__)

_MEMBER_ROLE_PATH = "/guilds/{guild_id}/members/{member_id}/roles/{role_id}"

DEFAULT_PLAN_ID = "vip-basic"


class DiscordRoleClient:
    def __init__(
        self,
        *,
        bot_token: str | None,
        guild_id: str | None,
        roles: dict[str, str],
        base_url: str | None = None,
        timeout: float | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._bot_token = bot_token
        self._guild_id = guild_id
        # 计划 ID → 角色 ID
        self._roles = dict(roles)
        self._base_url = (base_url or settings.DISCORD_API_URL).rstrip("/")
        self._timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self._retry = retry or RetryPolicy.from_settings()

    @classmethod
    def from_settings(cls) -> DiscordRoleClient:
        return cls(
            bot_token=settings.DISCORD_BOT_TOKEN,
            guild_id=settings.DISCORD_SERVER_ID,
            roles=settings.discord_vip_roles,
        )

    @property
    def configured(self) -> bool:
        return bool(self._bot_token and self._guild_id)

    def role_for_plan(self, plan_id: str | None) -> str | None:
        """按计划取角色 ID，未知计划回退到基础 VIP 角色"""
        return self._roles.get(plan_id or DEFAULT_PLAN_ID) or self._roles.get(DEFAULT_PLAN_ID)

    def _send(self, method: str, member_id: str, role_id: str) -> int:
        url = f"{self._base_url}{_MEMBER_ROLE_PATH}".format(
            guild_id=self._guild_id, member_id=member_id, role_id=role_id
        )
        headers = {
            "Authorization": f"Bot {self._bot_token}",
            "Content-Type": "application/json",
        }

        def send() -> int:
            with httpx.Client(timeout=self._timeout) as client:
                if method == "PUT":
                    r = client.put(url, headers=headers)
                else:
                    r = client.delete(url, headers=headers)
                # 只有限流和服务端错误需要重试，其余状态码交给调用方判断
                if r.status_code in TRANSIENT_STATUS_CODES:
                    r.raise_for_status()
                return r.status_code

        return self._retry.call(send)

    def add_vip_role(self, discord_id: str | None, plan_id: str | None = DEFAULT_PLAN_ID) -> ProvisionResult:
        """为成员添加计划对应的 VIP 角色"""
        if not discord_id:
            logger.error("Discord add role skipped: missing discord id")
            return ProvisionResult.failure(ProvisionFailure.INVALID_ID, "missing discord id")
        if not self.configured:
            logger.error("Discord integration not configured")
            return ProvisionResult.failure(ProvisionFailure.NOT_CONFIGURED, "bot token or server id missing")

        role_id = self.role_for_plan(plan_id)
        if not role_id:
            logger.error(f"Discord role not configured for plan {plan_id}")
            return ProvisionResult.failure(ProvisionFailure.NOT_CONFIGURED, f"no role for plan {plan_id}")

        try:
            status = self._send("PUT", discord_id, role_id)
        except httpx.HTTPStatusError as e:
            logger.error(f"Discord add role failed for {discord_id}: status {e.response.status_code}")
            return ProvisionResult.failure(ProvisionFailure.REJECTED, f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error(f"Discord add role failed for {discord_id}: {e!r}")
            return ProvisionResult.failure(ProvisionFailure.TRANSPORT_ERROR, str(e))

        if status == 204:
            logger.info(f"Discord VIP role ({plan_id}) added for {discord_id}")
            return ProvisionResult.success()
        logger.error(f"Discord add role rejected for {discord_id}: status {status}")
        return ProvisionResult.failure(ProvisionFailure.REJECTED, f"HTTP {status}")

    def remove_vip_roles(self, discord_id: str | None) -> ProvisionResult:
        """
        移除成员的所有 VIP 角色

        每个已配置的角色都会尝试删除，其中一个失败不影响其他角色。
        """
        if not discord_id:
            logger.error("Discord remove roles skipped: missing discord id")
            return ProvisionResult.failure(ProvisionFailure.INVALID_ID, "missing discord id")
        if not self.configured:
            logger.error("Discord integration not configured")
            return ProvisionResult.failure(ProvisionFailure.NOT_CONFIGURED, "bot token or server id missing")

        failures: list[str] = []
        transport_failed = False
        for plan_id, role_id in self._roles.items():
            try:
                status = self._send("DELETE", discord_id, role_id)
            except httpx.HTTPStatusError as e:
                failures.append(f"{plan_id}: HTTP {e.response.status_code}")
                continue
            except httpx.HTTPError as e:
                transport_failed = True
                failures.append(f"{plan_id}: {e}")
                continue
            if status not in (204, 404):
                failures.append(f"{plan_id}: HTTP {status}")

        if not failures:
            logger.info(f"Discord VIP roles removed for {discord_id}")
            return ProvisionResult.success()

        detail = "; ".join(failures)
        logger.error(f"Discord remove roles failed for {discord_id}: {detail}")
        reason = ProvisionFailure.TRANSPORT_ERROR if transport_failed else ProvisionFailure.REJECTED
        return ProvisionResult.failure(reason, detail)


_discord_client: DiscordRoleClient | None = None


def get_discord_client() -> DiscordRoleClient:
    """获取全局 Discord 客户端实例（首次调用时按配置创建）"""
    global _discord_client
    if _discord_client is None:
        _discord_client = DiscordRoleClient.from_settings()
    return _discord_client
