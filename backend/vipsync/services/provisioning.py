"""
权限下发编排

在订阅状态变化后，把 VIP 权限同步到两个外部系统：
- Discord 角色
- Rust 服务器 VIP 权限

两个调用互相独立：一个失败不影响另一个，也不会让调用方失败。
结果汇总为 ProvisionSummary 返回，成功的一侧会更新订阅上的对应标记，
失败的一侧留给定时同步任务重试。
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime

from sqlmodel import Session

from vipsync import crud
from vipsync.core.config import settings
from vipsync.integrations.discord import DiscordRoleClient, get_discord_client
from vipsync.integrations.result import ProvisionFailure, ProvisionResult
from vipsync.integrations.rust_server import RustServerClient, get_rust_client
from vipsync.models import Subscription, User, as_utc, utc_now

logger = logging.getLogger(__name__)

DISCORD_FLAG = "discord_role_assigned"
RUST_FLAG = "rust_permission_assigned"


@dataclass(frozen=True)
class ProvisionSummary:
    """一次下发的结果汇总，未尝试的一侧为 None"""

    discord: ProvisionResult | None = None
    rust: ProvisionResult | None = None

    @property
    def discord_ok(self) -> bool:
        return bool(self.discord)

    @property
    def rust_ok(self) -> bool:
        return bool(self.rust)

    def failures(self) -> dict[str, str]:
        """失败的一侧及原因，用于日志和对账结果"""
        out: dict[str, str] = {}
        if self.discord is not None and not self.discord:
            out["discord"] = self.discord.describe()
        if self.rust is not None and not self.rust:
            out["rust"] = self.rust.describe()
        return out


def remaining_days(expires_at: datetime | None, now: datetime | None = None) -> int:
    """订阅剩余天数（向上取整，至少 1 天）"""
    if expires_at is None:
        return settings.SUBSCRIPTION_DURATION_DAYS
    delta = as_utc(expires_at) - (now or utc_now())
    return max(1, math.ceil(delta.total_seconds() / 86400))


def grant_access(
    *,
    session: Session,
    subscription: Subscription,
    user: User,
    discord: DiscordRoleClient | None = None,
    rust: RustServerClient | None = None,
    only_missing: bool = False,
) -> ProvisionSummary:
    """
    授予 VIP 权限

    Args:
        only_missing: 只补发尚未授权的一侧（同步任务使用）
    """
    discord = discord or get_discord_client()
    rust = rust or get_rust_client()

    discord_result: ProvisionResult | None = None
    rust_result: ProvisionResult | None = None

    if not (only_missing and subscription.discord_role_assigned):
        discord_result = discord.add_vip_role(user.discord_id, subscription.plan_id)
        if discord_result:
            crud.set_subscription_flag(
                session=session, subscription=subscription, name=DISCORD_FLAG, value=True
            )

    if not (only_missing and subscription.rust_permission_assigned):
        rust_result = rust.add_vip(user.steam_id, remaining_days(subscription.expires_at))
        if rust_result:
            crud.set_subscription_flag(
                session=session, subscription=subscription, name=RUST_FLAG, value=True
            )

    summary = ProvisionSummary(discord=discord_result, rust=rust_result)
    failures = summary.failures()
    if failures:
        logger.warning(f"Subscription {subscription.id} provisioning incomplete: {failures}")
    return summary


def revoke_access(
    *,
    session: Session,
    subscription: Subscription,
    user: User | None,
    discord: DiscordRoleClient | None = None,
    rust: RustServerClient | None = None,
) -> ProvisionSummary:
    """撤销 VIP 权限，成功的一侧清除对应标记"""
    discord = discord or get_discord_client()
    rust = rust or get_rust_client()

    discord_result = discord.remove_vip_roles(user.discord_id if user else None)
    if discord_result and subscription.discord_role_assigned:
        crud.set_subscription_flag(
            session=session, subscription=subscription, name=DISCORD_FLAG, value=False
        )

    rust_result = rust.remove_vip(user.steam_id if user else None)
    if rust_result and subscription.rust_permission_assigned:
        crud.set_subscription_flag(
            session=session, subscription=subscription, name=RUST_FLAG, value=False
        )

    summary = ProvisionSummary(discord=discord_result, rust=rust_result)
    failures = summary.failures()
    if failures:
        logger.warning(f"Subscription {subscription.id} revocation incomplete: {failures}")
    return summary


__all__ = [
    "ProvisionFailure",
    "ProvisionResult",
    "ProvisionSummary",
    "grant_access",
    "revoke_access",
    "remaining_days",
]
