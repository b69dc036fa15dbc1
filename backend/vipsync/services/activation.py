"""
订阅激活服务

支付被批准后写入账本并下发权限：
1. 找到用户（先按主键，再按 Discord ID）
2. 找到对应订阅（相同 payment_id → 最新 pending / 匹配 preference_id → 当前 active），否则新建；
   相同 payment_id 的订阅已不是 pending 时原样返回（管理员强制重新处理时续期）
3. 设置 status=active、payment_status=approved、expires_at=now+30 天
4. 同一用户的其他 active 订阅标记为 cancelled
5. 按计划更新用户角色（管理员不降级）
6. 分别尝试 Discord 与 Rust 服务器授权
7. 写入幂等标记

webhook、管理员重新处理接口、待支付对账任务都走这里。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlmodel import Session

from vipsync import crud
from vipsync.api.errors import user_not_found
from vipsync.core.config import settings
from vipsync.enums import PaymentStatus, SubscriptionStatus
from vipsync.integrations.discord import DiscordRoleClient
from vipsync.integrations.rust_server import RustServerClient
from vipsync.models import Subscription, User, as_utc, utc_now
from vipsync.services.payment_processor import PaymentProcessor, ProcessResult
from vipsync.services.plans import plan_display_name, role_for_plan
from vipsync.services.provisioning import ProvisionSummary, grant_access

logger = logging.getLogger(__name__)


@dataclass
class ActivationResult:
    subscription: Subscription
    user: User
    provisioning: ProvisionSummary
    created: bool
    role_updated: bool
    # 支付早已记到账本，本次未做任何写入
    duplicate: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscription_id": self.subscription.id,
            "user_id": self.user.id,
            "plan_id": self.subscription.plan_id,
            "expires_at": self.subscription.expires_at,
            "created": self.created,
            "role_updated": self.role_updated,
            "duplicate": self.duplicate,
            "discord_role_assigned": self.subscription.discord_role_assigned,
            "rust_permission_assigned": self.subscription.rust_permission_assigned,
            "provisioning_errors": self.provisioning.failures(),
        }


def _to_amount(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        logger.warning(f"Ignoring invalid payment amount: {value!r}")
        return None


def _is_current(subscription: Subscription, now) -> bool:
    expires_at = as_utc(subscription.expires_at)
    return (
        subscription.status == SubscriptionStatus.active
        and expires_at is not None
        and expires_at > now
    )


def activate_subscription(
    *,
    session: Session,
    data: dict[str, Any],
    discord: DiscordRoleClient | None = None,
    rust: RustServerClient | None = None,
    renew: bool = False,
    allow_duplicates: bool = False,
) -> ActivationResult:
    """
    根据已批准的支付数据激活订阅

    已经记录过该 payment_id 且不再是 pending 的订阅（active / expired / cancelled）
    原样返回，重复投递的通知不会延长或复活订阅。

    Args:
        data: PaymentProcessor.process 返回的 data
        renew: 管理员重新处理：已过期或非 active 的订阅重新激活 30 天，仍有效的只补发权限
        allow_duplicates: 不复用任何已有订阅，总是新建一条

    Raises:
        AppError: 用户不存在（404001）
    """
    user = crud.get_user_by_reference(session=session, reference=data["userId"])
    if user is None:
        logger.error(f"User not found for payment reference {data['userId']}")
        raise user_not_found()

    plan_id: str = data["planId"]
    payment_id = str(data["paymentId"])
    now = utc_now()

    subscription: Subscription | None = None
    if not allow_duplicates:
        subscription = crud.get_subscription_by_payment(
            session=session, user_id=user.id, payment_id=payment_id
        )
        if subscription is not None and subscription.status != SubscriptionStatus.pending:
            if not renew:
                logger.info(
                    f"Payment {payment_id} already applied to subscription {subscription.id} "
                    f"({subscription.status}), leaving it unchanged"
                )
                return ActivationResult(
                    subscription=subscription,
                    user=user,
                    provisioning=ProvisionSummary(),
                    created=False,
                    role_updated=False,
                    duplicate=True,
                )
            if _is_current(subscription, now):
                logger.info(f"Subscription {subscription.id} still active, re-provisioning only")
                role_updated = crud.update_user_role(
                    session=session, user=user, role=role_for_plan(subscription.plan_id)
                )
                summary = grant_access(
                    session=session, subscription=subscription, user=user, discord=discord, rust=rust
                )
                return ActivationResult(
                    subscription=subscription,
                    user=user,
                    provisioning=summary,
                    created=False,
                    role_updated=role_updated,
                )
            logger.info(f"Renewing subscription {subscription.id} for payment {payment_id}")

        if subscription is None:
            subscription = crud.find_subscription_for_payment(
                session=session, user_id=user.id, payment_id=payment_id
            )

    created = subscription is None
    if subscription is None:
        subscription = Subscription(user_id=user.id, plan_id=plan_id, plan_name="", created_at=now)

    subscription.plan_id = plan_id
    subscription.plan_name = plan_display_name(plan_id)
    subscription.status = SubscriptionStatus.active
    subscription.payment_status = PaymentStatus.approved.value
    subscription.payment_id = payment_id
    subscription.expires_at = now + timedelta(days=settings.SUBSCRIPTION_DURATION_DAYS)
    if data.get("payment_method"):
        subscription.payment_method = data["payment_method"]
    amount = _to_amount(data.get("amount"))
    if amount is not None:
        subscription.amount = amount

    subscription = crud.save_subscription(session=session, subscription=subscription)
    logger.info(
        f"Subscription {subscription.id} {'created' if created else 'activated'} "
        f"for user {user.id}, plan {plan_id}"
    )

    cancelled = crud.cancel_other_active_subscriptions(
        session=session, user_id=user.id, keep_id=subscription.id
    )
    if cancelled:
        logger.info(f"Cancelled {cancelled} older active subscription(s) of user {user.id}")

    role_updated = crud.update_user_role(session=session, user=user, role=role_for_plan(plan_id))

    summary = grant_access(
        session=session, subscription=subscription, user=user, discord=discord, rust=rust
    )
    return ActivationResult(
        subscription=subscription,
        user=user,
        provisioning=summary,
        created=created,
        role_updated=role_updated,
    )


def record_payment_progress(*, session: Session, data: dict[str, Any]) -> Subscription | None:
    """
    把尚未批准的支付记到用户的 pending 订阅上（payment_id、payment_status）

    结账时只有 preference_id，待支付对账任务要靠 payment_id 向支付服务重新查询。
    找不到用户或没有可记录的 pending 订阅时不写入。
    """
    user = crud.get_user_by_reference(session=session, reference=data["userId"])
    if user is None:
        logger.warning(f"User not found for pending payment reference {data['userId']}")
        return None

    payment_id = str(data["paymentId"])
    subscription = crud.find_pending_subscription_for_payment(
        session=session, user_id=user.id, payment_id=payment_id
    )
    if subscription is None:
        logger.info(f"No pending subscription of user {user.id} to record payment {payment_id}")
        return None

    subscription.payment_id = payment_id
    subscription.payment_status = str(data.get("status") or "pending")
    subscription = crud.save_subscription(session=session, subscription=subscription)
    logger.info(
        f"Recorded payment {payment_id} ({subscription.payment_status}) "
        f"on pending subscription {subscription.id}"
    )
    return subscription


def process_and_activate(
    *,
    session: Session,
    processor: PaymentProcessor,
    topic: str,
    notification_id: str,
    discord: DiscordRoleClient | None = None,
    rust: RustServerClient | None = None,
    force: bool = False,
    user_id: str | None = None,
    plan_id: str | None = None,
    default_plan_id: str | None = None,
    allow_duplicates: bool = False,
) -> tuple[ProcessResult, ActivationResult | None]:
    """
    完整处理链路：处理通知 → 激活订阅 → 写入幂等标记

    通知未被批准时只在 pending 订阅上记录支付进度，已处理过时不做任何写入，均返回 (result, None)。
    force 时 renew 已有订阅（见 activate_subscription）。
    """
    result = processor.process(
        topic,
        notification_id,
        force=force,
        user_id=user_id,
        plan_id=plan_id,
        default_plan_id=default_plan_id,
    )
    if result.already_processed:
        return result, None
    if not result.success:
        if result.data:
            record_payment_progress(session=session, data=result.data)
        return result, None

    activation = activate_subscription(
        session=session,
        data=result.data,
        discord=discord,
        rust=rust,
        renew=force,
        allow_duplicates=allow_duplicates,
    )
    processor.mark_processed(topic, notification_id)
    return result, activation
