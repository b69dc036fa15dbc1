"""
定时任务逻辑

- check_pending_payments: 待支付对账（Redis 锁 + 28 秒时间预算）
- check_expired_subscriptions: 到期订阅回收权限
- sync_permissions: 补发尚未成功的权限

任务由定时任务接口或调度器进程触发，函数本身不做调度。
每个订阅单独处理，单条失败只记录日志，不影响整批。
"""

import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from vipsync import crud
from vipsync.api.errors import AppError
from vipsync.core.config import settings
from vipsync.core.db import engine
from vipsync.core.redis_client import RedisClient, get_redis_client
from vipsync.enums import NotificationTopic, PaymentStatus, SubscriptionStatus
from vipsync.integrations.discord import DiscordRoleClient
from vipsync.integrations.rust_server import RustServerClient
from vipsync.models import utc_now
from vipsync.services.activation import process_and_activate
from vipsync.services.payment_processor import PaymentProcessor, get_payment_processor
from vipsync.services.provisioning import grant_access, revoke_access

logger = logging.getLogger(__name__)

PENDING_LOCK_KEY = "check_pending_payments"
LAST_PENDING_CHECK_KEY = "last_pending_payment_check"
LAST_PENDING_CHECK_TTL_SECONDS = 60 * 60 * 24

CANCELLING_STATUSES = (PaymentStatus.cancelled.value, PaymentStatus.rejected.value)


def _new_results() -> dict[str, Any]:
    return {"checked": 0, "processed": 0, "errors": 0, "details": []}


def check_pending_payments(
    *,
    session: Session,
    processor: PaymentProcessor | None = None,
    redis_client: RedisClient | None = None,
    discord: DiscordRoleClient | None = None,
    rust: RustServerClient | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> dict[str, Any]:
    """
    待支付对账

    重新查询最近的待支付订阅：已批准的走完整激活链路，
    已取消/被拒绝的把订阅标记为 cancelled。

    Returns:
        {"success", "message", "results": {checked, processed, errors, details}, "execution_time"}
    """
    processor = processor or get_payment_processor()
    redis_client = redis_client or get_redis_client()

    lock_value = str(uuid4())
    if not redis_client.acquire_lock(
        PENDING_LOCK_KEY, lock_value, expire_seconds=settings.PENDING_SWEEP_LOCK_TTL_SECONDS
    ):
        logger.info("Pending payment check already running, skip this run.")
        return {
            "success": False,
            "message": "already running",
            "results": _new_results(),
        }

    try:
        start = clock()
        results = _new_results()
        pending = crud.list_pending_subscriptions(
            session=session, limit=settings.PENDING_SWEEP_BATCH_SIZE
        )
        logger.info(f"Found {len(pending)} pending subscriptions to check")

        for subscription in pending:
            if clock() - start > settings.PENDING_SWEEP_BUDGET_SECONDS:
                logger.warning("Pending payment check time budget exceeded, stopping early.")
                results["details"].append({"id": "timeout", "message": "time budget exceeded"})
                break

            results["checked"] += 1
            sub_id = subscription.id
            payment_id = subscription.payment_id
            if not payment_id:
                results["details"].append(
                    {"id": sub_id, "success": False, "message": "no payment_id"}
                )
                continue

            try:
                result, activation = process_and_activate(
                    session=session,
                    processor=processor,
                    topic=NotificationTopic.payment.value,
                    notification_id=payment_id,
                    discord=discord,
                    rust=rust,
                )
            except (AppError, SQLAlchemyError) as e:
                if isinstance(e, SQLAlchemyError):
                    session.rollback()
                logger.error(f"Failed to check payment {payment_id} of subscription {sub_id}: {e}")
                results["errors"] += 1
                results["details"].append(
                    {"id": sub_id, "payment_id": payment_id, "success": False, "error": str(e)}
                )
                continue

            detail: dict[str, Any] = {
                "id": sub_id,
                "payment_id": payment_id,
                "success": result.success,
                "message": result.message,
                "status": result.status,
            }
            if activation is not None:
                detail["subscription_id"] = activation.subscription.id
            results["details"].append(detail)

            if result.success:
                results["processed"] += 1
            elif result.status in CANCELLING_STATUSES:
                crud.mark_subscription_status(
                    session=session,
                    subscription=subscription,
                    status=SubscriptionStatus.cancelled,
                    payment_status=result.status,
                )
                logger.info(f"Subscription {sub_id} cancelled: payment {result.status}")

        execution_time = round(clock() - start, 3)
        crud.record_system_log(
            session=session,
            action=PENDING_LOCK_KEY,
            details={**results, "execution_time": execution_time},
        )
        redis_client.set_json(
            LAST_PENDING_CHECK_KEY,
            {"timestamp": utc_now().isoformat(), "results": results},
            ex=LAST_PENDING_CHECK_TTL_SECONDS,
        )
        logger.info(
            f"Pending payment check finished in {execution_time:.2f}s: "
            f"processed {results['processed']}/{results['checked']}"
        )
        return {
            "success": True,
            "message": f"processed {results['processed']}/{results['checked']}",
            "results": results,
            "execution_time": execution_time,
        }
    finally:
        redis_client.release_lock(PENDING_LOCK_KEY, lock_value)


def check_expired_subscriptions(
    *,
    session: Session,
    now: datetime | None = None,
    discord: DiscordRoleClient | None = None,
    rust: RustServerClient | None = None,
) -> dict[str, Any]:
    """
    到期订阅回收

    status=active 且 expires_at < now 的订阅改为 expired，并撤销两侧权限；
    撤销成功的一侧清除对应标记，失败的只记录日志。
    """
    now = now or utc_now()
    results = _new_results()
    expired = crud.list_expired_subscriptions(session=session, now=now)
    logger.info(f"Found {len(expired)} expired subscriptions to process")

    for subscription in expired:
        results["checked"] += 1
        sub_id = subscription.id
        try:
            crud.mark_subscription_status(
                session=session, subscription=subscription, status=SubscriptionStatus.expired
            )
            user = crud.get_user(session=session, user_id=subscription.user_id)
            summary = revoke_access(
                session=session, subscription=subscription, user=user, discord=discord, rust=rust
            )
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to expire subscription {sub_id}: {e}")
            results["errors"] += 1
            results["details"].append({"id": sub_id, "success": False, "error": str(e)})
            continue

        results["processed"] += 1
        results["details"].append(
            {
                "id": sub_id,
                "success": True,
                "discord_removed": summary.discord_ok,
                "rust_removed": summary.rust_ok,
                "provisioning_errors": summary.failures(),
            }
        )

    logger.info(f"Expired {results['processed']}/{results['checked']} subscriptions")
    crud.record_system_log(session=session, action="check_expired_subscriptions", details=results)
    return {
        "success": True,
        "message": f"expired {results['processed']}/{results['checked']}",
        "results": results,
    }


def sync_permissions(
    *,
    session: Session,
    now: datetime | None = None,
    discord: DiscordRoleClient | None = None,
    rust: RustServerClient | None = None,
) -> dict[str, Any]:
    """
    权限补发

    仍然有效、但 Discord 角色或 Rust 权限尚未授予的订阅，重新尝试缺失的一侧。
    失败原因（未配置 / ID 无效 / 被拒绝 / 网络错误）写入日志和结果。
    """
    now = now or utc_now()
    results = _new_results()
    unsynced = crud.list_unsynced_subscriptions(session=session, now=now)
    logger.info(f"Found {len(unsynced)} subscriptions with missing permissions")

    for subscription in unsynced:
        results["checked"] += 1
        sub_id = subscription.id
        try:
            user = crud.get_user(session=session, user_id=subscription.user_id)
            if user is None:
                results["errors"] += 1
                results["details"].append({"id": sub_id, "success": False, "error": "user not found"})
                continue
            summary = grant_access(
                session=session,
                subscription=subscription,
                user=user,
                discord=discord,
                rust=rust,
                only_missing=True,
            )
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to sync permissions of subscription {sub_id}: {e}")
            results["errors"] += 1
            results["details"].append({"id": sub_id, "success": False, "error": str(e)})
            continue

        failures = summary.failures()
        if failures:
            for side, reason in failures.items():
                logger.warning(f"Subscription {sub_id} {side} sync failed: {reason}")
        else:
            results["processed"] += 1
        results["details"].append(
            {
                "id": sub_id,
                "success": not failures,
                "discord_role_assigned": subscription.discord_role_assigned,
                "rust_permission_assigned": subscription.rust_permission_assigned,
                "provisioning_errors": failures,
            }
        )

    logger.info(f"Permission sync finished: {results['processed']}/{results['checked']} complete")
    crud.record_system_log(session=session, action="sync_permissions", details=results)
    return {
        "success": True,
        "message": f"synced {results['processed']}/{results['checked']}",
        "results": results,
    }


# ============================================================
# 调度器入口（每次执行使用独立的数据库会话）
# ============================================================


def run_pending_payments_check() -> None:
    with Session(engine) as session:
        check_pending_payments(session=session)


def run_expired_subscriptions_check() -> None:
    with Session(engine) as session:
        check_expired_subscriptions(session=session)


def run_permissions_sync() -> None:
    with Session(engine) as session:
        sync_permissions(session=session)
