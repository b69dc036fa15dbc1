"""
管理员路由

- POST /admin/reprocess-payment: 重新处理一笔支付（忽略幂等标记）
- POST /admin/sync-permissions: 补发尚未成功的权限
- GET  /admin/system/health: 系统状态

与 webhook 不同，这里按常规 HTTP 语义返回错误：
未批准 400、用户不存在 404、支付服务失败 502、数据库错误 500。
"""
import logging

from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from vipsync import crud
from vipsync.api.deps import AdminUser, ProcessorDep, RedisDep, SessionDep
from vipsync.api.errors import AppError
from vipsync.api.schemas import (
    ApiEnvelope,
    ReprocessPaymentData,
    ReprocessPaymentRequest,
    SweepResult,
)
from vipsync.enums import NotificationTopic
from vipsync.integrations.discord import get_discord_client
from vipsync.integrations.mercadopago import get_mercadopago_client
from vipsync.integrations.rust_server import get_rust_client
from vipsync.services.activation import process_and_activate
from vipsync.services.plans import plan_price
from vipsync.worker.tasks import LAST_PENDING_CHECK_KEY, sync_permissions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/reprocess-payment", response_model=ApiEnvelope)
def reprocess_payment(
    session: SessionDep,
    processor: ProcessorDep,
    admin: AdminUser,
    payload: ReprocessPaymentRequest,
) -> ApiEnvelope:
    """
    重新处理一笔支付

    userId / planId 覆盖支付中的引用；都没有计划时沿用账本中该支付订阅的计划。
    已记录该支付的订阅过期或非 active 时续期 30 天，仍有效时只补发权限；
    allowDuplicates 为 True 时总是新建订阅。
    """
    topic = payload.topic.value
    logger.info(f"Admin {admin.id} reprocessing {topic} {payload.payment_id}")

    if payload.plan_id is not None and plan_price(payload.plan_id) is None:
        raise AppError(code=400201, message="Unknown plan", status_code=400)
    recorded_plan_id = None
    if topic == NotificationTopic.payment.value:
        recorded = crud.get_subscription_by_payment(session=session, payment_id=payload.payment_id)
        if recorded is not None:
            recorded_plan_id = recorded.plan_id

    result, activation = process_and_activate(
        session=session,
        processor=processor,
        topic=topic,
        notification_id=payload.payment_id,
        force=True,
        user_id=payload.user_id,
        plan_id=payload.plan_id,
        default_plan_id=recorded_plan_id,
        allow_duplicates=payload.allow_duplicates,
    )
    if activation is None:
        raise AppError(code=400101, message=result.message or "payment not approved", status_code=400)

    subscription = activation.subscription
    return ApiEnvelope(
        message="payment reprocessed",
        data=ReprocessPaymentData(
            subscription_id=subscription.id,
            user_id=activation.user.id,
            plan_id=subscription.plan_id,
            payment_id=subscription.payment_id or payload.payment_id,
            status=result.status,
            amount=result.data.get("amount"),
            expires_at=subscription.expires_at,
            discord_role_assigned=subscription.discord_role_assigned,
            rust_permission_assigned=subscription.rust_permission_assigned,
            provisioning_errors=activation.provisioning.failures(),
        ),
    )


@router.post("/sync-permissions", response_model=ApiEnvelope)
def admin_sync_permissions(session: SessionDep, admin: AdminUser) -> ApiEnvelope:
    logger.info(f"Admin {admin.id} triggered permission sync")
    outcome = sync_permissions(session=session)
    return ApiEnvelope(
        message=outcome["message"],
        data=SweepResult(**outcome["results"], message=outcome["message"]),
    )


@router.get("/system/health", response_model=ApiEnvelope)
def system_health(session: SessionDep, redis_client: RedisDep, admin: AdminUser) -> ApiEnvelope:
    """
    系统状态

    数据库与 Redis 连通性、各集成是否已配置、上次待支付对账的结果。
    """
    try:
        session.exec(select(1)).one()
        database_ok = True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        database_ok = False

    return ApiEnvelope(
        data={
            "database": database_ok,
            "redis": redis_client.ping(),
            "integrations": {
                "mercadopago": get_mercadopago_client().configured,
                "discord": get_discord_client().configured,
                "rust_server": get_rust_client().configured,
            },
            "last_pending_payment_check": redis_client.get_json(LAST_PENDING_CHECK_KEY),
        }
    )
