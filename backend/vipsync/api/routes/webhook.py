"""
支付通知 Webhook 路由

POST /api/v1/webhook/mercadopago

除签名校验失败（401）、方法错误（405）和数据库错误（500）外，一律返回 200：
业务上不能激活（未批准、找不到用户、支付服务不可用等）也要确认收到，
否则支付服务会不断重试同一条通知。
"""
import json
import logging
from typing import Any
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Header, Request

from vipsync.api.deps import ProcessorDep, SessionDep
from vipsync.api.errors import AppError, PaymentProviderError, unauthorized
from vipsync.api.schemas import ApiEnvelope, WebhookResult
from vipsync.core.config import settings
from vipsync.services.activation import process_and_activate
from vipsync.services.notification_parser import parse_notification, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhook"])


async def read_raw_body(request: Request) -> bytes:
    return await request.body()


def _decode_body(raw_body: bytes, content_type: str | None) -> Any:
    """解析请求体：JSON 优先，表单编码次之，无法解析时返回 None"""
    if not raw_body:
        return None
    text = raw_body.decode("utf-8", errors="replace")
    if content_type and "application/x-www-form-urlencoded" in content_type:
        return dict(parse_qsl(text))
    try:
        return json.loads(text)
    except ValueError:
        logger.warning("Webhook body is not valid JSON")
        return None


def _ack(result: WebhookResult) -> ApiEnvelope:
    return ApiEnvelope(message=result.message, data=result)


@router.post("/mercadopago", response_model=ApiEnvelope)
def mercadopago_webhook(
    request: Request,
    session: SessionDep,
    processor: ProcessorDep,
    raw_body: bytes = Depends(read_raw_body),
    x_signature: str | None = Header(default=None),
    content_type: str | None = Header(default=None),
) -> ApiEnvelope:
    """
    接收 Mercado Pago 支付通知

    配置了 MERCADOPAGO_WEBHOOK_SECRET 时校验 x-signature。
    """
    if settings.MERCADOPAGO_WEBHOOK_SECRET and not verify_signature(
        x_signature, raw_body, settings.MERCADOPAGO_WEBHOOK_SECRET
    ):
        logger.warning("Rejected webhook with invalid signature")
        raise unauthorized("Invalid webhook signature")

    query = dict(request.query_params)
    body = _decode_body(raw_body, content_type)
    notification = parse_notification(query, body)
    if notification is None:
        logger.error(f"Could not extract notification id (query keys: {sorted(query)})")
        return _ack(WebhookResult(success=False, message="notification id not found"))

    logger.info(f"Webhook notification: {notification.topic} {notification.id}")
    base = {"topic": notification.topic, "id": notification.id}
    try:
        result, activation = process_and_activate(
            session=session,
            processor=processor,
            topic=notification.topic,
            notification_id=notification.id,
        )
    except PaymentProviderError as e:
        logger.error(f"Payment provider error for {notification.topic} {notification.id}: {e.message}")
        return _ack(WebhookResult(success=False, message=e.message, **base))
    except AppError as e:
        logger.error(f"Webhook {notification.topic} {notification.id} not applied: {e.message}")
        return _ack(WebhookResult(success=False, message=e.message, **base))

    if activation is None:
        if not result.success:
            logger.warning(f"Webhook notification not processable: {result.message}")
        return _ack(WebhookResult(success=result.success, message=result.message, **base))

    subscription = activation.subscription
    return _ack(
        WebhookResult(
            success=True,
            message="payment already applied" if activation.duplicate else "payment processed",
            subscription_id=subscription.id,
            discord_role_assigned=subscription.discord_role_assigned,
            rust_permission_assigned=subscription.rust_permission_assigned,
            **base,
        )
    )
