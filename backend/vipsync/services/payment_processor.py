"""
支付通知处理服务

给定 (topic, id)，判断是否应激活订阅，并返回写入账本所需的数据：
1. 幂等检查：已处理过的通知直接返回 "already processed"
2. merchant_order 取订单中第一笔已批准的支付；payment 直接查询支付
3. 支付状态不是 approved 时返回失败，并带上状态（对账任务据此取消订单）
4. 从 external_reference（"<userId>|<planId>"）或 metadata 中解析用户和计划
5. 返回 {userId, planId, paymentId, status, amount, date, payment_method}

账本写入与权限下发由 activation 完成，完成后调用 mark_processed 写入幂等标记。
支付服务调用失败时 PaymentProviderError 会直接抛给调用方。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from vipsync.core.cache import ProcessedMarkers
from vipsync.core.config import settings
from vipsync.enums import NotificationTopic, PaymentStatus
from vipsync.integrations.mercadopago import MercadoPagoClient, get_mercadopago_client

logger = logging.getLogger(__name__)

ALREADY_PROCESSED = "already processed"
NO_APPROVED_PAYMENT = "no approved payment in order"


@dataclass
class ProcessResult:
    success: bool
    message: str = ""
    status: str | None = None  # 支付服务返回的状态
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def already_processed(self) -> bool:
        return self.success and self.message == ALREADY_PROCESSED


def parse_reference(payment: dict[str, Any]) -> tuple[str | None, str | None]:
    """
    解析支付所属的用户和计划

    优先使用 external_reference "<userId>|<planId>"，缺少分隔符时回退到 metadata。
    """
    user_id: str | None = None
    plan_id: str | None = None

    reference = payment.get("external_reference")
    if isinstance(reference, str) and "|" in reference:
        user_part, plan_part = reference.split("|", 1)
        user_id = user_part.strip() or None
        plan_id = plan_part.strip() or None

    metadata = payment.get("metadata") or {}
    if isinstance(metadata, dict):
        user_id = user_id or _clean(metadata.get("user_id"))
        plan_id = plan_id or _clean(metadata.get("plan_id"))
    return user_id, plan_id


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class PaymentProcessor:
    """支付通知处理器（长生命周期实例，持有幂等标记）"""

    def __init__(
        self,
        *,
        client: MercadoPagoClient,
        markers: ProcessedMarkers | None = None,
    ) -> None:
        self.client = client
        self.markers = markers or ProcessedMarkers(max_entries=settings.PROCESSED_NOTIFICATIONS_MAX)

    def is_processed(self, topic: str, notification_id: str) -> bool:
        return self.markers.is_processed(topic, str(notification_id))

    def mark_processed(self, topic: str, notification_id: str) -> None:
        """整条链路（账本写入 + 两个权限下发）完成后调用"""
        self.markers.mark(topic, str(notification_id))

    def _resolve_payment(self, topic: str, notification_id: str) -> tuple[dict[str, Any] | None, str]:
        """按主题取得支付详情，失败时返回 (None, 原因)"""
        if topic == NotificationTopic.payment:
            return self.client.get_payment_status(notification_id), ""

        if topic == NotificationTopic.merchant_order:
            order = self.client.get_merchant_order(notification_id)
            approved = next(
                (
                    p
                    for p in order.get("payments") or []
                    if isinstance(p, dict) and p.get("status") == PaymentStatus.approved
                ),
                None,
            )
            if approved is None or approved.get("id") is None:
                return None, NO_APPROVED_PAYMENT
            return self.client.get_payment_status(str(approved["id"])), ""

        return None, f"unsupported topic: {topic}"

    def process(
        self,
        topic: str,
        notification_id: str,
        *,
        force: bool = False,
        user_id: str | None = None,
        plan_id: str | None = None,
        default_plan_id: str | None = None,
    ) -> ProcessResult:
        """
        处理一条支付通知

        未批准的支付如果能解析出用户和计划，data 中同样带上 userId / planId / paymentId / status，
        供账本记录支付进度（待支付对账依赖 payment_id）。

        Args:
            force: 忽略幂等标记重新处理（管理员重新处理接口使用）
            user_id, plan_id: 手动指定用户和计划，优先于支付中的引用
            default_plan_id: 引用和手动指定都没有计划时使用

        Raises:
            PaymentProviderError: 支付服务不可用或返回错误
        """
        notification_id = str(notification_id)
        if force:
            self.markers.discard(topic, notification_id)
        elif self.is_processed(topic, notification_id):
            logger.info(f"Notification {topic}:{notification_id} already processed")
            return ProcessResult(success=True, message=ALREADY_PROCESSED)

        payment, reason = self._resolve_payment(topic, notification_id)
        if payment is None:
            logger.info(f"Notification {topic}:{notification_id} not processable: {reason}")
            return ProcessResult(success=False, message=reason)

        payment_id = str(payment.get("id") or notification_id)
        status = payment.get("status")
        ref_user_id, ref_plan_id = parse_reference(payment)
        user_id = user_id or ref_user_id
        plan_id = plan_id or ref_plan_id or default_plan_id

        if status != PaymentStatus.approved:
            logger.info(f"Payment {payment_id} status: {status}")
            progress: dict[str, Any] = {}
            if user_id and plan_id:
                progress = {
                    "userId": user_id,
                    "planId": plan_id,
                    "paymentId": payment_id,
                    "status": status,
                }
            return ProcessResult(
                success=False, message=f"payment status: {status}", status=status, data=progress
            )

        if not user_id or not plan_id:
            logger.error(f"Payment {payment_id} has no resolvable user/plan reference")
            return ProcessResult(
                success=False, message="unresolvable payment reference", status=status
            )

        logger.info(f"Payment {payment_id} approved for user {user_id}, plan {plan_id}")
        return ProcessResult(
            success=True,
            message="payment approved",
            status=status,
            data={
                "userId": user_id,
                "planId": plan_id,
                "paymentId": payment_id,
                "status": status,
                "amount": payment.get("transaction_amount"),
                "date": payment.get("date_approved") or payment.get("date_created"),
                "payment_method": payment.get("payment_method_id"),
            },
        )


_payment_processor: PaymentProcessor | None = None


def init_payment_processor(client: MercadoPagoClient | None = None) -> PaymentProcessor:
    """初始化全局处理器实例"""
    global _payment_processor
    _payment_processor = PaymentProcessor(client=client or get_mercadopago_client())
    logger.info("Payment processor initialized")
    return _payment_processor


def get_payment_processor() -> PaymentProcessor:
    """
    获取全局处理器实例（用作 FastAPI 依赖）

    未初始化时按配置创建。
    """
    if _payment_processor is None:
        return init_payment_processor()
    return _payment_processor
