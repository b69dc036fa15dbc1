"""
支付通知解析

Mercado Pago 的通知格式随通知渠道变化（查询字符串 IPN、action/data 信封、
id/type 信封、商户订单信封、回调地址中的 payment_id）。
这里把每种格式写成一个独立的提取函数，按固定顺序依次尝试，第一个成功的结果生效。

解析失败返回 None，不抛异常：调用方仍需返回 200，避免支付服务反复重试。
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import re
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from vipsync.enums import NotificationTopic

logger = logging.getLogger(__name__)

# 签名时间戳允许的最大偏差（秒）
SIGNATURE_TOLERANCE_SECONDS = 5 * 60

_SIGNATURE_TS = re.compile(r"ts=(\d+)")
_SIGNATURE_V1 = re.compile(r"v1=([a-fA-F0-9]+)")


@dataclass(frozen=True)
class Notification:
    id: str
    topic: str


Strategy = Callable[[Mapping[str, Any], Any], "Notification | None"]


def _text(value: Any) -> str | None:
    """把 ID 统一为非空字符串（数字 ID 也会转换）"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = str(int(value)) if float(value).is_integer() else str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _build(notification_id: Any, topic: Any) -> Notification | None:
    nid = _text(notification_id)
    if nid is None:
        return None
    return Notification(id=nid, topic=_text(topic) or NotificationTopic.payment.value)


def from_query_data_id(query: Mapping[str, Any], body: Any) -> Notification | None:
    """?data.id=...&type=...（v2 webhook）"""
    if not query.get("data.id"):
        return None
    return _build(query.get("data.id"), query.get("type") or NotificationTopic.merchant_order.value)


def from_query_id_topic(query: Mapping[str, Any], body: Any) -> Notification | None:
    """?id=...&topic=...（经典 IPN）"""
    if not (query.get("id") and query.get("topic")):
        return None
    return _build(query.get("id"), query.get("topic"))


def from_body_action(query: Mapping[str, Any], body: Any) -> Notification | None:
    """
    {"action": "payment.created", "type": "payment", "data": {"id": "..."}}

    data 也可能是资源地址字符串，此时取最后一段作为 ID。
    主题优先取 type，否则取 action 中 "." 之前的部分。
    """
    if not isinstance(body, Mapping) or not body.get("action") or not body.get("data"):
        return None

    data = body["data"]
    if isinstance(data, Mapping):
        nid = data.get("id")
    elif isinstance(data, str) and "/" in data:
        nid = data.rstrip("/").rsplit("/", 1)[-1]
    else:
        nid = None

    topic = body.get("type") or str(body["action"]).split(".", 1)[0]
    return _build(nid, topic)


def from_body_id(query: Mapping[str, Any], body: Any) -> Notification | None:
    """{"id": "...", "type" | "topic": "..."}"""
    if not isinstance(body, Mapping) or not body.get("id"):
        return None
    return _build(body["id"], body.get("type") or body.get("topic"))


def from_body_merchant_order(query: Mapping[str, Any], body: Any) -> Notification | None:
    if not isinstance(body, Mapping) or not body.get("merchant_order_id"):
        return None
    return _build(body["merchant_order_id"], NotificationTopic.merchant_order.value)


def from_body_payment_id(query: Mapping[str, Any], body: Any) -> Notification | None:
    if not isinstance(body, Mapping) or not body.get("payment_id"):
        return None
    return _build(body["payment_id"], NotificationTopic.payment.value)


def from_query_payment_id(query: Mapping[str, Any], body: Any) -> Notification | None:
    """回调地址以表单形式转发时，只有 ?payment_id=..."""
    if not query.get("payment_id"):
        return None
    return _build(query.get("payment_id"), NotificationTopic.payment.value)


STRATEGIES: tuple[Strategy, ...] = (
    from_query_data_id,
    from_query_id_topic,
    from_body_action,
    from_body_id,
    from_body_merchant_order,
    from_body_payment_id,
    from_query_payment_id,
)


def parse_notification(query: Mapping[str, Any], body: Any) -> Notification | None:
    """
    解析支付通知

    Args:
        query: 查询参数
        body: 已解析的 JSON 请求体（可能为 None 或非字典）

    Returns:
        Notification(id, topic)；无法提取 ID 时返回 None
    """
    for strategy in STRATEGIES:
        notification = strategy(query, body)
        if notification is not None:
            return notification
    return None


def verify_signature(
    header: str | None,
    raw_body: bytes | str,
    secret: str,
    now: float | None = None,
) -> bool:
    """
    校验 x-signature 头

    格式为 "ts=<unix 秒>,v1=<hex>"，v1 是 HMAC-SHA256("<ts>.<原始请求体>")。
    时间戳与当前时间相差超过 5 分钟视为无效。
    """
    if not header:
        logger.warning("Webhook signature header missing")
        return False

    ts_match = _SIGNATURE_TS.search(header)
    sig_match = _SIGNATURE_V1.search(header)
    if not ts_match or not sig_match:
        logger.warning("Webhook signature header malformed")
        return False

    timestamp = int(ts_match.group(1))
    current = time.time() if now is None else now
    if abs(current - timestamp) > SIGNATURE_TOLERANCE_SECONDS:
        logger.warning(f"Webhook signature timestamp out of range: {current - timestamp:.0f}s")
        return False

    body = raw_body.decode("utf-8", errors="replace") if isinstance(raw_body, bytes) else raw_body
    expected = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{body}".encode(),
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(expected, sig_match.group(1).lower())
