"""
Mercado Pago 支付 API 集成模块

封装以下接口：
- 支付查询: GET /v1/payments/{id}
- 商户订单查询（包含订单下的支付列表）: GET /merchant_orders/{id}
- 创建支付偏好（结账）: POST /checkout/preferences

查询结果先读 TTL 缓存；未命中时通过重试策略调用 API，成功后写入缓存。
重试耗尽或遇到非瞬时错误时抛出 PaymentProviderError，不会静默吞掉：
支付状态未知时不能继续授予权限。
"""
from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

import httpx

from vipsync.api.errors import PaymentProviderError, provider_not_configured
from vipsync.core.cache import TTLCache
from vipsync.core.config import settings
from vipsync.core.retry import RetryPolicy

logger = logging.getLogger(__name__)

_PAYMENT_PATH = "/v1/payments/{payment_id}"
_MERCHANT_ORDER_PATH = "/merchant_orders/{order_id}"
_PREFERENCE_PATH = "/checkout/preferences"


class MercadoPagoClient:
    """Mercado Pago REST 客户端（带缓存与重试）"""

    def __init__(
        self,
        *,
        access_token: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        retry: RetryPolicy | None = None,
        payment_cache: TTLCache[dict[str, Any]] | None = None,
        order_cache: TTLCache[dict[str, Any]] | None = None,
    ) -> None:
        self._access_token = access_token
        self._base_url = (base_url or settings.MERCADOPAGO_API_URL).rstrip("/")
        self._timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self._retry = retry or RetryPolicy.from_settings()
        self.payment_cache: TTLCache[dict[str, Any]] = payment_cache or TTLCache(
            ttl_seconds=settings.PAYMENT_CACHE_TTL_SECONDS,
            max_entries=settings.PAYMENT_CACHE_MAX_ENTRIES,
        )
        self.order_cache: TTLCache[dict[str, Any]] = order_cache or TTLCache(
            ttl_seconds=settings.PAYMENT_CACHE_TTL_SECONDS,
            max_entries=settings.PAYMENT_CACHE_MAX_ENTRIES,
        )

    @classmethod
    def from_settings(cls) -> MercadoPagoClient:
        return cls(access_token=settings.MERCADOPAGO_ACCESS_TOKEN)

    @property
    def configured(self) -> bool:
        return bool(self._access_token)

    def _headers(self, *, idempotency_key: str | None = None) -> dict[str, str]:
        if not self._access_token:
            raise provider_not_configured()
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            # 重试 POST 时保证只创建一次
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    def _get(self, path: str) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        headers = self._headers()

        def send() -> dict[str, Any]:
            with httpx.Client(timeout=self._timeout) as client:
                r = client.get(url, headers=headers)
                r.raise_for_status()
                return r.json()

        return self._call(send, f"GET {path}")

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        headers = self._headers(idempotency_key=str(uuid4()))

        def send() -> dict[str, Any]:
            with httpx.Client(timeout=self._timeout) as client:
                r = client.post(url, json=payload, headers=headers)
                r.raise_for_status()
                return r.json()

        return self._call(send, f"POST {path}")

    def _call(self, send, label: str) -> dict[str, Any]:
        try:
            data = self._retry.call(send)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"Mercado Pago {label} failed with status {status}")
            raise PaymentProviderError(f"Mercado Pago {label} failed: HTTP {status}")
        except httpx.HTTPError as e:
            logger.error(f"Mercado Pago {label} failed: {e!r}")
            raise PaymentProviderError(f"Mercado Pago {label} failed: {e}")
        except ValueError as e:
            raise PaymentProviderError(f"Mercado Pago {label} returned invalid JSON: {e}")
        if not isinstance(data, dict):
            raise PaymentProviderError(f"Mercado Pago {label} returned unexpected payload")
        return data

    def get_payment_status(self, payment_id: str) -> dict[str, Any]:
        """
        查询支付详情

        Returns:
            支付对象（包含 status、external_reference、transaction_amount、metadata 等）

        Raises:
            PaymentProviderError: 未配置、重试耗尽或非瞬时错误
        """
        key = f"payment:{payment_id}"
        cached = self.payment_cache.get(key)
        if cached is not None:
            return cached

        data = self._get(_PAYMENT_PATH.format(payment_id=payment_id))
        self.payment_cache.set(key, data)
        return data

    def get_merchant_order(self, order_id: str) -> dict[str, Any]:
        """查询商户订单（payments 字段为订单下的支付列表）"""
        key = f"order:{order_id}"
        cached = self.order_cache.get(key)
        if cached is not None:
            return cached

        data = self._get(_MERCHANT_ORDER_PATH.format(order_id=order_id))
        self.order_cache.set(key, data)
        return data

    def create_preference(
        self,
        *,
        title: str,
        price: float,
        user_id: str,
        plan_id: str,
        quantity: int = 1,
        success_url: str | None = None,
        failure_url: str | None = None,
    ) -> dict[str, Any]:
        """
        创建结账偏好

        external_reference 使用 "<userId>|<planId>" 格式，支付通知到达时据此找回用户和计划；
        metadata 中同样保存一份，作为回退。
        """
        base_url = settings.PUBLIC_BASE_URL.rstrip("/")
        payload = {
            "items": [
                {
                    "id": plan_id,
                    "title": title,
                    "unit_price": float(price),
                    "quantity": int(quantity or 1),
                    "currency_id": "BRL",
                }
            ],
            "external_reference": f"{user_id}|{plan_id}",
            "back_urls": {
                "success": success_url or f"{base_url}/perfil?success=true",
                "failure": failure_url or f"{base_url}/checkout/{plan_id}?error=true",
                "pending": f"{base_url}/perfil?pending=true",
            },
            "auto_return": "approved",
            "notification_url": f"{base_url}{settings.API_V1_STR}/webhook/mercadopago",
            "payment_methods": {"installments": settings.MERCADOPAGO_MAX_INSTALLMENTS},
            "metadata": {"user_id": user_id, "plan_id": plan_id},
        }
        data = self._post(_PREFERENCE_PATH, payload)
        logger.info(f"Mercado Pago preference created: {data.get('id')}")
        return {
            "id": data.get("id"),
            "init_point": data.get("init_point"),
            "sandbox_init_point": data.get("sandbox_init_point"),
        }


_mercadopago_client: MercadoPagoClient | None = None


def get_mercadopago_client() -> MercadoPagoClient:
    """获取全局 Mercado Pago 客户端实例（缓存随实例长期存在）"""
    global _mercadopago_client
    if _mercadopago_client is None:
        _mercadopago_client = MercadoPagoClient.from_settings()
    return _mercadopago_client
