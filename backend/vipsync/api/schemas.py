"""
API 请求/响应数据模型（Schema）

定义所有 API 接口的请求和响应数据结构。
使用 Pydantic 进行数据验证和序列化。

这些模型不是数据库表，只用于 API 数据交换。
请求体字段沿用前端的 camelCase 命名（paymentId、planId），通过 alias 映射。
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from vipsync.enums import NotificationTopic, SubscriptionStatus

# ============================================================
# 通用响应模型
# ============================================================


class Message(BaseModel):
    message: str


class TokenPayload(BaseModel):
    """
    JWT Token 载荷模型

    sub (subject) 存储身份服务的用户 ID。
    """
    sub: str | None = None


class ApiEnvelope(BaseModel):
    """
    API 统一响应格式

    - code: 状态码（0 表示成功，非 0 表示错误）
    - message: 消息（成功时为 "success"，错误时为错误描述）
    - data: 数据（成功时返回业务数据，错误时为 None）

    示例响应：
        {"code": 0, "message": "success", "data": {...}}
        {"code": 404001, "message": "User not found", "data": None}
    """
    code: int = 0
    message: str = "success"
    data: Any | None = None


# ============================================================
# Webhook
# ============================================================


class WebhookResult(BaseModel):
    """
    支付通知处理结果

    无论业务结果如何 webhook 都返回 200，success 字段表示是否激活了订阅。
    """
    success: bool
    message: str
    topic: str | None = None
    id: str | None = None
    subscription_id: int | None = None
    discord_role_assigned: bool | None = None
    rust_permission_assigned: bool | None = None


# ============================================================
# 管理接口
# ============================================================


class ReprocessPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(alias="paymentId", min_length=1, max_length=64)
    topic: NotificationTopic = NotificationTopic.payment
    # 支付引用缺失或错误时手动指定
    user_id: str | None = Field(default=None, alias="userId", min_length=1, max_length=64)
    plan_id: str | None = Field(default=None, alias="planId", min_length=1, max_length=64)
    # 为 True 时总是新建订阅，不复用已记录该支付的订阅
    allow_duplicates: bool = Field(default=False, alias="allowDuplicates")


class ReprocessPaymentData(BaseModel):
    subscription_id: int | None
    user_id: str
    plan_id: str
    payment_id: str
    status: str | None = None
    amount: Any | None = None
    expires_at: datetime | None = None
    discord_role_assigned: bool
    rust_permission_assigned: bool
    provisioning_errors: dict[str, str] = {}


class SweepResult(BaseModel):
    """
    对账/到期/同步任务的执行结果

    details 中每一项包含订阅 ID 与处理结果；超时会追加 {"id": "timeout"}。
    """
    checked: int = 0
    processed: int = 0
    errors: int = 0
    details: list[dict[str, Any]] = []
    message: str | None = None


# ============================================================
# 订阅
# ============================================================


class SubscriptionCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan_id: str = Field(alias="planId", min_length=1, max_length=64)
    success_url: str | None = Field(default=None, alias="successUrl", max_length=512)
    failure_url: str | None = Field(default=None, alias="failureUrl", max_length=512)


class CheckoutData(BaseModel):
    subscription_id: int
    preference_id: str | None = None
    init_point: str | None = None
    sandbox_init_point: str | None = None


class SubscriptionPublic(BaseModel):
    id: int
    plan_id: str
    plan_name: str
    status: SubscriptionStatus
    payment_status: str
    payment_id: str | None = None
    amount: Decimal
    created_at: datetime
    expires_at: datetime | None = None
    discord_role_assigned: bool
    rust_permission_assigned: bool


class SubscriptionStatusData(BaseModel):
    """
    订阅状态响应模型

    is_vip 只在存在未过期的 active 订阅时为 True。
    """
    is_vip: bool
    role: str
    subscription: SubscriptionPublic | None = None
