"""
订阅模型模块

订阅表是 VIP 状态的账本：行不会被物理删除，只会转换为 expired / cancelled。
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String
from sqlmodel import Field, SQLModel

from vipsync.enums import SubscriptionStatus

from .base import utc_now


class Subscription(SQLModel, table=True):
    """
    订阅记录模型

    字段说明：
    - user_id: 用户 ID（外键）
    - plan_id / plan_name: 计划代码（如 vip-plus）与展示名称
    - status: 订阅状态（pending / active / expired / cancelled）
    - payment_status: 支付服务返回的原始状态字符串
    - payment_id: 支付服务的支付 ID（批准前可能为空）
    - preference_id: 创建结账时的支付偏好 ID
    - discord_role_assigned / rust_permission_assigned: 外部系统是否已授予权限
    """
    __tablename__ = "subscriptions"
    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(
        sa_column=Column(
            String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )

    plan_id: str = Field(max_length=64)
    plan_name: str = Field(max_length=64)

    status: SubscriptionStatus = Field(
        default=SubscriptionStatus.pending,
        sa_column=Column(String(16), index=True, nullable=False),
    )
    payment_status: str = Field(default="pending", max_length=32, index=True)
    payment_id: str | None = Field(
        default=None, sa_column=Column(String(64), index=True, nullable=True)
    )
    preference_id: str | None = Field(default=None, max_length=128)
    payment_method: str | None = Field(default=None, max_length=64)
    amount: Decimal = Field(
        default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False)
    )

    discord_role_assigned: bool = Field(default=False)
    rust_permission_assigned: bool = Field(default=False)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    expires_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), index=True, nullable=True)
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
