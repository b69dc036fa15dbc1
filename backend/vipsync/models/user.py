"""
用户模型模块

用户由身份服务创建（注册时），这里只保存与 VIP 同步相关的字段。
"""
from datetime import datetime
from uuid import uuid4

from sqlalchemy import Column, DateTime, String
from sqlmodel import Field, SQLModel

from vipsync.enums import UserRole

from .base import utc_now


class User(SQLModel, table=True):
    """
    用户模型

    字段说明：
    - id: 主键，身份服务的用户 ID（字符串）
    - discord_id: Discord 用户 ID（可选，唯一），也是支付外部引用中的用户标识之一
    - steam_id: SteamID64（可选），用于游戏服务器权限
    - role: 用户角色（user / vip / vip-plus / admin）
    """
    __tablename__ = "users"
    id: str = Field(
        default_factory=lambda: str(uuid4()),
        sa_column=Column(String(64), primary_key=True),
    )
    discord_id: str | None = Field(
        default=None,
        sa_column=Column(String(32), unique=True, index=True, nullable=True),
    )
    steam_id: str | None = Field(default=None, max_length=32)
    name: str | None = Field(default=None, max_length=128)
    email: str | None = Field(default=None, max_length=255)

    role: UserRole = Field(
        default=UserRole.user, sa_column=Column(String(16), nullable=False)
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
