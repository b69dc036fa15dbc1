"""
系统日志模型模块

记录每次对账/到期任务的执行结果，用于审计。
"""
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from .base import utc_now


class SystemLog(SQLModel, table=True):
    """
    系统日志模型

    - action: 任务名称（如 "check_pending_payments"）
    - details: 执行结果（JSON 格式）
    """
    __tablename__ = "system_logs"

    id: int | None = Field(default=None, primary_key=True)
    action: str = Field(max_length=64, index=True)
    details: dict | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
