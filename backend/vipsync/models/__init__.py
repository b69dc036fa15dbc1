"""
数据库模型定义模块

模型按功能拆分：
- user.py: 用户模型
- subscription.py: 订阅账本
- system_log.py: 任务执行日志
"""
from sqlmodel import SQLModel

from .base import as_utc, utc_now
from .subscription import Subscription
from .system_log import SystemLog
from .user import User

__all__ = [
    "SQLModel",
    "utc_now",
    "as_utc",
    "User",
    "Subscription",
    "SystemLog",
]
