"""
数据库连接模块

管理数据库引擎的创建。

重要提示：
- 数据库表结构通过 Alembic 迁移管理，不要在这里创建表
- 确保在使用前导入所有模型（vipsync.models），否则关系可能无法正确初始化
"""
from sqlmodel import create_engine

from vipsync.core.config import settings

# 创建数据库引擎（连接池）
# pool_pre_ping: 托管 Postgres 会主动断开空闲连接
engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI), pool_pre_ping=True)
