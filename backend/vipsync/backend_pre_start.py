"""
应用启动前检查脚本

在应用（或调度器进程）启动前等待依赖服务就绪：
- 数据库：执行 select(1)
- Redis：PING（对账任务的锁依赖 Redis）

Docker Compose 启动时数据库 / Redis 容器可能还在初始化，这里最多重试 5 分钟。
"""
import logging

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select
from tenacity import (
    after_log,
    before_log,
    retry,
    stop_after_attempt,
    wait_fixed,
)

from vipsync.core.db import engine
from vipsync.core.redis_client import RedisClient, get_redis_client

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

max_tries = 60 * 5  # 5 分钟，每秒一次
wait_seconds = 1


@retry(
    stop=stop_after_attempt(max_tries),
    wait=wait_fixed(wait_seconds),
    before=before_log(logger, logging.INFO),
    after=after_log(logger, logging.WARN),
)
def wait_for_database(db_engine: Engine) -> None:
    try:
        with Session(db_engine) as session:
            session.exec(select(1))
    except SQLAlchemyError as e:
        logger.error(e)
        raise


@retry(
    stop=stop_after_attempt(max_tries),
    wait=wait_fixed(wait_seconds),
    before=before_log(logger, logging.INFO),
    after=after_log(logger, logging.WARN),
)
def wait_for_redis(redis_client: RedisClient) -> None:
    if not redis_client.ping():
        raise ConnectionError("Redis is not ready")


def main() -> None:
    logger.info("Waiting for database and Redis")
    wait_for_database(engine)
    wait_for_redis(get_redis_client())
    logger.info("Dependencies ready")


if __name__ == "__main__":  # pragma: no cover
    main()
