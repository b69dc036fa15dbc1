"""
Redis 客户端

对账任务只用到两样东西：
- 任务锁：SET NX EX 获取，Lua 脚本比较锁值后删除
- 上次执行结果：JSON 字符串，带过期时间

Redis 不可用时所有方法都返回失败值并记录日志，不向调用方抛异常；
对账任务拿不到锁就直接跳过本次执行。
"""

import json
import logging
from typing import Any

import redis

from vipsync.core.config import settings

logger = logging.getLogger(__name__)

# 只删除自己持有的锁
_RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisClient:
    def __init__(
        self,
        *,
        host: str,
        port: int,
        db: int = 0,
        password: str | None = None,
    ) -> None:
        # redis-py 在第一次执行命令时才建立连接
        self.client = redis.Redis(
            host=host, port=port, db=db, password=password, decode_responses=True
        )
        logger.info(f"Redis client configured for {host}:{port}/{db}")

    @classmethod
    def from_settings(cls) -> "RedisClient":
        return cls(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD,
        )

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    def get_json(self, key: str) -> Any | None:
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            logger.error(f"Redis GET {key} failed: {e}")
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.error(f"Redis key {key} does not hold valid JSON")
            return None

    def set_json(self, key: str, value: Any, ex: int | None = None) -> bool:
        """写入 JSON，datetime 等非 JSON 类型按 str() 序列化"""
        try:
            payload = json.dumps(value, default=str)
            return bool(self.client.set(key, payload, ex=ex))
        except (redis.RedisError, TypeError) as e:
            logger.error(f"Redis SET {key} failed: {e}")
            return False

    def acquire_lock(self, lock_key: str, lock_value: str, expire_seconds: int = 60) -> bool:
        """
        获取任务锁

        expire_seconds 之后锁自动失效，持有进程崩溃也不会永久占用。
        Redis 不可用时视为未获取。
        """
        try:
            return bool(self.client.set(lock_key, lock_value, ex=expire_seconds, nx=True))
        except redis.RedisError as e:
            logger.error(f"Could not acquire lock {lock_key}: {e}")
            return False

    def release_lock(self, lock_key: str, lock_value: str) -> bool:
        try:
            released = self.client.eval(_RELEASE_LOCK_SCRIPT, 1, lock_key, lock_value)
        except redis.RedisError as e:
            logger.error(f"Could not release lock {lock_key}: {e}")
            return False
        if released != 1:
            logger.warning(f"Lock {lock_key} was no longer held by this run")
        return released == 1


_redis_client: RedisClient | None = None


def get_redis_client() -> RedisClient:
    """全局 Redis 客户端（FastAPI 依赖、调度器共用）"""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient.from_settings()
    return _redis_client
