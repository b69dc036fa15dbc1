"""
进程内缓存模块

提供两个有界的数据结构：
- TTLCache: 带过期时间的查询结果缓存（支付、商户订单）
- ProcessedMarkers: 已处理通知的幂等标记集合

两者都按插入顺序淘汰最旧的 20% 条目，避免内存无限增长。
实例由长生命周期的服务对象持有，不使用模块级全局变量，便于在测试中替换。

注意：状态只在当前进程内有效，多实例部署时各实例互不可见。
"""
from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any, Generic, TypeVar

V = TypeVar("V")

EVICTION_RATIO = 0.2


def _evict_oldest(entries: dict[str, Any], ratio: float = EVICTION_RATIO) -> int:
    """按插入顺序删除最旧的一部分条目，返回删除数量（至少 1 条）"""
    count = max(1, int(len(entries) * ratio))
    for key in list(entries)[:count]:
        del entries[key]
    return count


class TTLCache(Generic[V]):
    """
    有界 TTL 缓存

    - get: 在 TTL 内（含边界）返回缓存值，超过 TTL 视为未命中并删除
    - set: 容量已满时先淘汰最旧的 20%，保证 len <= max_entries
    """

    def __init__(
        self,
        *,
        ttl_seconds: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, tuple[V, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> V | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, stored_at = entry
            if self._clock() - stored_at > self._ttl:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: V) -> None:
        with self._lock:
            # 覆盖写入时重新计入插入顺序
            self._entries.pop(key, None)
            if len(self._entries) >= self._max_entries:
                _evict_oldest(self._entries)
            self._entries[key] = (value, self._clock())

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None


class ProcessedMarkers:
    """
    已处理通知的幂等标记

    key 格式为 "topic:id"。集合超过上限时删除最旧的 20%。
    """

    def __init__(self, *, max_entries: int = 1000) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._max_entries = max_entries
        # dict 保留插入顺序，当作有序集合使用
        self._keys: dict[str, None] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(topic: str, notification_id: str) -> str:
        return f"{topic}:{notification_id}"

    def is_processed(self, topic: str, notification_id: str) -> bool:
        return self.key(topic, notification_id) in self._keys

    def mark(self, topic: str, notification_id: str) -> None:
        with self._lock:
            self._keys[self.key(topic, notification_id)] = None
            if len(self._keys) > self._max_entries:
                _evict_oldest(self._keys)

    def discard(self, topic: str, notification_id: str) -> None:
        with self._lock:
            self._keys.pop(self.key(topic, notification_id), None)

    def clear(self) -> None:
        with self._lock:
            self._keys.clear()

    def __len__(self) -> int:
        return len(self._keys)
