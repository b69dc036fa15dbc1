from __future__ import annotations

import pytest

from vipsync.core.cache import ProcessedMarkers, TTLCache


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_ttl_cache_hit_at_boundary_and_miss_after():
    clock = _Clock()
    cache: TTLCache[dict] = TTLCache(ttl_seconds=60, max_entries=10, clock=clock)
    cache.set("payment:1", {"status": "approved"})

    clock.now += 60
    assert cache.get("payment:1") == {"status": "approved"}

    clock.now += 0.001
    assert cache.get("payment:1") is None
    assert len(cache) == 0


def test_ttl_cache_eviction_keeps_size_bounded():
    cache: TTLCache[int] = TTLCache(ttl_seconds=60, max_entries=10)
    for i in range(25):
        cache.set(f"k{i}", i)
        assert len(cache) <= 10

    # 最新写入的条目一定保留，最早的已被淘汰
    assert cache.get("k24") == 24
    assert cache.get("k0") is None


def test_ttl_cache_overwrite_refreshes_timestamp():
    clock = _Clock()
    cache: TTLCache[str] = TTLCache(ttl_seconds=10, max_entries=5, clock=clock)
    cache.set("a", "old")
    clock.now += 8
    cache.set("a", "new")
    clock.now += 8
    assert cache.get("a") == "new"


def test_ttl_cache_rejects_non_positive_capacity():
    with pytest.raises(ValueError):
        TTLCache(ttl_seconds=1, max_entries=0)


def test_processed_markers_mark_discard_and_evict():
    markers = ProcessedMarkers(max_entries=10)
    markers.mark("payment", "1")
    assert markers.is_processed("payment", "1")
    assert not markers.is_processed("merchant_order", "1")

    markers.discard("payment", "1")
    assert not markers.is_processed("payment", "1")

    for i in range(11):
        markers.mark("payment", str(i))
    # 超过上限后删除最旧的 20%
    assert len(markers) == 9
    assert not markers.is_processed("payment", "0")
    assert markers.is_processed("payment", "10")
