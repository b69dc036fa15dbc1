"""
出站调用重试策略

基于 tenacity 实现有界指数退避：
- 默认 3 次尝试，首次等待 0.5 秒，倍数 2，±15% 抖动，最大 5 秒
- 只重试瞬时错误：网络/超时错误、429、5xx
- 重试耗尽后抛出最后一次的原始异常，不会无限重试
"""
from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from vipsync.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_transient_error(exc: BaseException) -> bool:
    """判断异常是否值得重试"""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in TRANSIENT_STATUS_CODES
    return isinstance(exc, httpx.TransportError)


class wait_backoff_jitter(wait_base):
    """指数退避 + 按比例抖动，并限制最大等待时间"""

    def __init__(
        self,
        *,
        initial: float,
        factor: float,
        jitter: float,
        maximum: float,
        rand: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self.initial = initial
        self.factor = factor
        self.jitter = jitter
        self.maximum = maximum
        self.rand = rand

    def __call__(self, retry_state: RetryCallState) -> float:
        base = self.initial * self.factor ** (retry_state.attempt_number - 1)
        delay = base * (1 + self.rand(-self.jitter, self.jitter))
        return max(0.0, min(delay, self.maximum))


@dataclass
class RetryPolicy:
    """可注入的重试策略（测试中可以把 sleep 替换为空函数）"""

    attempts: int = 3
    initial_delay: float = 0.5
    factor: float = 2.0
    jitter: float = 0.15
    max_delay: float = 5.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        return cls(
            attempts=settings.RETRY_ATTEMPTS,
            initial_delay=settings.RETRY_INITIAL_DELAY_SECONDS,
            factor=settings.RETRY_BACKOFF_FACTOR,
            jitter=settings.RETRY_JITTER_RATIO,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
        )

    def retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_backoff_jitter(
                initial=self.initial_delay,
                factor=self.factor,
                jitter=self.jitter,
                maximum=self.max_delay,
            ),
            retry=retry_if_exception(is_transient_error),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self.sleep,
            reraise=True,
        )

    def call(self, fn: Callable[[], T]) -> T:
        """按策略执行 fn，返回其结果或抛出最后一次异常"""
        return self.retrying()(fn)
