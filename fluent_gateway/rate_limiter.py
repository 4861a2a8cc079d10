# fluent_gateway/rate_limiter.py
"""
本模块提供基于令牌桶算法的异步速率限制器。

- `RateLimiter`: 单个令牌桶，用于限制发往上游服务商的请求速率。
- `KeyedRateLimiter`: 按键 (通常是客户端 IP) 分桶的非阻塞限制器，
  用于保护无需认证的端点。
"""

import asyncio
import math
import time

from cachetools import TTLCache


class RateLimiter:
    """一个异步安全的令牌桶（Token Bucket）速率限制器。"""

    def __init__(self, refill_rate: float, capacity: float):
        if refill_rate <= 0 or capacity <= 0:
            raise ValueError("速率和容量必须为正数")
        self.refill_rate = refill_rate
        self.capacity = capacity
        self.tokens = capacity
        self.last_refill_time = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        """[私有] 根据流逝的时间补充令牌。"""
        now = time.monotonic()
        elapsed = now - self.last_refill_time
        if elapsed > 0:
            self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
            self.last_refill_time = now

    async def acquire(self, tokens_needed: int = 1) -> None:
        """异步获取指定数量的令牌，如果令牌不足则等待。"""
        if tokens_needed > self.capacity:
            raise ValueError("请求的令牌数不能超过桶的容量")

        while True:
            async with self._lock:
                self._refill()
                if self.tokens >= tokens_needed:
                    self.tokens -= tokens_needed
                    return
                wait_time = (tokens_needed - self.tokens) / self.refill_rate

            # 在锁外等待，允许其他协程并发地计算和进入等待状态
            await asyncio.sleep(wait_time)

    def try_acquire(self, tokens_needed: int = 1) -> float:
        """
        非阻塞地尝试获取令牌。

        成功时返回 0；失败时不消耗令牌，返回需要等待的秒数。
        事件循环是单线程的，且本方法内没有 await，因此无需加锁。
        """
        self._refill()
        if self.tokens >= tokens_needed:
            self.tokens -= tokens_needed
            return 0.0
        return (tokens_needed - self.tokens) / self.refill_rate


class KeyedRateLimiter:
    """按键分桶的速率限制器。长时间不活跃的桶会随 TTL 自动淘汰。"""

    def __init__(self, requests_per_minute: int, maxsize: int = 10_000):
        if requests_per_minute <= 0:
            raise ValueError("速率和容量必须为正数")
        self.requests_per_minute = requests_per_minute
        self._buckets: TTLCache[str, RateLimiter] = TTLCache(maxsize=maxsize, ttl=120)

    def check(self, key: str) -> int:
        """返回 0 表示放行，否则返回建议的重试秒数。"""
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = RateLimiter(
                refill_rate=self.requests_per_minute / 60,
                capacity=self.requests_per_minute,
            )
        # 重新写入以刷新 TTL
        self._buckets[key] = bucket
        wait = bucket.try_acquire()
        return 0 if wait == 0 else max(1, math.ceil(wait))
