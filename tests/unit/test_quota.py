# tests/unit/test_quota.py
"""针对 `fluent_gateway.quota` 的单元测试。"""

import pytest

from fluent_gateway.config import QuotaConfig
from fluent_gateway.core.interfaces import PersistenceHandler
from fluent_gateway.core.types import UsageKind
from fluent_gateway.exceptions import RateLimitError
from fluent_gateway.quota import QuotaGuard, WindowRateLimiter
from fluent_gateway.utils import Window, window_start

INSTALL = "install-quota-000001"


@pytest.fixture
def limiter(handler: PersistenceHandler) -> WindowRateLimiter:
    return WindowRateLimiter(handler)


@pytest.fixture
def guard(limiter: WindowRateLimiter) -> QuotaGuard:
    return QuotaGuard(limiter, QuotaConfig(hourly_limit=5, daily_limit=8))


@pytest.mark.asyncio
async def test_check_reports_remaining_after_request(guard: QuotaGuard) -> None:
    decision = await guard.check(INSTALL, "es", 3, payload_bytes=100)
    assert decision.units == 3
    assert decision.multiplier == 1
    assert decision.limits.hourly_remaining == 2
    assert decision.limits.daily_remaining == 5


@pytest.mark.asyncio
async def test_check_does_not_consume(guard: QuotaGuard, limiter: WindowRateLimiter) -> None:
    """只有 reserve 才会写入计数。"""
    await guard.check(INSTALL, "es", 3, payload_bytes=100)
    usage = await limiter.usage(
        INSTALL, "es", UsageKind.TRANSLATION, limiter.current_windows()
    )
    assert usage == {Window.HOUR: 0, Window.DAY: 0}


@pytest.mark.asyncio
async def test_hourly_limit_denies_with_retry_after(guard: QuotaGuard) -> None:
    decision = await guard.check(INSTALL, "es", 4, payload_bytes=100)
    await guard.reserve(decision)

    with pytest.raises(RateLimitError) as exc_info:
        await guard.check(INSTALL, "es", 2, payload_bytes=100)
    error = exc_info.value
    assert error.code == "RATE_LIMIT_HOUR"
    assert error.window == "hour"
    assert 1 <= error.retry_after <= 3600


@pytest.mark.asyncio
async def test_daily_limit_denies(guard: QuotaGuard, handler: PersistenceHandler) -> None:
    """天窗口的用量可能来自之前的小时。"""
    await handler.increment_usage(
        INSTALL, "es", UsageKind.TRANSLATION, {Window.DAY: window_start(Window.DAY)}, 7
    )
    with pytest.raises(RateLimitError) as exc_info:
        await guard.check(INSTALL, "es", 2, payload_bytes=100)
    assert exc_info.value.code == "RATE_LIMIT_DAY"


@pytest.mark.asyncio
async def test_quota_is_per_language(guard: QuotaGuard) -> None:
    decision = await guard.check(INSTALL, "es", 5, payload_bytes=100)
    await guard.reserve(decision)

    other = await guard.check(INSTALL, "fr", 5, payload_bytes=100)
    assert other.limits.hourly_remaining == 0


@pytest.mark.asyncio
async def test_large_payload_doubles_units(guard: QuotaGuard) -> None:
    decision = await guard.check(INSTALL, "es", 2, payload_bytes=6 * 1024)
    assert decision.multiplier == 2
    assert decision.units == 4

    with pytest.raises(RateLimitError):
        await guard.check(INSTALL, "es", 3, payload_bytes=6 * 1024)


@pytest.mark.asyncio
async def test_byok_uses_separate_limits(guard: QuotaGuard) -> None:
    decision = await guard.check(INSTALL, "es", 20, payload_bytes=100, byok=True)
    assert decision.byok is True
    assert decision.limits.hourly_limit == 1000


@pytest.mark.asyncio
async def test_rollback_returns_failed_units(
    guard: QuotaGuard, limiter: WindowRateLimiter
) -> None:
    decision = await guard.check(INSTALL, "es", 4, payload_bytes=100)
    await guard.reserve(decision)
    await guard.rollback(decision, failed_words=3)

    usage = await limiter.usage(
        INSTALL, "es", UsageKind.TRANSLATION, limiter.current_windows()
    )
    assert usage == {Window.HOUR: 1, Window.DAY: 1}


@pytest.mark.asyncio
async def test_rollback_never_exceeds_reserved_units(
    guard: QuotaGuard, limiter: WindowRateLimiter
) -> None:
    decision = await guard.check(INSTALL, "es", 2, payload_bytes=100)
    await guard.reserve(decision)
    await guard.rollback(decision, failed_words=10)

    usage = await limiter.usage(
        INSTALL, "es", UsageKind.TRANSLATION, limiter.current_windows()
    )
    assert usage == {Window.HOUR: 0, Window.DAY: 0}


@pytest.mark.asyncio
async def test_zero_words_returns_snapshot_even_when_exhausted(guard: QuotaGuard) -> None:
    """全部命中缓存的请求不受配额限制。"""
    decision = await guard.check(INSTALL, "es", 5, payload_bytes=100)
    await guard.reserve(decision)

    snapshot = await guard.check(INSTALL, "es", 0, payload_bytes=100)
    assert snapshot.units == 0
    assert snapshot.limits.hourly_remaining == 0


@pytest.mark.asyncio
async def test_context_quota_is_separate(guard: QuotaGuard) -> None:
    decision = await guard.check(INSTALL, "es", 5, payload_bytes=100)
    await guard.reserve(decision)

    context_decision = await guard.check_context(INSTALL, "es")
    assert context_decision.kind is UsageKind.CONTEXT
    assert context_decision.units == 1
    assert context_decision.limits.hourly_limit == 10
