# fluent_gateway/quota.py
"""
按调用方的配额控制。

配额以固定的小时窗口和天窗口 (UTC 边界) 统计，计数只存在于
`fg_usage_counters` 表中，它是配额判断的唯一依据。缓存命中从不计数：
编排器只在存在未命中单词时才调用 `check`/`reserve`。
"""

from __future__ import annotations

import structlog

from fluent_gateway.config import QuotaConfig
from fluent_gateway.core.interfaces import PersistenceHandler
from fluent_gateway.core.types import LimitsSnapshot, QuotaDecision, UsageKind
from fluent_gateway.exceptions import RateLimitError
from fluent_gateway.utils import Window, seconds_until_reset, window_start

logger = structlog.get_logger(__name__)


class WindowRateLimiter:
    """基于持久化计数器的固定窗口限流器。"""

    def __init__(self, handler: PersistenceHandler) -> None:
        self._handler = handler

    @staticmethod
    def current_windows() -> dict[Window, int]:
        return {window: window_start(window) for window in (Window.HOUR, Window.DAY)}

    async def usage(
        self,
        installation_id: str,
        language: str,
        kind: UsageKind,
        windows: dict[Window, int],
    ) -> dict[Window, int]:
        return await self._handler.get_usage(installation_id, language, kind, windows)

    async def consume(
        self,
        installation_id: str,
        language: str,
        kind: UsageKind,
        windows: dict[Window, int],
        units: int,
    ) -> None:
        if units:
            await self._handler.increment_usage(
                installation_id, language, kind, windows, units
            )


class QuotaGuard:
    """配额守卫：检查、预占与回滚。"""

    def __init__(self, limiter: WindowRateLimiter, config: QuotaConfig) -> None:
        self._limiter = limiter
        self.config = config

    def _limits_for(self, kind: UsageKind, byok: bool) -> dict[Window, int]:
        if kind is UsageKind.CONTEXT:
            return {
                Window.HOUR: self.config.context_hourly_limit,
                Window.DAY: self.config.context_daily_limit,
            }
        if byok:
            return {
                Window.HOUR: self.config.byok_hourly_limit,
                Window.DAY: self.config.byok_daily_limit,
            }
        return {Window.HOUR: self.config.hourly_limit, Window.DAY: self.config.daily_limit}

    def multiplier_for(self, payload_bytes: int) -> int:
        if payload_bytes > self.config.large_payload_bytes:
            return self.config.large_payload_multiplier
        return 1

    async def _evaluate(
        self,
        installation_id: str,
        language: str,
        kind: UsageKind,
        units: int,
        multiplier: int,
        byok: bool,
    ) -> QuotaDecision:
        windows = self._limiter.current_windows()
        limits = self._limits_for(kind, byok)
        used = await self._limiter.usage(installation_id, language, kind, windows)
        remaining = {w: max(0, limits[w] - used[w]) for w in windows}

        for window in (Window.HOUR, Window.DAY):
            if remaining[window] < units:
                retry_after = seconds_until_reset(window)
                logger.info(
                    "调用方配额不足",
                    installation_id=installation_id,
                    language=language,
                    usage_kind=kind.value,
                    window=window.value,
                    requested_units=units,
                    remaining=remaining[window],
                    retry_after=retry_after,
                )
                raise RateLimitError(
                    f"{'小时' if window is Window.HOUR else '每日'}配额已用尽",
                    window=window.value,
                    retry_after=retry_after,
                )

        return QuotaDecision(
            installation_id=installation_id,
            language=language,
            kind=kind,
            units=units,
            multiplier=multiplier,
            byok=byok,
            hour_start=windows[Window.HOUR],
            day_start=windows[Window.DAY],
            limits=LimitsSnapshot(
                hourly_remaining=remaining[Window.HOUR] - units,
                daily_remaining=remaining[Window.DAY] - units,
                hourly_limit=limits[Window.HOUR],
                daily_limit=limits[Window.DAY],
            ),
        )

    async def check(
        self,
        installation_id: str,
        language: str,
        new_words: int,
        payload_bytes: int,
        byok: bool = False,
    ) -> QuotaDecision:
        """
        检查翻译配额。计费单位 = 新单词数 × 倍率，请求体超过阈值时倍率翻倍。
        `new_words` 为 0 时只返回当前余量快照。
        """
        multiplier = self.multiplier_for(payload_bytes)
        return await self._evaluate(
            installation_id,
            language,
            UsageKind.TRANSLATION,
            new_words * multiplier,
            multiplier,
            byok,
        )

    async def check_context(self, installation_id: str, language: str) -> QuotaDecision:
        """检查 /context 的 AI 生成配额，每次生成计 1 个单位。"""
        return await self._evaluate(
            installation_id, language, UsageKind.CONTEXT, 1, 1, False
        )

    @staticmethod
    def _windows_of(decision: QuotaDecision) -> dict[Window, int]:
        return {Window.HOUR: decision.hour_start, Window.DAY: decision.day_start}

    async def reserve(self, decision: QuotaDecision) -> None:
        """预占配额。在调用上游之前执行，失败的部分随后通过 rollback 归还。"""
        await self._limiter.consume(
            decision.installation_id,
            decision.language,
            decision.kind,
            self._windows_of(decision),
            decision.units,
        )

    async def rollback(self, decision: QuotaDecision, failed_words: int) -> None:
        """归还上游调用失败的单词所预占的配额。"""
        units = min(decision.units, failed_words * decision.multiplier)
        if units <= 0:
            return
        await self._limiter.consume(
            decision.installation_id,
            decision.language,
            decision.kind,
            self._windows_of(decision),
            -units,
        )
        logger.info(
            "已回滚失败单词的配额",
            installation_id=decision.installation_id,
            usage_kind=decision.kind.value,
            units=units,
        )
