# fluent_gateway/cost_breaker.py
"""
全局成本熔断器。

对非 BYOK 调用方，每次付费上游调用之前估算本次成本 (字符数 × 单价)，
若叠加到当前小时/当天账本后超过上限，则拒绝调用。成本只在上游调用
成功之后记入账本。
"""

from __future__ import annotations

import structlog

from fluent_gateway.config import CostConfig
from fluent_gateway.core.interfaces import PersistenceHandler
from fluent_gateway.exceptions import CostLimitError
from fluent_gateway.utils import Window, seconds_until_reset, window_start

logger = structlog.get_logger(__name__)


class CostCircuitBreaker:
    def __init__(self, handler: PersistenceHandler, config: CostConfig) -> None:
        self._handler = handler
        self.config = config

    def estimate(self, characters: int) -> float:
        return characters * self.config.cost_per_character

    def _limits(self) -> dict[Window, float]:
        return {
            Window.HOUR: self.config.hourly_limit_usd,
            Window.DAY: self.config.daily_limit_usd,
        }

    @staticmethod
    def _windows() -> dict[Window, int]:
        return {window: window_start(window) for window in (Window.HOUR, Window.DAY)}

    async def check(self, characters: int) -> float:
        """检查本次调用是否会突破成本上限。返回估算成本。"""
        estimated = self.estimate(characters)
        if not self.config.enabled:
            return estimated

        spent = await self._handler.get_cost(self._windows())
        for window, limit in self._limits().items():
            if spent[window] + estimated > limit:
                logger.warning(
                    "成本熔断器已打开，拒绝上游调用",
                    window=window.value,
                    spent_usd=round(spent[window], 6),
                    estimated_usd=round(estimated, 6),
                    limit_usd=limit,
                )
                raise CostLimitError(
                    "服务已达到成本上限，请稍后重试或使用自己的 API 密钥",
                    window=window.value,
                    retry_after=seconds_until_reset(window),
                )
        return estimated

    async def record(self, characters: int) -> None:
        """在上游调用成功之后记入账本。"""
        if not self.config.enabled or characters <= 0:
            return
        await self._handler.add_cost(self._windows(), self.estimate(characters))
