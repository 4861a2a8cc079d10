# fluent_gateway/coordinator.py
"""本模块包含网关的主协调器：串联缓存、配额、上游调用与上下文合并。"""

from __future__ import annotations

import asyncio

import structlog

from fluent_gateway.adapters.base import BaseTranslationAdapter
from fluent_gateway.adapters.llm_context import LLMContextAdapter
from fluent_gateway.background import BackgroundTaskSupervisor
from fluent_gateway.basic_context import generate_basic_variations
from fluent_gateway.cache import CacheStore
from fluent_gateway.config import GatewayConfig
from fluent_gateway.core.interfaces import PersistenceHandler
from fluent_gateway.core.types import (
    AuthContext,
    CacheLookup,
    ContextRequest,
    ContextVariation,
    LimitsSnapshot,
    QuotaDecision,
    TranslateMetadata,
    TranslateOutcome,
    TranslateRequest,
    WordResult,
)
from fluent_gateway.cost_breaker import CostCircuitBreaker
from fluent_gateway.exceptions import (
    CostLimitError,
    ExternalServiceError,
    GatewayError,
    PartialTranslationError,
    RateLimitError,
)
from fluent_gateway.quota import QuotaGuard
from fluent_gateway.utils import Window, days_ago, window_start

logger = structlog.get_logger(__name__)


class Coordinator:
    """异步主协调器，是 `/translate` 与 `/context` 处理流程的中心枢纽。"""

    def __init__(
        self,
        config: GatewayConfig,
        persistence_handler: PersistenceHandler,
        cache: CacheStore,
        quota: QuotaGuard,
        cost_breaker: CostCircuitBreaker,
        translation_adapter: BaseTranslationAdapter,
        context_adapter: LLMContextAdapter | None,
        supervisor: BackgroundTaskSupervisor,
    ):
        self.config = config
        self.handler = persistence_handler
        self.cache = cache
        self.quota = quota
        self.cost_breaker = cost_breaker
        self.translation_adapter = translation_adapter
        self.context_adapter = context_adapter
        self.supervisor = supervisor
        self.initialized = False
        self._shutting_down = False

    async def initialize(self) -> None:
        """连接数据库并初始化上游适配器。"""
        if self.initialized:
            return
        logger.info("协调器初始化开始...")
        await self.handler.connect()
        if self.config.auto_create_schema:
            await self.handler.create_schema()
        if not self.translation_adapter.initialized:
            await self.translation_adapter.initialize()
        self.initialized = True
        logger.info(
            "协调器初始化完成。",
            translator=self.translation_adapter.name,
            ai_context=self.context_adapter is not None,
        )

    async def close(self) -> None:
        """优雅停机：先等待后台任务写完，再关闭上游客户端和数据库。"""
        if self._shutting_down or not self.initialized:
            return
        logger.info("开始优雅停机...")
        self._shutting_down = True
        await self.supervisor.close()
        closers = [self.translation_adapter.close()]
        if self.context_adapter is not None:
            closers.append(self.context_adapter.close())
        await asyncio.gather(*closers, return_exceptions=True)
        await self.handler.close()
        self.initialized = False
        logger.info("优雅停机完成。")

    # ------------------------------------------------------------------
    # /translate
    # ------------------------------------------------------------------

    @staticmethod
    def _cached_results(lookup: CacheLookup) -> dict[str, WordResult]:
        results = dict(lookup.hits)
        for word, translation in lookup.partial.items():
            results[word] = WordResult(translation=translation)
        return results

    def _ordered(
        self, words: list[str], results: dict[str, WordResult]
    ) -> dict[str, WordResult]:
        return {word: results[word] for word in words if word in results}

    def _deny(
        self,
        error: GatewayError,
        request: TranslateRequest,
        lookup: CacheLookup,
    ) -> GatewayError:
        """配额或成本拒绝时，把已缓存的译文附在错误上一并返回。"""
        outcome = TranslateOutcome(
            translations=self._ordered(request.words, self._cached_results(lookup)),
            metadata=TranslateMetadata(
                cache_hits=lookup.translation_hits,
                cache_misses=len(lookup.misses),
                words_processed=len(request.words),
                words_filtered=request.words_filtered,
                partial=True,
            ),
        )
        error.partial_result = outcome.public_dict()
        return error

    async def _translate_misses(
        self, request: TranslateRequest, misses: list[str]
    ) -> tuple[dict[str, str], list[str]]:
        """调用翻译适配器，返回 ({原词: 译文}, 失败的单词)。"""
        try:
            raw = await self.translation_adapter.translate(
                misses, request.language, request.api_key
            )
        except PartialTranslationError as e:
            raw = e.translations
        except ExternalServiceError as e:
            logger.error("翻译服务调用失败", error=e.message, code=e.code)
            raw = {}

        # 合并的在途请求可能以另一种大小写登记单词
        by_lower = {word.lower(): translation for word, translation in raw.items()}
        translations = {w: by_lower[w.lower()] for w in misses if w.lower() in by_lower}
        failed = [w for w in misses if w not in translations]
        return translations, failed

    async def _store_generated(
        self,
        task: asyncio.Task[dict[str, list[ContextVariation]]],
        translations: dict[str, str],
        language: str,
    ) -> None:
        """等待 AI 生成任务结束后把变体交给后台写入；生成失败已由监督器记录。"""
        await asyncio.wait({task})
        if task.cancelled() or task.exception() is not None:
            return
        for word, variations in task.result().items():
            self.cache.append_variations(word, language, translations[word], variations)

    async def _race_ai_context(
        self, words: list[str], translations: dict[str, str], language: str
    ) -> dict[str, list[ContextVariation]]:
        """
        在截止时间内等待 AI 上下文。只有生成本身参与竞速，缓存写入由后台续写任务完成，
        因此无论是否超时，响应都不会等待持久化。
        """
        if self.context_adapter is None or not words:
            return {}
        task = self.supervisor.spawn(
            self.context_adapter.generate(words, translations, language),
            name=f"ai-context:{language}",
        )
        self.supervisor.spawn(
            self._store_generated(task, translations, language),
            name=f"ai-context-store:{language}",
        )
        done, _ = await asyncio.wait(
            {task}, timeout=self.config.context.race_deadline_seconds
        )
        if task not in done:
            logger.info(
                "AI 上下文未在截止时间内返回，使用基础上下文",
                deadline=self.config.context.race_deadline_seconds,
                word_count=len(words),
            )
            return {}
        if task.cancelled() or task.exception() is not None:
            return {}
        return task.result()

    async def _record_cost(self, characters: int) -> None:
        await self.cost_breaker.record(characters)

    async def translate(
        self, auth: AuthContext, request: TranslateRequest, payload_bytes: int
    ) -> TranslateOutcome:
        language = request.language
        lookup = await self.cache.lookup(request.words, language)
        results = self._cached_results(lookup)
        misses = lookup.misses

        decision: QuotaDecision | None = None
        new_translations: dict[str, str] = {}
        failed: list[str] = []

        if misses:
            try:
                decision = await self.quota.check(
                    auth.installation_id,
                    language,
                    len(misses),
                    payload_bytes,
                    byok=request.byok,
                )
                if not request.byok:
                    await self.cost_breaker.check(sum(len(w) for w in misses))
            except (RateLimitError, CostLimitError) as e:
                raise self._deny(e, request, lookup) from None

            await self.quota.reserve(decision)
            new_translations, failed = await self._translate_misses(request, misses)

            if failed:
                self.supervisor.spawn(
                    self.quota.rollback(decision, len(failed)), name="quota-rollback"
                )
            if new_translations and not request.byok:
                self.supervisor.spawn(
                    self._record_cost(sum(len(w) for w in new_translations)),
                    name="cost-record",
                )
            if not new_translations and not results:
                raise ExternalServiceError("翻译服务暂时不可用，请稍后重试")
        else:
            decision = await self.quota.check(
                auth.installation_id, language, 0, payload_bytes, byok=request.byok
            )

        # 需要上下文的单词：仅有译文的缓存记录 + 新翻译的单词
        needs_context = {**lookup.partial, **new_translations}
        enhanced: dict[str, list[ContextVariation]] = {}
        if request.enable_context and needs_context:
            enhanced = await self._race_ai_context(
                list(needs_context), needs_context, language
            )

        for word, translation in needs_context.items():
            variations: list[ContextVariation] = []
            if word in enhanced:
                # 由续写任务写入缓存
                variations = enhanced[word]
            elif request.enable_context:
                variations = generate_basic_variations(
                    word, translation, language, self.config.context.variations_per_word
                )
                if word in lookup.partial:
                    self.cache.append_variations(word, language, translation, variations)
            if word in new_translations and word not in enhanced:
                self.cache.write_translation(word, language, translation, variations)
            results[word] = WordResult.merge(
                translation, variations[0] if variations else None
            )

        metadata = TranslateMetadata(
            cache_hits=lookup.translation_hits,
            cache_misses=len(misses),
            words_processed=len(request.words),
            words_filtered=request.words_filtered,
            new_translations=len(new_translations),
            partial=bool(failed),
            context_enhanced=bool(enhanced),
            limits=self._limits_after(decision, failed),
        )
        logger.info(
            "翻译请求处理完成",
            installation_id=auth.installation_id,
            language=language,
            cache_hits=metadata.cache_hits,
            cache_misses=metadata.cache_misses,
            new_count=metadata.new_translations,
            failed_count=len(failed),
            byok=request.byok,
        )
        return TranslateOutcome(
            translations=self._ordered(request.words, results), metadata=metadata
        )

    @staticmethod
    def _limits_after(decision: QuotaDecision, failed: list[str]) -> LimitsSnapshot:
        refund = min(decision.units, len(failed) * decision.multiplier)
        limits = decision.limits
        return limits.model_copy(
            update={
                "hourly_remaining": limits.hourly_remaining + refund,
                "daily_remaining": limits.daily_remaining + refund,
            }
        )

    # ------------------------------------------------------------------
    # /context
    # ------------------------------------------------------------------

    async def context(
        self, auth: AuthContext, request: ContextRequest
    ) -> ContextVariation | None:
        """
        返回单词的一条上下文：优先轮换已缓存的变体，否则调用 AI 生成并后台写入。
        AI 不可用或失败时返回 None。
        """
        cached = await self.cache.rotate_context(request.word, request.language)
        if cached is not None:
            return cached
        if self.context_adapter is None:
            return None

        decision = await self.quota.check_context(auth.installation_id, request.language)
        await self.quota.reserve(decision)
        try:
            variation = await self.context_adapter.generate_one(
                request.word, request.translation, request.language, request.sentence
            )
        except ExternalServiceError as e:
            logger.warning("AI 上下文生成失败", error=e.message, code=e.code)
            self.supervisor.spawn(self.quota.rollback(decision, 1), name="quota-rollback")
            return None

        if variation is None:
            self.supervisor.spawn(self.quota.rollback(decision, 1), name="quota-rollback")
            return None
        self.cache.append_variations(
            request.word, request.language, request.translation, [variation]
        )
        return variation

    # ------------------------------------------------------------------
    # 维护
    # ------------------------------------------------------------------

    async def run_garbage_collection(self, dry_run: bool = False) -> dict[str, int]:
        """清理长期不活跃的安装实例，以及过期的用量计数与成本窗口。"""
        retention = self.config.retention
        usage_cutoff = window_start(Window.DAY, days_ago(retention.usage_days))
        return await self.handler.garbage_collect(
            installation_cutoff=days_ago(retention.installation_days),
            usage_cutoff=usage_cutoff,
            dry_run=dry_run,
        )
