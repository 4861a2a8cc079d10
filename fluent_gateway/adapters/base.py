# fluent_gateway/adapters/base.py
"""
本模块定义了所有机器翻译适配器必须继承的抽象基类。

基类负责分块、并行发起、重试与退避、速率限制以及相同请求的合并；
子类只需实现单个分块的上游调用。
"""

from __future__ import annotations

import asyncio
import hashlib
from abc import ABC, abstractmethod
from typing import Generic, TypeVar

import structlog

from fluent_gateway.cache import RequestCoalescer, generate_request_key
from fluent_gateway.config import RetryPolicyConfig, TranslatorConfig
from fluent_gateway.exceptions import ExternalServiceError, PartialTranslationError
from fluent_gateway.rate_limiter import RateLimiter
from fluent_gateway.validator import Validator

logger = structlog.get_logger(__name__)

_ConfigType = TypeVar("_ConfigType", bound=TranslatorConfig)


class BaseTranslationAdapter(ABC, Generic[_ConfigType]):
    """机器翻译适配器的纯异步抽象基类。"""

    VERSION: str = "1.0.0"

    def __init__(
        self,
        config: _ConfigType,
        validator: Validator,
        retry_policy: RetryPolicyConfig | None = None,
        coalescer: RequestCoalescer | None = None,
    ):
        self.config = config
        self.validator = validator
        self.retry_policy = retry_policy or RetryPolicyConfig()
        self._coalescer = coalescer or RequestCoalescer()
        self._rate_limiter: RateLimiter | None = None
        self.initialized = False

        if config.rpm:
            self._rate_limiter = RateLimiter(refill_rate=config.rpm / 60, capacity=config.rpm)

    @property
    def name(self) -> str:
        """从类名自动推断适配器名称。"""
        return self.__class__.__name__.replace("TranslationAdapter", "").lower()

    async def initialize(self) -> None:
        """异步初始化钩子，用于创建连接池等。"""
        self.initialized = True

    async def close(self) -> None:
        """异步关闭钩子，用于安全释放资源。"""
        self.initialized = False

    @abstractmethod
    async def _translate_chunk(
        self, words: list[str], language: str, api_key: str | None
    ) -> list[str | None]:
        """[子类实现] 翻译一个分块，按位置返回结果；单个结果可以为 None。"""
        ...

    def chunk(self, words: list[str]) -> list[list[str]]:
        size = self.config.chunk_size
        return [words[i : i + size] for i in range(0, len(words), size)]

    def _backoff(self, attempt: int) -> float:
        return min(
            self.retry_policy.initial_backoff * (2**attempt),
            self.retry_policy.max_backoff,
        )

    async def _run_chunk(
        self, words: list[str], language: str, api_key: str | None
    ) -> list[str | None]:
        """[模板方法] 执行一个分块，应用速率限制与有界的指数退避重试。"""
        max_attempts = self.retry_policy.max_attempts
        for attempt in range(max_attempts):
            if self._rate_limiter:
                await self._rate_limiter.acquire()
            try:
                return await self._translate_chunk(words, language, api_key)
            except ExternalServiceError as e:
                if not e.is_retryable or attempt == max_attempts - 1:
                    raise
                delay = self._backoff(attempt)
                logger.warning(
                    "翻译分块调用失败，准备重试",
                    adapter=self.name,
                    attempt=attempt + 1,
                    max_attempts=max_attempts,
                    delay=delay,
                    error=e.message,
                )
                await asyncio.sleep(delay)
        raise ExternalServiceError("重试次数配置无效", is_retryable=False)

    async def _translate_all(
        self, words: list[str], language: str, api_key: str | None
    ) -> dict[str, str]:
        chunks = self.chunk(words)
        results = await asyncio.gather(
            *(self._run_chunk(chunk, language, api_key) for chunk in chunks),
            return_exceptions=True,
        )

        translations: dict[str, str] = {}
        failed_words: list[str] = []
        last_error: BaseException | None = None
        for chunk, result in zip(chunks, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failed_words.extend(chunk)
                last_error = result
                continue
            for index, word in enumerate(chunk):
                raw = result[index] if index < len(result) else None
                if not raw:
                    # 上游没有给出译文：按失败处理，不缓存也不计费
                    failed_words.append(word)
                    continue
                cleaned = self.validator.clean_translation(raw)
                # 给出了但无效的译文回退为原词
                translations[word] = cleaned if cleaned is not None else word

        if failed_words:
            logger.error(
                "部分单词翻译失败",
                adapter=self.name,
                failed_count=len(failed_words),
                succeeded_count=len(translations),
                error=(
                    f"{last_error.__class__.__name__}: {last_error}"
                    if last_error is not None
                    else "上游结果缺失"
                ),
            )
            raise PartialTranslationError(
                f"{len(failed_words)} 个单词翻译失败", translations, failed_words
            )
        return translations

    async def translate(
        self, words: list[str], language: str, api_key: str | None = None
    ) -> dict[str, str]:
        """
        翻译一组单词，返回 {原词: 译文}。

        分块并行调用上游并按位置合并；有分块失败时抛出
        `PartialTranslationError`，其中携带成功部分。相同的并发请求只调用一次上游。
        """
        if not words:
            return {}
        namespace = f"translate:{self.name}"
        if api_key:
            # BYOK 请求不与使用平台密钥的请求合并
            namespace += ":" + hashlib.sha256(api_key.encode()).hexdigest()[:16]
        key = generate_request_key(namespace, words, language)
        return await self._coalescer.run(
            key, lambda: self._translate_all(list(words), language, api_key)
        )
