# fluent_gateway/cache.py
"""
两级缓存。

- 第一级 `RequestCoalescer`: 进程内的在途请求表。相同的并发上游调用只执行一次，
  其余调用方等待同一个结果。
- 第二级 `CacheStore`: 持久化的翻译缓存，一次批量查询取回整批单词；写入一律
  交给后台任务，从不阻塞响应。
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import random
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

import structlog
from cachetools import LRUCache

from fluent_gateway.background import BackgroundTaskSupervisor
from fluent_gateway.config import CacheConfig
from fluent_gateway.core.interfaces import PersistenceHandler
from fluent_gateway.core.types import (
    CacheLookup,
    ContextVariation,
    TranslationEntry,
    WordResult,
)

logger = structlog.get_logger(__name__)

_T = TypeVar("_T")


def generate_request_key(namespace: str, words: Iterable[str], language: str) -> str:
    """为一组单词生成确定性的键：与顺序和大小写无关。"""
    payload = json.dumps(
        sorted({w.lower() for w in words}),
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")
    return "|".join([namespace, language, hashlib.sha256(payload).hexdigest()])


class RequestCoalescer:
    """在途请求合并表，基于容量有限的 LRU 缓存。"""

    def __init__(self, maxsize: int = 1024):
        self._inflight: LRUCache[str, asyncio.Task[Any]] = LRUCache(maxsize=maxsize)

    def __len__(self) -> int:
        return len(self._inflight)

    async def run(self, key: str, factory: Callable[[], Awaitable[_T]]) -> _T:
        """
        执行 `factory()`，若相同的键已在途则等待已有结果。

        检查与登记之间没有 await，因此在单个事件循环内无需加锁。
        """
        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug("合并相同的在途请求", request_key=key[-12:])
        # shield: 一个调用方被取消不应影响其他等待者
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]


class CacheStore:
    """持久化翻译缓存的读写门面。"""

    def __init__(
        self,
        handler: PersistenceHandler,
        supervisor: BackgroundTaskSupervisor,
        config: CacheConfig | None = None,
        rng: random.Random | None = None,
    ):
        self._handler = handler
        self._supervisor = supervisor
        self.config = config or CacheConfig()
        self._rng = rng or random.Random()

    def rotate(self, entry: TranslationEntry) -> ContextVariation | None:
        """从已存储的变体中均匀随机地挑选一条。"""
        candidates = [v for v in entry.context_variations if not v.is_empty()]
        if not candidates:
            return None
        variation = self._rng.choice(candidates)
        if variation.pronunciation is None and entry.pronunciation:
            variation = variation.model_copy(update={"pronunciation": entry.pronunciation})
        return variation

    async def lookup(self, words: list[str], language: str) -> CacheLookup:
        """一次批量查询，把单词分为完整命中、仅译文命中与未命中三类。"""
        entries = await self._handler.get_entries(words, language)
        result = CacheLookup()
        for word in words:
            entry = entries.get(word.lower())
            if entry is None:
                result.misses.append(word)
                continue
            variation = self.rotate(entry)
            if variation is None:
                result.partial[word] = entry.translation
            else:
                result.hits[word] = WordResult.merge(entry.translation, variation)
        logger.debug(
            "缓存查询完成",
            language=language,
            hits=len(result.hits),
            partial=len(result.partial),
            misses=len(result.misses),
        )
        return result

    async def rotate_context(self, word: str, language: str) -> ContextVariation | None:
        entries = await self._handler.get_entries([word], language)
        entry = entries.get(word.lower())
        return self.rotate(entry) if entry else None

    async def store_translation(
        self,
        word: str,
        language: str,
        translation: str,
        variations: list[ContextVariation],
    ) -> None:
        pronunciation = next((v.pronunciation for v in variations if v.pronunciation), None)
        await self._handler.upsert_translation(
            word,
            language,
            translation,
            pronunciation,
            variations,
            self.config.max_context_variations,
        )

    async def store_variations(
        self,
        word: str,
        language: str,
        translation: str,
        variations: list[ContextVariation],
    ) -> list[ContextVariation]:
        return await self._handler.append_variations(
            word, language, translation, variations, self.config.max_context_variations
        )

    def write_translation(
        self,
        word: str,
        language: str,
        translation: str,
        variations: list[ContextVariation],
    ) -> asyncio.Task[None]:
        """后台写入译文及其初始变体。"""
        return self._supervisor.spawn(
            self.store_translation(word, language, translation, variations),
            name=f"cache-write:{language}",
        )

    def append_variations(
        self,
        word: str,
        language: str,
        translation: str,
        variations: list[ContextVariation],
    ) -> asyncio.Task[list[ContextVariation]]:
        """后台追加上下文变体。"""
        return self._supervisor.spawn(
            self.store_variations(word, language, translation, variations),
            name=f"cache-append:{language}",
        )
