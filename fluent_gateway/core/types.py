# fluent_gateway/core/types.py
"""
本模块定义了 Fluent Gateway 的核心数据类型。

这些模型在各层之间传递：缓存、配额、上游适配器与编排器都只通过它们交换数据，
API 层最终把 `WordResult` 与 `TranslateMetadata` 序列化为响应体。
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ContextSource(str, Enum):
    """上下文变体的来源：模板生成的基础上下文，或 LLM 生成的增强上下文。"""

    BASIC = "basic"
    AI = "ai"


class UsageKind(str, Enum):
    TRANSLATION = "translation"
    CONTEXT = "context"


class ContextVariation(BaseModel):
    """单个单词的一条上下文变体。三个字段均独立校验，允许部分缺失。"""

    pronunciation: str | None = None
    meaning: str | None = None
    example: str | None = None
    source: ContextSource = ContextSource.AI

    def is_empty(self) -> bool:
        return not (self.pronunciation or self.meaning or self.example)

    def public_dict(self) -> dict[str, str]:
        """对外输出时省略来源标记和空字段。"""
        return {
            key: value
            for key, value in (
                ("pronunciation", self.pronunciation),
                ("meaning", self.meaning),
                ("example", self.example),
            )
            if value
        }


class TranslationEntry(BaseModel):
    """持久化层中的一条翻译缓存记录。"""

    word: str
    language: str
    translation: str
    pronunciation: str | None = None
    context_variations: list[ContextVariation] = Field(default_factory=list)
    etymology: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def has_context(self) -> bool:
        return any(not v.is_empty() for v in self.context_variations)


class WordResult(BaseModel):
    """`/translate` 响应中单个单词的统一结果结构。"""

    model_config = ConfigDict(frozen=True)

    translation: str
    pronunciation: str | None = None
    meaning: str | None = None
    example: str | None = None

    @classmethod
    def merge(
        cls, translation: str, variation: ContextVariation | None
    ) -> "WordResult":
        if variation is None:
            return cls(translation=translation)
        return cls(
            translation=translation,
            pronunciation=variation.pronunciation,
            meaning=variation.meaning,
            example=variation.example,
        )

    def public_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class CacheLookup(BaseModel):
    """
    批量缓存查询的结果。

    - `hits`: 译文和上下文都已就绪，上下文已随机轮换为其中一条变体。
    - `partial`: 只有译文；翻译上命中，但上下文视为未命中。
    - `misses`: 完全没有缓存记录的单词。
    """

    hits: dict[str, WordResult] = Field(default_factory=dict)
    partial: dict[str, str] = Field(default_factory=dict)
    misses: list[str] = Field(default_factory=list)

    @property
    def translation_hits(self) -> int:
        return len(self.hits) + len(self.partial)


class AuthContext(BaseModel):
    """认证通过后的调用方上下文。"""

    installation_id: str


class TranslateRequest(BaseModel):
    """校验后的 `/translate` 请求。"""

    words: list[str]
    words_filtered: int = 0
    language: str
    enable_context: bool = True
    # 调用方自带的翻译服务密钥 (BYOK)
    api_key: str | None = Field(default=None, repr=False)

    @property
    def byok(self) -> bool:
        return self.api_key is not None


class ContextRequest(BaseModel):
    """校验后的 `/context` 请求。"""

    word: str
    translation: str
    language: str
    sentence: str | None = None


class IssuedCredential(BaseModel):
    """注册或刷新后颁发给客户端的凭证。"""

    token: str = Field(repr=False)
    refresh_token: str = Field(repr=False)
    expires_in: int

    def public_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "refreshToken": self.refresh_token,
            "expiresIn": self.expires_in,
        }


class CredentialRecord(BaseModel):
    installation_id: str
    shared_key: str = Field(repr=False)
    refresh_token_hash: str = Field(repr=False)
    issued_at: datetime
    expires_at: datetime
    refresh_expires_at: datetime


class LimitsSnapshot(BaseModel):
    hourly_remaining: int
    daily_remaining: int
    hourly_limit: int
    daily_limit: int


class QuotaDecision(BaseModel):
    """一次配额检查的结果，也是后续 reserve/rollback 的凭据。"""

    installation_id: str
    language: str
    kind: UsageKind = UsageKind.TRANSLATION
    units: int
    multiplier: int = 1
    byok: bool = False
    hour_start: int
    day_start: int
    limits: LimitsSnapshot


class TranslateMetadata(BaseModel):
    cache_hits: int = 0
    cache_misses: int = 0
    words_processed: int = 0
    words_filtered: int = 0
    new_translations: int = 0
    partial: bool = False
    context_enhanced: bool = False
    limits: LimitsSnapshot | None = None

    def public_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "cacheHits": self.cache_hits,
            "cacheMisses": self.cache_misses,
            "wordsProcessed": self.words_processed,
            "wordsFiltered": self.words_filtered,
            "newTranslations": self.new_translations,
            "partial": self.partial,
            "contextEnhanced": self.context_enhanced,
        }
        if self.limits is not None:
            data["limits"] = {
                "hourlyRemaining": self.limits.hourly_remaining,
                "dailyRemaining": self.limits.daily_remaining,
            }
        return data


class TranslateOutcome(BaseModel):
    """编排器处理 `/translate` 的完整结果。"""

    translations: dict[str, WordResult]
    metadata: TranslateMetadata

    @property
    def cache_hit_rate(self) -> float:
        total = self.metadata.cache_hits + self.metadata.cache_misses
        return self.metadata.cache_hits / total if total else 0.0

    def public_dict(self) -> dict[str, Any]:
        return {
            "translations": {
                word: result.public_dict() for word, result in self.translations.items()
            },
            "metadata": self.metadata.public_dict(),
        }
