# fluent_gateway/adapters/llm_context.py
"""
使用 OpenAI 兼容的 Chat Completions 接口生成增强上下文。

批量接口对一整批单词只发起一次调用，要求每个单词返回至少 N 条互不相同的
变体；解析时每条变体的每个字段独立校验，单个字段无效不会丢弃整条变体。
"""

from __future__ import annotations

import json
import re
from typing import Any

import httpx
import structlog
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    PermissionDeniedError,
    RateLimitError,
)
from openai.types.chat import (
    ChatCompletionMessageParam,
    ChatCompletionSystemMessageParam,
    ChatCompletionUserMessageParam,
)

from fluent_gateway.basic_context import LANGUAGE_NAMES
from fluent_gateway.cache import RequestCoalescer, generate_request_key
from fluent_gateway.config import ContextConfig
from fluent_gateway.core.types import ContextSource, ContextVariation
from fluent_gateway.exceptions import ConfigurationError, ExternalServiceError
from fluent_gateway.validator import Validator

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a language learning assistant for English speakers. "
    "Respond with valid JSON only, no markdown or additional text."
)

BATCH_PROMPT_TEMPLATE = """For each English word and its {language} translation below, provide {count} DIFFERENT variations of:
1. Easy-to-read pronunciation of the {language} word (like "doo-rah-DEH-roh" for Spanish "duradero")
2. A simple, clear definition in English (vary the phrasing for each variation)
3. A practical example sentence IN {language_upper} using the translated word (different contexts)

Format your response as a JSON object with the English word as key and an array of {count} variation objects, each containing "pronunciation", "meaning" and "example".

Words to analyze:
{word_lines}"""

SINGLE_PROMPT_TEMPLATE = """Create a practical example for learning this word.

Word: "{word}" (English)
Translation: "{translation}" ({language})
{sentence_line}
Respond with a JSON object containing:
- "pronunciation": how to pronounce the {language} word (e.g. "OH-lah" for "hola")
- "meaning": a short, clear definition in English
- "example": a simple sentence in {language} using the translation"""

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class LLMContextAdapter:
    """LLM 上下文生成适配器。"""

    def __init__(
        self,
        config: ContextConfig,
        validator: Validator,
        coalescer: RequestCoalescer | None = None,
        client: Any | None = None,
    ):
        self.config = config
        self.validator = validator
        self._coalescer = coalescer or RequestCoalescer()
        if client is None:
            if config.api_key is None:
                raise ConfigurationError(
                    "上下文生成配置错误: 缺少 API 密钥 (FG_CONTEXT__API_KEY)。"
                )
            client = AsyncOpenAI(
                api_key=config.api_key.get_secret_value(),
                base_url=config.base_url,
                timeout=httpx.Timeout(config.timeout_total, connect=5.0),
                max_retries=1,
            )
        self.client = client

    async def close(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()
            logger.info("LLM 客户端已关闭。")

    def _language_name(self, language: str) -> str:
        return LANGUAGE_NAMES.get(language, language)

    async def _complete(self, prompt: str) -> str:
        messages: list[ChatCompletionMessageParam] = [
            ChatCompletionSystemMessageParam(role="system", content=SYSTEM_PROMPT),
            ChatCompletionUserMessageParam(role="user", content=prompt),
        ]
        try:
            response = await self.client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                response_format={"type": "json_object"},
            )
        except (RateLimitError, APITimeoutError, APIConnectionError) as e:
            raise ExternalServiceError(f"LLM 服务暂时不可用: {e}") from e
        except (AuthenticationError, PermissionDeniedError) as e:
            raise ExternalServiceError(
                "LLM 服务拒绝了 API 密钥", code="UPSTREAM_AUTH", is_retryable=False
            ) from e
        except APIStatusError as e:
            raise ExternalServiceError(
                f"LLM 服务返回错误 (HTTP {e.status_code})",
                is_retryable=e.status_code >= 500,
            ) from e

        if not response.choices:
            raise ExternalServiceError("LLM 返回了空的 'choices' 列表。")
        content = response.choices[0].message.content
        if isinstance(content, list):
            content = "".join(getattr(part, "text", "") for part in content)
        if not content:
            raise ExternalServiceError("LLM 返回了空内容。")
        return str(content)

    @staticmethod
    def _parse_json(content: str) -> Any:
        try:
            return json.loads(_CODE_FENCE.sub("", content.strip()))
        except json.JSONDecodeError as e:
            raise ExternalServiceError(
                "LLM 返回了无效的 JSON", code="UPSTREAM_INVALID_RESPONSE", is_retryable=False
            ) from e

    def _parse_variation(self, raw: Any) -> ContextVariation | None:
        if not isinstance(raw, dict):
            return None
        variation = ContextVariation(
            pronunciation=self.validator.clean_translation(raw.get("pronunciation")),
            meaning=self.validator.clean_context_field(raw.get("meaning")),
            example=self.validator.clean_context_field(raw.get("example")),
            source=ContextSource.AI,
        )
        return None if variation.is_empty() else variation

    def parse_batch(self, content: str, words: list[str]) -> dict[str, list[ContextVariation]]:
        """把批量响应解析为 {原词: [变体...]}，缺失或全部无效的单词不出现在结果中。"""
        data = self._parse_json(content)
        if not isinstance(data, dict):
            raise ExternalServiceError(
                "LLM 返回了意外的结构", code="UPSTREAM_INVALID_RESPONSE", is_retryable=False
            )
        by_lower = {str(key).lower(): value for key, value in data.items()}

        parsed: dict[str, list[ContextVariation]] = {}
        for word in words:
            raw = by_lower.get(word.lower())
            if isinstance(raw, dict):
                raw = [raw]
            if not isinstance(raw, list):
                continue
            variations = [v for v in (self._parse_variation(item) for item in raw) if v]
            if variations:
                parsed[word] = variations
        return parsed

    async def _generate(
        self, words: list[str], translations: dict[str, str], language: str
    ) -> dict[str, list[ContextVariation]]:
        language_name = self._language_name(language)
        prompt = BATCH_PROMPT_TEMPLATE.format(
            language=language_name,
            language_upper=language_name.upper(),
            count=self.config.variations_per_word,
            word_lines="\n".join(
                f'"{word}" → "{translations.get(word, word)}"' for word in words
            ),
        )
        content = await self._complete(prompt)
        parsed = self.parse_batch(content, words)
        logger.info(
            "AI 上下文生成完成",
            language=language,
            requested=len(words),
            generated=len(parsed),
        )
        return parsed

    async def generate(
        self, words: list[str], translations: dict[str, str], language: str
    ) -> dict[str, list[ContextVariation]]:
        """一次批量调用为所有单词生成上下文变体。相同的并发请求只调用一次。"""
        if not words:
            return {}
        key = generate_request_key("context-batch", words, language)
        return await self._coalescer.run(
            key, lambda: self._generate(list(words), dict(translations), language)
        )

    async def _generate_one(
        self, word: str, translation: str, language: str, sentence: str | None
    ) -> ContextVariation | None:
        language_name = self._language_name(language)
        prompt = SINGLE_PROMPT_TEMPLATE.format(
            word=word,
            translation=translation,
            language=language_name,
            sentence_line=(
                f'Context where the word was found: "{sentence}"\n' if sentence else ""
            ),
        )
        content = await self._complete(prompt)
        return self._parse_variation(self._parse_json(content))

    async def generate_one(
        self,
        word: str,
        translation: str,
        language: str,
        sentence: str | None = None,
    ) -> ContextVariation | None:
        """为单个单词生成一条上下文，可结合它出现的句子。"""
        key = generate_request_key(f"context-one:{sentence or ''}", [word], language)
        return await self._coalescer.run(
            key, lambda: self._generate_one(word, translation, language, sentence)
        )
