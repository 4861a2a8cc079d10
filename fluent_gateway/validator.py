# fluent_gateway/validator.py
"""
请求校验与清洗。

所有进入网关的用户输入都先经过这里：先检查请求体大小 (在 JSON 解析之前)，
再检查单词数量上限，然后逐个规范化、清洗并过滤单词。无效单词被过滤而不是
让整个请求失败；只有在没有任何单词幸存时才拒绝请求。
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import BaseModel, Field

from fluent_gateway.config import ValidationConfig
from fluent_gateway.core.types import ContextRequest, TranslateRequest
from fluent_gateway.exceptions import PayloadTooLargeError, ValidationError

logger = structlog.get_logger(__name__)

SQL_INJECTION_PATTERN = re.compile(
    r"(\b(union|select|insert|update|delete|drop|create|alter|exec|execute|script"
    r"|javascript|eval)\b|--|/\*|\*/|;|\||\\x|\\u|%[0-9a-f]{2})",
    re.IGNORECASE,
)
SCRIPT_INJECTION_PATTERN = re.compile(
    r"<script|</script|javascript:|on\w+\s*=|eval\s*\(|expression\s*\(",
    re.IGNORECASE,
)
# 零宽字符、C0/C1 控制字符、双向覆盖字符与 BOM
CONTROL_CHARS_PATTERN = re.compile(
    "[\x00-\x1f\x7f-\x9f\u200b-\u200f\u202a-\u202e\u2060-\u206f\ufeff]"
)
WHITESPACE_PATTERN = re.compile(r"\s+")

# 外形与拉丁字母相同的西里尔/希腊字母
LOOKALIKE_CHARS = frozenset("\u0430\u0435\u043e\u0440\u0441\u0445\u03bf\u03c1")
SPOOF_SCRIPTS = frozenset({"CYRILLIC", "GREEK", "CHEROKEE"})
WORD_INNER_PUNCTUATION = frozenset("'-\u2019")


class WordListResult(BaseModel):
    """单词列表的校验结果。"""

    words: list[str]
    filtered: int = Field(default=0, ge=0)


def _script_of(char: str) -> str:
    name = unicodedata.name(char, "")
    return name.split(" ", 1)[0] if name else ""


def _is_word_shaped(word: str) -> bool:
    """字母开头，后续只允许字母、组合符号、撇号和连字符。"""
    if not unicodedata.category(word[0]).startswith("L"):
        return False
    for char in word[1:]:
        category = unicodedata.category(char)
        if category.startswith("L") or category.startswith("M"):
            continue
        if char in WORD_INNER_PUNCTUATION:
            continue
        return False
    return True


def has_mixed_script(word: str) -> bool:
    """检测拉丁字母与西里尔/希腊/切罗基字母混写 (同形字欺骗)。"""
    if any(char in LOOKALIKE_CHARS for char in word):
        return True
    scripts = {_script_of(char) for char in word if unicodedata.category(char).startswith("L")}
    return "LATIN" in scripts and bool(scripts & SPOOF_SCRIPTS)


def sanitize_text(text: str) -> str:
    """NFC 规范化，移除控制字符并折叠空白。"""
    normalized = unicodedata.normalize("NFC", text)
    normalized = CONTROL_CHARS_PATTERN.sub("", normalized)
    return WHITESPACE_PATTERN.sub(" ", normalized).strip()


class Validator:
    """网关的输入与上游输出校验器。"""

    def __init__(
        self, config: ValidationConfig, supported_languages: list[str]
    ) -> None:
        self.config = config
        self.supported_languages = frozenset(supported_languages)

    def check_payload_size(self, content_length: str | None, body: bytes) -> None:
        """在解析 JSON 之前检查请求体大小。"""
        limit = self.config.max_request_bytes
        if content_length is not None:
            try:
                declared = int(content_length)
            except ValueError:
                raise ValidationError(
                    "Content-Length 头格式无效", code="INVALID_CONTENT_LENGTH"
                ) from None
            if declared > limit:
                raise PayloadTooLargeError(f"请求体超过 {limit} 字节上限")
        if len(body) > limit:
            raise PayloadTooLargeError(f"请求体超过 {limit} 字节上限")

    def validate_language(self, code: Any) -> str:
        if not isinstance(code, str) or not code.strip():
            raise ValidationError("缺少目标语言", code="INVALID_LANGUAGE")
        normalized = code.strip().lower()
        if normalized not in self.supported_languages:
            raise ValidationError(
                f"不支持的目标语言: {normalized}", code="UNSUPPORTED_LANGUAGE"
            )
        return normalized

    def clean_word(self, raw: Any) -> str | None:
        """清洗单个单词；无效时返回 None。"""
        if not isinstance(raw, str):
            return None
        word = sanitize_text(raw)
        if not (self.config.min_word_length <= len(word) <= self.config.max_word_length):
            return None
        if SCRIPT_INJECTION_PATTERN.search(word) or SQL_INJECTION_PATTERN.search(word):
            return None
        if has_mixed_script(word):
            return None
        if not _is_word_shaped(word):
            return None
        return word

    def validate_word_list(self, words: Any) -> WordListResult:
        """
        校验并清洗单词列表。

        数量上限最先检查，超过上限时不做任何逐词处理。幸存单词按大小写不敏感
        的方式去重，保留第一次出现的拼写。
        """
        if not isinstance(words, list):
            raise ValidationError("words 必须是数组", code="INVALID_WORDS")
        if not words:
            raise ValidationError("words 不能为空", code="EMPTY_WORDS")
        if len(words) > self.config.max_words:
            raise ValidationError(
                f"单次最多提交 {self.config.max_words} 个单词",
                code="TOO_MANY_WORDS",
            )

        seen: set[str] = set()
        cleaned: list[str] = []
        for raw in words:
            word = self.clean_word(raw)
            if word is None:
                continue
            key = word.lower()
            if key in seen:
                continue
            seen.add(key)
            cleaned.append(word)

        filtered = len(words) - len(cleaned)
        if not cleaned:
            raise ValidationError("没有有效的单词", code="NO_VALID_WORDS")
        if filtered:
            logger.debug("部分单词未通过校验已被过滤", filtered_count=filtered)
        return WordListResult(words=cleaned, filtered=filtered)

    def validate_translate_request(self, payload: Any) -> TranslateRequest:
        """校验 /translate 请求体。单词数量上限在任何逐词处理之前检查。"""
        if not isinstance(payload, Mapping):
            raise ValidationError("请求体必须是 JSON 对象")
        result = self.validate_word_list(payload.get("words"))
        language = self.validate_language(payload.get("targetLanguage"))

        api_key = payload.get("apiKey")
        if api_key is not None:
            if not isinstance(api_key, str) or not (8 <= len(api_key.strip()) <= 256):
                raise ValidationError("apiKey 格式无效", code="INVALID_API_KEY")
            api_key = api_key.strip()

        enable_context = payload.get("enableContext", True)
        if not isinstance(enable_context, bool):
            raise ValidationError("enableContext 必须是布尔值")

        return TranslateRequest(
            words=result.words,
            words_filtered=result.filtered,
            language=language,
            enable_context=enable_context,
            api_key=api_key,
        )

    def validate_context_request(self, payload: Any) -> ContextRequest:
        """校验 /context 请求体。"""
        if not isinstance(payload, Mapping):
            raise ValidationError("请求体必须是 JSON 对象")
        word = self.clean_word(payload.get("word"))
        if word is None:
            raise ValidationError("word 无效", code="INVALID_WORD")
        translation = self.clean_translation(payload.get("translation"))
        if translation is None:
            raise ValidationError("translation 无效", code="INVALID_TRANSLATION")
        language = self.validate_language(payload.get("targetLanguage"))

        sentence: str | None = None
        raw_sentence = payload.get("sentence")
        if raw_sentence is not None:
            if not isinstance(raw_sentence, str):
                raise ValidationError("sentence 必须是字符串", code="INVALID_SENTENCE")
            sentence = sanitize_text(raw_sentence)[: self.config.max_sentence_length]
            if SCRIPT_INJECTION_PATTERN.search(sentence):
                raise ValidationError("sentence 包含不安全内容", code="INVALID_SENTENCE")
        return ContextRequest(
            word=word, translation=translation, language=language, sentence=sentence or None
        )

    def _clean_output(self, text: Any, max_length: int) -> str | None:
        if not isinstance(text, str):
            return None
        cleaned = sanitize_text(text)
        if not cleaned or len(cleaned) > max_length:
            return None
        if SCRIPT_INJECTION_PATTERN.search(cleaned):
            return None
        return cleaned

    def clean_translation(self, text: Any) -> str | None:
        """清洗上游返回的译文。无效时返回 None，由调用方决定回退策略。"""
        return self._clean_output(text, self.config.max_translation_length)

    def clean_context_field(self, text: Any) -> str | None:
        return self._clean_output(text, self.config.max_context_length)
