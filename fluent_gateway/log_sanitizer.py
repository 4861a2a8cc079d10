# fluent_gateway/log_sanitizer.py
"""
日志脱敏处理器。

在渲染之前清洗 structlog 事件字典：屏蔽邮箱、Bearer 令牌、API 密钥、
类似银行卡号的数字串和 IP 地址；按键名屏蔽凭证类字段，并截断
单词/译文等用户内容，避免在日志中留下可还原的浏览记录。
"""

import re
from collections.abc import Mapping, MutableMapping
from typing import Any

REDACTED = "[REDACTED]"

_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[EMAIL]"),
    (re.compile(r"\bBearer\s+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE), "Bearer [TOKEN]"),
    (re.compile(r"\b(?:sk|pk)[-_][A-Za-z0-9_-]{8,}\b"), "[API_KEY]"),
    (re.compile(r"\b(?:\d[ -]?){13,19}\b"), "[CARD]"),
    (re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"), "[IP]"),
]

_SECRET_KEY_PARTS = ("token", "key", "secret", "password", "auth", "signature")
_CONTENT_KEY_PARTS = ("word", "translation", "text", "content", "sentence")
# structlog 自身使用的键，不参与按键名的脱敏
_RESERVED_KEYS = frozenset({"event", "level", "logger", "timestamp", "exc_info"})


def redact_text(value: str) -> str:
    for pattern, replacement in _PATTERNS:
        value = pattern.sub(replacement, value)
    return value


def _truncate(value: Any) -> Any:
    if isinstance(value, str):
        return f"{value[:3]}***" if len(value) > 3 else "***"
    if isinstance(value, list | tuple | set):
        return f"<{len(value)} items>"
    if isinstance(value, Mapping):
        return f"<{len(value)} entries>"
    return value


def sanitize_value(key: str, value: Any, depth: int = 0) -> Any:
    lowered = key.lower()
    if key not in _RESERVED_KEYS:
        if any(part in lowered for part in _SECRET_KEY_PARTS):
            return REDACTED
        if any(part in lowered for part in _CONTENT_KEY_PARTS):
            return _truncate(value)
    if isinstance(value, str):
        return redact_text(value)
    if depth >= 3:
        return value
    if isinstance(value, Mapping):
        return {str(k): sanitize_value(str(k), v, depth + 1) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [sanitize_value(key, v, depth + 1) for v in value]
    return value


def redact_sensitive(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog 处理器：就地脱敏事件字典。"""
    for key in list(event_dict.keys()):
        event_dict[key] = sanitize_value(key, event_dict[key])
    return event_dict
