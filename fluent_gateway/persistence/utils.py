# fluent_gateway/persistence/utils.py
"""持久化层的纯函数工具。"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from fluent_gateway.core.types import ContextSource, ContextVariation


def merge_variations(
    existing: Iterable[ContextVariation],
    incoming: Iterable[ContextVariation],
    max_variations: int,
) -> list[ContextVariation]:
    """
    合并上下文变体列表。

    规则：
    1. 只要新增变体中有 AI 生成的，就丢弃已存储的基础 (模板) 变体。
    2. 已有 AI 变体的记录不再接收基础变体。
    3. 内容完全相同的变体只保留一条，空变体被忽略。
    4. 超过上限时从最旧的开始丢弃。
    """
    incoming = [v for v in incoming if not v.is_empty()]
    current = list(existing)
    if any(v.source is ContextSource.AI for v in incoming):
        current = [v for v in current if v.source is not ContextSource.BASIC]
    if any(v.source is ContextSource.AI for v in current):
        incoming = [v for v in incoming if v.source is not ContextSource.BASIC]

    merged: list[ContextVariation] = []
    seen: set[tuple[str | None, str | None, str | None]] = set()
    for variation in [*current, *incoming]:
        fingerprint = (variation.pronunciation, variation.meaning, variation.example)
        if fingerprint in seen:
            continue
        seen.add(fingerprint)
        merged.append(variation)

    if len(merged) > max_variations:
        merged = merged[-max_variations:]
    return merged


def dump_variations(variations: Iterable[ContextVariation]) -> list[dict[str, Any]]:
    return [v.model_dump(mode="json") for v in variations]


def load_variations(raw: Any) -> list[ContextVariation]:
    """容忍历史数据中的脏记录：无法解析的条目直接跳过。"""
    if not isinstance(raw, list):
        return []
    variations: list[ContextVariation] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            variations.append(ContextVariation.model_validate(item))
        except ValueError:
            continue
    return variations
