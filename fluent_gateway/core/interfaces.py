# fluent_gateway/core/interfaces.py
"""持久化处理器的纯异步接口协议。"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from fluent_gateway.core.types import (
    ContextVariation,
    CredentialRecord,
    TranslationEntry,
    UsageKind,
)
from fluent_gateway.utils import Window


class PersistenceHandler(Protocol):
    """网关所需的全部存储操作。"""

    is_sqlite: bool

    async def connect(self) -> None:
        """建立与数据库的连接。"""
        ...

    async def close(self) -> None:
        """关闭与数据库的连接。"""
        ...

    async def create_schema(self) -> None:
        """按 ORM 模型创建缺失的表 (开发与测试环境)。"""
        ...

    # --- 安装实例与凭证 ---

    async def save_credential(
        self,
        record: CredentialRecord,
        client_version: str | None,
        platform: str | None,
    ) -> None:
        """插入或替换安装实例及其唯一凭证。"""
        ...

    async def get_credential(self, installation_id: str) -> CredentialRecord | None: ...

    async def touch_installation(self, installation_id: str, seen_at: datetime) -> None: ...

    # --- 翻译缓存 ---

    async def get_entries(
        self, words: list[str], language: str
    ) -> dict[str, TranslationEntry]:
        """一次查询取回所有单词的缓存记录，键为小写单词。"""
        ...

    async def upsert_translation(
        self,
        word: str,
        language: str,
        translation: str,
        pronunciation: str | None,
        variations: list[ContextVariation],
        max_variations: int,
    ) -> None: ...

    async def append_variations(
        self,
        word: str,
        language: str,
        translation: str,
        variations: list[ContextVariation],
        max_variations: int,
    ) -> list[ContextVariation]:
        """追加上下文变体，返回写入后的完整列表。"""
        ...

    # --- 用量与成本 ---

    async def get_usage(
        self,
        installation_id: str,
        language: str,
        kind: UsageKind,
        windows: dict[Window, int],
    ) -> dict[Window, int]: ...

    async def increment_usage(
        self,
        installation_id: str,
        language: str,
        kind: UsageKind,
        windows: dict[Window, int],
        delta: int,
    ) -> None:
        """原子地调整计数；delta 为负数时用于回滚，结果不低于 0。"""
        ...

    async def get_cost(self, windows: dict[Window, int]) -> dict[Window, float]: ...

    async def add_cost(self, windows: dict[Window, int], amount_usd: float) -> None: ...

    # --- 维护 ---

    async def garbage_collect(
        self,
        installation_cutoff: datetime,
        usage_cutoff: int,
        dry_run: bool = False,
    ) -> dict[str, int]: ...
