# fluent_gateway/db/schema.py
# ORM 模型与 db/migrations/versions/ 下的迁移保持一致。
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class FgInstallation(Base):
    """客户端安装实例。只由保留期清理删除。"""

    __tablename__ = "fg_installations"
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    client_version: Mapped[str | None] = mapped_column(String(32))
    platform: Mapped[str | None] = mapped_column(String(32))
    registered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    last_seen: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (Index("ix_fg_installations_last_seen", "last_seen"),)


class FgAuthCredential(Base):
    """每个安装实例恰好一条凭证，重新颁发时整体替换。"""

    __tablename__ = "fg_auth_credentials"
    installation_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("fg_installations.id", ondelete="CASCADE"),
        primary_key=True,
    )
    shared_key: Mapped[str] = mapped_column(String(64), nullable=False)
    refresh_token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    refresh_expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


class FgTranslation(Base):
    """翻译缓存。(word, language) 唯一，word 一律小写存储。"""

    __tablename__ = "fg_translations"
    word: Mapped[str] = mapped_column(String(64), primary_key=True)
    language: Mapped[str] = mapped_column(String(8), primary_key=True)
    translation: Mapped[str] = mapped_column(String(128), nullable=False)
    pronunciation: Mapped[str | None] = mapped_column(String(128))
    context_variations: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    etymology: Mapped[str | None] = mapped_column(Text)
    # 每次写入加一，用于检测并发写入
    revision: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class FgUsageCounter(Base):
    """按 (安装实例, 语言, 类型, 窗口, 窗口起点) 计数的用量。"""

    __tablename__ = "fg_usage_counters"
    installation_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    language: Mapped[str] = mapped_column(String(8), primary_key=True)
    kind: Mapped[str] = mapped_column(String(16), primary_key=True)
    window: Mapped[str] = mapped_column(String(8), primary_key=True)
    window_start: Mapped[int] = mapped_column(Integer, primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (Index("ix_fg_usage_counters_window_start", "window_start"),)


class FgCostLedger(Base):
    """全局成本账本。"""

    __tablename__ = "fg_cost_ledger"
    window: Mapped[str] = mapped_column(String(8), primary_key=True)
    window_start: Mapped[int] = mapped_column(Integer, primary_key=True)
    accumulated_usd: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
