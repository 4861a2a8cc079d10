# fluent_gateway/persistence/base.py
# 持久化基类：SQLite 与 PostgreSQL 实现共享的全部读写逻辑。
# 两种方言都支持 INSERT ... ON CONFLICT，子类只需提供对应的 insert 构造器。
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fluent_gateway.core.interfaces import PersistenceHandler
from fluent_gateway.core.types import (
    ContextVariation,
    CredentialRecord,
    TranslationEntry,
    UsageKind,
)
from fluent_gateway.db.schema import (
    Base,
    FgAuthCredential,
    FgCostLedger,
    FgInstallation,
    FgTranslation,
    FgUsageCounter,
)
from fluent_gateway.exceptions import DatabaseError
from fluent_gateway.persistence.utils import (
    dump_variations,
    load_variations,
    merge_variations,
)
from fluent_gateway.utils import Window, ensure_utc, utc_now

logger = structlog.get_logger(__name__)

_WRITE_ATTEMPTS = 5


def _window_filter(model: Any, windows: dict[Window, int]) -> Any:
    return or_(
        *(
            and_(model.window == window.value, model.window_start == start)
            for window, start in windows.items()
        )
    )


class BasePersistenceHandler(PersistenceHandler, ABC):
    """持久化处理器的基类，使用 SQLAlchemy 异步 Session。"""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], is_sqlite: bool):
        self._sessionmaker = sessionmaker
        self.is_sqlite = is_sqlite

    @abstractmethod
    async def connect(self) -> None:
        """[子类实现] 确保与数据库的连接是活跃的。"""
        ...

    @abstractmethod
    def _insert(self, table: Any) -> Any:
        """[子类实现] 返回支持 on_conflict_do_update 的方言 insert 语句。"""
        ...

    async def close(self) -> None:
        """安全地关闭 SQLAlchemy 引擎及其底层连接池。"""
        engine = self._sessionmaker.kw.get("bind")
        if engine:
            await engine.dispose()
        logger.info("持久化层引擎已关闭。")

    async def create_schema(self) -> None:
        engine = self._sessionmaker.kw.get("bind")
        if engine is None:
            raise DatabaseError("sessionmaker 未绑定引擎，无法创建表结构")
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise DatabaseError(f"创建表结构失败: {e}") from e

    # ------------------------------------------------------------------
    # 安装实例与凭证
    # ------------------------------------------------------------------

    async def save_credential(
        self,
        record: CredentialRecord,
        client_version: str | None,
        platform: str | None,
    ) -> None:
        try:
            async with self._sessionmaker.begin() as session:
                install_stmt = self._insert(FgInstallation).values(
                    id=record.installation_id,
                    client_version=client_version,
                    platform=platform,
                    registered_at=record.issued_at,
                    last_seen=record.issued_at,
                )
                install_stmt = install_stmt.on_conflict_do_update(
                    index_elements=[FgInstallation.id],
                    set_=dict(
                        client_version=install_stmt.excluded.client_version,
                        platform=install_stmt.excluded.platform,
                        last_seen=install_stmt.excluded.last_seen,
                    ),
                )
                await session.execute(install_stmt)

                values = dict(
                    installation_id=record.installation_id,
                    shared_key=record.shared_key,
                    refresh_token_hash=record.refresh_token_hash,
                    issued_at=record.issued_at,
                    expires_at=record.expires_at,
                    refresh_expires_at=record.refresh_expires_at,
                )
                cred_stmt = self._insert(FgAuthCredential).values(values)
                cred_stmt = cred_stmt.on_conflict_do_update(
                    index_elements=[FgAuthCredential.installation_id],
                    set_={
                        key: getattr(cred_stmt.excluded, key)
                        for key in values
                        if key != "installation_id"
                    },
                )
                await session.execute(cred_stmt)
        except SQLAlchemyError as e:
            raise DatabaseError(f"保存凭证失败: {e}") from e

    async def get_credential(self, installation_id: str) -> CredentialRecord | None:
        try:
            async with self._sessionmaker() as session:
                row = (
                    await session.execute(
                        select(FgAuthCredential).where(
                            FgAuthCredential.installation_id == installation_id
                        )
                    )
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseError(f"读取凭证失败: {e}") from e
        if row is None:
            return None
        return CredentialRecord(
            installation_id=row.installation_id,
            shared_key=row.shared_key,
            refresh_token_hash=row.refresh_token_hash,
            issued_at=ensure_utc(row.issued_at),
            expires_at=ensure_utc(row.expires_at),
            refresh_expires_at=ensure_utc(row.refresh_expires_at),
        )

    async def touch_installation(self, installation_id: str, seen_at: datetime) -> None:
        try:
            async with self._sessionmaker.begin() as session:
                await session.execute(
                    update(FgInstallation)
                    .where(FgInstallation.id == installation_id)
                    .values(last_seen=seen_at)
                )
        except SQLAlchemyError as e:
            raise DatabaseError(f"更新 last_seen 失败: {e}") from e

    # ------------------------------------------------------------------
    # 翻译缓存
    # ------------------------------------------------------------------

    async def get_entries(
        self, words: list[str], language: str
    ) -> dict[str, TranslationEntry]:
        keys = sorted({w.lower() for w in words})
        if not keys:
            return {}
        try:
            async with self._sessionmaker() as session:
                rows = (
                    await session.execute(
                        select(FgTranslation).where(
                            FgTranslation.language == language,
                            FgTranslation.word.in_(keys),
                        )
                    )
                ).scalars().all()
        except SQLAlchemyError as e:
            raise DatabaseError(f"批量读取翻译缓存失败: {e}") from e

        return {
            row.word: TranslationEntry(
                word=row.word,
                language=row.language,
                translation=row.translation,
                pronunciation=row.pronunciation,
                context_variations=load_variations(row.context_variations),
                etymology=row.etymology,
                created_at=row.created_at,
                updated_at=row.updated_at,
            )
            for row in rows
        }

    async def _load_current(
        self, session: AsyncSession, key: str, language: str
    ) -> FgTranslation | None:
        return (
            await session.execute(
                select(FgTranslation).where(
                    FgTranslation.word == key, FgTranslation.language == language
                )
            )
        ).scalar_one_or_none()

    async def _write_entry(
        self,
        word: str,
        language: str,
        translation: str,
        pronunciation: str | None,
        variations: list[ContextVariation],
        max_variations: int,
    ) -> list[ContextVariation]:
        """
        读取已有变体、合并后以 revision 做比较并交换写回。

        行在读取之后被其他写入修改 (或被抢先插入) 时，本次写入不生效，
        重新读取并合并，直到成功或重试次数耗尽。
        """
        key = word.lower()
        for attempt in range(_WRITE_ATTEMPTS):
            async with self._sessionmaker.begin() as session:
                existing = await self._load_current(session, key, language)
                current = load_variations(existing.context_variations) if existing else []
                merged = merge_variations(current, variations, max_variations)
                stored_pronunciation = pronunciation
                if stored_pronunciation is None and existing is not None:
                    stored_pronunciation = existing.pronunciation
                if stored_pronunciation is None:
                    stored_pronunciation = next(
                        (v.pronunciation for v in merged if v.pronunciation), None
                    )

                now = utc_now()
                values = dict(
                    translation=translation,
                    pronunciation=stored_pronunciation,
                    context_variations=dump_variations(merged),
                    updated_at=now,
                )
                if existing is None:
                    stmt = (
                        self._insert(FgTranslation)
                        .values(
                            word=key,
                            language=language,
                            revision=0,
                            created_at=now,
                            **values,
                        )
                        .on_conflict_do_nothing(
                            index_elements=[FgTranslation.word, FgTranslation.language]
                        )
                    )
                else:
                    stmt = (
                        update(FgTranslation)
                        .where(
                            FgTranslation.word == key,
                            FgTranslation.language == language,
                            FgTranslation.revision == existing.revision,
                        )
                        .values(revision=existing.revision + 1, **values)
                        .execution_options(synchronize_session=False)
                    )
                result = await session.execute(stmt)
            if result.rowcount:
                return merged
            logger.debug(
                "翻译缓存写入冲突，重新合并",
                word=key,
                language=language,
                attempt=attempt + 1,
            )
        raise DatabaseError(f"翻译缓存写入冲突次数过多: {key}/{language}")

    async def upsert_translation(
        self,
        word: str,
        language: str,
        translation: str,
        pronunciation: str | None,
        variations: list[ContextVariation],
        max_variations: int,
    ) -> None:
        try:
            await self._write_entry(
                word, language, translation, pronunciation, variations, max_variations
            )
        except SQLAlchemyError as e:
            raise DatabaseError(f"写入翻译缓存失败: {e}") from e

    async def append_variations(
        self,
        word: str,
        language: str,
        translation: str,
        variations: list[ContextVariation],
        max_variations: int,
    ) -> list[ContextVariation]:
        try:
            return await self._write_entry(
                word, language, translation, None, variations, max_variations
            )
        except SQLAlchemyError as e:
            raise DatabaseError(f"追加上下文变体失败: {e}") from e

    # ------------------------------------------------------------------
    # 用量与成本
    # ------------------------------------------------------------------

    async def get_usage(
        self,
        installation_id: str,
        language: str,
        kind: UsageKind,
        windows: dict[Window, int],
    ) -> dict[Window, int]:
        usage = {window: 0 for window in windows}
        try:
            async with self._sessionmaker() as session:
                rows = (
                    await session.execute(
                        select(FgUsageCounter.window, FgUsageCounter.count).where(
                            FgUsageCounter.installation_id == installation_id,
                            FgUsageCounter.language == language,
                            FgUsageCounter.kind == kind.value,
                            _window_filter(FgUsageCounter, windows),
                        )
                    )
                ).all()
        except SQLAlchemyError as e:
            raise DatabaseError(f"读取用量计数失败: {e}") from e
        for window_value, count in rows:
            usage[Window(window_value)] = count
        return usage

    async def increment_usage(
        self,
        installation_id: str,
        language: str,
        kind: UsageKind,
        windows: dict[Window, int],
        delta: int,
    ) -> None:
        try:
            async with self._sessionmaker.begin() as session:
                for window, start in windows.items():
                    stmt = self._insert(FgUsageCounter).values(
                        installation_id=installation_id,
                        language=language,
                        kind=kind.value,
                        window=window.value,
                        window_start=start,
                        count=max(delta, 0),
                    )
                    new_count = FgUsageCounter.count + delta
                    stmt = stmt.on_conflict_do_update(
                        index_elements=[
                            FgUsageCounter.installation_id,
                            FgUsageCounter.language,
                            FgUsageCounter.kind,
                            FgUsageCounter.window,
                            FgUsageCounter.window_start,
                        ],
                        set_=dict(count=case((new_count < 0, 0), else_=new_count)),
                    )
                    await session.execute(stmt)
        except SQLAlchemyError as e:
            raise DatabaseError(f"更新用量计数失败: {e}") from e

    async def get_cost(self, windows: dict[Window, int]) -> dict[Window, float]:
        cost = {window: 0.0 for window in windows}
        try:
            async with self._sessionmaker() as session:
                rows = (
                    await session.execute(
                        select(FgCostLedger.window, FgCostLedger.accumulated_usd).where(
                            _window_filter(FgCostLedger, windows)
                        )
                    )
                ).all()
        except SQLAlchemyError as e:
            raise DatabaseError(f"读取成本账本失败: {e}") from e
        for window_value, amount in rows:
            cost[Window(window_value)] = float(amount)
        return cost

    async def add_cost(self, windows: dict[Window, int], amount_usd: float) -> None:
        try:
            async with self._sessionmaker.begin() as session:
                for window, start in windows.items():
                    stmt = self._insert(FgCostLedger).values(
                        window=window.value,
                        window_start=start,
                        accumulated_usd=amount_usd,
                    )
                    stmt = stmt.on_conflict_do_update(
                        index_elements=[FgCostLedger.window, FgCostLedger.window_start],
                        set_=dict(
                            accumulated_usd=FgCostLedger.accumulated_usd + amount_usd
                        ),
                    )
                    await session.execute(stmt)
        except SQLAlchemyError as e:
            raise DatabaseError(f"记录成本失败: {e}") from e

    # ------------------------------------------------------------------
    # 维护
    # ------------------------------------------------------------------

    async def garbage_collect(
        self,
        installation_cutoff: datetime,
        usage_cutoff: int,
        dry_run: bool = False,
    ) -> dict[str, int]:
        stale_installations = FgInstallation.last_seen < installation_cutoff
        try:
            async with self._sessionmaker.begin() as session:
                stale_ids = (
                    await session.execute(select(FgInstallation.id).where(stale_installations))
                ).scalars().all()
                counts = {
                    "deleted_installations": len(stale_ids),
                    "deleted_usage_counters": (
                        await session.execute(
                            select(func.count()).select_from(FgUsageCounter).where(
                                FgUsageCounter.window_start < usage_cutoff
                            )
                        )
                    ).scalar_one(),
                    "deleted_cost_windows": (
                        await session.execute(
                            select(func.count()).select_from(FgCostLedger).where(
                                FgCostLedger.window_start < usage_cutoff
                            )
                        )
                    ).scalar_one(),
                }
                if dry_run:
                    return counts

                if stale_ids:
                    await session.execute(
                        delete(FgAuthCredential).where(
                            FgAuthCredential.installation_id.in_(stale_ids)
                        )
                    )
                    await session.execute(
                        delete(FgInstallation).where(FgInstallation.id.in_(stale_ids))
                    )
                await session.execute(
                    delete(FgUsageCounter).where(FgUsageCounter.window_start < usage_cutoff)
                )
                await session.execute(
                    delete(FgCostLedger).where(FgCostLedger.window_start < usage_cutoff)
                )
        except SQLAlchemyError as e:
            raise DatabaseError(f"垃圾回收失败: {e}") from e

        logger.info("垃圾回收完成", **counts)
        return counts
