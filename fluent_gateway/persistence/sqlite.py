# fluent_gateway/persistence/sqlite.py
from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fluent_gateway.exceptions import DatabaseError
from fluent_gateway.persistence.base import BasePersistenceHandler

logger = structlog.get_logger(__name__)


class SQLitePersistenceHandler(BasePersistenceHandler):
    """`PersistenceHandler` 协议的 SQLite 实现。"""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], db_path: str):
        super().__init__(sessionmaker, is_sqlite=True)
        self.db_path = db_path

    def _insert(self, table: Any) -> Any:
        return sqlite_insert(table)

    async def connect(self) -> None:
        """建立连接并为 SQLite 设置 WAL 日志模式。"""
        try:
            async with self._sessionmaker() as session:
                async with session.begin():
                    if self.db_path != ":memory:":
                        await session.execute(text("PRAGMA journal_mode=WAL;"))
                    await session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise DatabaseError(f"无法连接 SQLite 数据库: {e}") from e
        logger.info("SQLite 数据库连接已建立", db_path=self.db_path)
