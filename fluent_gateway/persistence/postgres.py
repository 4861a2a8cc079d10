# fluent_gateway/persistence/postgres.py
from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fluent_gateway.exceptions import DatabaseError
from fluent_gateway.persistence.base import BasePersistenceHandler

logger = structlog.get_logger(__name__)


class PostgresPersistenceHandler(BasePersistenceHandler):
    """`PersistenceHandler` 协议的 PostgreSQL 实现。"""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], dsn: str):
        super().__init__(sessionmaker, is_sqlite=False)
        self.dsn = dsn

    def _insert(self, table: Any) -> Any:
        return pg_insert(table)

    async def connect(self) -> None:
        try:
            async with self._sessionmaker() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise DatabaseError(f"无法连接 PostgreSQL 数据库: {e}") from e
        logger.info("PostgreSQL 数据库连接已建立")
