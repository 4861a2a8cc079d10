# fluent_gateway/persistence/__init__.py
"""本模块作为持久化层的公共入口，根据数据库 URL 选择具体实现。"""

from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from fluent_gateway.config import GatewayConfig
from fluent_gateway.core.interfaces import PersistenceHandler
from fluent_gateway.exceptions import ConfigurationError


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_persistence_handler(config: GatewayConfig) -> PersistenceHandler:
    """
    根据配置创建、配置并返回一个具体的持久化处理器实例。
    这是实例化持久化层的唯一入口。
    """
    db_url = config.database_url

    if config.is_sqlite:
        from .sqlite import SQLitePersistenceHandler

        # SQLite 使用 NullPool，避免跨事件循环共享连接句柄
        engine = create_async_engine(db_url, poolclass=NullPool)
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        sessionmaker = async_sessionmaker(engine, expire_on_commit=False)
        return SQLitePersistenceHandler(sessionmaker, db_path=config.db_path)

    if db_url.startswith("postgresql"):
        from .postgres import PostgresPersistenceHandler

        try:
            engine = create_async_engine(db_url, pool_size=20, max_overflow=10)
        except ImportError as e:
            raise ConfigurationError(
                "要使用 PostgreSQL, 请安装 'asyncpg' 驱动: "
                'pip install "fluent-gateway[postgres]"'
            ) from e
        sessionmaker = async_sessionmaker(engine, expire_on_commit=False)
        return PostgresPersistenceHandler(sessionmaker, dsn=db_url)

    raise ConfigurationError(f"不支持的数据库类型或驱动: '{db_url}'")


__all__ = ["create_persistence_handler", "PersistenceHandler"]
