# fluent_gateway/db/migrations/env.py
# Alembic 迁移环境的配置文件。
# 负责连接数据库、加载模型定义并执行迁移。

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from fluent_gateway.config import GatewayConfig
from fluent_gateway.db.schema import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Alembic 将数据库的当前状态与这份元数据进行比较，以自动生成迁移。
target_metadata = Base.metadata

# CLI 会显式设置 URL；直接使用 alembic 命令时从 GatewayConfig 读取。
if not config.get_main_option("sqlalchemy.url"):
    config.set_main_option("sqlalchemy.url", GatewayConfig().database_url)


def run_migrations_offline() -> None:
    """在"离线"模式下运行迁移：生成 SQL 脚本，不连接数据库。"""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """在"在线"模式下运行迁移：用异步引擎连接数据库并直接应用。"""
    connectable = create_async_engine(
        config.get_main_option("sqlalchemy.url"),
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        # run_sync 桥接异步连接和同步的 Alembic 上下文
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
