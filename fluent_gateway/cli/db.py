# fluent_gateway/cli/db.py
"""处理数据库相关操作的 CLI 命令。"""

import asyncio
from pathlib import Path

import structlog
import typer
from alembic import command
from alembic.config import Config
from rich.console import Console

from fluent_gateway.cli.state import State
from fluent_gateway.config import GatewayConfig

logger = structlog.get_logger(__name__)
console = Console()
db_app = typer.Typer(help="数据库管理命令", no_args_is_help=True)

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "db" / "migrations"


def build_alembic_config(config: GatewayConfig) -> Config:
    """以编程方式构造 Alembic 配置，不依赖工作目录中的 alembic.ini。"""
    alembic_cfg = Config()
    alembic_cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    alembic_cfg.set_main_option("sqlalchemy.url", config.database_url)
    return alembic_cfg


def _ensure_sqlite_parent(config: GatewayConfig) -> None:
    if not config.is_sqlite:
        return
    db_path = config.db_path
    if db_path == ":memory:":
        console.print("[yellow]警告：无法对内存数据库执行永久性操作。[/yellow]")
        raise typer.Exit()
    console.print(f"数据库路径: [cyan]{Path(db_path).resolve()}[/cyan]")
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)


async def _create_schema(state: State) -> None:
    handler = state.container.persistence_handler()
    try:
        await handler.connect()
        await handler.create_schema()
    finally:
        await handler.close()


@db_app.command("init")
def db_init(ctx: typer.Context) -> None:
    """根据 ORM 模型直接创建所有缺失的表 (适用于开发环境)。"""
    state: State = ctx.obj
    _ensure_sqlite_parent(state.config)
    try:
        asyncio.run(_create_schema(state))
        console.print("[bold green]✅ 数据库表已创建。[/bold green]")
    except Exception as e:
        logger.error("创建数据库表失败。", exc_info=True)
        console.print(f"[bold red]❌ 创建数据库表失败: {e}[/bold red]")
        raise typer.Exit(code=1) from e


@db_app.command("migrate")
def db_migrate(
    ctx: typer.Context,
    revision: str = typer.Argument("head", help="目标版本号。"),
) -> None:
    """
    对数据库执行所有待处理的迁移。

    此命令会从配置中读取数据库 URL，并应用所有必要的 schema 变更。
    """
    state: State = ctx.obj
    _ensure_sqlite_parent(state.config)
    console.print("正在应用数据库迁移...")
    try:
        command.upgrade(build_alembic_config(state.config), revision)
        console.print("[bold green]✅ 数据库迁移成功完成！[/bold green]")
    except Exception as e:
        logger.error("数据库迁移过程中发生错误。", exc_info=True)
        console.print(
            "[bold red]❌ 数据库迁移失败！请检查日志获取详细信息。[/bold red]"
        )
        raise typer.Exit(code=1) from e
