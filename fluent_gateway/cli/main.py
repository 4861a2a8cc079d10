# fluent_gateway/cli/main.py
"""Fluent Gateway CLI 的主入口点。"""

from typing import Annotated

import typer
import uvicorn
from rich.console import Console

import fluent_gateway
from fluent_gateway.bootstrap import create_app_config, create_container
from fluent_gateway.cli.db import db_app
from fluent_gateway.cli.gc import gc_app
from fluent_gateway.cli.state import State

app = typer.Typer(
    name="fluent-gateway",
    help="🌐 Fluent Gateway: 浏览器扩展的翻译 API 网关。",
    add_completion=False,
    no_args_is_help=True,
)

app.add_typer(db_app, name="db")
app.add_typer(gc_app, name="gc")

console = Console()


def version_callback(value: bool) -> None:
    """处理 --version 选项的回调函数。"""
    if value:
        console.print(
            f"Fluent Gateway [bold cyan]v{fluent_gateway.__version__}[/bold cyan]"
        )
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            help="显示版本信息并退出。",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """主回调函数，在任何子命令执行前加载配置、初始化日志并装配容器。"""
    try:
        config = create_app_config()
        ctx.obj = State(container=create_container(config))
    except Exception as e:
        console.print("[bold red]❌ 启动失败：无法加载配置或初始化日志。[/bold red]")
        console.print(f"[dim]{e}[/dim]")
        raise typer.Exit(code=1) from e


@app.command("serve")
def serve(
    ctx: typer.Context,
    host: Annotated[str, typer.Option("--host", help="监听地址。")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", help="监听端口。")] = 8787,
) -> None:
    """启动 HTTP 服务。"""
    from fluent_gateway.api import create_app

    state: State = ctx.obj
    application = create_app(state.container)
    console.print(
        f"[bold green]🚀 Fluent Gateway 正在监听 http://{host}:{port}[/bold green]"
    )
    # 日志已由 structlog 配置，关闭 uvicorn 自带的日志配置
    uvicorn.run(application, host=host, port=port, log_config=None)


if __name__ == "__main__":
    app()
