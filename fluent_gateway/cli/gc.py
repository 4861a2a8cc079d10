# fluent_gateway/cli/gc.py
"""处理垃圾回收 (GC) 的 CLI 命令。"""

import asyncio
from typing import Annotated

import questionary
import typer
from rich.console import Console
from rich.table import Table

from fluent_gateway.cli.state import State
from fluent_gateway.coordinator import Coordinator

console = Console()
gc_app = typer.Typer(help="垃圾回收与数据清理", no_args_is_help=True)

_REPORT_ROWS = (
    ("deleted_installations", "超过 {installation_days} 天未活跃的安装实例"),
    ("deleted_usage_counters", "超过 {usage_days} 天的用量计数"),
    ("deleted_cost_windows", "超过 {usage_days} 天的成本窗口"),
)


def render_report(report: dict[str, int], title: str, **days: int) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("数据类型", style="cyan", width=35)
    table.add_column("数量", style="magenta", justify="right")
    for key, label in _REPORT_ROWS:
        table.add_row(label.format(**days), str(report.get(key, 0)))
    return table


async def _async_gc_run(coordinator: Coordinator, dry_run: bool, yes: bool) -> None:
    """异步执行垃圾回收的核心逻辑。"""
    retention = coordinator.config.retention
    days = {
        "installation_days": retention.installation_days,
        "usage_days": retention.usage_days,
    }
    try:
        await coordinator.initialize()
        console.print("正在生成垃圾回收预演报告...")
        report = await coordinator.run_garbage_collection(dry_run=True)
        console.print(render_report(report, "垃圾回收预演报告", **days))

        total_to_delete = sum(report.values())
        if total_to_delete == 0:
            console.print("[green]数据库非常干净，无需进行垃圾回收。[/green]")
            return
        if dry_run:
            return

        if not yes:
            proceed = await questionary.confirm(
                "这是一个破坏性操作，是否继续执行删除？", default=False
            ).ask_async()
            if not proceed:
                console.print("[red]操作已取消。[/red]")
                return

        console.print("[yellow]正在执行删除操作...[/yellow]")
        final_report = await coordinator.run_garbage_collection(dry_run=False)
        deleted_count = sum(final_report.values())
        console.print(
            f"[bold green]✅ 垃圾回收执行完毕！共删除 {deleted_count} 条记录。[/bold green]"
        )
    finally:
        await coordinator.close()


@gc_app.command("run")
def gc_run(
    ctx: typer.Context,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="只输出预演报告，不删除任何数据。")
    ] = False,
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="跳过确认提示，直接执行删除。")
    ] = False,
) -> None:
    """清理长期不活跃的安装实例，以及过期的用量计数与成本窗口。"""
    state: State = ctx.obj
    coordinator = state.container.coordinator()
    try:
        asyncio.run(_async_gc_run(coordinator, dry_run, yes))
    except Exception as e:
        if "Not a tty" in str(e):
            console.print(
                "[bold red]❌ 错误：此命令需要交互式终端。请使用 --yes 标志运行。[/bold red]"
            )
        else:
            console.print(f"[bold red]❌ 执行失败: {e}[/bold red]")
        raise typer.Exit(code=1) from e
