# fluent_gateway/logging_config.py
"""
本模块负责集中配置项目的日志系统。

console 格式使用 Rich 面板渲染，便于本地开发时阅读请求上下文；
json 格式面向生产环境的日志采集。两种格式在渲染前都会经过脱敏处理器。
"""

import logging
from collections.abc import MutableMapping
from typing import Any, Literal

import structlog
from rich.console import Console, Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from structlog.typing import Processor

from fluent_gateway.log_sanitizer import redact_sensitive


class HybridPanelRenderer:
    """将日志渲染为带键值表格的 Rich 面板。"""

    def __init__(
        self,
        kv_truncate_at: int = 256,
        show_timestamp: bool = True,
        show_logger_name: bool = True,
        kv_key_width: int = 15,
    ):
        self._console = Console()
        self._kv_truncate_at = kv_truncate_at
        self._show_timestamp = show_timestamp
        self._show_logger_name = show_logger_name
        self._kv_key_width = kv_key_width

        # 级别文本等宽，面板标题才能对齐
        self._level_styles = {
            "debug": ("blue", "DEBUG   "),
            "info": ("green", "INFO    "),
            "warning": ("yellow", "WARNING "),
            "error": ("bold red", "ERROR   "),
            "critical": ("bold magenta", "CRITICAL"),
        }

    def __call__(
        self, logger: Any, name: str, event_dict: MutableMapping[str, Any]
    ) -> str:
        event = str(event_dict.pop("event", "")).strip()
        if not event:
            return ""

        timestamp = event_dict.pop("timestamp", "")
        level = event_dict.pop("level", "info").lower()
        logger_name = event_dict.pop("logger", "unknown")
        style, level_text = self._level_styles.get(level, ("default", level.upper()))

        title_parts = [f"[{style}]{level_text}[/]"]
        if self._show_logger_name:
            title_parts.append(f"[cyan dim]({logger_name})[/]")
        title = Text.from_markup(" ".join(title_parts))

        renderables: list[RenderableType] = [Text(event, justify="left")]
        if event_dict:
            kv_table = Table(
                show_header=False, show_edge=False, box=None, padding=(0, 1)
            )
            kv_table.add_column(style="dim", justify="right", width=self._kv_key_width)
            kv_table.add_column(style="bright_white", overflow="fold")
            for key, value in sorted(event_dict.items()):
                value_repr = repr(value)
                if len(value_repr) > self._kv_truncate_at:
                    value_repr = value_repr[: self._kv_truncate_at] + "…"
                kv_table.add_row(f"{key} :", Text(value_repr))
            renderables.append(kv_table)

        subtitle = (
            Text(str(timestamp), style="dim")
            if self._show_timestamp and timestamp
            else None
        )

        with self._console.capture() as capture:
            self._console.print(
                Panel(
                    Group(*renderables),
                    title=title,
                    border_style=style,
                    subtitle=subtitle,
                    subtitle_align="right",
                    expand=False,
                    title_align="left",
                )
            )
        return capture.get().rstrip()


def setup_logging(
    log_level: str = "INFO",
    log_format: Literal["json", "console"] = "console",
    redact: bool = True,
    kv_truncate_at: int = 120,
) -> None:
    """
    配置全局的 structlog 日志系统。这是整个应用的日志配置入口。

    Args:
        log_level: 应用日志的最低级别。
        log_format: 'console' 用于开发环境的面板输出，'json' 用于生产环境。
        redact: 是否在渲染前执行脱敏。只应在排查本地问题时关闭。
        kv_truncate_at: console 模式下键值对的截断长度。

    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if redact:
        processors.append(redact_sensitive)

    if log_format == "console":
        processors.append(structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"))
        processors.append(HybridPanelRenderer(kv_truncate_at=kv_truncate_at))
    else:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()

    class PassthroughFormatter(logging.Formatter):
        """直接传递 structlog 已经渲染好的字符串。"""

        def format(self, record: logging.LogRecord) -> str:
            return str(record.getMessage())

    handler.setFormatter(PassthroughFormatter())

    root_logger = logging.getLogger()
    if root_logger.hasHandlers():
        root_logger.handlers.clear()
    root_logger.addHandler(handler)
    # 根记录器级别较高，避免第三方库 (httpx, uvicorn.access) 的噪音
    root_logger.setLevel(logging.WARNING)

    app_logger = logging.getLogger("fluent_gateway")
    app_logger.setLevel(log_level.upper())
    app_logger.propagate = True

    structlog.get_logger("fluent_gateway.logging_config").info(
        "日志系统已配置完成。",
        log_format=log_format,
        app_log_level=log_level.upper(),
        redact=redact,
    )
