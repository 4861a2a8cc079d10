# tests/conftest.py
"""项目全局共享的测试 Fixtures。"""

from collections.abc import AsyncGenerator, Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from pytest_mock import MockerFixture
from rich.console import Console

from fluent_gateway.config import GatewayConfig
from fluent_gateway.core.interfaces import PersistenceHandler
from fluent_gateway.persistence import create_persistence_handler


@pytest.fixture(scope="session", autouse=True)
def disable_rich_colors_for_tests(
    session_mocker: MockerFixture,
) -> Generator[None, None, None]:
    """全局禁用 rich 库的颜色输出，以确保测试结果的确定性。"""
    original_init = Console.__init__

    def new_init(self: Console, *args: Any, **kwargs: Any) -> None:
        kwargs["force_terminal"] = False
        kwargs["color_system"] = None
        original_init(self, *args, **kwargs)

    session_mocker.patch("rich.console.Console.__init__", new=new_init)
    yield


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., GatewayConfig]:
    """
    创建指向临时 SQLite 文件的配置。

    默认使用确定性的 debug 翻译适配器并关闭 AI 上下文；不读取 .env 文件。
    """

    def factory(**overrides: Any) -> GatewayConfig:
        values: dict[str, Any] = {
            "database_url": f"sqlite+aiosqlite:///{tmp_path / 'gateway.db'}",
            "translator": {"provider": "debug"},
            "context": {"enabled": False},
            "logging": {"level": "WARNING"},
        }
        values.update(overrides)
        return GatewayConfig(_env_file=None, **values)

    return factory


@pytest.fixture
def config(make_config: Callable[..., GatewayConfig]) -> GatewayConfig:
    return make_config()


@pytest_asyncio.fixture
async def handler(config: GatewayConfig) -> AsyncGenerator[PersistenceHandler, None]:
    """已建表的 SQLite 持久化处理器。"""
    persistence = create_persistence_handler(config)
    await persistence.connect()
    await persistence.create_schema()
    yield persistence
    await persistence.close()

