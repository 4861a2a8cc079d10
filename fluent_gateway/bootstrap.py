# fluent_gateway/bootstrap.py
"""
应用引导程序和 DI 容器的生命周期管理。

本模块是应用的唯一初始化入口，负责：
1. 加载配置。
2. 创建并装配 DI 容器。
3. 管理核心资源 (数据库连接、上游客户端、后台任务) 的启动和关闭。
"""

from __future__ import annotations

from typing import Any

import structlog

from fluent_gateway.config import GatewayConfig
from fluent_gateway.containers import ApplicationContainer

logger = structlog.get_logger("fluent_gateway.bootstrap")


def mask_db_url(url: str) -> str:
    """隐藏数据库 URL 中的密码部分，用于日志输出。"""
    scheme, sep, rest = url.partition("://")
    if not sep or "@" not in rest:
        return url
    credentials, _, host = rest.rpartition("@")
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


def create_app_config(**overrides: Any) -> GatewayConfig:
    """加载、验证并返回应用配置对象。关键字参数优先于环境变量。"""
    config = GatewayConfig(**overrides)
    logger.debug(
        "配置实例已创建",
        database_url=mask_db_url(config.database_url),
        translator=config.translator.provider,
        context_provider=config.context.provider if config.context.enabled else "none",
    )
    return config


def create_container(
    config: GatewayConfig, *, init_logging: bool = True
) -> ApplicationContainer:
    """创建并装配 DI 容器。"""
    container = ApplicationContainer()

    # 1. 注入整块配置对象，作为向下传递的唯一事实来源
    container.pydantic_config.override(config)

    # 2. 从整块配置中派生出字段级配置
    container.config.from_pydantic(config)

    # 3. 初始化日志
    if init_logging:
        container.logging.init()

    return container


async def startup(container: ApplicationContainer) -> None:
    """连接数据库并初始化上游适配器。"""
    coordinator = container.coordinator()
    await coordinator.initialize()
    logger.info("网关启动完成。")


async def shutdown(container: ApplicationContainer) -> None:
    """等待后台任务写完，然后释放所有资源。"""
    coordinator = container.coordinator()
    await coordinator.close()
    logger.info("网关已停止。")
