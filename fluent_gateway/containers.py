# fluent_gateway/containers.py
"""
应用的组合根 (Composition Root)。

`ApplicationContainer` 装配网关的全部组件。所有有状态的组件都是单例：
它们的生命周期由 `bootstrap.py` 中的启动/停机函数显式管理。
"""

from __future__ import annotations

from dependency_injector import containers, providers

from fluent_gateway.adapters.factory import (
    create_context_adapter,
    create_translation_adapter,
)
from fluent_gateway.auth import Authenticator
from fluent_gateway.background import BackgroundTaskSupervisor
from fluent_gateway.cache import CacheStore, RequestCoalescer
from fluent_gateway.config import GatewayConfig
from fluent_gateway.coordinator import Coordinator
from fluent_gateway.cost_breaker import CostCircuitBreaker
from fluent_gateway.logging_config import setup_logging
from fluent_gateway.persistence import create_persistence_handler
from fluent_gateway.quota import QuotaGuard, WindowRateLimiter
from fluent_gateway.rate_limiter import KeyedRateLimiter
from fluent_gateway.site_config import load_site_config
from fluent_gateway.validator import Validator


class ApplicationContainer(containers.DeclarativeContainer):
    """网关的顶层 DI 容器。"""

    # 整块配置对象，作为唯一事实来源向下传递
    pydantic_config = providers.Dependency(instance_of=GatewayConfig)
    # 字段级配置提供者，用于日志等细粒度场景
    config = providers.Configuration()

    logging = providers.Resource(
        setup_logging,
        log_level=config.logging.level,
        log_format=config.logging.format,
        redact=config.logging.redact,
    )

    # --- 基础设施 ---
    persistence_handler = providers.Singleton(
        create_persistence_handler, config=pydantic_config
    )
    supervisor = providers.Singleton(BackgroundTaskSupervisor)
    coalescer = providers.Singleton(
        RequestCoalescer, maxsize=pydantic_config.provided.cache.inflight_maxsize
    )

    # --- 请求守卫 ---
    validator = providers.Singleton(
        Validator,
        config=pydantic_config.provided.validation,
        supported_languages=pydantic_config.provided.supported_languages,
    )
    authenticator = providers.Singleton(
        Authenticator,
        handler=persistence_handler,
        config=pydantic_config.provided.auth,
    )
    ip_limiter = providers.Singleton(
        KeyedRateLimiter,
        requests_per_minute=pydantic_config.provided.quota.ip_requests_per_minute,
    )
    quota_guard = providers.Singleton(
        QuotaGuard,
        limiter=providers.Singleton(WindowRateLimiter, handler=persistence_handler),
        config=pydantic_config.provided.quota,
    )
    cost_breaker = providers.Singleton(
        CostCircuitBreaker,
        handler=persistence_handler,
        config=pydantic_config.provided.cost,
    )

    # --- 缓存与上游 ---
    cache_store = providers.Singleton(
        CacheStore,
        handler=persistence_handler,
        supervisor=supervisor,
        config=pydantic_config.provided.cache,
    )
    translation_adapter = providers.Singleton(
        create_translation_adapter,
        config=pydantic_config,
        validator=validator,
        coalescer=coalescer,
    )
    context_adapter = providers.Singleton(
        create_context_adapter,
        config=pydantic_config,
        validator=validator,
        coalescer=coalescer,
    )

    site_config = providers.Singleton(
        load_site_config, path=pydantic_config.provided.site_config_path
    )

    # --- 总协调器 ---
    coordinator = providers.Singleton(
        Coordinator,
        config=pydantic_config,
        persistence_handler=persistence_handler,
        cache=cache_store,
        quota=quota_guard,
        cost_breaker=cost_breaker,
        translation_adapter=translation_adapter,
        context_adapter=context_adapter,
        supervisor=supervisor,
    )
