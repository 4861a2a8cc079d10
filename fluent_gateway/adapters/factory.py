# fluent_gateway/adapters/factory.py
"""根据配置创建上游适配器实例。"""

from __future__ import annotations

import structlog

from fluent_gateway.adapters.azure import AzureTranslationAdapter
from fluent_gateway.adapters.base import BaseTranslationAdapter
from fluent_gateway.adapters.debug import DebugTranslationAdapter
from fluent_gateway.adapters.llm_context import LLMContextAdapter
from fluent_gateway.cache import RequestCoalescer
from fluent_gateway.config import GatewayConfig
from fluent_gateway.validator import Validator

logger = structlog.get_logger(__name__)

TRANSLATION_ADAPTERS: dict[str, type[BaseTranslationAdapter]] = {
    "azure": AzureTranslationAdapter,
    "debug": DebugTranslationAdapter,
}


def create_translation_adapter(
    config: GatewayConfig, validator: Validator, coalescer: RequestCoalescer
) -> BaseTranslationAdapter:
    adapter_cls = TRANSLATION_ADAPTERS[config.translator.provider]
    return adapter_cls(
        config.translator,
        validator,
        retry_policy=config.retry_policy,
        coalescer=coalescer,
    )


def create_context_adapter(
    config: GatewayConfig, validator: Validator, coalescer: RequestCoalescer
) -> LLMContextAdapter | None:
    """上下文生成被关闭或缺少密钥时返回 None，网关只提供基础上下文。"""
    ctx = config.context
    if not ctx.enabled or ctx.provider == "none":
        return None
    if ctx.api_key is None:
        logger.warning("未配置 LLM API 密钥，AI 上下文生成已禁用。")
        return None
    return LLMContextAdapter(ctx, validator, coalescer=coalescer)
