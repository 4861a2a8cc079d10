# fluent_gateway/adapters/azure.py
"""提供一个使用 Microsoft Translator (v3) 的机器翻译适配器。"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from fluent_gateway.adapters.base import BaseTranslationAdapter
from fluent_gateway.cache import RequestCoalescer
from fluent_gateway.config import RetryPolicyConfig, TranslatorConfig
from fluent_gateway.exceptions import ExternalServiceError
from fluent_gateway.validator import Validator

logger = structlog.get_logger(__name__)

API_VERSION = "3.0"


class AzureTranslationAdapter(BaseTranslationAdapter[TranslatorConfig]):
    """Microsoft Translator 适配器。每个分块对应一次 HTTP 调用。"""

    VERSION = "1.1.0"

    def __init__(
        self,
        config: TranslatorConfig,
        validator: Validator,
        retry_policy: RetryPolicyConfig | None = None,
        coalescer: RequestCoalescer | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(config, validator, retry_policy, coalescer)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def initialize(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.endpoint.rstrip("/"),
                timeout=httpx.Timeout(
                    self.config.timeout_total, connect=self.config.timeout_connect
                ),
                transport=self._transport,
            )
        if self.config.api_key is None:
            logger.warning("未配置平台翻译密钥，只有 BYOK 请求可以调用上游翻译。")
        logger.info("Azure 翻译适配器已初始化", endpoint=self.config.endpoint)
        await super().initialize()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Azure 翻译适配器的 HTTP 客户端已关闭。")
        await super().close()

    def _headers(self, api_key: str) -> dict[str, str]:
        headers = {
            "Ocp-Apim-Subscription-Key": api_key,
            "Content-Type": "application/json",
        }
        if self.config.region:
            headers["Ocp-Apim-Subscription-Region"] = self.config.region
        return headers

    async def _translate_chunk(
        self, words: list[str], language: str, api_key: str | None
    ) -> list[str | None]:
        key = api_key or (
            self.config.api_key.get_secret_value() if self.config.api_key else None
        )
        if not key:
            raise ExternalServiceError(
                "翻译服务未配置", code="TRANSLATOR_NOT_CONFIGURED", is_retryable=False
            )
        if self._client is None:
            await self.initialize()
        assert self._client is not None

        try:
            response = await self._client.post(
                "/translate",
                params={
                    "api-version": API_VERSION,
                    "from": self.config.source_lang,
                    "to": language,
                },
                headers=self._headers(key),
                json=[{"text": word} for word in words],
            )
        except httpx.TimeoutException as e:
            raise ExternalServiceError(f"翻译服务请求超时: {e}", code="UPSTREAM_TIMEOUT") from e
        except httpx.TransportError as e:
            raise ExternalServiceError(f"无法连接翻译服务: {e}") from e

        if response.status_code in (401, 403):
            raise ExternalServiceError(
                "翻译服务拒绝了 API 密钥", code="UPSTREAM_AUTH", is_retryable=False
            )
        if response.status_code == 429 or response.status_code >= 500:
            raise ExternalServiceError(
                f"翻译服务暂时不可用 (HTTP {response.status_code})",
                code="UPSTREAM_UNAVAILABLE",
            )
        if response.status_code >= 400:
            raise ExternalServiceError(
                f"翻译服务返回错误 (HTTP {response.status_code})", is_retryable=False
            )

        try:
            payload: Any = response.json()
        except ValueError as e:
            raise ExternalServiceError("翻译服务返回了无效的 JSON") from e
        if not isinstance(payload, list):
            raise ExternalServiceError("翻译服务返回了意外的结构")

        results: list[str | None] = []
        for item in payload:
            try:
                results.append(item["translations"][0]["text"])
            except (KeyError, IndexError, TypeError):
                results.append(None)
        return results
