# tests/unit/adapters/test_debug.py
"""针对调试适配器与适配器基类公共行为 (分块、合并在途请求) 的测试。"""

import asyncio

import pytest
from pydantic import SecretStr

from fluent_gateway.adapters.debug import DebugTranslationAdapter
from fluent_gateway.adapters.factory import create_context_adapter, create_translation_adapter
from fluent_gateway.cache import RequestCoalescer
from fluent_gateway.config import GatewayConfig, TranslatorConfig, ValidationConfig
from fluent_gateway.validator import Validator


class CountingAdapter(DebugTranslationAdapter):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.chunk_calls: list[list[str]] = []

    async def _translate_chunk(self, words, language, api_key):
        self.chunk_calls.append(list(words))
        await asyncio.sleep(0.01)
        return await super()._translate_chunk(words, language, api_key)


@pytest.fixture
def validator() -> Validator:
    return Validator(ValidationConfig(), ["es", "fr"])


@pytest.mark.asyncio
async def test_glossary_and_fallback(validator: Validator) -> None:
    adapter = DebugTranslationAdapter(TranslatorConfig(provider="debug"), validator)
    assert adapter.name == "debug"
    assert await adapter.translate(["House", "sky"], "fr") == {
        "House": "maison",
        "sky": "sky-fr",
    }


@pytest.mark.asyncio
async def test_words_are_split_into_chunks(validator: Validator) -> None:
    adapter = CountingAdapter(TranslatorConfig(provider="debug", chunk_size=2), validator)
    result = await adapter.translate(["house", "water", "time", "book", "cat"], "es")

    assert len(result) == 5
    assert adapter.chunk_calls == [["house", "water"], ["time", "book"], ["cat"]]


@pytest.mark.asyncio
async def test_concurrent_identical_requests_are_coalesced(validator: Validator) -> None:
    adapter = CountingAdapter(TranslatorConfig(provider="debug"), validator)
    first, second = await asyncio.gather(
        adapter.translate(["house", "water"], "es"),
        adapter.translate(["Water", "house"], "es"),
    )

    assert first == {"house": "casa", "water": "agua"}
    assert second == first
    assert len(adapter.chunk_calls) == 1


@pytest.mark.asyncio
async def test_byok_requests_are_not_coalesced_with_platform_requests(
    validator: Validator,
) -> None:
    adapter = CountingAdapter(TranslatorConfig(provider="debug"), validator)
    await asyncio.gather(
        adapter.translate(["house"], "es"),
        adapter.translate(["house"], "es", api_key="user-key"),
    )
    assert len(adapter.chunk_calls) == 2


def test_factory_selects_adapters(validator: Validator) -> None:
    config = GatewayConfig(
        _env_file=None,
        translator={"provider": "debug"},
        context={"enabled": True, "api_key": SecretStr("sk-test-000000000")},
    )
    coalescer = RequestCoalescer()
    assert isinstance(
        create_translation_adapter(config, validator, coalescer), DebugTranslationAdapter
    )
    assert create_context_adapter(config, validator, coalescer) is not None

    disabled = config.model_copy(update={"context": config.context.model_copy(update={"enabled": False})})
    assert create_context_adapter(disabled, validator, coalescer) is None
    no_key = config.model_copy(update={"context": config.context.model_copy(update={"api_key": None})})
    assert create_context_adapter(no_key, validator, coalescer) is None
