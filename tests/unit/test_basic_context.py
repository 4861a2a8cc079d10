# tests/unit/test_basic_context.py
"""针对 `fluent_gateway.basic_context` 的单元测试。"""

import pytest

from fluent_gateway.basic_context import approximate_pronunciation, generate_basic_variations
from fluent_gateway.core.types import ContextSource


@pytest.mark.parametrize(
    "translation, language, expected",
    [
        ("casa", "es", "CAH-SAH"),
        ("si", "xx", "SI"),
    ],
)
def test_approximate_pronunciation(translation: str, language: str, expected: str) -> None:
    assert approximate_pronunciation(translation, language) == expected


def test_longest_pattern_wins() -> None:
    """德语的 ``sch`` 应优先于 ``ch`` 匹配。"""
    assert approximate_pronunciation("schule", "de").startswith("SHU")


def test_variations_are_deterministic() -> None:
    first = generate_basic_variations("house", "casa", "es", 3)
    second = generate_basic_variations("house", "casa", "es", 3)
    assert first == second


def test_variations_shape() -> None:
    variations = generate_basic_variations("house", "casa", "es", 4)
    assert len(variations) == 4
    for variation in variations:
        assert variation.source is ContextSource.BASIC
        assert variation.pronunciation == "CAH-SAH"
        assert "house" in variation.meaning
        assert "casa" in variation.example
    # 至少使用了不止一种释义模板
    assert len({v.meaning for v in variations}) > 1


def test_unknown_language_falls_back_to_spanish_templates() -> None:
    variation = generate_basic_variations("house", "hus", "sv", 1)[0]
    assert variation.example is not None
    assert "hus" in variation.example
    assert "sv" in variation.meaning
