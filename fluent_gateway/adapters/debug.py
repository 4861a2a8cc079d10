# fluent_gateway/adapters/debug.py
"""一个用于开发和测试的确定性翻译适配器，不访问网络。"""

from __future__ import annotations

from fluent_gateway.adapters.base import BaseTranslationAdapter
from fluent_gateway.config import TranslatorConfig

GLOSSARY: dict[str, dict[str, str]] = {
    "es": {"house": "casa", "water": "agua", "time": "tiempo", "book": "libro", "cat": "gato"},
    "fr": {"house": "maison", "water": "eau", "time": "temps", "book": "livre", "cat": "chat"},
    "de": {"house": "Haus", "water": "Wasser", "time": "Zeit", "book": "Buch", "cat": "Katze"},
    "it": {"house": "casa", "water": "acqua", "time": "tempo", "book": "libro", "cat": "gatto"},
    "pt": {"house": "casa", "water": "água", "time": "tempo", "book": "livro", "cat": "gato"},
}


class DebugTranslationAdapter(BaseTranslationAdapter[TranslatorConfig]):
    """查词表翻译；词表之外的单词翻译为 ``<单词>-<语言>``。"""

    async def _translate_chunk(
        self, words: list[str], language: str, api_key: str | None
    ) -> list[str | None]:
        glossary = GLOSSARY.get(language, {})
        return [glossary.get(word.lower(), f"{word.lower()}-{language}") for word in words]
