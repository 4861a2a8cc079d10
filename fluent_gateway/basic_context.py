# fluent_gateway/basic_context.py
"""
无需调用上游服务的基础上下文生成。

基础上下文由发音规则和例句模板拼出，在 AI 上下文没有按时返回时作为兜底。
输出是确定性的：相同的 (单词, 译文, 语言) 总是得到相同的变体，便于测试与缓存。
"""

from __future__ import annotations

import hashlib

from fluent_gateway.core.types import ContextSource, ContextVariation

# 字母组合到近似英语读音的映射，按最长匹配优先替换
PRONUNCIATION_GUIDES: dict[str, dict[str, str]] = {
    "es": {
        "que": "keh", "qui": "kee", "gue": "geh", "gui": "gee",
        "ll": "y", "rr": "rr", "ñ": "ny", "j": "h",
        "a": "ah", "e": "eh", "i": "ee", "o": "oh", "u": "oo",
    },
    "fr": {
        "ou": "oo", "eu": "uh", "oi": "wah", "ai": "eh", "au": "oh",
        "ch": "sh", "u": "ew", "é": "ay", "è": "eh",
    },
    "de": {
        "sch": "sh", "äu": "oy", "ei": "eye", "ie": "ee", "eu": "oy",
        "ch": "kh", "ö": "er", "ü": "ew", "ä": "eh", "w": "v",
    },
    "it": {
        "gli": "ly", "gn": "ny", "chi": "kee", "che": "keh", "ci": "chee",
        "ce": "cheh", "zz": "ts", "a": "ah", "e": "eh", "i": "ee", "o": "oh", "u": "oo",
    },
    "pt": {
        "ção": "sown", "ões": "oynsh", "ão": "own", "lh": "ly", "nh": "ny",
        "ch": "sh", "ç": "s", "j": "zh", "ã": "an",
    },
}

EXAMPLE_SETS: dict[str, list[list[str]]] = {
    "es": [
        ["Me gusta {word}.", "Veo {word}.", "Busco {word}.", "Encuentro {word}.", "Uso {word}."],
        ["Necesito {word}.", "Quiero {word}.", "Prefiero {word}.", "Deseo {word}.", "Compro {word}."],
        ["Es {word}.", "Hay {word}.", "Tengo {word}.", "Existe {word}.", "Conozco {word}."],
    ],
    "fr": [
        ["J'aime {word}.", "Je vois {word}.", "Je cherche {word}.", "Je trouve {word}.", "J'utilise {word}."],
        ["J'ai besoin de {word}.", "Je veux {word}.", "Je préfère {word}.", "Je souhaite {word}.", "J'achète {word}."],
        ["C'est {word}.", "Il y a {word}.", "J'ai {word}.", "Voici {word}.", "Je connais {word}."],
    ],
    "de": [
        ["Ich mag {word}.", "Ich sehe {word}.", "Ich suche {word}.", "Ich finde {word}.", "Ich benutze {word}."],
        ["Ich brauche {word}.", "Ich will {word}.", "Ich möchte {word}.", "Ich wünsche {word}.", "Ich kaufe {word}."],
        ["Das ist {word}.", "Es gibt {word}.", "Ich habe {word}.", "Hier ist {word}.", "Ich kenne {word}."],
    ],
    "it": [
        ["Mi piace {word}.", "Vedo {word}.", "Cerco {word}.", "Trovo {word}.", "Uso {word}."],
        ["Ho bisogno di {word}.", "Voglio {word}.", "Preferisco {word}.", "Desidero {word}.", "Compro {word}."],
        ["È {word}.", "C'è {word}.", "Ho {word}.", "Ecco {word}.", "Conosco {word}."],
    ],
    "pt": [
        ["Eu gosto de {word}.", "Vejo {word}.", "Procuro {word}.", "Encontro {word}.", "Uso {word}."],
        ["Preciso de {word}.", "Quero {word}.", "Prefiro {word}.", "Desejo {word}.", "Compro {word}."],
        ["É {word}.", "Há {word}.", "Tenho {word}.", "Aqui está {word}.", "Conheço {word}."],
    ],
}

LANGUAGE_NAMES = {
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
}

MEANING_TEMPLATES = [
    'The {language} word for "{word}"',
    '"{word}" in {language}',
    '{language} translation of "{word}"',
]


def approximate_pronunciation(translation: str, language: str) -> str:
    """
    生成近似发音，例如 ``casa`` → ``CAH-SAH``。

    按最长匹配替换字母组合，再每 3 个字符切分一段并转为大写。
    """
    guide = PRONUNCIATION_GUIDES.get(language, {})
    patterns = sorted(guide, key=len, reverse=True)
    text = translation.lower()
    parts: list[str] = []
    i = 0
    while i < len(text):
        for pattern in patterns:
            if text.startswith(pattern, i):
                parts.append(guide[pattern])
                i += len(pattern)
                break
        else:
            parts.append(text[i])
            i += 1
    spoken = "".join(parts)
    if len(spoken) <= 2:
        return spoken.upper()
    return "-".join(spoken[j : j + 3] for j in range(0, len(spoken), 3)).upper()


def _pick(options: list[str], *seed_parts: object) -> str:
    seed = "|".join(str(part) for part in seed_parts).encode("utf-8")
    index = int.from_bytes(hashlib.sha256(seed).digest()[:4], "big") % len(options)
    return options[index]


def generate_basic_variations(
    word: str, translation: str, language: str, count: int = 3
) -> list[ContextVariation]:
    """生成 `count` 条基础上下文变体。未知语言回退到西班牙语模板。"""
    pronunciation = approximate_pronunciation(translation, language)
    example_sets = EXAMPLE_SETS.get(language, EXAMPLE_SETS["es"])
    language_name = LANGUAGE_NAMES.get(language, language)

    variations: list[ContextVariation] = []
    for i in range(count):
        template = _pick(example_sets[i % len(example_sets)], word.lower(), language, i)
        variations.append(
            ContextVariation(
                pronunciation=pronunciation,
                meaning=MEANING_TEMPLATES[i % len(MEANING_TEMPLATES)].format(
                    language=language_name, word=word
                ),
                example=template.format(word=translation),
                source=ContextSource.BASIC,
            )
        )
    return variations
