# fluent_gateway/utils.py
"""本模块包含项目范围内的通用工具函数：语言代码校验与时间窗口计算。"""

import re
from datetime import datetime, timedelta, timezone
from enum import Enum

from langcodes import Language
from langcodes.tag_parser import LanguageTagError

# 语言子标签应该由 2-3 个字母组成 (BCP 47)
LANGUAGE_SUBTAG_PATTERN = re.compile(r"^[a-zA-Z]{2,3}$")


class Window(str, Enum):
    """配额与成本统计所使用的固定时间窗口。"""

    HOUR = "hour"
    DAY = "day"

    @property
    def seconds(self) -> int:
        return 3600 if self is Window.HOUR else 86400


def validate_lang_codes(lang_codes: list[str]) -> None:
    """使用 `langcodes` 库校验语言代码列表中的每个代码是否符合 BCP 47 规范。"""
    for code in lang_codes:
        try:
            lang = Language.get(code)
            if not lang.language or not LANGUAGE_SUBTAG_PATTERN.match(lang.language):
                raise LanguageTagError(
                    f"Tag '{code}' lacks a valid 2-3 letter language subtag."
                )
        except LanguageTagError as e:
            raise ValueError(f"提供的语言代码 '{code}' 格式无效。原因: {e}") from e


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """SQLite 读回的时间不带时区信息，统一视为 UTC。"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def window_start(window: Window, now: datetime | None = None) -> int:
    """返回 `now` 所在窗口的起点 (UTC 纪元秒)。小时和天都按 UTC 边界对齐。"""
    now = ensure_utc(now or utc_now())
    epoch = int(now.timestamp())
    return epoch - (epoch % window.seconds)


def seconds_until_reset(window: Window, now: datetime | None = None) -> int:
    """距离当前窗口结束还有多少秒，至少为 1。"""
    now = ensure_utc(now or utc_now())
    end = window_start(window, now) + window.seconds
    return max(1, int(end - now.timestamp()))


def days_ago(days: int, now: datetime | None = None) -> datetime:
    return ensure_utc(now or utc_now()) - timedelta(days=days)
