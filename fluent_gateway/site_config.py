# fluent_gateway/site_config.py
"""
`GET /config` 返回的站点处理配置。

内置一份默认配置；若配置了 `site_config_path`，则读取该 JSON 文件并与默认值合并：
`blockedSites` 取并集，`optimizedSites` 追加，其余字段以覆盖文件为准。
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fluent_gateway.utils import utc_now

logger = structlog.get_logger(__name__)

DEFAULT_BLOCKED_SITES: tuple[str, ...] = (
    # 邮件
    "gmail.com", "mail.google.com", "outlook.com", "mail.yahoo.com",
    # 银行与支付
    "chase.com", "wellsfargo.com", "bankofamerica.com", "paypal.com",
    "venmo.com", "coinbase.com", "stripe.com",
    # 医疗
    "mychart.com", "kaiserpermanente.org",
    # 政府
    "irs.gov", "dmv.gov", "uscis.gov",
    # 开发者工具
    "github.com", "gitlab.com", "localhost", "127.0.0.1",
    # 密码管理器
    "1password.com", "bitwarden.com", "lastpass.com",
    # 办公协作
    "slack.com", "discord.com", "teams.microsoft.com", "zoom.us",
    "docs.google.com", "sheets.google.com", "slides.google.com", "drive.google.com",
    "office.com", "office365.com", "word.office.com", "excel.office.com",
    "powerpoint.office.com", "onedrive.com", "sharepoint.com",
    "notion.so", "evernote.com", "dropbox.com", "box.com",
    # 社交媒体
    "facebook.com", "instagram.com", "twitter.com", "linkedin.com",
)  # fmt: skip

DEFAULT_SKIP_SELECTORS: tuple[str, ...] = (
    "script", "style", "noscript", "iframe", "pre", "code",
    "input", "textarea", "button", '[contenteditable="true"]',
)  # fmt: skip


class OptimizedSite(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    domain: str
    selector: str
    words_per_page: int = Field(default=8, alias="wordsPerPage", gt=0)
    skip_selectors: list[str] | None = Field(default=None, alias="skipSelectors")
    use_mutation_observer: bool | None = Field(
        default=None, alias="useMutationObserver"
    )


DEFAULT_OPTIMIZED_SITES: tuple[OptimizedSite, ...] = (
    OptimizedSite(
        domain="bbc.com",
        selector=".ssrcss-1if1lbl-StyledText p, .ssrcss-18cjaf3-StyledText p",
        words_per_page=10,
    ),
    OptimizedSite(
        domain="wikipedia.org",
        selector="#mw-content-text p",
        words_per_page=12,
        skip_selectors=[".mw-editsection", ".reference", ".citation"],
    ),
    OptimizedSite(
        domain="reddit.com",
        selector='[data-testid="comment"] p, .Post h3',
        words_per_page=6,
        use_mutation_observer=True,
    ),
)


class SiteConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    blocked_sites: list[str] = Field(alias="blockedSites")
    optimized_sites: list[OptimizedSite] = Field(alias="optimizedSites")
    global_skip_selectors: list[str] = Field(alias="globalSkipSelectors")
    version: str = "1.0.0"
    last_updated: str = Field(alias="lastUpdated")

    def public_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def default_site_config() -> SiteConfig:
    return SiteConfig(
        blocked_sites=list(DEFAULT_BLOCKED_SITES),
        optimized_sites=[site.model_copy() for site in DEFAULT_OPTIMIZED_SITES],
        global_skip_selectors=list(DEFAULT_SKIP_SELECTORS),
        last_updated=utc_now().isoformat(),
    )


def merge_site_config(base: SiteConfig, override: dict[str, Any]) -> SiteConfig:
    """把覆盖配置合并到默认配置上。"""
    merged = base.model_dump(by_alias=True)
    for key in ("globalSkipSelectors", "version", "lastUpdated"):
        if key in override:
            merged[key] = override[key]
    blocked = list(merged["blockedSites"])
    for domain in override.get("blockedSites") or []:
        if domain not in blocked:
            blocked.append(domain)
    merged["blockedSites"] = blocked
    merged["optimizedSites"] = [
        *merged["optimizedSites"],
        *(override.get("optimizedSites") or []),
    ]
    return SiteConfig.model_validate(merged)


def load_site_config(path: Path | None) -> SiteConfig:
    """
    加载站点配置。覆盖文件缺失或无效时记录错误并退回默认配置，
    `/config` 端点不应因为一份坏文件而不可用。
    """
    config = default_site_config()
    if path is None:
        return config
    try:
        override = json.loads(path.read_text("utf-8"))
        if not isinstance(override, dict):
            raise ValueError("站点配置文件的顶层必须是 JSON 对象")
        return merge_site_config(config, override)
    except (OSError, ValueError, ValidationError) as e:
        logger.error("加载自定义站点配置失败，使用默认配置", path=str(path), error=str(e))
        return config
