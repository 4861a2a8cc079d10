# fluent_gateway/config.py

import os
from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fluent_gateway.utils import validate_lang_codes


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: Literal["json", "console"] = "console"
    redact: bool = True


class RetryPolicyConfig(BaseModel):
    max_attempts: int = Field(default=3, gt=0)
    initial_backoff: float = Field(default=0.2, gt=0)
    max_backoff: float = Field(default=2.0, gt=0)

    @model_validator(mode="after")
    def check_backoff_consistency(self) -> "RetryPolicyConfig":
        if self.max_backoff < self.initial_backoff:
            raise ValueError("max_backoff 必须大于或等于 initial_backoff")
        return self


class ValidationConfig(BaseModel):
    max_words: int = Field(default=50, gt=0)
    min_word_length: int = Field(default=2, gt=0)
    max_word_length: int = Field(default=50, gt=0)
    max_translation_length: int = Field(default=100, gt=0)
    max_context_length: int = Field(default=500, gt=0)
    max_request_bytes: int = Field(default=10 * 1024, gt=0)
    max_sentence_length: int = Field(default=500, gt=0)


class AuthConfig(BaseModel):
    replay_window_seconds: int = Field(default=300, gt=0)
    credential_ttl_days: int = Field(default=28, gt=0)
    refresh_ttl_days: int = Field(default=7, gt=0)
    min_installation_id_length: int = Field(default=10, gt=0)
    max_installation_id_length: int = Field(default=128, gt=0)


class QuotaConfig(BaseModel):
    hourly_limit: int = Field(default=100, gt=0)
    daily_limit: int = Field(default=1000, gt=0)
    byok_hourly_limit: int = Field(default=1000, gt=0)
    byok_daily_limit: int = Field(default=10000, gt=0)
    context_hourly_limit: int = Field(default=10, gt=0)
    context_daily_limit: int = Field(default=100, gt=0)
    large_payload_bytes: int = Field(default=5 * 1024, gt=0)
    large_payload_multiplier: int = Field(default=2, gt=0)
    # 未认证端点 (/config, /installations/*) 按 IP 的每分钟请求上限
    ip_requests_per_minute: int = Field(default=30, gt=0)

    @model_validator(mode="after")
    def check_windows(self) -> "QuotaConfig":
        if self.daily_limit < self.hourly_limit:
            raise ValueError("daily_limit 不能小于 hourly_limit")
        if self.byok_daily_limit < self.byok_hourly_limit:
            raise ValueError("byok_daily_limit 不能小于 byok_hourly_limit")
        return self


class CostConfig(BaseModel):
    enabled: bool = True
    hourly_limit_usd: float = Field(default=1.0, gt=0)
    daily_limit_usd: float = Field(default=10.0, gt=0)
    cost_per_character: float = Field(default=0.00001, gt=0)


class CacheConfig(BaseModel):
    max_context_variations: int = Field(default=6, ge=3)
    inflight_maxsize: int = Field(default=1024, gt=0)


class TranslatorConfig(BaseModel):
    provider: Literal["azure", "debug"] = "azure"
    api_key: SecretStr | None = None
    endpoint: str = "https://api.cognitive.microsofttranslator.com"
    region: str | None = None
    source_lang: str = "en"
    chunk_size: int = Field(default=25, gt=0, le=100)
    rpm: int | None = Field(default=None, gt=0)
    timeout_total: float = Field(default=10.0, gt=0)
    timeout_connect: float = Field(default=3.0, gt=0)


class ContextConfig(BaseModel):
    enabled: bool = True
    provider: Literal["openai", "none"] = "openai"
    api_key: SecretStr | None = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=2000, gt=0)
    variations_per_word: int = Field(default=3, ge=3)
    race_deadline_seconds: float = Field(default=1.0, gt=0)
    timeout_total: float = Field(default=20.0, gt=0)


class RetentionConfig(BaseModel):
    installation_days: int = Field(default=180, gt=0)
    usage_days: int = Field(default=30, gt=0)


class GatewayConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FG_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    database_url: str = "sqlite+aiosqlite:///fluent_gateway.db"
    auto_create_schema: bool = True
    supported_languages: list[str] = Field(
        default_factory=lambda: ["es", "fr", "de", "it", "pt"]
    )
    site_config_path: Path | None = None
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])
    # 直连对端在此列表中时才采信 CF-Connecting-IP / X-Forwarded-For；"*" 表示信任所有对端
    trusted_proxy_ips: list[str] = Field(default_factory=list)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    retry_policy: RetryPolicyConfig = Field(default_factory=RetryPolicyConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    quota: QuotaConfig = Field(default_factory=QuotaConfig)
    cost: CostConfig = Field(default_factory=CostConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    translator: TranslatorConfig = Field(default_factory=TranslatorConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)

    @field_validator("supported_languages")
    @classmethod
    def validate_supported_languages(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("supported_languages 不能为空")
        validate_lang_codes(v)
        return [code.lower() for code in v]

    @property
    def is_sqlite(self) -> bool:
        return urlparse(self.database_url).scheme.startswith("sqlite")

    @property
    def db_path(self) -> str:
        parsed_url = urlparse(self.database_url)
        if not parsed_url.scheme.startswith("sqlite"):
            raise ValueError("db_path 属性仅在 database_url 为 sqlite 类型时可用。")

        path = parsed_url.path
        # 移除 Windows 驱动器号前的斜杠 (例如, '/C:/...' -> 'C:/...')
        if os.name == "nt" and path.startswith("/") and len(path) > 2 and path[2] == ":":
            path = path[1:]
        # 'sqlite:///relative.db' 的 path 为 '/relative.db'
        if path.startswith("/") and not path.startswith("//"):
            path = path[1:]
        while path.startswith("//"):
            path = path[1:]
        return path or ":memory:"
