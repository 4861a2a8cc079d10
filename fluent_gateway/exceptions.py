# fluent_gateway/exceptions.py
"""
本模块定义了 Fluent Gateway 项目中所有自定义的、语义化的异常类型。

每个异常都携带对外暴露的错误类型 (`error_type`)、HTTP 状态码以及
机器可读的错误码 (`code`)，API 层据此统一生成错误响应体。
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class GatewayError(Exception):
    """
    所有 Fluent Gateway 自定义异常的通用基类。
    捕获此异常可以处理所有源自本项目的预期错误。
    """

    error_type: str = "UnknownError"
    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.retry_after = retry_after
        # 拒绝时仍需返回给调用方的部分结果 (例如已缓存的译文)
        self.partial_result: dict[str, Any] | None = None


class ConfigurationError(GatewayError):
    """
    表示在加载、解析或验证配置时发生的错误。
    例如，翻译服务商缺少 API 密钥，或数据库 URL 使用了不支持的驱动。
    """

    default_code = "CONFIGURATION_ERROR"


class ValidationError(GatewayError):
    """请求体或参数未通过校验。"""

    error_type = "ValidationError"
    status_code = 400
    default_code = "INVALID_REQUEST"


class PayloadTooLargeError(ValidationError):
    """请求体超过大小上限。在解析 JSON 之前就会被拒绝。"""

    status_code = 413
    default_code = "PAYLOAD_TOO_LARGE"


class AuthFailure(str, Enum):
    """认证失败的具体原因。"""

    MISSING_HEADERS = "MISSING_HEADERS"
    EXPIRED = "EXPIRED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    UNKNOWN_INSTALLATION = "UNKNOWN_INSTALLATION"
    INVALID_REFRESH_TOKEN = "INVALID_REFRESH_TOKEN"


class AuthenticationError(GatewayError):
    """请求未能通过身份认证。"""

    error_type = "AuthenticationError"
    status_code = 401
    default_code = AuthFailure.INVALID_SIGNATURE.value

    def __init__(self, message: str, failure: AuthFailure) -> None:
        super().__init__(message, code=failure.value)
        self.failure = failure


class RateLimitError(GatewayError):
    """调用方在某个时间窗口内的配额已耗尽。"""

    error_type = "RateLimitError"
    status_code = 429
    default_code = "RATE_LIMITED"

    def __init__(self, message: str, *, window: str, retry_after: int) -> None:
        super().__init__(
            message, code=f"RATE_LIMIT_{window.upper()}", retry_after=retry_after
        )
        self.window = window


class CostLimitError(GatewayError):
    """全局成本熔断器已打开，暂停所有付费的上游调用。"""

    error_type = "CostLimitError"
    status_code = 402
    default_code = "COST_LIMIT_EXCEEDED"

    def __init__(self, message: str, *, window: str, retry_after: int) -> None:
        super().__init__(message, retry_after=retry_after)
        self.window = window


class ExternalServiceError(GatewayError):
    """
    表示与外部服务 (机器翻译或 LLM) 交互时发生的错误。
    例如，网络问题、API 密钥无效或服务返回错误状态码。
    """

    error_type = "ExternalServiceError"
    status_code = 502
    default_code = "UPSTREAM_ERROR"

    def __init__(
        self, message: str, *, code: str | None = None, is_retryable: bool = True
    ) -> None:
        super().__init__(message, code=code)
        self.is_retryable = is_retryable


class PartialTranslationError(ExternalServiceError):
    """
    分块翻译中有部分块失败。

    `translations` 保存已成功的结果，`failed_words` 列出需要回滚配额的单词。
    """

    default_code = "PARTIAL_TRANSLATION"

    def __init__(
        self, message: str, translations: dict[str, str], failed_words: list[str]
    ) -> None:
        super().__init__(message, is_retryable=True)
        self.translations = translations
        self.failed_words = failed_words


class DatabaseError(GatewayError):
    """
    表示在持久化层操作（如数据库连接、查询）中发生的错误。
    通常是底层数据库驱动异常的包装。
    """

    error_type = "DatabaseError"
    status_code = 503
    default_code = "DATABASE_UNAVAILABLE"
