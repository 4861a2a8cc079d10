"""Fluent Gateway: 浏览器扩展的翻译 API 网关。

网关在客户端与两类付费上游 (机器翻译与 LLM 上下文生成) 之间完成认证、
配额控制、分层缓存与结果合并。
"""

__version__ = "1.0.0"

from .config import GatewayConfig
from .coordinator import Coordinator
from .exceptions import GatewayError

__all__ = [
    "__version__",
    "Coordinator",
    "GatewayConfig",
    "GatewayError",
]
