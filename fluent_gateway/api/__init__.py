"""HTTP 层：FastAPI 应用、路由与错误信封。"""

from fluent_gateway.api.app import create_app

__all__ = ["create_app"]
