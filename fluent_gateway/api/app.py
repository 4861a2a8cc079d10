# fluent_gateway/api/app.py
"""FastAPI 应用工厂。"""

from __future__ import annotations

import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import RequestResponseEndpoint

import fluent_gateway
from fluent_gateway.api.errors import register_exception_handlers, unknown_error_response
from fluent_gateway.api.routes import router
from fluent_gateway.bootstrap import shutdown, startup
from fluent_gateway.containers import ApplicationContainer

logger = structlog.get_logger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none';",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "interest-cohort=()",
}

AUTH_HEADERS = ["Content-Type", "Authorization", "X-Installation-Id", "X-Timestamp", "X-Signature"]
EXTENSION_ORIGIN_REGEX = r"^chrome-extension://[a-z]{32}$"


async def _request_context(request: Request, call_next: RequestResponseEndpoint) -> Response:
    """为每个请求分配 ID、记录耗时，并附加安全头。"""
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("未处理的异常", path=request.url.path, method=request.method)
        response = unknown_error_response(request)

    elapsed_ms = int((time.perf_counter() - started) * 1000)
    response.headers["X-Request-Id"] = request_id
    response.headers["X-Processing-Time-Ms"] = str(elapsed_ms)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    logger.debug(
        "请求完成",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        processing_time_ms=elapsed_ms,
    )
    return response


def create_app(
    container: ApplicationContainer, *, manage_lifecycle: bool = True
) -> FastAPI:
    """
    创建 FastAPI 应用。

    `manage_lifecycle=True` 时由 lifespan 负责启动和优雅停机；
    测试可以关闭它并自行管理容器资源。
    """
    config = container.pydantic_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if manage_lifecycle:
            await startup(container)
        try:
            yield
        finally:
            if manage_lifecycle:
                await shutdown(container)

    app = FastAPI(
        title="Fluent Gateway",
        description="浏览器扩展的翻译 API 网关",
        version=fluent_gateway.__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.state.container = container

    app.middleware("http")(_request_context)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_allow_origins,
        allow_origin_regex=EXTENSION_ORIGIN_REGEX,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=AUTH_HEADERS,
        expose_headers=[
            "X-Request-Id",
            "X-Processing-Time-Ms",
            "X-Cache-Hit-Rate",
            "X-RateLimit-Remaining-Hourly",
            "X-RateLimit-Remaining-Daily",
            "Retry-After",
        ],
        allow_credentials=False,
        max_age=86400,
    )
    register_exception_handlers(app)
    app.include_router(router)
    return app
