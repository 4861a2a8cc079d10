# fluent_gateway/api/errors.py
"""把异常转换为统一的 JSON 错误信封。"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fluent_gateway.exceptions import GatewayError

logger = structlog.get_logger(__name__)

_HTTP_ERROR_CODES = {
    404: ("NotFoundError", "NOT_FOUND"),
    405: ("ValidationError", "METHOD_NOT_ALLOWED"),
}


def request_id_of(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def error_body(
    error_type: str,
    message: str,
    code: str,
    request_id: str | None,
    retry_after: int | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "type": error_type,
        "message": message,
        "code": code,
        "requestId": request_id,
    }
    if retry_after is not None:
        error["retryAfter"] = retry_after
    return {"error": error}


def gateway_error_response(request: Request, exc: GatewayError) -> JSONResponse:
    body = error_body(
        exc.error_type, exc.message, exc.code, request_id_of(request), exc.retry_after
    )
    # 配额拒绝时仍附带已缓存的部分结果
    if exc.partial_result is not None:
        body.update(exc.partial_result)
    headers: dict[str, str] = {}
    if exc.retry_after is not None:
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(body, status_code=exc.status_code, headers=headers)


def unknown_error_response(request: Request) -> JSONResponse:
    return JSONResponse(
        error_body(
            "UnknownError", "服务器内部错误", "INTERNAL_ERROR", request_id_of(request)
        ),
        status_code=500,
    )


async def _handle_gateway_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, GatewayError)
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "请求处理失败",
        error_type=exc.error_type,
        code=exc.code,
        status_code=exc.status_code,
        error=exc.message,
        path=request.url.path,
    )
    return gateway_error_response(request, exc)


async def _handle_http_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, StarletteHTTPException)
    error_type, code = _HTTP_ERROR_CODES.get(
        exc.status_code, ("ValidationError", "INVALID_REQUEST")
    )
    return JSONResponse(
        error_body(error_type, str(exc.detail), code, request_id_of(request)),
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GatewayError, _handle_gateway_error)
    app.add_exception_handler(StarletteHTTPException, _handle_http_error)
