# fluent_gateway/api/routes.py
"""HTTP 端点。请求体一律按原始字节读取，先检查大小再解析 JSON。"""

from __future__ import annotations

import json
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

import fluent_gateway
from fluent_gateway.containers import ApplicationContainer
from fluent_gateway.exceptions import RateLimitError, ValidationError
from fluent_gateway.validator import Validator

logger = structlog.get_logger(__name__)

router = APIRouter()


def _container(request: Request) -> ApplicationContainer:
    return request.app.state.container


def client_ip(request: Request) -> str:
    """
    返回用于按 IP 限流的客户端地址。

    只有当直连对端位于 `trusted_proxy_ips` 中时，才采信代理转发的地址头。
    """
    peer = request.client.host if request.client else "unknown"
    trusted = _container(request).pydantic_config().trusted_proxy_ips
    if "*" not in trusted and peer not in trusted:
        return peer
    for header in ("cf-connecting-ip", "x-forwarded-for"):
        value = request.headers.get(header)
        if value:
            return value.split(",")[0].strip()
    return peer


def _enforce_ip_limit(request: Request) -> None:
    retry_after = _container(request).ip_limiter().check(client_ip(request))
    if retry_after:
        raise RateLimitError(
            "请求过于频繁，请稍后再试", window="minute", retry_after=retry_after
        )


async def read_body(request: Request, validator: Validator) -> bytes:
    """读取请求体；超过上限时立即停止读取。"""
    content_length = request.headers.get("content-length")
    validator.check_payload_size(content_length, b"")
    limit = validator.config.max_request_bytes
    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            # 交给校验器抛出统一的 413
            validator.check_payload_size(None, b"".join(chunks) + chunk)
        chunks.append(chunk)
    return b"".join(chunks)


def parse_json(body: bytes) -> Any:
    if not body:
        raise ValidationError("请求体不能为空", code="EMPTY_BODY")
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("请求体不是有效的 JSON", code="INVALID_JSON") from None


@router.get("/health")
async def health() -> JSONResponse:
    return JSONResponse({"status": "ok", "version": fluent_gateway.__version__})


@router.get("/config")
async def site_config(request: Request) -> JSONResponse:
    """站点处理配置，无需认证，按 IP 限流。"""
    _enforce_ip_limit(request)
    config = _container(request).site_config()
    return JSONResponse(config.public_dict())


@router.post("/installations/register")
async def register_installation(request: Request) -> JSONResponse:
    _enforce_ip_limit(request)
    container = _container(request)
    payload = parse_json(await read_body(request, container.validator()))
    if not isinstance(payload, dict):
        raise ValidationError("请求体必须是 JSON 对象")
    issued = await container.authenticator().register(
        payload.get("installationId"),
        client_version=payload.get("clientVersion") or payload.get("extensionVersion"),
        platform=payload.get("platform"),
    )
    return JSONResponse(issued.public_dict())


@router.post("/installations/refresh")
async def refresh_installation(request: Request) -> JSONResponse:
    _enforce_ip_limit(request)
    container = _container(request)
    payload = parse_json(await read_body(request, container.validator()))
    if not isinstance(payload, dict):
        raise ValidationError("请求体必须是 JSON 对象")
    issued = await container.authenticator().refresh(
        payload.get("installationId"), payload.get("refreshToken")
    )
    return JSONResponse(issued.public_dict())


@router.post("/translate")
async def translate(request: Request) -> JSONResponse:
    """
    批量翻译。校验 (大小 → JSON → 单词与语言) 先于认证执行，
    无效请求不会触及数据库。
    """
    container = _container(request)
    validator = container.validator()
    body = await read_body(request, validator)
    translate_request = validator.validate_translate_request(parse_json(body))
    auth = await container.authenticator().verify(request.headers)
    structlog.contextvars.bind_contextvars(installation_id=auth.installation_id)

    outcome = await container.coordinator().translate(
        auth, translate_request, payload_bytes=len(body)
    )
    headers = {"X-Cache-Hit-Rate": f"{outcome.cache_hit_rate:.2f}"}
    limits = outcome.metadata.limits
    if limits is not None:
        headers["X-RateLimit-Remaining-Hourly"] = str(limits.hourly_remaining)
        headers["X-RateLimit-Remaining-Daily"] = str(limits.daily_remaining)
    return JSONResponse(outcome.public_dict(), headers=headers)


@router.post("/context")
async def context(request: Request) -> JSONResponse:
    """单词上下文。AI 不可用或生成失败时返回 `{"context": null}`。"""
    container = _container(request)
    validator = container.validator()
    body = await read_body(request, validator)
    context_request = validator.validate_context_request(parse_json(body))
    auth = await container.authenticator().verify(request.headers)
    structlog.contextvars.bind_contextvars(installation_id=auth.installation_id)

    variation = await container.coordinator().context(auth, context_request)
    return JSONResponse(
        {"context": variation.public_dict() if variation is not None else None}
    )
