# fluent_gateway/auth.py
"""
安装实例的注册与请求认证。

每个请求携带四个头：`Authorization: Bearer <共享密钥>`、`X-Installation-Id`、
`X-Timestamp` (毫秒级纪元时间) 与 `X-Signature`。签名是以共享密钥为 key、
对 `"{installation_id}-{timestamp}"` 计算的 HMAC-SHA256，再做 base64 编码。
所有密钥与签名的比较都使用恒定时间比较。
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import re
import secrets
from collections.abc import Mapping
from datetime import timedelta

import structlog

from fluent_gateway.config import AuthConfig
from fluent_gateway.core.interfaces import PersistenceHandler
from fluent_gateway.core.types import AuthContext, CredentialRecord, IssuedCredential
from fluent_gateway.exceptions import AuthenticationError, AuthFailure, ValidationError
from fluent_gateway.utils import utc_now

logger = structlog.get_logger(__name__)

INSTALLATION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
REQUIRED_HEADERS = ("authorization", "x-installation-id", "x-timestamp", "x-signature")


def sign(shared_key: str, installation_id: str, timestamp: int | str) -> str:
    """计算请求签名。客户端与测试使用同一实现。"""
    message = f"{installation_id}-{timestamp}".encode()
    digest = hmac.new(shared_key.encode(), message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def hash_refresh_token(refresh_token: str) -> str:
    return hashlib.sha256(refresh_token.encode()).hexdigest()


def _constant_time_equals(left: str, right: str) -> bool:
    return hmac.compare_digest(left.encode(), right.encode())


class Authenticator:
    """校验请求签名，并负责颁发与刷新凭证。"""

    def __init__(self, handler: PersistenceHandler, config: AuthConfig) -> None:
        self._handler = handler
        self.config = config

    def _validate_installation_id(self, installation_id: object) -> str:
        if not isinstance(installation_id, str):
            raise ValidationError("installationId 必须是字符串", code="INVALID_INSTALLATION_ID")
        installation_id = installation_id.strip()
        if not (
            self.config.min_installation_id_length
            <= len(installation_id)
            <= self.config.max_installation_id_length
        ) or not INSTALLATION_ID_PATTERN.match(installation_id):
            raise ValidationError("installationId 格式无效", code="INVALID_INSTALLATION_ID")
        return installation_id

    async def _issue(
        self,
        installation_id: str,
        client_version: str | None,
        platform: str | None,
    ) -> IssuedCredential:
        now = utc_now()
        shared_key = secrets.token_urlsafe(32)
        refresh_token = secrets.token_urlsafe(32)
        record = CredentialRecord(
            installation_id=installation_id,
            shared_key=shared_key,
            refresh_token_hash=hash_refresh_token(refresh_token),
            issued_at=now,
            expires_at=now + timedelta(days=self.config.credential_ttl_days),
            refresh_expires_at=now + timedelta(days=self.config.refresh_ttl_days),
        )
        await self._handler.save_credential(record, client_version, platform)
        return IssuedCredential(
            token=shared_key,
            refresh_token=refresh_token,
            expires_in=int((record.expires_at - now).total_seconds()),
        )

    async def register(
        self,
        installation_id: object,
        client_version: str | None = None,
        platform: str | None = None,
    ) -> IssuedCredential:
        """注册安装实例并颁发凭证。重复注册会替换旧凭证。"""
        installation_id = self._validate_installation_id(installation_id)
        issued = await self._issue(
            installation_id,
            (client_version or "")[:32] or None,
            (platform or "")[:32] or None,
        )
        logger.info("安装实例已注册", installation_id=installation_id)
        return issued

    async def refresh(self, installation_id: object, refresh_token: object) -> IssuedCredential:
        """用刷新令牌换取新凭证。刷新令牌只能使用一次。"""
        installation_id = self._validate_installation_id(installation_id)
        if not isinstance(refresh_token, str) or not refresh_token:
            raise AuthenticationError("缺少刷新令牌", AuthFailure.INVALID_REFRESH_TOKEN)

        record = await self._handler.get_credential(installation_id)
        if record is None:
            raise AuthenticationError("未知的安装实例", AuthFailure.UNKNOWN_INSTALLATION)
        if not _constant_time_equals(
            hash_refresh_token(refresh_token), record.refresh_token_hash
        ):
            raise AuthenticationError("刷新令牌无效", AuthFailure.INVALID_REFRESH_TOKEN)
        if utc_now() > record.refresh_expires_at:
            raise AuthenticationError("刷新令牌已过期", AuthFailure.EXPIRED)

        issued = await self._issue(installation_id, None, None)
        logger.info("凭证已刷新", installation_id=installation_id)
        return issued

    async def verify(self, headers: Mapping[str, str]) -> AuthContext:
        """按顺序校验：头完整 → 时间戳窗口 → 凭证存在 → 凭证未过期 → 密钥与签名。"""
        lowered = {key.lower(): value for key, value in headers.items()}
        if any(not lowered.get(name) for name in REQUIRED_HEADERS):
            raise AuthenticationError("缺少认证头", AuthFailure.MISSING_HEADERS)

        authorization = lowered["authorization"]
        scheme, _, token = authorization.partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token:
            raise AuthenticationError("缺少认证头", AuthFailure.MISSING_HEADERS)

        installation_id = lowered["x-installation-id"]
        raw_timestamp = lowered["x-timestamp"]
        signature = lowered["x-signature"]

        try:
            timestamp_ms = int(raw_timestamp)
        except ValueError:
            raise AuthenticationError("时间戳格式无效", AuthFailure.EXPIRED) from None
        now = utc_now()
        drift_seconds = abs(now.timestamp() * 1000 - timestamp_ms) / 1000
        if drift_seconds > self.config.replay_window_seconds:
            raise AuthenticationError("请求时间戳已过期", AuthFailure.EXPIRED)

        record = await self._handler.get_credential(installation_id)
        if record is None:
            raise AuthenticationError("未知的安装实例", AuthFailure.UNKNOWN_INSTALLATION)
        if now > record.expires_at:
            raise AuthenticationError("凭证已过期，请刷新", AuthFailure.EXPIRED)

        expected_signature = sign(record.shared_key, installation_id, raw_timestamp)
        # 两项都比较，不提前返回
        key_ok = _constant_time_equals(token, record.shared_key)
        signature_ok = _constant_time_equals(signature, expected_signature)
        if not (key_ok and signature_ok):
            raise AuthenticationError("签名无效", AuthFailure.INVALID_SIGNATURE)

        await self._handler.touch_installation(installation_id, now)
        return AuthContext(installation_id=installation_id)
