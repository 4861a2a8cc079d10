# tests/integration/test_api.py
"""
HTTP 层的端到端测试。

应用通过 httpx.ASGITransport 在进程内调用，使用临时 SQLite 数据库与
debug 翻译适配器。每个测试显式启动和关闭容器。
"""

import time
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import httpx
import pytest
import pytest_asyncio

from fluent_gateway.api import create_app
from fluent_gateway.bootstrap import create_container, shutdown, startup
from fluent_gateway.config import GatewayConfig
from fluent_gateway.containers import ApplicationContainer
from tests.helpers.factories import TEST_INSTALLATION_ID, signed_headers

WORDS = ["house", "water", "time"]


@asynccontextmanager
async def serve(
    config: GatewayConfig,
) -> AsyncIterator[tuple[ApplicationContainer, httpx.AsyncClient]]:
    container = create_container(config, init_logging=False)
    await startup(container)
    app = create_app(container, manage_lifecycle=False)
    try:
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://testserver"
        ) as client:
            yield container, client
    finally:
        await shutdown(container)


async def register(client: httpx.AsyncClient) -> dict[str, Any]:
    response = await client.post(
        "/installations/register",
        json={
            "installationId": TEST_INSTALLATION_ID,
            "extensionVersion": "1.0.0",
            "platform": "chrome",
        },
    )
    assert response.status_code == 200, response.text
    return response.json()


@pytest_asyncio.fixture
async def gateway(
    config: GatewayConfig,
) -> AsyncGenerator[tuple[ApplicationContainer, httpx.AsyncClient], None]:
    async with serve(config) as pair:
        yield pair


@pytest_asyncio.fixture
async def client(
    gateway: tuple[ApplicationContainer, httpx.AsyncClient],
) -> httpx.AsyncClient:
    return gateway[1]


@pytest_asyncio.fixture
async def token(client: httpx.AsyncClient) -> str:
    return (await register(client))["token"]


def _auth(token: str, **kwargs: Any) -> dict[str, str]:
    return signed_headers(TEST_INSTALLATION_ID, token, **kwargs)


# ---------------------------------------------------------------------------
# 无需认证的端点
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_health(client: httpx.AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": "1.0.0"}
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Request-Id"]
    assert int(response.headers["X-Processing-Time-Ms"]) >= 0


@pytest.mark.asyncio
async def test_request_id_is_propagated(client: httpx.AsyncClient) -> None:
    response = await client.get("/health", headers={"X-Request-Id": "req-abc123"})
    assert response.headers["X-Request-Id"] == "req-abc123"


@pytest.mark.asyncio
async def test_site_config(client: httpx.AsyncClient) -> None:
    response = await client.get("/config")
    assert response.status_code == 200
    body = response.json()
    assert "gmail.com" in body["blockedSites"]
    assert {site["domain"] for site in body["optimizedSites"]} >= {"bbc.com", "reddit.com"}


@pytest.mark.asyncio
async def test_ip_limit_ignores_forwarded_headers_from_untrusted_peer(
    make_config: Callable[..., GatewayConfig],
) -> None:
    config = make_config(quota={"ip_requests_per_minute": 2})
    async with serve(config) as (_, client):
        statuses = [
            (
                await client.get(
                    "/config",
                    headers={
                        "X-Forwarded-For": f"10.0.0.{i}",
                        "CF-Connecting-IP": f"10.0.1.{i}",
                    },
                )
            ).status_code
            for i in range(4)
        ]
    assert statuses == [200, 200, 429, 429]


@pytest.mark.asyncio
async def test_ip_limit_uses_forwarded_address_behind_trusted_proxy(
    make_config: Callable[..., GatewayConfig],
) -> None:
    config = make_config(
        quota={"ip_requests_per_minute": 2}, trusted_proxy_ips=["127.0.0.1"]
    )
    async with serve(config) as (_, client):
        rotated = [
            (
                await client.get("/config", headers={"X-Forwarded-For": f"10.0.0.{i}"})
            ).status_code
            for i in range(4)
        ]
        repeated = [
            (
                await client.get("/config", headers={"X-Forwarded-For": "10.0.0.99, 127.0.0.1"})
            ).status_code
            for _ in range(3)
        ]
    assert rotated == [200] * 4
    assert repeated == [200, 200, 429]


@pytest.mark.asyncio
async def test_unknown_route_uses_error_envelope(client: httpx.AsyncClient) -> None:
    response = await client.get("/nope")
    assert response.status_code == 404
    assert response.json()["error"]["type"] == "NotFoundError"
    assert response.json()["error"]["requestId"] == response.headers["X-Request-Id"]

    response = await client.get("/translate")
    assert response.status_code == 405
    assert response.json()["error"]["code"] == "METHOD_NOT_ALLOWED"


@pytest.mark.asyncio
async def test_extension_preflight_is_allowed(client: httpx.AsyncClient) -> None:
    response = await client.options(
        "/translate",
        headers={
            "Origin": "chrome-extension://" + "a" * 32,
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "x-signature, x-timestamp",
        },
    )
    assert response.status_code == 200
    assert "access-control-allow-origin" in response.headers


@pytest.mark.asyncio
async def test_register_and_refresh(client: httpx.AsyncClient) -> None:
    issued = await register(client)
    assert issued["expiresIn"] == 28 * 86400

    response = await client.post(
        "/installations/refresh",
        json={"installationId": TEST_INSTALLATION_ID, "refreshToken": issued["refreshToken"]},
    )
    assert response.status_code == 200
    refreshed = response.json()
    assert refreshed["token"] != issued["token"]

    # 刷新令牌只能使用一次
    response = await client.post(
        "/installations/refresh",
        json={"installationId": TEST_INSTALLATION_ID, "refreshToken": issued["refreshToken"]},
    )
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "INVALID_REFRESH_TOKEN"


@pytest.mark.asyncio
async def test_register_rejects_invalid_installation_id(client: httpx.AsyncClient) -> None:
    response = await client.post("/installations/register", json={"installationId": "x"})
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["type"] == "ValidationError"
    assert error["code"] == "INVALID_INSTALLATION_ID"


# ---------------------------------------------------------------------------
# /translate
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_translate_then_cache_hits(
    gateway: tuple[ApplicationContainer, httpx.AsyncClient], token: str
) -> None:
    container, client = gateway
    payload = {"words": WORDS, "targetLanguage": "es"}

    response = await client.post("/translate", json=payload, headers=_auth(token))
    assert response.status_code == 200, response.text
    body = response.json()
    assert {w: r["translation"] for w, r in body["translations"].items()} == {
        "house": "casa",
        "water": "agua",
        "time": "tiempo",
    }
    assert body["translations"]["house"]["pronunciation"] == "CAH-SAH"
    metadata = body["metadata"]
    assert metadata["newTranslations"] == 3
    assert metadata["cacheMisses"] == 3
    assert metadata["limits"] == {"hourlyRemaining": 97, "dailyRemaining": 997}
    assert response.headers["X-Cache-Hit-Rate"] == "0.00"
    assert response.headers["X-RateLimit-Remaining-Hourly"] == "97"

    await container.supervisor().drain()

    response = await client.post("/translate", json=payload, headers=_auth(token))
    assert response.status_code == 200
    metadata = response.json()["metadata"]
    assert metadata["cacheHits"] == 3
    assert metadata["cacheMisses"] == 0
    assert metadata["newTranslations"] == 0
    assert response.headers["X-Cache-Hit-Rate"] == "1.00"
    assert response.headers["X-RateLimit-Remaining-Hourly"] == "97"


@pytest.mark.asyncio
async def test_translate_reports_filtered_words(client: httpx.AsyncClient, token: str) -> None:
    response = await client.post(
        "/translate",
        json={"words": ["House", "house", "<script>", "x"], "targetLanguage": "es"},
        headers=_auth(token),
    )
    assert response.status_code == 200
    body = response.json()
    assert list(body["translations"]) == ["House"]
    assert body["metadata"]["wordsFiltered"] == 3
    assert body["metadata"]["wordsProcessed"] == 1


@pytest.mark.asyncio
async def test_too_many_words_rejected_before_auth(client: httpx.AsyncClient) -> None:
    """校验先于认证：不带任何认证头也应得到 400 而不是 401。"""
    words = [f"word{chr(97 + i % 26)}{chr(97 + i // 26)}" for i in range(51)]
    response = await client.post("/translate", json={"words": words, "targetLanguage": "es"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "TOO_MANY_WORDS"


@pytest.mark.asyncio
async def test_unsupported_language(client: httpx.AsyncClient, token: str) -> None:
    response = await client.post(
        "/translate", json={"words": ["house"], "targetLanguage": "xx"}, headers=_auth(token)
    )
    assert response.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content, code",
    [
        (b"", "EMPTY_BODY"),
        (b"{not json", "INVALID_JSON"),
    ],
)
async def test_malformed_bodies(client: httpx.AsyncClient, content: bytes, code: str) -> None:
    response = await client.post(
        "/translate", content=content, headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == code


@pytest.mark.asyncio
async def test_oversized_body_is_rejected(client: httpx.AsyncClient) -> None:
    response = await client.post(
        "/translate",
        content=b"x" * (11 * 1024),
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 413
    assert response.json()["error"]["code"] == "PAYLOAD_TOO_LARGE"


@pytest.mark.asyncio
async def test_expired_signature(client: httpx.AsyncClient, token: str) -> None:
    stale_ms = int(time.time() * 1000) - 301_000
    response = await client.post(
        "/translate",
        json={"words": WORDS, "targetLanguage": "es"},
        headers=_auth(token, timestamp_ms=stale_ms),
    )
    assert response.status_code == 401
    error = response.json()["error"]
    assert error["type"] == "AuthenticationError"
    assert error["code"] == "EXPIRED"


@pytest.mark.asyncio
async def test_invalid_signature(client: httpx.AsyncClient, token: str) -> None:
    headers = _auth(token)
    headers["X-Signature"] = "bm90LWEtcmVhbC1zaWduYXR1cmU="
    response = await client.post(
        "/translate", json={"words": WORDS, "targetLanguage": "es"}, headers=headers
    )
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "INVALID_SIGNATURE"


@pytest.mark.asyncio
async def test_missing_auth_headers(client: httpx.AsyncClient) -> None:
    response = await client.post("/translate", json={"words": WORDS, "targetLanguage": "es"})
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "MISSING_HEADERS"


@pytest.mark.asyncio
async def test_quota_denial_still_returns_cached_words(
    make_config: Callable[..., GatewayConfig],
) -> None:
    config = make_config(quota={"hourly_limit": 2, "daily_limit": 20})
    async with serve(config) as (container, client):
        token = (await register(client))["token"]
        response = await client.post(
            "/translate",
            json={"words": ["house"], "targetLanguage": "es"},
            headers=_auth(token),
        )
        assert response.status_code == 200
        await container.supervisor().drain()

        response = await client.post(
            "/translate",
            json={"words": WORDS, "targetLanguage": "es"},
            headers=_auth(token),
        )
        assert response.status_code == 429
        body = response.json()
        assert body["error"]["type"] == "RateLimitError"
        assert body["error"]["code"] == "RATE_LIMIT_HOUR"
        assert int(response.headers["Retry-After"]) >= 1
        assert body["translations"]["house"]["translation"] == "casa"
        assert body["metadata"]["partial"] is True


@pytest.mark.asyncio
async def test_cost_limit_is_distinguishable_from_quota(
    make_config: Callable[..., GatewayConfig],
) -> None:
    config = make_config(cost={"hourly_limit_usd": 0.00001, "cost_per_character": 0.00001})
    async with serve(config) as (_, client):
        token = (await register(client))["token"]
        response = await client.post(
            "/translate",
            json={"words": ["house"], "targetLanguage": "es"},
            headers=_auth(token),
        )
    assert response.status_code == 402
    error = response.json()["error"]
    assert error["type"] == "CostLimitError"
    assert error["code"] == "COST_LIMIT_EXCEEDED"


# ---------------------------------------------------------------------------
# /context
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_context_without_ai_or_cache_is_null(client: httpx.AsyncClient, token: str) -> None:
    response = await client.post(
        "/context",
        json={"word": "water", "translation": "agua", "targetLanguage": "es"},
        headers=_auth(token),
    )
    assert response.status_code == 200
    assert response.json() == {"context": None}


@pytest.mark.asyncio
async def test_context_is_served_from_cache_repeatedly(
    gateway: tuple[ApplicationContainer, httpx.AsyncClient], token: str
) -> None:
    container, client = gateway
    await client.post(
        "/translate", json={"words": ["water"], "targetLanguage": "es"}, headers=_auth(token)
    )
    await container.supervisor().drain()

    payload = {
        "word": "water",
        "translation": "agua",
        "targetLanguage": "es",
        "sentence": "A glass of water.",
    }
    contexts = []
    for _ in range(3):
        response = await client.post("/context", json=payload, headers=_auth(token))
        assert response.status_code == 200
        contexts.append(response.json()["context"])

    for context in contexts:
        assert context is not None
        assert context["pronunciation"]
        assert "agua" in context["example"]


@pytest.mark.asyncio
async def test_context_validates_before_auth(client: httpx.AsyncClient) -> None:
    response = await client.post(
        "/context", json={"word": "water", "targetLanguage": "es"}
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_TRANSLATION"
