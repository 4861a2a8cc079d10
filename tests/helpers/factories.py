# tests/helpers/factories.py
"""测试数据构造工具。"""

import time
from types import SimpleNamespace
from typing import Any

from fluent_gateway.auth import sign

TEST_INSTALLATION_ID = "install-0123456789abcdef"


def signed_headers(
    installation_id: str, token: str, timestamp_ms: int | None = None
) -> dict[str, str]:
    """按客户端的方式构造认证头。"""
    timestamp = str(
        timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    )
    return {
        "Authorization": f"Bearer {token}",
        "X-Installation-Id": installation_id,
        "X-Timestamp": timestamp,
        "X-Signature": sign(token, installation_id, timestamp),
    }


def chat_completion(content: str) -> Any:
    """构造与 openai 响应对象同形的最小结构。"""
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeChatClient:
    """暴露 `chat.completions.create` 的假 LLM 客户端，按顺序返回预设内容。"""

    def __init__(self, *responses: Any) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        response = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return await response(**kwargs)
        return chat_completion(response)

    async def close(self) -> None:
        return None
