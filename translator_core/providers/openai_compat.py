"""OpenAI 兼容接口适配器。

本模块负责：

1. 接收 role/content 形式的 messages 与设置快照。
2. 构造 `POST {apiUrl}chat/completions` 请求（流式或非流式）。
3. 调用 HTTP 接口并把网络/API 异常转换为业务异常。
4. 流式调用时原样产出响应字节片段，分帧交给 StreamFramer。

OpenAI、Ollama、LM Studio 等兼容服务共用同一种协议形状，
差别只在地址与是否需要鉴权。
"""

from typing import Any, AsyncIterator, Dict, Mapping, Optional, Sequence

import httpx

from translator_core.domain.exceptions import UpstreamHttpError, UpstreamNetworkError
from translator_core.domain.models import SettingsSnapshot
from translator_core.providers.registry import ensure_api_key


STREAM_TEMPERATURE = 0.8
STREAM_MAX_TOKENS = 2000
FALLBACK_MODEL = "gpt-4"

STREAM_ERROR_MESSAGE = "An error occurred while processing the stream."
NETWORK_ERROR_MESSAGE = "A communication error occurred."


def completions_url(api_url: str) -> str:
    base = api_url if api_url.endswith("/") else api_url + "/"
    return base + "chat/completions"


def build_headers(snapshot: SettingsSnapshot) -> Dict[str, str]:
    """只有配置了密钥时才带 Authorization，本地服务允许匿名访问。"""

    headers = {"Content-Type": "application/json"}
    if snapshot.api_key:
        headers["Authorization"] = f"Bearer {snapshot.api_key}"
    return headers


class OpenAICompatClient:
    """OpenAI 兼容的 chat/completions 客户端。"""

    name = "openai-compat"

    def __init__(self, http_timeout: Optional[float] = None):
        # None 表示不限制读取时间，由上游决定何时关闭流
        self._timeout = http_timeout

    def _build_payload(
        self,
        messages: Sequence[Mapping[str, str]],
        snapshot: SettingsSnapshot,
        temperature: float,
        max_tokens: int,
        stream: bool,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": snapshot.api_model or FALLBACK_MODEL,
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if stream:
            payload["stream"] = True
        return payload

    async def chat(
        self,
        messages: Sequence[Mapping[str, str]],
        snapshot: SettingsSnapshot,
        *,
        temperature: float,
        max_tokens: int,
    ) -> Dict[str, Any]:
        """执行一次非流式调用，返回响应 JSON。"""

        ensure_api_key(snapshot)
        payload = self._build_payload(messages, snapshot, temperature, max_tokens, stream=False)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, trust_env=False) as client:
                resp = await client.post(
                    completions_url(snapshot.api_url),
                    json=payload,
                    headers=build_headers(snapshot),
                )
        except httpx.RequestError as e:
            raise UpstreamNetworkError(code="UPSTREAM_NETWORK_ERROR", message=NETWORK_ERROR_MESSAGE, detail=str(e))
        if resp.status_code >= 400:
            raise UpstreamHttpError(
                code="UPSTREAM_HTTP_ERROR",
                message=f"API error: {resp.status_code} {resp.reason_phrase}".rstrip(),
                http_status=resp.status_code,
            )
        return resp.json()

    async def chat_stream(
        self,
        messages: Sequence[Mapping[str, str]],
        snapshot: SettingsSnapshot,
    ) -> AsyncIterator[bytes]:
        """执行一次流式调用，逐个 yield 原始字节片段。

        调用方停止迭代（或所在 task 被取消）时，生成器退出会关闭
        底层连接，不会继续读取已被放弃的响应。
        """

        ensure_api_key(snapshot)
        payload = self._build_payload(messages, snapshot, STREAM_TEMPERATURE, STREAM_MAX_TOKENS, stream=True)
        streaming = False
        try:
            async with httpx.AsyncClient(timeout=self._timeout, trust_env=False) as client:
                async with client.stream(
                    "POST",
                    completions_url(snapshot.api_url),
                    json=payload,
                    headers=build_headers(snapshot),
                ) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        raise UpstreamHttpError(
                            code="UPSTREAM_HTTP_ERROR",
                            message=f"HTTP error! status: {resp.status_code} {resp.reason_phrase}".rstrip(),
                            http_status=resp.status_code,
                            reason=resp.reason_phrase,
                        )
                    streaming = True
                    async for fragment in resp.aiter_bytes():
                        yield fragment
        except httpx.RequestError as e:
            if streaming:
                raise UpstreamNetworkError(code="STREAM_READ_ERROR", message=STREAM_ERROR_MESSAGE, detail=str(e))
            raise UpstreamNetworkError(code="UPSTREAM_NETWORK_ERROR", message=NETWORK_ERROR_MESSAGE, detail=str(e))
