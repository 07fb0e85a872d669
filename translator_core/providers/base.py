"""Upstream 客户端抽象接口。

coordinator 与 LanguageResolver 不直接依赖 httpx，而是依赖此协议：

- chat_stream: 发起流式调用，逐个产出原始字节片段，交给 StreamFramer 分帧。
- chat: 发起一次非流式调用，返回解析后的 JSON（用于语言检测）。

实现方负责构造请求体、处理鉴权头以及把传输层异常转换为业务异常。
"""

from typing import Any, AsyncIterator, Dict, Mapping, Protocol, Sequence

from translator_core.domain.models import SettingsSnapshot


class UpstreamClient(Protocol):
    name: str

    def chat_stream(
        self,
        messages: Sequence[Mapping[str, str]],
        snapshot: SettingsSnapshot,
    ) -> AsyncIterator[bytes]:
        ...

    async def chat(
        self,
        messages: Sequence[Mapping[str, str]],
        snapshot: SettingsSnapshot,
        *,
        temperature: float,
        max_tokens: int,
    ) -> Dict[str, Any]:
        ...
