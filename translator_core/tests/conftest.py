import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from translator_core.infrastructure.storage.settings_store import MemorySettingsStore
from translator_core.relay.bus import MessageBus
from translator_core.relay.coordinator import RequestCoordinator
from translator_core.relay.registry import ChannelRegistry
from translator_core.providers.openai_compat import OpenAICompatClient


def sse(content: Optional[str] = None, **extra) -> bytes:
    """构造一行 `data: {...}` 事件；content 为空时不带 delta.content。"""

    delta: Dict[str, Any] = {}
    if content is not None:
        delta["content"] = content
    record = {"choices": [{"index": 0, "delta": delta}], **extra}
    return f"data: {json.dumps(record, ensure_ascii=False)}\n".encode("utf-8")


DONE = b"data: [DONE]\n"


class FakeStreamResponse:
    """流式响应桩。

    fragments 中的 bytes 原样产出；None 表示让出一次事件循环；
    asyncio.Event 表示等待该事件被 set 之后再继续。
    """

    def __init__(self, fragments=(), status_code: int = 200, reason_phrase: str = "OK", error: Optional[Exception] = None):
        self.status_code = status_code
        self.reason_phrase = reason_phrase
        self._fragments = list(fragments)
        self._error = error
        self.closed = False

    async def aread(self) -> bytes:
        return b""

    async def aiter_bytes(self):
        for item in self._fragments:
            if item is None:
                await asyncio.sleep(0)
                continue
            if isinstance(item, asyncio.Event):
                await item.wait()
                continue
            yield item
        if self._error is not None:
            raise self._error


class FakeJsonResponse:
    def __init__(self, data: Any = None, status_code: int = 200, reason_phrase: str = "OK", raw: Optional[str] = None):
        self.status_code = status_code
        self.reason_phrase = reason_phrase
        self._data = data
        self._raw = raw

    def json(self):
        if self._raw is not None:
            return json.loads(self._raw)
        return self._data


def detection_reply(code: str) -> FakeJsonResponse:
    return FakeJsonResponse({"choices": [{"index": 0, "message": {"role": "assistant", "content": code}}]})


class _StreamContext:
    def __init__(self, response: FakeStreamResponse):
        self._response = response

    async def __aenter__(self):
        return self._response

    async def __aexit__(self, *args):
        self._response.closed = True
        return False


class FakeHttp:
    """替换 httpx.AsyncClient 的控制器，记录每次调用。"""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.stream_responses: List[Any] = []
        self.post_responses: List[Any] = []
        self.default_detection = "en"

    @property
    def stream_calls(self) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["kind"] == "stream"]

    @property
    def post_calls(self) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["kind"] == "post"]

    def client_class(self):
        controller = self

        class Client:
            def __init__(self, *a, **kw):
                controller.client_kwargs = kw

            async def __aenter__(self):
                return self

            async def __aexit__(self, *a):
                return False

            async def post(self, url, json=None, headers=None, **_):
                controller.calls.append({"kind": "post", "url": url, "json": json, "headers": headers})
                if controller.post_responses:
                    item = controller.post_responses.pop(0)
                    if isinstance(item, Exception):
                        raise item
                    return item
                return detection_reply(controller.default_detection)

            def stream(self, method, url, json=None, headers=None, **_):
                controller.calls.append({"kind": "stream", "method": method, "url": url, "json": json, "headers": headers})
                item = controller.stream_responses.pop(0)
                if isinstance(item, Exception):
                    raise item
                return _StreamContext(item)

        return Client


@pytest.fixture
def fake_http(monkeypatch):
    controller = FakeHttp()
    monkeypatch.setattr("httpx.AsyncClient", controller.client_class())
    return controller


@pytest.fixture
def settings_store():
    return MemorySettingsStore({"apiKey": "sk-test-key", "defaultLanguage": "ko", "learningLanguage": "en"})


@pytest.fixture
def make_runtime(settings_store):
    """在当前事件循环中装配 bus/registry/coordinator。"""

    def build(store=None, conversation_store=None):
        bus = MessageBus()
        registry = ChannelRegistry(bus)
        coordinator = RequestCoordinator(
            bus=bus,
            registry=registry,
            upstream=OpenAICompatClient(),
            settings_store=store or settings_store,
            conversation_store=conversation_store,
        )
        return bus, registry, coordinator

    return build
