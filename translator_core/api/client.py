"""消费端客户端。

每个 UI 界面（划词 tooltip、翻译面板、聊天面板）持有一个 TranslationClient：

- 生成 request id，并以它为键在总线上登记事件监听。
- 把命令发给 coordinator，逐个回调 chunk，收到第一个终止事件后
  结束并返回最终文本（或抛出 TranslationFailed）。
- 总线不可用（宿主运行时失效）时，给出"请刷新页面"的提示而不是原始错误。
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from translator_core.domain.exceptions import BusinessError, ContextInvalidatedError, TranslationFailed
from translator_core.domain.models import (
    CHAT_STREAM,
    TRANSLATION_STREAM,
    CancelTranslation,
    ChatStream,
    Command,
    DetectLanguage,
    GetSettings,
    MessageSender,
    SaveSettings,
    TranslateStream,
    new_request_id,
)
from translator_core.infrastructure.logging.logger import log_event
from translator_core.relay.bus import MessageBus


RELOAD_MESSAGE = "The extension was updated. Please reload the page."
DEFAULT_ERROR_MESSAGE = "An error occurred during translation."

StreamUpdate = Callable[[str, str], None]
OnComplete = Callable[[str], None]
OnError = Callable[[BusinessError], None]


@dataclass
class _PendingRequest:
    action: str
    future: "asyncio.Future[str]"
    unregister: Callable[[], None]


class TranslationClient:
    def __init__(self, bus: MessageBus, tab_id: Optional[int] = None):
        self._bus = bus
        self._sender = MessageSender(tab_id=tab_id)
        self._pending: Dict[str, _PendingRequest] = {}

    @property
    def active_requests(self) -> list[str]:
        return list(self._pending)

    async def get_settings(self) -> Dict[str, Any]:
        response = await self._request(GetSettings())
        if not response.get("success"):
            raise BusinessError(code="SETTINGS_READ_ERROR", message=response.get("error") or "Failed to load settings.")
        return response["settings"]

    async def save_settings(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        response = await self._request(SaveSettings(settings=dict(values)))
        if not response.get("success"):
            raise BusinessError(code="SETTINGS_WRITE_ERROR", message=response.get("error") or "Failed to save settings.")
        return response["settings"]

    async def detect_language(self, text: str) -> str:
        response = await self._request(DetectLanguage(text=text))
        return response.get("detectedLanguage") or "auto"

    async def translate_with_stream(
        self,
        text: str,
        on_stream_update: Optional[StreamUpdate] = None,
        on_complete: Optional[OnComplete] = None,
        on_error: Optional[OnError] = None,
        is_panel: bool = False,
        target_language: Optional[str] = None,
        learning_language: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> str:
        """发起流式翻译，返回最终译文。

        on_stream_update(chunk, accumulated) 在每个 chunk 到达时调用；
        出错时先调用 on_error 再抛出 TranslationFailed。
        """

        rid = request_id or new_request_id()
        command = TranslateStream(
            text=text,
            request_id=rid,
            is_panel=is_panel,
            target_language=target_language,
            learning_language=learning_language,
        )
        return await self._stream(TRANSLATION_STREAM, rid, command, on_stream_update, on_complete, on_error)

    async def stream_chat(
        self,
        messages: Sequence[Mapping[str, str]],
        on_stream_update: Optional[StreamUpdate] = None,
        on_complete: Optional[OnComplete] = None,
        on_error: Optional[OnError] = None,
        conversation_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> str:
        rid = request_id or new_request_id()
        command = ChatStream(
            messages=tuple(dict(m) for m in messages),
            request_id=rid,
            conversation_id=conversation_id,
        )
        return await self._stream(CHAT_STREAM, rid, command, on_stream_update, on_complete, on_error)

    async def cancel_translation(self, request_id: str) -> bool:
        """取消一个进行中的请求：先停止本地监听，再通知 coordinator。"""

        pending = self._pending.pop(request_id, None)
        if pending is None:
            return False
        pending.unregister()
        if not pending.future.done():
            pending.future.cancel()
        try:
            await self._request(CancelTranslation(request_id=request_id))
        except TranslationFailed as e:
            log_event(logging.WARNING, "Cancel not delivered", request_id=request_id, error=e.message)
        return True

    async def cancel_all(self) -> int:
        cancelled = 0
        for request_id in list(self._pending):
            if await self.cancel_translation(request_id):
                cancelled += 1
        return cancelled

    async def _stream(
        self,
        action: str,
        rid: str,
        command: Command,
        on_stream_update: Optional[StreamUpdate],
        on_complete: Optional[OnComplete],
        on_error: Optional[OnError],
    ) -> str:
        future: "asyncio.Future[str]" = asyncio.get_running_loop().create_future()
        parts: list[str] = []

        # future 先于回调结束
        def fail(error: TranslationFailed) -> None:
            self._finish(rid)
            if not future.done():
                future.set_exception(error)
            if on_error:
                on_error(error)

        def listener(message: Dict[str, Any]) -> None:
            if message.get("action") != action or message.get("requestId") != rid:
                return
            if future.done():
                return
            kind = message.get("type")
            if kind == "chunk":
                content = message.get("content") or ""
                parts.append(content)
                if on_stream_update:
                    on_stream_update(content, "".join(parts))
            elif kind == "complete":
                self._finish(rid)
                final = "".join(parts)
                future.set_result(final)
                if on_complete:
                    on_complete(final)
            elif kind == "error":
                fail(TranslationFailed(code="STREAM_ERROR", message=message.get("error") or DEFAULT_ERROR_MESSAGE))

        unregister = self._bus.add_listener(listener, self._sender.tab_id)
        self._pending[rid] = _PendingRequest(action=action, future=future, unregister=unregister)
        try:
            response = await self._request(command)
        except TranslationFailed as e:
            self._finish(rid)
            if on_error:
                on_error(e)
            raise
        if not response.get("success"):
            fail(TranslationFailed(code="REQUEST_REJECTED", message=response.get("error") or DEFAULT_ERROR_MESSAGE))
        return await future

    async def _request(self, command: Command) -> Dict[str, Any]:
        try:
            return await self._bus.request(command, self._sender)
        except ContextInvalidatedError:
            raise TranslationFailed(code="CONTEXT_INVALIDATED", message=RELOAD_MESSAGE)

    def _finish(self, rid: str) -> None:
        pending = self._pending.pop(rid, None)
        if pending is not None:
            pending.unregister()
