"""请求协调器。

每个 request id 的生命周期：

    Admitted -> Detecting（仅翻译）-> Streaming -> Terminated

- Admitted: 在 ChannelRegistry 登记，校验参数并读取设置快照。
- Detecting: 检测原文语言并决策实际目标语言；失败时回退到请求的目标语言。
- Streaming: 调用上游流式接口，StreamFramer 产出的每个增量立即作为
  chunk 事件投递；聊天模式同时把增量累积到 assistant 消息中。
- Terminated: 遇到 [DONE]、响应结束、任何错误或被取消；登记记录被移除，
  之后该 request id 不会再有任何事件。

命令分发使用按类型索引的处理表，每种命令恰好一个处理函数。
"""

import asyncio
import logging
import time
from contextlib import aclosing
from typing import Any, Awaitable, Callable, Coroutine, Dict, List, Mapping, Optional, Set

from translator_core.domain.conversation import ConversationStore, SettingsStore
from translator_core.domain.exceptions import BusinessError
from translator_core.domain.models import (
    CHAT_STREAM,
    SETTINGS_UPDATED,
    TRANSLATION_STREAM,
    AddDisabledSite,
    CancelTranslation,
    ChatStream,
    Command,
    DetectLanguage,
    GetSettings,
    Message,
    MessageSender,
    SaveSettings,
    SettingsSnapshot,
    StreamEvent,
    TranslateStream,
)
from translator_core.infrastructure.logging.logger import logger
from translator_core.language.resolver import AUTO, LanguageResolver, language_name
from translator_core.prompts import chat_messages, translation_messages
from translator_core.providers.base import UpstreamClient
from translator_core.providers.openai_compat import NETWORK_ERROR_MESSAGE
from translator_core.providers.registry import ensure_api_key
from translator_core.relay.bus import MessageBus
from translator_core.relay.registry import ChannelRegistry
from translator_core.streaming.framer import StreamFramer


EMPTY_TEXT_MESSAGE = "There is no text to translate."
EMPTY_HISTORY_MESSAGE = "There are no messages to send."


class RequestCoordinator:
    def __init__(
        self,
        bus: MessageBus,
        registry: ChannelRegistry,
        upstream: UpstreamClient,
        settings_store: SettingsStore,
        resolver: Optional[LanguageResolver] = None,
        conversation_store: Optional[ConversationStore] = None,
    ):
        self._bus = bus
        self._registry = registry
        self._upstream = upstream
        self._settings_store = settings_store
        self._resolver = resolver or LanguageResolver(upstream)
        self._conversation_store = conversation_store
        self._tasks: Set[asyncio.Task] = set()
        self._handlers: Dict[type, Callable[[Any, MessageSender], Awaitable[Dict[str, Any]]]] = {
            TranslateStream: self._handle_translate,
            ChatStream: self._handle_chat,
            CancelTranslation: self._handle_cancel,
            DetectLanguage: self._handle_detect,
            GetSettings: self._handle_get_settings,
            SaveSettings: self._handle_save_settings,
            AddDisabledSite: self._handle_add_disabled_site,
        }
        bus.serve(self.handle)

    @property
    def registry(self) -> ChannelRegistry:
        return self._registry

    async def handle(self, command: Command, sender: MessageSender) -> Dict[str, Any]:
        """总线入口：按命令类型分发到唯一的处理函数。"""

        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"Unsupported command: {type(command).__name__}")
        return await handler(command, sender)

    # ---- 流式操作 ----

    async def run_translate(self, command: TranslateStream, sender: Optional[MessageSender] = None) -> Optional[str]:
        """在当前 task 中完成一次翻译，返回累积文本（失败或取消时为 None）。"""

        self._registry.admit(command.request_id, "translate", (sender or MessageSender()).tab_id)
        return await self._translate(command)

    async def run_chat(self, command: ChatStream, sender: Optional[MessageSender] = None) -> Optional[str]:
        self._registry.admit(command.request_id, "chat", (sender or MessageSender()).tab_id)
        return await self._chat(command)

    async def _handle_translate(self, command: TranslateStream, sender: MessageSender) -> Dict[str, Any]:
        try:
            self._registry.admit(command.request_id, "translate", sender.tab_id)
        except BusinessError as e:
            return {"success": False, "error": e.message}
        self._spawn(command.request_id, self._translate(command))
        return {"success": True, "requestId": command.request_id}

    async def _handle_chat(self, command: ChatStream, sender: MessageSender) -> Dict[str, Any]:
        try:
            self._registry.admit(command.request_id, "chat", sender.tab_id)
        except BusinessError as e:
            return {"success": False, "error": e.message}
        self._spawn(command.request_id, self._chat(command))
        return {"success": True, "requestId": command.request_id}

    async def _translate(self, command: TranslateStream) -> Optional[str]:
        rid = command.request_id
        log_ctx: Dict[str, Any] = {"request_id": rid, "kind": "translate", "is_panel": command.is_panel}
        start_time = time.time()
        try:
            if not command.text.strip():
                self._fail(rid, TRANSLATION_STREAM, EMPTY_TEXT_MESSAGE, log_ctx)
                return None
            snapshot = self._snapshot()
            ensure_api_key(snapshot)
            requested = command.target_language or snapshot.default_language
            learning = command.learning_language or snapshot.learning_language
            detected, target = await self._resolver.effective_target(command.text, snapshot, requested, learning)
            self._log(
                logging.INFO,
                "Resolved target language",
                log_ctx,
                detected=detected,
                requested=requested,
                learning=learning,
                target=target,
            )
            source_name = language_name(detected) if detected != AUTO else "the original language"
            messages = translation_messages(command.text, source_name, language_name(target))
            text = await self._pump(rid, TRANSLATION_STREAM, messages, snapshot)
            self._log(
                logging.INFO,
                "Completed translation",
                log_ctx,
                elapsed_seconds=round(time.time() - start_time, 2),
                chars=len(text) if text is not None else None,
            )
            return text
        except asyncio.CancelledError:
            self._log(logging.INFO, "Translation task cancelled", log_ctx)
            raise
        except BusinessError as e:
            self._fail(rid, TRANSLATION_STREAM, e.message, log_ctx, code=e.code)
            return None
        except Exception as e:
            logger.exception("Translation failed", extra={"extra": dict(log_ctx, error=str(e))})
            self._fail(rid, TRANSLATION_STREAM, NETWORK_ERROR_MESSAGE, log_ctx)
            return None
        finally:
            self._registry.release(rid)

    async def _chat(self, command: ChatStream) -> Optional[str]:
        rid = command.request_id
        log_ctx: Dict[str, Any] = {
            "request_id": rid,
            "kind": "chat",
            "conversation_id": command.conversation_id,
            "history": len(command.messages),
        }
        assistant = Message(role="assistant", content="")

        def accumulate(delta: str) -> None:
            assistant.content += delta

        try:
            if not command.messages:
                self._fail(rid, CHAT_STREAM, EMPTY_HISTORY_MESSAGE, log_ctx)
                return None
            snapshot = self._snapshot()
            ensure_api_key(snapshot)
            text = await self._pump(rid, CHAT_STREAM, chat_messages(command.messages), snapshot, on_delta=accumulate)
            if text is not None:
                self._persist_exchange(command, assistant, log_ctx)
            return text
        except asyncio.CancelledError:
            self._log(logging.INFO, "Chat task cancelled", log_ctx, partial_chars=len(assistant.content))
            raise
        except BusinessError as e:
            self._fail(rid, CHAT_STREAM, e.message, log_ctx, code=e.code)
            return None
        except Exception as e:
            logger.exception("Chat failed", extra={"extra": dict(log_ctx, error=str(e))})
            self._fail(rid, CHAT_STREAM, NETWORK_ERROR_MESSAGE, log_ctx)
            return None
        finally:
            self._registry.release(rid)

    async def _pump(
        self,
        rid: str,
        action: str,
        messages: List[Dict[str, str]],
        snapshot: SettingsSnapshot,
        on_delta: Optional[Callable[[str], None]] = None,
    ) -> Optional[str]:
        """读取上游流并逐个投递 chunk；正常结束时投递 complete。

        请求在读取过程中被取消时停止读取并返回 None，不再投递任何事件。
        """

        framer = StreamFramer()
        parts: List[str] = []
        stream = self._upstream.chat_stream(messages, snapshot)
        async with aclosing(stream), aclosing(framer.aframes(stream)) as frames:
            async for frame in frames:
                if not self._registry.is_live(rid):
                    return None
                if frame.kind == "done":
                    break
                if not frame.content:
                    continue
                parts.append(frame.content)
                if on_delta is not None:
                    on_delta(frame.content)
                self._registry.deliver(StreamEvent(action=action, request_id=rid, type="chunk", content=frame.content))
        if not self._registry.deliver(StreamEvent(action=action, request_id=rid, type="complete")):
            return None
        return "".join(parts)

    def _persist_exchange(self, command: ChatStream, assistant: Message, log_ctx: Dict[str, Any]) -> None:
        if self._conversation_store is None or not command.conversation_id:
            return
        last = command.messages[-1]
        if last.get("role") == "user":
            self._conversation_store.append_message(
                command.conversation_id,
                Message(role="user", content=last.get("content") or "", timestamp=assistant.timestamp),
            )
        self._conversation_store.append_message(command.conversation_id, assistant)
        self._log(logging.INFO, "Stored chat exchange", log_ctx, message_id=assistant.id)

    # ---- 一元操作 ----

    async def _handle_cancel(self, command: CancelTranslation, sender: MessageSender) -> Dict[str, Any]:
        cancelled = self._registry.cancel(command.request_id)
        return {"success": True, "cancelled": cancelled}

    async def _handle_detect(self, command: DetectLanguage, sender: MessageSender) -> Dict[str, Any]:
        try:
            snapshot = self._snapshot()
        except BusinessError as e:
            return {"success": False, "error": e.message}
        detected = await self._resolver.detect(command.text, snapshot)
        return {"success": True, "detectedLanguage": detected}

    async def _handle_get_settings(self, command: GetSettings, sender: MessageSender) -> Dict[str, Any]:
        try:
            return {"success": True, "settings": self._settings_store.get()}
        except BusinessError as e:
            return {"success": False, "error": e.message}

    async def _handle_save_settings(self, command: SaveSettings, sender: MessageSender) -> Dict[str, Any]:
        try:
            saved = self._settings_store.save(command.settings)
        except BusinessError as e:
            return {"success": False, "error": e.message}
        self._notify_settings(saved)
        return {"success": True, "settings": saved}

    async def _handle_add_disabled_site(self, command: AddDisabledSite, sender: MessageSender) -> Dict[str, Any]:
        try:
            current = self._settings_store.get()
            sites = list(current.get("disabledSites") or [])
            if command.site in sites:
                return {"success": True, "settings": current, "alreadyExists": True}
            sites.append(command.site)
            saved = self._settings_store.save({"disabledSites": sites})
        except BusinessError as e:
            return {"success": False, "error": e.message}
        self._notify_settings(saved)
        return {"success": True, "settings": saved}

    # ---- 生命周期 ----

    async def drain(self) -> None:
        """等待所有已派发的操作结束。"""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """取消所有进行中的操作并等待其退出。"""

        self._registry.cancel_all()
        for task in list(self._tasks):
            task.cancel()
        await self.drain()

    def _spawn(self, rid: str, coro: Coroutine[Any, Any, Optional[str]]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._registry.attach_task(rid, task)

    def _snapshot(self) -> SettingsSnapshot:
        return SettingsSnapshot.from_mapping(self._settings_store.get())

    def _notify_settings(self, saved: Mapping[str, Any]) -> None:
        self._bus.broadcast_all({"action": SETTINGS_UPDATED, "settings": dict(saved)})

    def _fail(self, rid: str, action: str, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        self._log(logging.WARNING, "Operation failed", log_ctx, error=message, **fields)
        self._registry.deliver(StreamEvent(action=action, request_id=rid, type="error", error=message))

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
