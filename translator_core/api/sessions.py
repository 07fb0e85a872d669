"""UI 界面侧的会话封装。

- TranslateSession: 翻译面板 / tooltip 使用。同一实例同时最多一个翻译在进行，
  忙碌时的新请求直接被忽略（由界面层去抖，不会到达 coordinator）。
- ChatSession: 聊天面板使用。维护消息列表，assistant 消息随 chunk 原地追加。
"""

import asyncio
import logging
from typing import Callable, List, Optional

from translator_core.api.client import TranslationClient
from translator_core.domain.exceptions import TranslationFailed
from translator_core.domain.models import Message, history_payload, new_request_id
from translator_core.infrastructure.logging.logger import log_event


class TranslateSession:
    def __init__(self, client: TranslationClient, is_panel: bool = True):
        self._client = client
        self._is_panel = is_panel
        self._busy = False
        self.current_request_id: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self._busy

    async def translate(
        self,
        text: str,
        target_language: Optional[str] = None,
        learning_language: Optional[str] = None,
        on_update: Optional[Callable[[str], None]] = None,
    ) -> Optional[str]:
        """翻译 text；空文本返回空串，忙碌时返回 None。"""

        if not text.strip():
            return ""
        if self._busy:
            log_event(logging.INFO, "Translation already in progress", request_id=self.current_request_id)
            return None
        self._busy = True
        self.current_request_id = new_request_id()
        try:
            return await self._client.translate_with_stream(
                text,
                on_stream_update=(lambda _chunk, accumulated: on_update(accumulated)) if on_update else None,
                is_panel=self._is_panel,
                target_language=target_language,
                learning_language=learning_language,
                request_id=self.current_request_id,
            )
        finally:
            self._busy = False
            self.current_request_id = None

    async def cancel(self) -> bool:
        if not self.current_request_id:
            return False
        return await self._client.cancel_translation(self.current_request_id)


class ChatSession:
    def __init__(self, client: TranslationClient, conversation_id: Optional[str] = None):
        self._client = client
        self.conversation_id = conversation_id
        self.messages: List[Message] = []
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    async def send(self, text: str, on_update: Optional[Callable[[Message], None]] = None) -> Optional[Message]:
        """发送一条用户消息，返回流式填充完成的 assistant 消息。

        失败或被取消时移除未完成的 assistant 消息并继续抛出异常；
        用户消息保留在历史中。
        """

        if not text.strip() or self._busy:
            return None
        self._busy = True
        self.messages.append(Message(role="user", content=text))
        history = history_payload(self.messages)
        assistant = Message(role="assistant", content="")
        self.messages.append(assistant)

        def update(chunk: str, _accumulated: str) -> None:
            assistant.content += chunk
            if on_update:
                on_update(assistant)

        try:
            await self._client.stream_chat(history, on_stream_update=update, conversation_id=self.conversation_id)
        except (TranslationFailed, asyncio.CancelledError):
            self.messages.remove(assistant)
            raise
        finally:
            self._busy = False
        return assistant
