"""进程内消息总线。

扮演浏览器扩展运行时的角色：
- 消费端通过 request() 把命令发给 coordinator（单一处理者）。
- coordinator 通过 send_to_tab() / broadcast() 把事件投递回某个标签页
  或扩展页面（tab_id 为空的监听者，如侧边栏）。

总线本身不做路由决策；某个 request id 的事件该发给谁由 ChannelRegistry 决定。
"""

import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional

from translator_core.domain.exceptions import ContextInvalidatedError
from translator_core.domain.models import Command, MessageSender
from translator_core.infrastructure.logging.logger import logger


Listener = Callable[[Dict[str, Any]], None]
Handler = Callable[[Command, MessageSender], Awaitable[Dict[str, Any]]]


class MessageBus:
    def __init__(self):
        self._handler: Optional[Handler] = None
        self._listeners: Dict[Optional[int], List[Listener]] = defaultdict(list)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def serve(self, handler: Handler) -> None:
        """登记命令处理者（coordinator）。"""

        self._handler = handler

    def add_listener(self, listener: Listener, tab_id: Optional[int] = None) -> Callable[[], None]:
        """登记一个事件监听者，返回取消登记的函数。"""

        self._listeners[tab_id].append(listener)
        return lambda: self.remove_listener(listener, tab_id)

    def remove_listener(self, listener: Listener, tab_id: Optional[int] = None) -> None:
        listeners = self._listeners.get(tab_id)
        if listeners and listener in listeners:
            listeners.remove(listener)

    async def request(self, command: Command, sender: Optional[MessageSender] = None) -> Dict[str, Any]:
        if self._closed or self._handler is None:
            raise ContextInvalidatedError(code="CONTEXT_INVALIDATED", message="Extension context invalidated.")
        return await self._handler(command, sender or MessageSender())

    def send_to_tab(self, tab_id: int, message: Dict[str, Any]) -> int:
        return self._dispatch(self._listeners.get(tab_id, []), message)

    def broadcast(self, message: Dict[str, Any]) -> int:
        """发给所有扩展页面（不属于任何标签页的监听者）。"""

        return self._dispatch(self._listeners.get(None, []), message)

    def broadcast_all(self, message: Dict[str, Any]) -> int:
        delivered = 0
        for listeners in list(self._listeners.values()):
            delivered += self._dispatch(listeners, message)
        return delivered

    def close(self) -> None:
        self._closed = True
        self._listeners.clear()

    def _dispatch(self, listeners: List[Listener], message: Dict[str, Any]) -> int:
        if self._closed:
            return 0
        delivered = 0
        # 监听者可能在回调中注销自己，这里遍历副本
        for listener in list(listeners):
            try:
                listener(message)
            except Exception:
                logger.exception("Listener failed", extra={"extra": {"action": message.get("action")}})
                continue
            delivered += 1
        return delivered
