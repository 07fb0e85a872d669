"""活动请求登记表。

ChannelRegistry 独占 request id -> 投递目标 的映射：

- admit: 登记一个活动请求（记录来源标签页）。
- deliver: 按 request id 把事件投递回来源；记录不存在（已终止或已取消）
  时静默丢弃，这也是取消后不再有事件到达消费端的机制。
- cancel: 移除记录，并取消关联的 task，让上游连接真正关闭。
- release: 终止事件投递后移除记录。
"""

import asyncio
import logging
from typing import Dict, Optional

from translator_core.domain.exceptions import DuplicateRequestId
from translator_core.domain.models import ActiveRequest, OperationKind, StreamEvent
from translator_core.infrastructure.logging.logger import log_event
from translator_core.relay.bus import MessageBus


def _current_task() -> Optional["asyncio.Task"]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        # 不在事件循环中调用（例如同步代码里取消）
        return None


class ChannelRegistry:
    def __init__(self, bus: MessageBus):
        self._bus = bus
        self._entries: Dict[str, ActiveRequest] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._entries

    def admit(self, request_id: str, kind: OperationKind, origin_tab_id: Optional[int] = None) -> ActiveRequest:
        if request_id in self._entries:
            raise DuplicateRequestId(code="DUPLICATE_REQUEST_ID", message=request_id)
        entry = ActiveRequest(request_id=request_id, kind=kind, origin_tab_id=origin_tab_id)
        self._entries[request_id] = entry
        return entry

    def attach_task(self, request_id: str, task: "asyncio.Task") -> None:
        entry = self._entries.get(request_id)
        if entry is not None:
            entry.task = task

    def get(self, request_id: str) -> Optional[ActiveRequest]:
        return self._entries.get(request_id)

    def is_live(self, request_id: str) -> bool:
        return request_id in self._entries

    def deliver(self, event: StreamEvent) -> bool:
        """投递一条事件，返回是否真正投递。终止事件投递后释放记录。"""

        entry = self._entries.get(event.request_id)
        if entry is None:
            return False
        if event.is_terminal:
            self.release(event.request_id)
        message = event.to_message()
        if entry.origin_tab_id is not None:
            self._bus.send_to_tab(entry.origin_tab_id, message)
        else:
            self._bus.broadcast(message)
        return True

    def cancel(self, request_id: str) -> bool:
        entry = self._entries.pop(request_id, None)
        if entry is None:
            return False
        task = entry.task
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()
        log_event(logging.INFO, "Cancelled request", request_id=request_id, kind=entry.kind)
        return True

    def release(self, request_id: str) -> None:
        self._entries.pop(request_id, None)

    def cancel_all(self) -> int:
        cancelled = 0
        for request_id in list(self._entries):
            if self.cancel(request_id):
                cancelled += 1
        return cancelled
