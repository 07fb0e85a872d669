"""流式响应分帧器。

上游返回的是按行组织的事件流（`data: {...}` / `data: [DONE]`），
但网络层交付的片段边界与行边界无关：一行可能被拆到多个片段里，
一个 UTF-8 字符也可能被拆开。StreamFramer 负责：

1. 增量解码片段并拼接到滚动缓冲区。
2. 按换行切分，完整行作为候选帧，末尾残行留到下一个片段。
3. 只接受带 `data:` 前缀的行；`[DONE]` 表示流结束。
4. 解析 JSON，失败的行记日志后丢弃，不中断整个流。
5. 提取 `choices[0].delta.content` 作为增量文本（可能为空）。

无论片段如何切分，输出的帧序列都与整段输入一次性分帧的结果相同。
"""

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, List, Literal, Optional, Union

from translator_core.domain.exceptions import FrameParseError
from translator_core.infrastructure.logging.logger import log_event


EVENT_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class Frame:
    """一个语义帧。

    - kind="chunk": 一条有效记录；content 为增量文本，记录中没有增量时为 None。
    - kind="done": 上游的结束标记。
    """

    kind: Literal["chunk", "done"]
    content: Optional[str] = None


def extract_delta(record: Any) -> Optional[str]:
    """从一条记录中取出 choices[0].delta.content，不存在时返回 None。"""

    if not isinstance(record, dict):
        return None
    choices = record.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


class StreamFramer:
    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def feed(self, fragment: Union[bytes, str]) -> List[Frame]:
        """喂入一个片段，返回其中已完整的帧。"""

        if self._done:
            return []
        if isinstance(fragment, bytes):
            fragment = self._decoder.decode(fragment)
        self._buffer += fragment
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._frames_from(lines)

    def finish(self) -> List[Frame]:
        """输入结束：冲刷解码器并处理残留的最后一行。"""

        if self._done:
            return []
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return self._frames_from(tail.split("\n"))

    async def aframes(self, fragments: AsyncIterable[Union[bytes, str]]) -> AsyncIterator[Frame]:
        """把异步片段流转换为惰性的帧序列，遇到 [DONE] 即停止。"""

        async for fragment in fragments:
            for frame in self.feed(fragment):
                yield frame
            if self._done:
                return
        for frame in self.finish():
            yield frame

    def _frames_from(self, lines: List[str]) -> List[Frame]:
        frames: List[Frame] = []
        for raw in lines:
            frame = self._parse_line(raw)
            if frame is None:
                continue
            frames.append(frame)
            if frame.kind == "done":
                self._done = True
                break
        return frames

    def _parse_line(self, raw: str) -> Optional[Frame]:
        line = raw.rstrip("\r")
        if not line.startswith(EVENT_PREFIX):
            return None
        data = line[len(EVENT_PREFIX):]
        if data.startswith(" "):
            data = data[1:]
        if data.strip() == DONE_SENTINEL:
            return Frame(kind="done")
        try:
            record = json.loads(data)
        except json.JSONDecodeError as e:
            err = FrameParseError(code="FRAME_PARSE_ERROR", message=str(e))
            log_event(logging.WARNING, "Discarded malformed stream line", code=err.code, error=err.message, line=data[:200])
            return None
        return Frame(kind="chunk", content=extract_delta(record))
