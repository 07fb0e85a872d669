"""上游事件流分帧。"""

from translator_core.streaming.framer import Frame, StreamFramer

__all__ = ["Frame", "StreamFramer"]
