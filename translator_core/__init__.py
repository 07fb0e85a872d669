"""Translator Core 顶层包。

该包把划词翻译、翻译面板与聊天面板发起的操作转发到
OpenAI 兼容的流式接口，并把增量结果投递回发起请求的界面：
包括命令分发、流式分帧、请求关联、语言检测与目标语言决策。
"""

from translator_core.api.service import Runtime, build_runtime, translate_text

__all__ = ["Runtime", "build_runtime", "translate_text"]
