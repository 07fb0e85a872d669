"""系统提示词加载工具。

按语言(locale) 从 prompts/<locale> 目录读取模板文本，
用于构造翻译、语言检测与聊天请求的 messages。
"""

from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Mapping, Sequence


PROMPTS_DIR = Path(__file__).resolve().parent


@lru_cache(maxsize=None)
def load_prompt(name: str, locale: str = "en") -> str:
    """读取一个提示词模板，去掉末尾换行。"""

    fname = PROMPTS_DIR / locale / f"{name}.md"
    return fname.read_text(encoding="utf-8").rstrip("\n")


def translation_messages(text: str, source_name: str, target_name: str) -> List[Dict[str, str]]:
    """构造翻译请求：system 指令写明源/目标语言名，user 内容保留原文。"""

    return [
        {"role": "system", "content": load_prompt("translate_system").format(source=source_name, target=target_name)},
        {"role": "user", "content": load_prompt("translate_user").format(text=text)},
    ]


def detection_messages(text: str, codes: Mapping[str, str]) -> List[Dict[str, str]]:
    listed = ", ".join(f"{code}({name})" for code, name in codes.items())
    return [
        {"role": "system", "content": load_prompt("detect_system").format(codes=listed)},
        {"role": "user", "content": load_prompt("detect_user").format(text=text)},
    ]


def chat_messages(history: Sequence[Mapping[str, str]]) -> List[Dict[str, str]]:
    """按原顺序返回会话历史；历史中没有 system 消息时在最前面补一条。"""

    msgs = [{"role": m.get("role", "user"), "content": m.get("content") or ""} for m in history]
    if not any(m["role"] == "system" for m in msgs):
        msgs.insert(0, {"role": "system", "content": load_prompt("chat_system")})
    return msgs
