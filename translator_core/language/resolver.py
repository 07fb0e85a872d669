"""源语言检测与目标语言决策。

- detect: 调用一次非流式接口，从固定的语言代码集合中选出一个；
  任何失败都返回 "auto"，检测只是尽力而为，不会让翻译失败。
- resolve_target: 如果原文已经是主目标语言，就改为翻译成学习语言。
"""

import logging
import string
from typing import Dict, Optional

from translator_core.domain.exceptions import BusinessError, DetectionError
from translator_core.domain.models import SettingsSnapshot
from translator_core.infrastructure.logging.logger import log_event
from translator_core.prompts import detection_messages
from translator_core.providers.base import UpstreamClient


AUTO = "auto"

LANGUAGE_NAMES: Dict[str, str] = {
    "ko": "Korean",
    "en": "English",
    "ja": "Japanese",
    "zh": "Chinese",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "ru": "Russian",
    "it": "Italian",
    "pt": "Portuguese",
}

DETECT_TEMPERATURE = 0.1
DETECT_MAX_TOKENS = 10

_STRIP_CHARS = string.whitespace + string.punctuation + "“”‘’「」"


def language_name(code: Optional[str]) -> str:
    """语言代码转展示名称，未知代码按 English 处理。

    带地区后缀的代码（pt-BR、zh_TW）按主语言查找。
    """

    key = (code or "").lower()
    if key in LANGUAGE_NAMES:
        return LANGUAGE_NAMES[key]
    return LANGUAGE_NAMES.get(key.replace("_", "-").split("-")[0], "English")


def normalize_code(raw: str) -> str:
    """把模型回答规整成语言代码；不在集合内时返回 "auto"。"""

    token = (raw or "").strip().lower()
    if not token:
        return AUTO
    token = token.split()[0].strip(_STRIP_CHARS)
    return token if token in LANGUAGE_NAMES else AUTO


def _matches(detected: str, target: str) -> bool:
    if detected == target:
        return True
    # 覆盖带地区后缀的代码，如 zh 与 zh-TW
    return target.startswith(detected) or detected.startswith(target)


def resolve_target(detected: Optional[str], requested_target: str, learning_language: str) -> str:
    """决定实际翻译的目标语言。

    原文语言与主目标语言一致（或互为前缀）时，改用学习语言；
    否则保持主目标语言。只对主目标做这个检查：替换后即便与原文
    相同也照常翻译。
    """

    if not detected or detected == AUTO or not requested_target:
        return requested_target
    if _matches(detected, requested_target):
        return learning_language
    return requested_target


class LanguageResolver:
    def __init__(self, upstream: UpstreamClient):
        self._upstream = upstream

    async def detect(self, text: str, snapshot: SettingsSnapshot) -> str:
        """检测 text 的语言代码，失败时返回 "auto"。"""

        try:
            data = await self._upstream.chat(
                detection_messages(text, LANGUAGE_NAMES),
                snapshot,
                temperature=DETECT_TEMPERATURE,
                max_tokens=DETECT_MAX_TOKENS,
            )
            content = data["choices"][0]["message"]["content"]
        except BusinessError as e:
            self._log_failure(e.code, e.message)
            return AUTO
        except (KeyError, IndexError, TypeError, ValueError) as e:
            self._log_failure("MALFORMED_RESPONSE", repr(e))
            return AUTO
        if not isinstance(content, str):
            self._log_failure("MALFORMED_RESPONSE", "content is not a string")
            return AUTO
        code = normalize_code(content)
        log_event(logging.INFO, "Detected language", detected=code, raw=content[:32])
        return code

    async def effective_target(
        self,
        text: str,
        snapshot: SettingsSnapshot,
        requested_target: str,
        learning_language: str,
    ) -> tuple[str, str]:
        """检测并决策，返回 (检测到的语言, 实际目标语言)。"""

        detected = await self.detect(text, snapshot)
        target = resolve_target(detected, requested_target, learning_language)
        if detected == target:
            log_event(logging.WARNING, "Source and target language are the same", language=target)
        return detected, target

    @staticmethod
    def _log_failure(code: str, message: str) -> None:
        err = DetectionError(code="DETECTION_FAILED", message=message, cause=code)
        log_event(logging.WARNING, "Language detection failed, falling back to auto", code=err.code, cause=code, error=err.message)
