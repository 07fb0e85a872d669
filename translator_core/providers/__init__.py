"""上游 LLM 接口集成层。

该包下的模块负责：
- 定义 UpstreamClient 抽象接口 (base)。
- 维护 provider 预设 (registry)。
- 提供 OpenAI 兼容 chat/completions 的实现 (openai_compat)。
"""

from typing import Optional

from translator_core.config.settings import settings
from translator_core.providers.base import UpstreamClient
from translator_core.providers.openai_compat import OpenAICompatClient


def create_upstream(http_timeout: Optional[float] = None) -> UpstreamClient:
    """创建默认的上游客户端，超时默认取进程配置。"""

    return OpenAICompatClient(http_timeout=http_timeout if http_timeout is not None else settings.http_timeout)


__all__ = ["UpstreamClient", "OpenAICompatClient", "create_upstream"]
