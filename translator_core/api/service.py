"""对外 API 服务模块。

负责把总线、登记表、上游客户端、coordinator 以及两个存储装配在一起，
并提供简化的函数接口供上层应用调用。
"""

from dataclasses import dataclass
from typing import Optional

from translator_core.api.client import TranslationClient
from translator_core.domain.conversation import ConversationStore, SettingsStore
from translator_core.infrastructure.logging.logger import logger
from translator_core.infrastructure.storage.json_store import JsonConversationStore
from translator_core.infrastructure.storage.settings_store import YamlSettingsStore
from translator_core.providers import create_upstream
from translator_core.providers.base import UpstreamClient
from translator_core.relay.bus import MessageBus
from translator_core.relay.coordinator import RequestCoordinator
from translator_core.relay.registry import ChannelRegistry


@dataclass
class Runtime:
    bus: MessageBus
    registry: ChannelRegistry
    coordinator: RequestCoordinator
    settings_store: SettingsStore
    conversation_store: Optional[ConversationStore] = None

    def client(self, tab_id: Optional[int] = None) -> TranslationClient:
        """为某个界面创建客户端；tab_id 为空表示扩展页面（侧边栏）。"""

        return TranslationClient(self.bus, tab_id=tab_id)

    async def aclose(self) -> None:
        await self.coordinator.aclose()
        self.bus.close()


def build_runtime(
    settings_store: Optional[SettingsStore] = None,
    conversation_store: Optional[ConversationStore] = None,
    upstream: Optional[UpstreamClient] = None,
) -> Runtime:
    bus = MessageBus()
    registry = ChannelRegistry(bus)
    store = settings_store or YamlSettingsStore()
    coordinator = RequestCoordinator(
        bus=bus,
        registry=registry,
        upstream=upstream or create_upstream(),
        settings_store=store,
        conversation_store=conversation_store,
    )
    return Runtime(
        bus=bus,
        registry=registry,
        coordinator=coordinator,
        settings_store=store,
        conversation_store=conversation_store,
    )


_runtime: Optional[Runtime] = None


def get_default_runtime() -> Runtime:
    """获取默认运行时实例（单例），使用 YAML 设置与 JSON 会话存储。"""
    global _runtime
    if _runtime is None:
        _runtime = build_runtime(conversation_store=JsonConversationStore())
        logger.info("Runtime initialised")
    return _runtime


async def translate_text(
    text: str,
    target_language: Optional[str] = None,
    learning_language: Optional[str] = None,
) -> str:
    """一次性翻译 text 并返回完整译文。

    Raises:
        TranslationFailed: 上游调用失败或配置缺失。
    """
    client = get_default_runtime().client()
    return await client.translate_with_stream(
        text,
        is_panel=True,
        target_language=target_language,
        learning_language=learning_language,
    )
