"""Provider 预设配置。

用户设置里只保存 provider 名称、API 地址与密钥；这里集中维护
各 provider 的默认地址以及是否必须提供 API key。
本地兼容服务（Ollama、LM Studio）允许不带鉴权访问。
"""

from dataclasses import dataclass
from typing import Mapping

from translator_core.domain.exceptions import ConfigError
from translator_core.domain.models import SettingsSnapshot


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    requires_api_key: bool


OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1/",
    requires_api_key=True,
)

OLLAMA_CONFIG = ProviderConfig(
    name="ollama",
    base_url="http://localhost:11434/v1/",
    requires_api_key=False,
)

LMSTUDIO_CONFIG = ProviderConfig(
    name="lmstudio",
    base_url="http://localhost:1234/v1/",
    requires_api_key=False,
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openai": OPENAI_CONFIG,
    "ollama": OLLAMA_CONFIG,
    "lmstudio": LMSTUDIO_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = (name or "").lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")


def requires_api_key(name: str) -> bool:
    """未知 provider 视为 OpenAI 兼容的自定义地址，不强制要求密钥。"""

    try:
        return get_provider_config(name).requires_api_key
    except KeyError:
        return False


def default_base_url(name: str) -> str:
    return get_provider_config(name).base_url


def ensure_api_key(snapshot: SettingsSnapshot) -> None:
    """provider 需要密钥但未配置时抛 ConfigError，此时不应发起任何 HTTP 请求。"""

    if not snapshot.api_key and requires_api_key(snapshot.api_provider):
        raise ConfigError(
            code="MISSING_API_KEY",
            message="Please configure an API key.",
            provider=snapshot.api_provider,
        )
