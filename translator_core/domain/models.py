"""统一的命令、事件与消息数据模型。

本模块定义了消费端、消息总线与 coordinator 之间共享的标准数据结构：

- 命令（TranslateStream / ChatStream / DetectLanguage / ...）：消费端发给
  coordinator 的封闭请求集合，每种命令只对应一个处理函数。
- StreamEvent: coordinator 发回消费端的流式事件（chunk/complete/error）。
- Message: 聊天面板中的一条消息。
- SettingsSnapshot: 单次操作使用的只读设置快照。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, TYPE_CHECKING, Union
from uuid import uuid4

if TYPE_CHECKING:
    import asyncio


# 聊天消息角色（与 OpenAI 兼容接口的 role 字段对应）
Role = Literal["system", "user", "assistant"]

OperationKind = Literal["translate", "chat"]

EventType = Literal["chunk", "complete", "error"]

# 总线上事件的 action 名称
TRANSLATION_STREAM = "translationStream"
CHAT_STREAM = "chatStream"
SETTINGS_UPDATED = "settingsUpdated"

def new_request_id() -> str:
    """生成一次操作的 request id，进程内不会重复。"""

    return f"rq-{uuid4().hex}"


@dataclass(frozen=True)
class MessageSender:
    """消息发送方。tab_id 为空表示来自扩展页面（如侧边栏）。"""

    tab_id: Optional[int] = None


@dataclass
class Message:
    """聊天面板中的一条消息。

    assistant 消息的 content 会随 chunk 到达被原地追加；
    user 消息追加到会话后不再修改。
    """

    role: Role
    content: str
    id: str = field(default_factory=lambda: f"m-{uuid4().hex}")
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


# ---- 命令（消费端 -> coordinator） ----


@dataclass(frozen=True)
class TranslateStream:
    text: str
    request_id: str
    is_panel: bool = False
    target_language: Optional[str] = None
    learning_language: Optional[str] = None


@dataclass(frozen=True)
class ChatStream:
    messages: Tuple[Mapping[str, str], ...]
    request_id: str
    conversation_id: Optional[str] = None


@dataclass(frozen=True)
class DetectLanguage:
    text: str


@dataclass(frozen=True)
class CancelTranslation:
    request_id: str


@dataclass(frozen=True)
class GetSettings:
    pass


@dataclass(frozen=True)
class SaveSettings:
    settings: Mapping[str, Any]


@dataclass(frozen=True)
class AddDisabledSite:
    site: str


Command = Union[
    TranslateStream,
    ChatStream,
    DetectLanguage,
    CancelTranslation,
    GetSettings,
    SaveSettings,
    AddDisabledSite,
]


# ---- 事件（coordinator -> 消费端） ----


@dataclass(frozen=True)
class StreamEvent:
    """一条流式事件。

    每个 request id 最多产生一个终止事件（complete 或 error），
    之前可以有零个或多个 chunk。
    """

    action: str
    request_id: str
    type: EventType
    content: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.type != "chunk"

    def to_message(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {
            "action": self.action,
            "requestId": self.request_id,
            "type": self.type,
        }
        if self.content is not None:
            message["content"] = self.content
        if self.error is not None:
            message["error"] = self.error
        return message


@dataclass
class ActiveRequest:
    """ChannelRegistry 中的一条活动请求记录。"""

    request_id: str
    kind: OperationKind
    origin_tab_id: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    task: Optional["asyncio.Task"] = None


# ---- 设置快照 ----

DEFAULT_SETTINGS: Dict[str, Any] = {
    "defaultLanguage": "ko",
    "learningLanguage": "en",
    "apiProvider": "openai",
    "apiUrl": "https://api.openai.com/v1/",
    "apiKey": "",
    "apiModel": "gpt-4.1-nano",
    "isTooltipEnabled": True,
    "disabledSites": [],
}


@dataclass(frozen=True)
class SettingsSnapshot:
    """单次操作使用的设置快照，core 只读不写。"""

    api_url: str
    api_key: str
    api_model: str
    api_provider: str
    default_language: str
    learning_language: str

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SettingsSnapshot":
        """从设置存储的 camelCase 字典构建快照，空值回退到默认值。"""

        def pick(key: str) -> Any:
            value = data.get(key)
            return value if value else DEFAULT_SETTINGS[key]

        return cls(
            api_url=pick("apiUrl"),
            api_key=data.get("apiKey") or "",
            api_model=pick("apiModel"),
            api_provider=pick("apiProvider"),
            default_language=pick("defaultLanguage"),
            learning_language=pick("learningLanguage"),
        )


def history_payload(messages: List[Message]) -> Tuple[Dict[str, str], ...]:
    """把 Message 列表转换为 ChatStream 命令需要的 role/content 序列。"""

    return tuple(m.to_payload() for m in messages)
