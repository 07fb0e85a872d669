from typing import Any, Dict, List, Mapping, Protocol

from .models import Message


class ConversationStore(Protocol):
    def append_message(self, conversation_id: str, message: Message) -> None:
        ...

    def list_messages(self, conversation_id: str) -> List[Message]:
        ...

    def delete_conversation(self, conversation_id: str) -> None:
        ...


class SettingsStore(Protocol):
    def get(self) -> Dict[str, Any]:
        ...

    def save(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        ...
