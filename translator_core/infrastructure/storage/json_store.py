import json
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from translator_core.config.settings import settings
from translator_core.domain.conversation import ConversationStore
from translator_core.domain.exceptions import BusinessError
from translator_core.domain.models import Message


class JsonConversationStore(ConversationStore):
    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)

    def append_message(self, conversation_id: str, message: Message) -> None:
        cdir = self._conv_root / conversation_id
        msgs_path = cdir / "messages.jsonl"
        payload = {
            "id": message.id,
            "role": message.role,
            "content": message.content,
            "timestamp": message.timestamp.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        try:
            cdir.mkdir(parents=True, exist_ok=True)
            with msgs_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(payload, ensure_ascii=False) + "\n")
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    def list_messages(self, conversation_id: str) -> List[Message]:
        msgs_path = self._conv_root / conversation_id / "messages.jsonl"
        items: List[Message] = []
        if not msgs_path.exists():
            return items
        for line in msgs_path.read_text(encoding="utf-8").splitlines():
            try:
                items.append(self._to_message(json.loads(line)))
            except (ValueError, KeyError):
                continue
        items.sort(key=lambda m: m.timestamp)
        return items

    def delete_conversation(self, conversation_id: str) -> None:
        cdir = self._conv_root / conversation_id
        if not cdir.exists():
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        try:
            shutil.rmtree(cdir)
        except OSError as e:
            raise BusinessError(code="STORE_DELETE_ERROR", message=str(e))

    def _to_message(self, data: Dict[str, Any]) -> Message:
        return Message(
            id=data["id"],
            role=data["role"],
            content=data.get("content") or "",
            timestamp=datetime.fromisoformat(str(data["timestamp"]).replace("Z", "+00:00")),
        )
