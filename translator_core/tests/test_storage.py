import json
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import yaml

from translator_core.config.settings import RelaySettings
from translator_core.domain.exceptions import BusinessError
from translator_core.domain.models import DEFAULT_SETTINGS, Message, SettingsSnapshot
from translator_core.infrastructure.logging.logger import JsonFormatter
from translator_core.infrastructure.storage.json_store import JsonConversationStore
from translator_core.infrastructure.storage.settings_store import MemorySettingsStore, YamlSettingsStore


def test_json_store_append_and_list_in_order():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        now = datetime.now(timezone.utc)
        store.append_message("c1", Message(role="assistant", content="later", timestamp=now + timedelta(seconds=1)))
        store.append_message("c1", Message(role="user", content="earlier", timestamp=now))
        msgs = store.list_messages("c1")
        assert [m.content for m in msgs] == ["earlier", "later"]
        assert store.list_messages("missing") == []


def test_json_store_skips_corrupt_lines():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        store = JsonConversationStore(root=root)
        store.append_message("c1", Message(role="user", content="ok"))
        with (root / "conversations" / "c1" / "messages.jsonl").open("a", encoding="utf-8") as f:
            f.write("{not json\n")
        assert [m.content for m in store.list_messages("c1")] == ["ok"]


def test_json_store_delete_conversation():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        store = JsonConversationStore(root=root)
        store.append_message("c1", Message(role="user", content="x"))
        conv_dir = root / "conversations" / "c1"
        assert conv_dir.exists()
        store.delete_conversation("c1")
        assert not conv_dir.exists()
        with pytest.raises(BusinessError) as exc:
            store.delete_conversation("c1")
        assert exc.value.code == "CONVERSATION_NOT_FOUND"


def test_yaml_settings_store_defaults_and_save(tmp_path):
    path = tmp_path / "nested" / "settings.yaml"
    store = YamlSettingsStore(path)
    assert store.get() == DEFAULT_SETTINGS
    saved = store.save({"apiKey": "sk-test-key", "defaultLanguage": "ja"})
    assert saved["defaultLanguage"] == "ja"
    on_disk = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert on_disk["apiKey"] == "sk-test-key"
    assert YamlSettingsStore(path).get()["defaultLanguage"] == "ja"
    assert list(path.parent.glob("*.tmp")) == []


def test_yaml_settings_store_rejects_non_mapping(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(BusinessError) as exc:
        YamlSettingsStore(path).get()
    assert exc.value.code == "SETTINGS_READ_ERROR"


def test_memory_store_returns_copies():
    store = MemorySettingsStore({"apiKey": "k"})
    data = store.get()
    data["apiKey"] = "changed"
    assert store.get()["apiKey"] == "k"


def test_snapshot_from_mapping_fills_defaults():
    snap = SettingsSnapshot.from_mapping({"apiUrl": "", "apiModel": None, "apiKey": None, "learningLanguage": "ja"})
    assert snap.api_url == DEFAULT_SETTINGS["apiUrl"]
    assert snap.api_model == DEFAULT_SETTINGS["apiModel"]
    assert snap.api_key == ""
    assert snap.learning_language == "ja"


def test_relay_settings_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("TRANSLATOR_CONFIG_FILE", str(tmp_path / "absent.yaml"))
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("TRANSLATOR_LOG_LEVEL", "debug")
    monkeypatch.setenv("TRANSLATOR_HTTP_TIMEOUT", "12.5")
    s = RelaySettings()
    assert s.log_level == "DEBUG"
    assert s.http_timeout == 12.5


def test_relay_settings_from_yaml_file(monkeypatch, tmp_path):
    config = tmp_path / "relay.yaml"
    config.write_text("log_dir: /var/log/relay\nstorage_root: /data/relay\n", encoding="utf-8")
    monkeypatch.setenv("TRANSLATOR_CONFIG_FILE", str(config))
    s = RelaySettings()
    assert s.log_dir == "/var/log/relay"
    assert s.storage_root == "/data/relay"

    # 环境变量优先于配置文件
    monkeypatch.setenv("TRANSLATOR_STORAGE_ROOT", "/env/root")
    assert RelaySettings().storage_root == "/env/root"


def test_relay_settings_validation(monkeypatch):
    monkeypatch.setenv("TRANSLATOR_LOG_LEVEL", "loud")
    with pytest.raises(ValueError):
        RelaySettings()
    monkeypatch.setenv("TRANSLATOR_LOG_LEVEL", "INFO")
    monkeypatch.setenv("TRANSLATOR_HTTP_TIMEOUT", "0")
    with pytest.raises(ValueError):
        RelaySettings()


def test_json_formatter_merges_extra_fields():
    import logging

    record = logging.LogRecord("translator_core", logging.INFO, __file__, 1, "Resolved target", None, None)
    record.extra = {"request_id": "rq-1", "target": "en"}
    line = json.loads(JsonFormatter().format(record))
    assert line["msg"] == "Resolved target"
    assert line["level"] == "INFO"
    assert line["request_id"] == "rq-1"
    assert line["ts"].endswith("Z")
