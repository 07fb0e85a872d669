"""用户设置存储。

core 只通过 SettingsStore 协议读取设置快照，这里提供两个实现：
YAML 文件存储（默认）与内存存储（测试、嵌入式场景）。
"""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from uuid import uuid4

import yaml

from translator_core.config.settings import settings
from translator_core.domain.conversation import SettingsStore
from translator_core.domain.exceptions import BusinessError
from translator_core.domain.models import DEFAULT_SETTINGS


class MemorySettingsStore(SettingsStore):
    def __init__(self, initial: Optional[Mapping[str, Any]] = None):
        self._data: Dict[str, Any] = dict(DEFAULT_SETTINGS)
        self._data.update(initial or {})

    def get(self) -> Dict[str, Any]:
        return dict(self._data)

    def save(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        self._data.update(values)
        return dict(self._data)


class YamlSettingsStore(SettingsStore):
    def __init__(self, path: str | Path | None = None):
        self._path = Path(path or settings.settings_file).resolve()

    def get(self) -> Dict[str, Any]:
        data = dict(DEFAULT_SETTINGS)
        if not self._path.exists():
            return data
        try:
            loaded = yaml.safe_load(self._path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise BusinessError(code="SETTINGS_READ_ERROR", message=str(e))
        if not isinstance(loaded, dict):
            raise BusinessError(code="SETTINGS_READ_ERROR", message=f"{self._path} is not a mapping")
        data.update(loaded)
        return data

    def save(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        data = self.get()
        data.update(values)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(f"{self._path.stem}.{uuid4().hex}.tmp")
        try:
            tmp_path.write_text(yaml.safe_dump(data, allow_unicode=True, sort_keys=False), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise BusinessError(code="SETTINGS_WRITE_ERROR", message=str(e))
        return data
