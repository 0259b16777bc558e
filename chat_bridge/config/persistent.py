"""Persistent JSON config holding the ChatGPT session token."""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

from chat_bridge.domain.exceptions import BusinessError


SESSION_KEY = "OpenAISession"


class PersistentConfig:
    """读写 ~/.config/chatgpt.json，token 更新通过临时文件 + os.replace 原子写入。"""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = {}

    @classmethod
    def load_or_create(cls, path: str | Path) -> "PersistentConfig":
        """读取配置文件，不存在时创建一个空配置。"""

        cfg = cls(path)
        if cfg.path.exists():
            try:
                data = json.loads(cfg.path.read_text(encoding="utf-8") or "{}")
            except (OSError, json.JSONDecodeError) as e:
                raise BusinessError(code="STORE_READ_ERROR", message=f"{cfg.path}: {e}")
            if not isinstance(data, dict):
                raise BusinessError(code="STORE_READ_ERROR", message=f"{cfg.path} is not a JSON object")
            cfg._data = data
        else:
            cfg._write(cfg._data)
        return cfg

    @property
    def session_token(self) -> Optional[str]:
        with self._lock:
            return self._data.get(SESSION_KEY) or None

    def set_session_token(self, token: str) -> None:
        with self._lock:
            data = dict(self._data)
            data[SESSION_KEY] = token
            self._write(data)
            self._data = data

    def _write(self, data: Dict[str, Any]) -> None:
        tmp_path = self.path.with_name(f"{self.path.name}.{uuid4().hex}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
