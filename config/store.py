"""
YamlConfigStore — durable dotted-key configuration backed by a YAML file.

Chain done-handlers use this to persist the values a user collected:

    store.put("guilds.123456", {"guildId": "123456", ...})
    store.save()

Features:
  - Nested maps addressed with dot paths ("guilds.123.modsRole")
  - Missing intermediate maps are created on write
  - Atomic save (write to temp file, then replace)
  - Single-process only (no cross-process write safety)
"""
from __future__ import annotations

import os
import tempfile
import threading
import structlog
from pathlib import Path
from typing import Any, Optional

import yaml

from config.settings import StoreConfig, get_settings

logger = structlog.get_logger()


class YamlConfigStore:

    def __init__(self, path: str):
        self._path = Path(path)
        self._data: dict[str, Any] = {}
        self._lock = threading.RLock()
        self.load()

    @classmethod
    def from_config(cls, config: StoreConfig = None) -> "YamlConfigStore":
        """Open the store named by `config`, or by the loaded settings when omitted."""
        config = config if config is not None else get_settings().store
        return cls(config.path)

    @property
    def path(self) -> Path:
        return self._path

    # ── Load / Save ───────────────────────────────────────

    def load(self) -> None:
        with self._lock:
            if not self._path.exists():
                logger.warning("config_store_missing", path=str(self._path))
                self._data = {}
                return
            try:
                with open(self._path, "r") as f:
                    data = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                logger.error("config_store_load_error", path=str(self._path), error=str(e))
                self._data = {}
                return

            if isinstance(data, dict):
                self._data = data
                logger.info("config_store_loaded", path=str(self._path), keys=len(data))
            else:
                logger.warning("config_store_invalid_format", path=str(self._path))
                self._data = {}

    def save(self) -> None:
        """Write the in-memory map to disk. Raises OSError on failure."""
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "w") as f:
                    yaml.safe_dump(self._data, f, default_flow_style=False,
                                   sort_keys=False, allow_unicode=True)
                os.replace(tmp_path, self._path)
            except OSError as e:
                logger.error("config_store_save_error", path=str(self._path), error=str(e))
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        logger.info("config_store_saved", path=str(self._path))

    # ── Access ────────────────────────────────────────────

    def get(self, path: str, default: Any = None) -> Any:
        with self._lock:
            current: Any = self._data
            for key in path.split("."):
                if not isinstance(current, dict) or key not in current:
                    return default
                current = current[key]
            return current

    def get_string(self, path: str) -> Optional[str]:
        value = self.get(path)
        return None if value is None else str(value)

    def put(self, path: str, value: Any) -> None:
        parts = path.split(".")
        with self._lock:
            current = self._data
            for key in parts[:-1]:
                nested = current.get(key)
                if not isinstance(nested, dict):
                    nested = {}
                    current[key] = nested
                current = nested
            current[parts[-1]] = value
        logger.info("config_store_updated", path=path)

    def as_dict(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._data)
