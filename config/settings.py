"""
PageChain settings.

Values come from a YAML file (path in PAGECHAIN_CONFIG, default
config/settings.yaml next to this module). `${NAME}` placeholders in
string values are replaced from the environment; unknown names are left
as written. Missing file or missing keys fall back to the defaults below.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

ENV_VAR = "PAGECHAIN_CONFIG"
_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")


@dataclass
class SessionConfig:
    idle_ttl_seconds: float = 0.0           # 0 disables idle eviction
    eviction_interval_seconds: float = 60.0
    serialize_interactions: bool = False    # per-session lock around each interaction
    completion_text: str = "✅ All done, your choices have been saved."


@dataclass
class ChatConfig:
    max_queue_size: int = 100
    stale_after_seconds: float = 90.0
    known_messages_per_user: int = 10     # editable message ids kept per user


@dataclass
class StoreConfig:
    path: str = "./data/config.yaml"


@dataclass
class Settings:
    app_name: str = "PageChain"
    debug: bool = False
    admin_id: str = ""
    session: SessionConfig = field(default_factory=SessionConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    store: StoreConfig = field(default_factory=StoreConfig)


_settings: Optional[Settings] = None


def _expand_env(obj: Any) -> Any:
    if isinstance(obj, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), m.group(0)), obj)
    if isinstance(obj, dict):
        return {k: _expand_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env(v) for v in obj]
    return obj


def _coerce(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(default, (int, float, str)):
        return type(default)(value)
    return value


def _section(cls, raw: Optional[dict[str, Any]]):
    """Build a flat config dataclass from a YAML mapping, keeping defaults for absent keys."""
    defaults = cls()
    raw = raw or {}
    return cls(**{
        f.name: _coerce(raw.get(f.name), getattr(defaults, f.name))
        for f in fields(cls)
    })


def load_settings(config_path: str = None) -> Settings:
    """Read settings from YAML and cache them for get_settings()."""
    global _settings

    path = Path(config_path or os.environ.get(ENV_VAR, Path(__file__).parent / "settings.yaml"))
    raw: dict[str, Any] = {}
    if path.exists():
        with open(path) as f:
            raw = _expand_env(yaml.safe_load(f) or {})

    defaults = Settings()
    _settings = Settings(
        app_name=_coerce(raw.get("app_name"), defaults.app_name),
        debug=_coerce(raw.get("debug"), defaults.debug),
        admin_id=_coerce(raw.get("admin_id"), defaults.admin_id),
        session=_section(SessionConfig, raw.get("session")),
        chat=_section(ChatConfig, raw.get("chat")),
        store=_section(StoreConfig, raw.get("store")),
    )
    return _settings


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
