"""
Component Context — per-user mutable state for one in-progress chain run.

A context is owned by exactly one session. Handlers read and write
arbitrary keys; the session manager keeps its own bookkeeping under the
reserved `chain.*` and `interaction.*` keys below.

Completion is a one-way flag: once `complete()` is called the owning
session is finalized on the current processing pass and never reused.
Completing does not persist anything; a done-handler must persist its
results before calling `complete()`.
"""
from __future__ import annotations

from typing import Any, Optional

# Reserved keys written by the session manager
PAGE_INDEX = "chain.page_index"
TOTAL_PAGES = "chain.total_pages"
ADVANCE = "chain.advance"                         # page delta requested by a handler
MESSAGE_CHANNEL = "chain.message.channel_id"
MESSAGE_ID = "chain.message.id"
INTERACTION_COMPONENT = "interaction.component_id"
INTERACTION_VALUE = "interaction.value"

OPTIONS_SUFFIX = ".options"
SELECTED_SUFFIX = ".selected"


def options_key(component_id: str) -> str:
    """Context key that overrides a component's static option list."""
    return component_id + OPTIONS_SUFFIX


def selected_key(component_id: str) -> str:
    """Context key holding the pre-selected value of a component."""
    return component_id + SELECTED_SUFFIX


class ComponentContext:
    """Key/value state bag plus a completion flag."""

    def __init__(self, user_id: str, data: dict[str, Any] = None):
        self._user_id = user_id
        self._data: dict[str, Any] = dict(data or {})
        self._complete = False

    @property
    def user_id(self) -> str:
        return self._user_id

    # ── Key/value access ──────────────────────────────────────

    def put(self, key: str, value: Any) -> None:
        self._data[key] = value

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def get_or_default(self, key: str, default: Any) -> Any:
        return self._data.get(key, default)

    def get_string(self, key: str) -> Optional[str]:
        value = self._data.get(key)
        return None if value is None else str(value)

    def get_int(self, key: str, default: int = 0) -> int:
        value = self._data.get(key)
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    def has(self, key: str) -> bool:
        return key in self._data

    def remove(self, key: str) -> Any:
        return self._data.pop(key, None)

    def snapshot(self) -> dict[str, Any]:
        return dict(self._data)

    # ── Completion ────────────────────────────────────────────

    def complete(self) -> None:
        self._complete = True

    def is_complete(self) -> bool:
        return self._complete

    # ── Navigation helpers ────────────────────────────────────

    @property
    def page_index(self) -> int:
        return self.get_int(PAGE_INDEX, 0)

    @property
    def total_pages(self) -> int:
        return self.get_int(TOTAL_PAGES, 0)

    def advance(self, delta: int = 1) -> None:
        """Ask the session manager to move `delta` pages after this dispatch."""
        self._data[ADVANCE] = self.get_int(ADVANCE, 0) + delta

    @property
    def interaction_value(self) -> Optional[str]:
        return self.get_string(INTERACTION_VALUE)

    def __repr__(self):
        return (f"<ComponentContext user={self._user_id} page={self.page_index}"
                f"/{self.total_pages} complete={self._complete}>")
