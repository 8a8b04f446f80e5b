"""
InMemoryChatPlatform — Dict-backed chat platform for development and testing.

Features:
  - Zero dependencies (no network, no client library)
  - Records every sent/edited payload per channel
  - Messages can be deleted to simulate a user removing a prompt
  - Users can be marked unreachable to simulate closed DMs
  - All data lost on process restart

Best for: local development, unit tests, quick prototyping.
"""
from __future__ import annotations

import uuid
import structlog
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from channels.base import (
    ChannelUnavailableError, ChatPlatform, MessageSendError,
)
from models.schemas import InteractionEvent, MessageRef, RenderedPayload

logger = structlog.get_logger()


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


@dataclass
class StoredMessage:
    ref: MessageRef
    payload: RenderedPayload
    edits: int = 0
    history: list[RenderedPayload] = field(default_factory=list)


class InMemoryChatPlatform(ChatPlatform):
    """Chat platform that keeps every message in memory."""

    name = "memory"

    def __init__(self):
        super().__init__()
        self._messages: dict[str, StoredMessage] = {}            # message_id → message
        self._channel_log: dict[str, list[str]] = defaultdict(list)  # channel_id → [message_ids]
        self._private_channels: dict[str, str] = {}              # user_id → channel_id
        self._unreachable: set[str] = set()
        self._failing_channels: set[str] = set()
        self.acknowledged: list[InteractionEvent] = []
        self.sends = 0
        self.edits = 0
        logger.info("inmemory_platform_initialized")

    # ── Test controls ─────────────────────────────────────

    def set_unreachable(self, user_id: str, unreachable: bool = True) -> None:
        if unreachable:
            self._unreachable.add(user_id)
        else:
            self._unreachable.discard(user_id)

    def fail_sends(self, channel_id: str, failing: bool = True) -> None:
        if failing:
            self._failing_channels.add(channel_id)
        else:
            self._failing_channels.discard(channel_id)

    def delete_message(self, ref: MessageRef) -> bool:
        return self._messages.pop(ref.message_id, None) is not None

    # ── ChatPlatform ──────────────────────────────────────

    async def open_private_channel(self, user_id: str) -> str:
        if user_id in self._unreachable:
            raise ChannelUnavailableError(user_id, "user is unreachable")
        return self._private_channels.setdefault(user_id, f"dm-{user_id}")

    async def send_message(self, channel_id: str, payload: RenderedPayload) -> MessageRef:
        if channel_id in self._failing_channels:
            raise MessageSendError(channel_id, "channel rejected message")
        ref = MessageRef(channel_id=channel_id, message_id=_new_id())
        self._messages[ref.message_id] = StoredMessage(ref=ref, payload=payload)
        self._channel_log[channel_id].append(ref.message_id)
        self.sends += 1
        return ref

    async def edit_message(self, ref: MessageRef, payload: RenderedPayload) -> bool:
        stored = self._messages.get(ref.message_id)
        if stored is None or stored.ref.channel_id != ref.channel_id:
            return False
        stored.history.append(stored.payload)
        stored.payload = payload
        stored.edits += 1
        self.edits += 1
        return True

    async def acknowledge(self, event: InteractionEvent) -> None:
        self.acknowledged.append(event)

    # ── Inspection ────────────────────────────────────────

    def get_message(self, ref: MessageRef) -> StoredMessage | None:
        return self._messages.get(ref.message_id)

    def messages_in(self, channel_id: str) -> list[StoredMessage]:
        return [
            self._messages[mid] for mid in self._channel_log.get(channel_id, [])
            if mid in self._messages
        ]

    def last_payload(self, channel_id: str) -> RenderedPayload | None:
        live = self.messages_in(channel_id)
        return live[-1].payload if live else None

    async def health_check(self) -> dict[str, Any]:
        base = await super().health_check()
        return {**base, "messages": len(self._messages), "sends": self.sends, "edits": self.edits}
