"""
Chat Platform — the collaborator the chain engine talks to.

Provides:
- ChannelError: structured error hierarchy
- ChatPlatform: abstract base for anything that can send, edit and
  acknowledge interactive messages and resolve a user's private channel

The engine only ever needs four operations:
  send_message(channel, payload)   → MessageRef       (may raise)
  edit_message(ref, payload)       → bool             (False: target gone,
                                                        MessageEditError: transport broke)
  open_private_channel(user_id)    → channel id       (may raise)
  acknowledge(event)               → None
"""
from __future__ import annotations

import abc
import structlog
from typing import Any

from models.schemas import InteractionEvent, MessageRef, RenderedPayload

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════

class ChannelError(Exception):
    """Base exception for all platform operations."""

    def __init__(self, message: str, channel: str = "", retryable: bool = False):
        self.channel = channel
        self.retryable = retryable
        super().__init__(message)


class MessageSendError(ChannelError):
    def __init__(self, channel: str = "", reason: str = ""):
        super().__init__(f"Failed to send message to {channel}: {reason}", channel)


class MessageEditError(ChannelError):
    def __init__(self, ref: MessageRef, reason: str = ""):
        self.ref = ref
        super().__init__(
            f"Failed to edit message {ref.message_id} in {ref.channel_id}: {reason}",
            ref.channel_id,
        )


class ChannelUnavailableError(ChannelError):
    """The user cannot be reached (offline, DMs closed, unknown user)."""

    def __init__(self, user_id: str = "", reason: str = ""):
        self.user_id = user_id
        super().__init__(f"No private channel for user {user_id}: {reason}")


# ══════════════════════════════════════════════════════════════
#  CHAT PLATFORM — Abstract Base
# ══════════════════════════════════════════════════════════════

class ChatPlatform(abc.ABC):
    """
    Base class for chat platforms.

    Subclasses implement the abstract hooks. Completion of a send or edit
    is reported by the returned value only; callers do the bookkeeping.
    """

    name: str = "chat"

    def __init__(self):
        self._initialized = False
        self._config: dict[str, Any] = {}

    async def initialize(self, config: dict[str, Any]) -> None:
        self._config = config
        self._initialized = True

    # ── Abstract hooks ────────────────────────────────────────

    @abc.abstractmethod
    async def send_message(self, channel_id: str, payload: RenderedPayload) -> MessageRef:
        ...

    @abc.abstractmethod
    async def edit_message(self, ref: MessageRef, payload: RenderedPayload) -> bool:
        ...

    @abc.abstractmethod
    async def open_private_channel(self, user_id: str) -> str:
        ...

    # ── Optional hooks ────────────────────────────────────────

    async def acknowledge(self, event: InteractionEvent) -> None:
        """Tell the platform the interaction was received. No-op by default."""
        return None

    async def forget_message(self, ref: MessageRef) -> None:
        """The engine will not edit `ref` again. No-op by default."""
        return None

    async def send_text(self, channel_id: str, content: str) -> MessageRef:
        return await self.send_message(channel_id, RenderedPayload(content=content))

    async def send_private_text(self, user_id: str, content: str) -> MessageRef:
        channel_id = await self.open_private_channel(user_id)
        return await self.send_text(channel_id, content)

    # ── Health ────────────────────────────────────────────────

    async def health_check(self) -> dict[str, Any]:
        return {"platform": self.name, "initialized": self._initialized}

    async def shutdown(self) -> None:
        pass
