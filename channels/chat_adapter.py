"""
Chat Adapter — WebSocket-based interactive messaging.

Provides:
- Connection lifecycle with registration and superseding
- Presence tracking (online/offline/away) from heartbeats
- Message frames carrying content + component layout
- In-place edits of previously sent messages
- Offline message queue with drain-on-reconnect
- Client event routing (interaction, message_deleted, ack, heartbeat)

Every user has exactly one private channel, `chat:<user_id>`.

Server → client frames:
  {"type": "message", "message_id", "channel_id", "content", "components", "timestamp"}
  {"type": "message_edit", "message_id", "channel_id", "content", "components", "timestamp"}

Client → server frames:
  {"type": "interaction", "component_id", "message_id", "values": [...]}
  {"type": "message_deleted", "message_id"}
  {"type": "heartbeat"} / {"type": "ack", "message_id"}
"""
from __future__ import annotations

import json
import time
import uuid
import structlog
from typing import Any, Optional, Union
from datetime import datetime, timezone
from dataclasses import asdict, dataclass, field, is_dataclass
from collections import deque

from channels.base import ChannelUnavailableError, ChatPlatform, MessageEditError
from config.settings import ChatConfig
from models.schemas import InteractionEvent, MessageRef, RenderedPayload

logger = structlog.get_logger()

CHANNEL_PREFIX = "chat:"


def channel_for(user_id: str) -> str:
    return f"{CHANNEL_PREFIX}{user_id}"


def user_for(channel_id: str) -> Optional[str]:
    if not channel_id.startswith(CHANNEL_PREFIX):
        return None
    return channel_id[len(CHANNEL_PREFIX):] or None


# ══════════════════════════════════════════════════════════════
#  CONNECTION & QUEUE MODELS
# ══════════════════════════════════════════════════════════════

class ConnectionState:
    """Tracks a single WebSocket connection."""

    def __init__(self, user_id: str, ws: Any):
        self.user_id = user_id
        self.ws = ws
        self.connected_at = datetime.now(timezone.utc)
        self.last_heartbeat = time.monotonic()
        self.message_count: int = 0


@dataclass
class QueuedFrame:
    """Frame queued for delivery when the user reconnects."""
    frame: dict[str, Any]
    queued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ══════════════════════════════════════════════════════════════
#  CHAT ADAPTER
# ══════════════════════════════════════════════════════════════

class ChatAdapter(ChatPlatform):
    """
    Interactive chat over WebSockets with offline queue.

    A message id stays editable until the client reports it deleted or the
    engine forgets it; each user keeps only the most recent
    `known_messages_per_user` ids.
    Edits are only attempted on live connections; an edit for an offline
    user reports failure so the caller resends (which is then queued).
    """

    name = "websocket"

    def __init__(self):
        super().__init__()
        self._connections: dict[str, ConnectionState] = {}
        self._offline_queues: dict[str, deque[QueuedFrame]] = {}
        self._known_messages: dict[str, deque[str]] = {}  # user_id → recent editable message ids
        self._max_queue_size: int = 100
        self._stale_after_s: float = 90.0
        self._known_per_user: int = 10

    async def initialize(self, config: Union[ChatConfig, dict[str, Any]]) -> None:
        # ChatConfig dataclass → dict so both forms read the same way
        if is_dataclass(config):
            config = asdict(config)
        await super().initialize(config)
        defaults = ChatConfig()
        self._max_queue_size = config.get("max_queue_size", defaults.max_queue_size)
        self._stale_after_s = config.get("stale_after_seconds", defaults.stale_after_seconds)
        self._known_per_user = config.get("known_messages_per_user", defaults.known_messages_per_user)

    # ── Connection management ─────────────────────────────────

    async def register_connection(self, user_id: str, ws: Any) -> None:
        """
        Register a WebSocket connection for a user.
        Supersedes any existing connection and drains queued frames.
        """
        existing = self._connections.get(user_id)
        if existing:
            try:
                await existing.ws.close()
            except Exception as e:
                logger.debug("superseded_close_failed", user_id=user_id, error=str(e))
            logger.info("connection_superseded", user_id=user_id)

        self._connections[user_id] = ConnectionState(user_id, ws)
        logger.info("connection_registered", user_id=user_id)

        await self._drain_queue(user_id, ws)

    async def remove_connection(self, user_id: str) -> None:
        self._connections.pop(user_id, None)
        logger.info("connection_removed", user_id=user_id)

    def is_connected(self, user_id: str) -> bool:
        return user_id in self._connections

    def get_presence(self, user_id: str) -> str:
        conn = self._connections.get(user_id)
        if not conn:
            return "offline"
        if time.monotonic() - conn.last_heartbeat > self._stale_after_s:
            return "away"
        return "online"

    # ── ChatPlatform ──────────────────────────────────────────

    async def open_private_channel(self, user_id: str) -> str:
        if not user_id:
            raise ChannelUnavailableError(user_id, "empty user id")
        return channel_for(user_id)

    async def send_message(self, channel_id: str, payload: RenderedPayload) -> MessageRef:
        user_id = user_for(channel_id)
        if not user_id:
            raise ChannelUnavailableError(channel_id, "not a chat channel")

        ref = MessageRef(channel_id=channel_id, message_id=str(uuid.uuid4()))
        self._remember(user_id, ref.message_id)
        frame = self._frame("message", ref, payload)

        conn = self._connections.get(user_id)
        if not conn:
            self._enqueue(user_id, frame)
            return ref

        try:
            await conn.ws.send_text(json.dumps(frame))
            conn.message_count += 1
        except Exception as e:
            # Broken socket: drop the connection and queue the frame
            self._connections.pop(user_id, None)
            self._enqueue(user_id, frame)
            logger.warning("chat_send_queued", user_id=user_id, error=str(e))
        return ref

    async def edit_message(self, ref: MessageRef, payload: RenderedPayload) -> bool:
        """
        False if the message is unknown, deleted or the user is offline.
        Raises MessageEditError if the socket breaks while sending the edit.
        """
        user_id = user_for(ref.channel_id)
        if not user_id or not self.is_known(ref):
            return False

        conn = self._connections.get(user_id)
        if not conn:
            return False

        try:
            await conn.ws.send_text(json.dumps(self._frame("message_edit", ref, payload)))
            return True
        except Exception as e:
            self._connections.pop(user_id, None)
            logger.warning("chat_edit_failed", user_id=user_id, error=str(e))
            raise MessageEditError(ref, str(e)) from e

    async def forget_message(self, ref: MessageRef) -> None:
        user_id = user_for(ref.channel_id)
        known = self._known_messages.get(user_id) if user_id else None
        if known and ref.message_id in known:
            known.remove(ref.message_id)
            if not known:
                del self._known_messages[user_id]

    def is_known(self, ref: MessageRef) -> bool:
        user_id = user_for(ref.channel_id)
        return bool(user_id) and ref.message_id in self._known_messages.get(user_id, ())

    def _remember(self, user_id: str, message_id: str) -> None:
        # Oldest ids fall off once a user has more than known_messages_per_user
        if user_id not in self._known_messages:
            self._known_messages[user_id] = deque(maxlen=self._known_per_user)
        self._known_messages[user_id].append(message_id)

    # ── Client event handling ─────────────────────────────────

    async def handle_client_event(
        self, user_id: str, event: dict[str, Any]
    ) -> Optional[InteractionEvent]:
        """
        Handle events from a connected client.
        Returns an InteractionEvent for 'interaction' frames, None otherwise.
        """
        conn = self._connections.get(user_id)
        event_type = event.get("type", "")

        if event_type == "heartbeat":
            if conn:
                conn.last_heartbeat = time.monotonic()
            return None

        elif event_type == "ack":
            return None

        elif event_type == "message_deleted":
            message_id = event.get("message_id", "")
            if message_id:
                await self.forget_message(MessageRef(channel_id=channel_for(user_id), message_id=message_id))
            return None

        elif event_type == "interaction":
            component_id = event.get("component_id", "")
            if not component_id:
                return None
            values = event.get("values") or []
            if not isinstance(values, list):
                values = [values]
            return InteractionEvent(
                component_id=component_id,
                user_id=user_id,
                channel_id=channel_for(user_id),
                values=[str(v) for v in values],
            )

        return None

    # ── Offline queue ─────────────────────────────────────────

    def _enqueue(self, user_id: str, frame: dict[str, Any]) -> None:
        if user_id not in self._offline_queues:
            self._offline_queues[user_id] = deque(maxlen=self._max_queue_size)
        self._offline_queues[user_id].append(QueuedFrame(frame=frame))

    async def _drain_queue(self, user_id: str, ws: Any) -> None:
        queue = self._offline_queues.pop(user_id, None)
        if not queue:
            return
        for queued in queue:
            frame = {**queued.frame, "queued_at": queued.queued_at.isoformat()}
            try:
                await ws.send_text(json.dumps(frame))
            except Exception as e:
                logger.warning("chat_drain_interrupted", user_id=user_id, error=str(e))
                break

    # ── Utilities ─────────────────────────────────────────────

    @staticmethod
    def _frame(frame_type: str, ref: MessageRef, payload: RenderedPayload) -> dict[str, Any]:
        return {
            "type": frame_type,
            "message_id": ref.message_id,
            "channel_id": ref.channel_id,
            **payload.to_wire(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def health_check(self) -> dict[str, Any]:
        base = await super().health_check()
        return {
            **base,
            "connected_users": len(self._connections),
            "queued_users": len(self._offline_queues),
            "known_messages": sum(len(m) for m in self._known_messages.values()),
            "total_queued_frames": sum(len(q) for q in self._offline_queues.values()),
        }

    async def shutdown(self) -> None:
        for conn in list(self._connections.values()):
            try:
                await conn.ws.close()
            except Exception as e:
                logger.debug("chat_close_failed", user_id=conn.user_id, error=str(e))
        self._connections.clear()
