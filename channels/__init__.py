"""Chat platforms the chain engine can drive."""
from channels.base import (
    ChatPlatform,
    ChannelError,
    MessageSendError,
    MessageEditError,
    ChannelUnavailableError,
)
from channels.chat_adapter import ChatAdapter
from channels.memory_adapter import InMemoryChatPlatform

__all__ = [
    "ChatPlatform", "ChannelError", "MessageSendError", "MessageEditError",
    "ChannelUnavailableError", "ChatAdapter", "InMemoryChatPlatform",
]
