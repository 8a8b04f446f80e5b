"""Tests for the WebSocket chat adapter."""
import json

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from channels.base import ChannelUnavailableError, MessageEditError
from channels.chat_adapter import ChatAdapter, channel_for, user_for
from chains.components import ID_NEXT
from chains.sessions import InteractionOutcome, SessionManager
from config.settings import ChatConfig
from models.schemas import RenderedPayload

from conftest import ID_DD_ITEM


@pytest_asyncio.fixture
async def adapter():
    a = ChatAdapter()
    await a.initialize({"max_queue_size": 3})
    return a


def sent_frames(ws):
    return [json.loads(call.args[0]) for call in ws.send_text.call_args_list]


class TestChannels:
    def test_channel_mapping(self):
        assert channel_for("u1") == "chat:u1"
        assert user_for("chat:u1") == "u1"
        assert user_for("dm-u1") is None
        assert user_for("chat:") is None

    @pytest.mark.asyncio
    async def test_private_channel(self, adapter):
        assert await adapter.open_private_channel("u1") == "chat:u1"
        with pytest.raises(ChannelUnavailableError):
            await adapter.open_private_channel("")

    @pytest.mark.asyncio
    async def test_send_to_foreign_channel_rejected(self, adapter):
        with pytest.raises(ChannelUnavailableError):
            await adapter.send_message("dm-u1", RenderedPayload(content="hi"))


class TestSendAndEdit:
    @pytest.mark.asyncio
    async def test_send_to_connected_user(self, adapter):
        ws = AsyncMock()
        await adapter.register_connection("u1", ws)
        ref = await adapter.send_message("chat:u1", RenderedPayload(content="Hello!"))
        frame = sent_frames(ws)[0]
        assert frame["type"] == "message"
        assert frame["content"] == "Hello!"
        assert frame["components"] == []
        assert frame["message_id"] == ref.message_id

    @pytest.mark.asyncio
    async def test_edit_known_message(self, adapter):
        ws = AsyncMock()
        await adapter.register_connection("u1", ws)
        ref = await adapter.send_message("chat:u1", RenderedPayload(content="v1"))
        assert await adapter.edit_message(ref, RenderedPayload(content="v2"))
        frame = sent_frames(ws)[-1]
        assert frame["type"] == "message_edit"
        assert frame["content"] == "v2"

    @pytest.mark.asyncio
    async def test_edit_deleted_message_fails(self, adapter):
        ws = AsyncMock()
        await adapter.register_connection("u1", ws)
        ref = await adapter.send_message("chat:u1", RenderedPayload(content="v1"))
        await adapter.handle_client_event("u1", {"type": "message_deleted", "message_id": ref.message_id})
        assert not await adapter.edit_message(ref, RenderedPayload(content="v2"))

    @pytest.mark.asyncio
    async def test_edit_offline_fails(self, adapter):
        ref = await adapter.send_message("chat:u1", RenderedPayload(content="queued"))
        assert not await adapter.edit_message(ref, RenderedPayload(content="v2"))

    @pytest.mark.asyncio
    async def test_broken_connection_queues(self, adapter):
        ws = AsyncMock()
        ws.send_text.side_effect = ConnectionError("socket closed")
        await adapter.register_connection("u1", ws)
        await adapter.send_message("chat:u1", RenderedPayload(content="hi"))
        assert not adapter.is_connected("u1")
        health = await adapter.health_check()
        assert health["total_queued_frames"] == 1

    @pytest.mark.asyncio
    async def test_edit_on_broken_socket_raises(self, adapter):
        ws = AsyncMock()
        await adapter.register_connection("u1", ws)
        ref = await adapter.send_message("chat:u1", RenderedPayload(content="v1"))
        ws.send_text.side_effect = ConnectionError("socket closed")
        with pytest.raises(MessageEditError) as exc:
            await adapter.edit_message(ref, RenderedPayload(content="v2"))
        assert exc.value.ref == ref
        assert not adapter.is_connected("u1")

    @pytest.mark.asyncio
    async def test_forgotten_message_not_editable(self, adapter):
        ws = AsyncMock()
        await adapter.register_connection("u1", ws)
        ref = await adapter.send_message("chat:u1", RenderedPayload(content="v1"))
        await adapter.forget_message(ref)
        assert not adapter.is_known(ref)
        assert not await adapter.edit_message(ref, RenderedPayload(content="v2"))
        assert (await adapter.health_check())["known_messages"] == 0

    @pytest.mark.asyncio
    async def test_known_messages_bounded_per_user(self):
        adapter = ChatAdapter()
        await adapter.initialize({"known_messages_per_user": 2})
        await adapter.register_connection("u1", AsyncMock())
        refs = [await adapter.send_message("chat:u1", RenderedPayload(content=f"m{i}")) for i in range(3)]
        assert not adapter.is_known(refs[0])
        assert not await adapter.edit_message(refs[0], RenderedPayload(content="late"))
        assert await adapter.edit_message(refs[2], RenderedPayload(content="ok"))
        assert (await adapter.health_check())["known_messages"] == 2


class TestQueueAndPresence:
    @pytest.mark.asyncio
    async def test_drain_queue_on_reconnect(self, adapter):
        await adapter.send_message("chat:u1", RenderedPayload(content="Msg 1"))
        await adapter.send_message("chat:u1", RenderedPayload(content="Msg 2"))
        ws = AsyncMock()
        await adapter.register_connection("u1", ws)
        frames = sent_frames(ws)
        assert [f["content"] for f in frames] == ["Msg 1", "Msg 2"]
        assert all("queued_at" in f for f in frames)

    @pytest.mark.asyncio
    async def test_queue_is_bounded(self, adapter):
        for i in range(5):
            await adapter.send_message("chat:u1", RenderedPayload(content=f"m{i}"))
        ws = AsyncMock()
        await adapter.register_connection("u1", ws)
        assert [f["content"] for f in sent_frames(ws)] == ["m2", "m3", "m4"]

    @pytest.mark.asyncio
    async def test_initialize_from_chat_config(self):
        adapter = ChatAdapter()
        await adapter.initialize(ChatConfig(max_queue_size=1))
        for i in range(3):
            await adapter.send_message("chat:u1", RenderedPayload(content=f"m{i}"))
        ws = AsyncMock()
        await adapter.register_connection("u1", ws)
        assert [f["content"] for f in sent_frames(ws)] == ["m2"]

    @pytest.mark.asyncio
    async def test_presence_tracking(self, adapter):
        assert adapter.get_presence("u1") == "offline"
        await adapter.register_connection("u1", AsyncMock())
        assert adapter.get_presence("u1") == "online"
        await adapter.remove_connection("u1")
        assert not adapter.is_connected("u1")

    @pytest.mark.asyncio
    async def test_supersede_old_connection(self, adapter):
        ws1, ws2 = AsyncMock(), AsyncMock()
        await adapter.register_connection("u1", ws1)
        await adapter.register_connection("u1", ws2)
        ws1.close.assert_called()

    @pytest.mark.asyncio
    async def test_shutdown_closes_connections(self, adapter):
        ws = AsyncMock()
        await adapter.register_connection("u1", ws)
        await adapter.shutdown()
        ws.close.assert_called()
        assert not adapter.is_connected("u1")


class TestClientEvents:
    @pytest.mark.asyncio
    async def test_control_frames_return_none(self, adapter):
        await adapter.register_connection("u1", AsyncMock())
        assert await adapter.handle_client_event("u1", {"type": "heartbeat"}) is None
        assert await adapter.handle_client_event("u1", {"type": "ack", "message_id": "x"}) is None
        assert await adapter.handle_client_event("u1", {"type": "typing"}) is None

    @pytest.mark.asyncio
    async def test_interaction_frame(self, adapter):
        event = await adapter.handle_client_event(
            "u1", {"type": "interaction", "component_id": "RolePicker", "values": [42]})
        assert event.component_id == "RolePicker"
        assert event.channel_id == "chat:u1"
        assert event.value == "42"
        assert event.is_selection

    @pytest.mark.asyncio
    async def test_interaction_without_component_ignored(self, adapter):
        assert await adapter.handle_client_event("u1", {"type": "interaction"}) is None


class TestWithSessionManager:
    @pytest.mark.asyncio
    async def test_chain_over_websocket(self, adapter, registry, item_chain):
        ws = AsyncMock()
        await adapter.register_connection("u1", ws)
        manager = SessionManager(adapter, registry=registry)

        await manager.start("u1", item_chain)
        event = await adapter.handle_client_event("u1", {"type": "interaction", "component_id": "next"})
        assert await manager.on_interaction(event) == InteractionOutcome.RENDERED

        event = await adapter.handle_client_event(
            "u1", {"type": "interaction", "component_id": ID_DD_ITEM, "values": ["Server-1"]})
        await manager.on_interaction(event)

        frames = sent_frames(ws)
        assert [f["type"] for f in frames] == ["message", "message_edit", "message_edit"]
        assert frames[-1]["content"].startswith("**Pick-Role**")
        assert len({f["message_id"] for f in frames}) == 1

    @pytest.mark.asyncio
    async def test_resend_forgets_previous_message(self, adapter, registry, item_chain):
        manager = SessionManager(adapter, registry=registry)
        session = await manager.start("u1", item_chain, channel_id="chat:u1")
        first = session.message

        # offline: the edit is refused, so the page is sent as a new message
        await manager.on_interaction(
            await adapter.handle_client_event("u1", {"type": "interaction", "component_id": ID_NEXT}))
        assert session.message != first
        assert not adapter.is_known(first)
        assert adapter.is_known(session.message)
        assert (await adapter.health_check())["known_messages"] == 1
