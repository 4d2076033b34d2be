"""
Tests for the Socket.IO escalation notifications.
"""
from unittest.mock import AsyncMock

import pytest

from app.chat.events import ESCALATION_CREATED, TICKET_UPDATED, EscalationEvent, EventChannel
from app.websocket.manager import SUPPORT_ROOM, SocketManager, conversation_room


@pytest.fixture
def manager(monkeypatch):
    manager = SocketManager(allowed_origins=["http://localhost:3000"])
    monkeypatch.setattr(manager.sio, "emit", AsyncMock())
    monkeypatch.setattr(manager.sio, "enter_room", AsyncMock())
    monkeypatch.setattr(manager.sio, "leave_room", AsyncMock())
    return manager


def _handler(manager, name):
    return manager.sio.handlers["/"][name]


class TestRooms:
    """Joining and leaving rooms."""

    @pytest.mark.asyncio
    async def test_join_conversation(self, manager):
        """Joining a conversation room."""
        await _handler(manager, "join_conversation")("sid_1", {"conversation_id": "conv_1"})

        manager.sio.enter_room.assert_awaited_once_with("sid_1", conversation_room("conv_1"))
        assert manager.conversation_rooms == {"conv_1": {"sid_1"}}
        assert manager.user_sessions["sid_1"]["conversations"] == ["conv_1"]

    @pytest.mark.asyncio
    async def test_join_conversation_requires_id(self, manager):
        """Joining requires a conversation id."""
        await _handler(manager, "join_conversation")("sid_1", {})

        manager.sio.enter_room.assert_not_awaited()
        manager.sio.emit.assert_awaited_once_with("error", {"message": "conversation_id required"}, to="sid_1")

    @pytest.mark.asyncio
    async def test_join_support_requires_agent(self, manager):
        """Joining support requires an agent id."""
        await _handler(manager, "join_support")("sid_2", {})

        assert manager.support_sessions == set()

    @pytest.mark.asyncio
    async def test_disconnect_cleans_up(self, manager):
        """Disconnect cleans up every room."""
        await _handler(manager, "join_conversation")("sid_1", {"conversation_id": "conv_1"})
        await _handler(manager, "join_support")("sid_2", {"agent_id": "agent_7"})

        manager.cleanup_session("sid_1")
        manager.cleanup_session("sid_2")
        manager.cleanup_session("never_seen")

        assert manager.conversation_rooms == {}
        assert manager.support_sessions == set()
        assert manager.user_sessions == {}

    @pytest.mark.asyncio
    async def test_leave_conversation(self, manager):
        """Leaving a conversation room."""
        await _handler(manager, "join_conversation")("sid_1", {"conversation_id": "conv_1"})

        await _handler(manager, "leave_conversation")("sid_1", {"conversation_id": "conv_1"})

        assert manager.conversation_rooms == {}
        manager.sio.leave_room.assert_awaited_once_with("sid_1", conversation_room("conv_1"))


class TestEscalationBroadcasts:
    """Escalation events fan out to agents and the rider's room."""

    @pytest.mark.asyncio
    async def test_escalation_created(self, manager):
        """Escalations reach agents and the rider."""
        payload = {"id": "esc_1", "conversation_id": "conv_1", "escalation_type": "safety", "priority": "critical"}

        await manager.on_escalation_created(EscalationEvent(ESCALATION_CREATED, payload))

        manager.sio.emit.assert_any_await(ESCALATION_CREATED, payload, room=SUPPORT_ROOM)
        manager.sio.emit.assert_any_await(
            "conversation_escalated",
            {"conversation_id": "conv_1", "escalation_type": "safety", "priority": "critical"},
            room=conversation_room("conv_1"),
        )

    @pytest.mark.asyncio
    async def test_attach_forwards_channel_events(self, manager):
        """Channel events are forwarded to rooms."""
        channel = EventChannel()
        manager.attach(channel)
        payload = {"id": "ticket_1", "conversation_id": "conv_1", "status": "in_progress"}

        channel.publish(TICKET_UPDATED, payload)
        await channel.drain()

        manager.sio.emit.assert_any_await(TICKET_UPDATED, payload, room=SUPPORT_ROOM)
        manager.sio.emit.assert_any_await(TICKET_UPDATED, payload, room=conversation_room("conv_1"))
