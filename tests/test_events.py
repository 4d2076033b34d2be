"""
Tests for the escalation event channel.
"""
import asyncio

import pytest

from app.chat.events import ESCALATION_CREATED, TICKET_UPDATED, EventChannel


class TestEventChannel:
    """Queueing and delivery."""

    def test_unknown_event_type(self):
        """Unknown event types are rejected."""
        with pytest.raises(ValueError):
            EventChannel().subscribe("something_else", lambda event: None)

    def test_publish_without_loop(self):
        """Publishing works outside a running loop."""
        channel = EventChannel()

        event = channel.publish(ESCALATION_CREATED, {"id": "esc_1"})

        assert event.event_type == ESCALATION_CREATED
        assert channel.pending == 1

    @pytest.mark.asyncio
    async def test_only_matching_subscribers(self):
        """Only subscribers of the event type are called."""
        channel = EventChannel()
        created, updated = [], []
        channel.subscribe(ESCALATION_CREATED, created.append)
        channel.subscribe(TICKET_UPDATED, updated.append)

        channel.publish(TICKET_UPDATED, {"id": "ticket_1"})
        await channel.drain()

        assert created == []
        assert [e.payload for e in updated] == [{"id": "ticket_1"}]
        assert channel.pending == 0

    @pytest.mark.asyncio
    async def test_drain_empty(self):
        """Draining an empty channel."""
        assert await EventChannel().drain() == 0

    @pytest.mark.asyncio
    async def test_run_dispatches_until_cancelled(self):
        """The dispatcher runs until cancelled."""
        channel = EventChannel()
        delivered = asyncio.Event()
        seen = []

        async def handler(event):
            seen.append(event.payload["id"])
            delivered.set()

        channel.subscribe(ESCALATION_CREATED, handler)
        task = asyncio.create_task(channel.run())
        channel.publish(ESCALATION_CREATED, {"id": "esc_1"})

        await asyncio.wait_for(delivered.wait(), timeout=1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert seen == ["esc_1"]
