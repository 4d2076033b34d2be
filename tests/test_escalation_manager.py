"""
Tests for escalation requests, support tickets and their events.
"""
import pytest

from app.chat.events import ESCALATION_CREATED, TICKET_CREATED, TICKET_UPDATED
from app.chat.models import (
    EscalationType,
    Priority,
    SafetyEventStatus,
    SenderRole,
    TicketStatus,
)
from app.core.errors import EscalationError, InvalidTransitionError, NotFoundError


@pytest.fixture
def received(escalation_manager):
    """Collects every event delivered to subscribers."""
    events = []
    for event_type in (ESCALATION_CREATED, TICKET_CREATED, TICKET_UPDATED):
        escalation_manager.on_event(event_type, events.append)
    return events


def _request(manager, conversation, escalation_type=EscalationType.SUPPORT, priority=None):
    return manager.create_escalation_request(
        conversation.id, conversation.booking_id, conversation.user_id,
        escalation_type, "needs help", {"intent": "talk_to_agent"}, priority,
    )


class TestEscalationRequests:
    """Request creation and transcript capture."""

    def test_transcript_is_captured(self, escalation_manager, store, conversation):
        """The transcript holds every message."""
        store.append_message(conversation.id, SenderRole.BOT, "Hi! How can I help?")
        store.append_message(conversation.id, SenderRole.USER, "I want an agent")

        request = _request(escalation_manager, conversation)

        assert request.id.startswith("esc_")
        assert len(request.transcript) == store.get(conversation.id).message_count == 2
        assert request.transcript[1]["text"] == "I want an agent"
        assert request.context["intent"] == "talk_to_agent"

    def test_transcript_is_a_snapshot(self, escalation_manager, store, conversation):
        """Later messages do not change the transcript."""
        request = _request(escalation_manager, conversation)
        store.append_message(conversation.id, SenderRole.USER, "later message")

        assert escalation_manager.get_escalation_request(request.id).transcript == []

    def test_default_priority(self, escalation_manager, conversation):
        """Default priority."""
        assert _request(escalation_manager, conversation).priority == Priority.MEDIUM

    def test_explicit_priority(self, escalation_manager, conversation):
        """Explicit priority."""
        assert _request(escalation_manager, conversation, priority=Priority.HIGH).priority == Priority.HIGH

    def test_safety_is_always_critical(self, escalation_manager, conversation):
        """Safety escalations are always critical."""
        request = _request(escalation_manager, conversation, EscalationType.SAFETY, Priority.LOW)

        assert request.priority == Priority.CRITICAL

    def test_unknown_request(self, escalation_manager):
        """Unknown requests raise NotFoundError."""
        with pytest.raises(NotFoundError):
            escalation_manager.get_escalation_request("esc_missing")


class TestSupportTickets:
    """Ticket creation and status progression."""

    def test_ticket_copies_priority(self, escalation_manager, conversation):
        """Tickets copy the request priority."""
        request = _request(escalation_manager, conversation, priority=Priority.HIGH)

        ticket = escalation_manager.create_support_ticket(
            request.id, conversation.id, conversation.user_id, {"booking_id": "booking_1"}
        )

        assert ticket.priority == Priority.HIGH
        assert ticket.status == TicketStatus.OPEN
        assert ticket.escalation_request_id == request.id
        assert ticket.booking_context == {"booking_id": "booking_1"}

    def test_driver_escalation_has_no_ticket(self, escalation_manager, conversation):
        """Driver escalations open no ticket."""
        request = _request(escalation_manager, conversation, EscalationType.DRIVER)

        with pytest.raises(EscalationError):
            escalation_manager.create_support_ticket(request.id, conversation.id, conversation.user_id)

    def test_status_moves_forward(self, escalation_manager, conversation):
        """Ticket status moves forward."""
        request = _request(escalation_manager, conversation)
        ticket = escalation_manager.create_support_ticket(request.id, conversation.id, conversation.user_id)

        in_progress = escalation_manager.update_ticket_status(ticket.id, TicketStatus.IN_PROGRESS, agent="agent_7")
        resolved = escalation_manager.update_ticket_status(ticket.id, TicketStatus.RESOLVED, "Driver contacted")

        assert in_progress.assigned_agent == "agent_7"
        assert in_progress.resolved_at is None
        assert resolved.status == TicketStatus.RESOLVED
        assert resolved.resolution == "Driver contacted"
        assert resolved.assigned_agent == "agent_7"
        assert resolved.resolved_at is not None

    def test_status_never_moves_backwards(self, escalation_manager, conversation):
        """Backward moves raise InvalidTransitionError."""
        request = _request(escalation_manager, conversation)
        ticket = escalation_manager.create_support_ticket(request.id, conversation.id, conversation.user_id)
        escalation_manager.update_ticket_status(ticket.id, TicketStatus.RESOLVED)

        with pytest.raises(InvalidTransitionError):
            escalation_manager.update_ticket_status(ticket.id, TicketStatus.OPEN)
        assert escalation_manager.get_ticket(ticket.id).status == TicketStatus.RESOLVED

    def test_resolved_at_is_kept_on_close(self, escalation_manager, conversation):
        """resolved_at is stamped once."""
        request = _request(escalation_manager, conversation)
        ticket = escalation_manager.create_support_ticket(request.id, conversation.id, conversation.user_id)
        resolved = escalation_manager.update_ticket_status(ticket.id, TicketStatus.RESOLVED)

        closed = escalation_manager.update_ticket_status(ticket.id, TicketStatus.CLOSED)

        assert closed.resolved_at == resolved.resolved_at

    def test_unknown_ticket(self, escalation_manager):
        """Unknown tickets raise NotFoundError."""
        with pytest.raises(NotFoundError):
            escalation_manager.update_ticket_status("missing", TicketStatus.CLOSED)

    def test_open_tickets_excludes_closed(self, escalation_manager, store):
        """Open tickets exclude finished ones."""
        first = store.create("booking_1", "user_1")
        second = store.create("booking_2", "user_1")
        other = store.create("booking_3", "user_2")
        tickets = []
        for conversation in (first, second, other):
            request = _request(escalation_manager, conversation)
            tickets.append(
                escalation_manager.create_support_ticket(request.id, conversation.id, conversation.user_id)
            )
        escalation_manager.update_ticket_status(tickets[1].id, TicketStatus.CLOSED)

        assert [t.id for t in escalation_manager.open_tickets("user_1")] == [tickets[0].id]
        assert len(escalation_manager.open_tickets()) == 2


class TestSafetyEscalation:
    """Safety events become critical tickets."""

    def test_escalate_safety_event(self, escalation_manager, detector, conversation):
        """Safety events become critical tickets."""
        event = detector.scan("emergency", conversation.id, conversation.user_id, "driver_1")

        request, ticket = escalation_manager.escalate_safety_event(event, conversation.booking_id, {"risk_level": "high"})

        assert request.escalation_type == EscalationType.SAFETY
        assert request.priority == Priority.CRITICAL
        assert request.context["safety_event_id"] == event.id
        assert request.context["keywords"] == ["emergency"]
        assert ticket.priority == Priority.CRITICAL
        assert event.status == SafetyEventStatus.ESCALATED
        assert event.escalated_to == ticket.id


class TestEscalationEvents:
    """Events reach subscribers once drained."""

    @pytest.mark.asyncio
    async def test_events_are_delivered(self, escalation_manager, events, received, conversation):
        """Subscribers receive escalation events."""
        request = _request(escalation_manager, conversation)
        ticket = escalation_manager.create_support_ticket(request.id, conversation.id, conversation.user_id)
        escalation_manager.update_ticket_status(ticket.id, TicketStatus.IN_PROGRESS)

        assert received == []
        assert await events.drain() == 3

        assert [e.event_type for e in received] == [ESCALATION_CREATED, TICKET_CREATED, TICKET_UPDATED]
        assert received[0].payload["id"] == request.id
        assert received[0].payload["transcript_length"] == 0
        assert received[2].payload["status"] == "in_progress"

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block(self, escalation_manager, events, conversation):
        """One failing subscriber does not block the others."""
        delivered = []

        def broken(event):
            raise RuntimeError("subscriber down")

        async def healthy(event):
            delivered.append(event)

        escalation_manager.on_event(ESCALATION_CREATED, broken)
        escalation_manager.on_event(ESCALATION_CREATED, healthy)

        request = _request(escalation_manager, conversation)
        await events.drain()

        assert [e.payload["id"] for e in delivered] == [request.id]
