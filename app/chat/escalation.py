"""
Escalation requests and support tickets.

Requests are immutable audit records carrying the transcript at the moment
of escalation. Tickets follow open -> in_progress -> resolved -> closed and
never move backwards.
"""
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from app.core.errors import EscalationError, InvalidTransitionError
from .events import ESCALATION_CREATED, TICKET_CREATED, TICKET_UPDATED, EventChannel, Handler
from .models import (
    EscalationRequest,
    EscalationType,
    Priority,
    SafetyEvent,
    SupportTicket,
    TicketStatus,
    utcnow,
)
from .safety_detector import SafetyDetector
from .store import ConversationStore, EscalationStore

logger = logging.getLogger(__name__)


def request_to_dict(request: EscalationRequest) -> Dict[str, Any]:
    return {
        "id": request.id,
        "conversation_id": request.conversation_id,
        "booking_id": request.booking_id,
        "user_id": request.user_id,
        "escalation_type": request.escalation_type.value,
        "reason": request.reason,
        "priority": request.priority.value,
        "timestamp": request.timestamp.isoformat(),
        "transcript_length": len(request.transcript),
    }


def ticket_to_dict(ticket: SupportTicket) -> Dict[str, Any]:
    return {
        "id": ticket.id,
        "escalation_request_id": ticket.escalation_request_id,
        "conversation_id": ticket.conversation_id,
        "user_id": ticket.user_id,
        "priority": ticket.priority.value,
        "status": ticket.status.value,
        "assigned_agent": ticket.assigned_agent,
        "created_at": ticket.created_at.isoformat(),
        "updated_at": ticket.updated_at.isoformat(),
        "resolved_at": ticket.resolved_at.isoformat() if ticket.resolved_at else None,
        "resolution": ticket.resolution,
    }


class EscalationManager:
    def __init__(
        self,
        store: ConversationStore,
        events: EventChannel,
        repository: EscalationStore,
        safety_detector: Optional[SafetyDetector] = None,
    ):
        self.store = store
        self.events = events
        self.repository = repository
        self.safety_detector = safety_detector

    def on_event(self, event_type: str, handler: Handler) -> None:
        self.events.subscribe(event_type, handler)

    def create_escalation_request(
        self,
        conversation_id: str,
        booking_id: str,
        user_id: str,
        escalation_type: EscalationType,
        reason: str,
        context: Optional[Dict[str, Any]] = None,
        priority: Optional[Priority] = None,
    ) -> EscalationRequest:
        transcript = [message.to_dict() for message in self.store.get_messages(conversation_id)]
        if escalation_type == EscalationType.SAFETY:
            priority = Priority.CRITICAL
        elif priority is None:
            priority = Priority.MEDIUM

        request = EscalationRequest(
            id=f"esc_{uuid4().hex[:12]}",
            conversation_id=conversation_id,
            booking_id=booking_id,
            user_id=user_id,
            escalation_type=escalation_type,
            reason=reason,
            priority=priority,
            timestamp=utcnow(),
            context={**(context or {}), "chat_transcript": transcript},
        )
        self.repository.add_request(request)
        logger.info(
            "Escalation request %s created (type=%s, priority=%s, conversation=%s)",
            request.id, escalation_type.value, priority.value, conversation_id,
        )
        self.events.publish(ESCALATION_CREATED, request_to_dict(request))
        return request

    def create_support_ticket(
        self,
        escalation_request_id: str,
        conversation_id: str,
        user_id: str,
        booking_context: Optional[Dict[str, Any]] = None,
    ) -> SupportTicket:
        request = self.repository.get_request(escalation_request_id)
        if request.escalation_type == EscalationType.DRIVER:
            raise EscalationError(f"Driver escalation {escalation_request_id} does not open a ticket")

        ticket = SupportTicket(
            id=str(uuid4()),
            escalation_request_id=escalation_request_id,
            conversation_id=conversation_id,
            user_id=user_id,
            priority=request.priority,
            booking_context=dict(booking_context or {}),
        )
        self.repository.add_ticket(ticket)
        logger.info("Support ticket %s created (priority=%s)", ticket.id, ticket.priority.value)
        self.events.publish(TICKET_CREATED, ticket_to_dict(ticket))
        return ticket

    def update_ticket_status(
        self,
        ticket_id: str,
        status: TicketStatus,
        resolution: Optional[str] = None,
        agent: Optional[str] = None,
    ) -> SupportTicket:
        ticket = self.repository.get_ticket(ticket_id)
        if status.rank < ticket.status.rank:
            raise InvalidTransitionError("ticket", ticket.status.value, status.value)

        now = utcnow()
        changes: Dict[str, Any] = {"status": status, "updated_at": now}
        if agent:
            changes["assigned_agent"] = agent
        if resolution:
            changes["resolution"] = resolution
        if status.is_terminal and ticket.resolved_at is None:
            changes["resolved_at"] = now

        ticket = replace(ticket, **changes)
        self.repository.save_ticket(ticket)
        logger.info("Ticket %s status -> %s", ticket_id, status.value)
        self.events.publish(TICKET_UPDATED, ticket_to_dict(ticket))
        return ticket

    def escalate_safety_event(
        self,
        event: SafetyEvent,
        booking_id: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Tuple[EscalationRequest, SupportTicket]:
        request = self.create_escalation_request(
            event.conversation_id,
            booking_id,
            event.user_id,
            EscalationType.SAFETY,
            f"URGENT safety concern detected: {', '.join(event.keywords)}",
            {
                **(context or {}),
                "safety_event_id": event.id,
                "severity": event.severity.value,
                "keywords": list(event.keywords),
            },
        )
        ticket = self.create_support_ticket(
            request.id, event.conversation_id, event.user_id, (context or {}).get("booking_context")
        )
        if self.safety_detector is not None:
            self.safety_detector.mark_escalated(event.id, event.user_id, ticket.id)
        return request, ticket

    def get_escalation_request(self, request_id: str) -> EscalationRequest:
        return self.repository.get_request(request_id)

    def get_ticket(self, ticket_id: str) -> SupportTicket:
        return self.repository.get_ticket(ticket_id)

    def open_tickets(self, user_id: Optional[str] = None) -> List[SupportTicket]:
        return [t for t in self.repository.list_tickets(user_id) if t.status != TicketStatus.CLOSED]
