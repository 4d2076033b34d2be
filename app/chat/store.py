"""Storage interfaces for conversations, escalation requests and tickets.

The default implementations keep everything in process memory. They guard
their maps with a lock so that sync FastAPI routes (run in a threadpool) and
the async turn processor can share them safely.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Any, Dict, List, Optional, Protocol
from uuid import uuid4

from app.core.errors import InvalidTransitionError, NotFoundError
from .models import (
    CONVERSATION_TRANSITIONS,
    Conversation,
    ConversationStatus,
    EscalationRequest,
    EscalationType,
    Message,
    SenderRole,
    SupportTicket,
    utcnow,
)

logger = logging.getLogger(__name__)


def check_transition(current: ConversationStatus, requested: ConversationStatus) -> None:
    if requested not in CONVERSATION_TRANSITIONS[current]:
        raise InvalidTransitionError("conversation", current.value, requested.value)


def conversation_summary(conversation: Conversation) -> Dict[str, Any]:
    return {
        "id": conversation.id,
        "booking_id": conversation.booking_id,
        "user_id": conversation.user_id,
        "status": conversation.status.value,
        "message_count": conversation.message_count,
        "escalated": conversation.escalation_type is not None,
        "escalation_type": conversation.escalation_type.value if conversation.escalation_type else None,
        "duration_seconds": (conversation.updated_at - conversation.created_at).total_seconds(),
        "created_at": conversation.created_at,
        "updated_at": conversation.updated_at,
    }


class ConversationStore(Protocol):
    def create(self, booking_id: str, user_id: str, driver_id: Optional[str] = None) -> Conversation: ...

    def get(self, conversation_id: str) -> Conversation: ...

    def append_message(
        self,
        conversation_id: str,
        sender: SenderRole,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message: ...

    def get_messages(self, conversation_id: str, limit: Optional[int] = None) -> List[Message]: ...

    def set_status(self, conversation_id: str, status: ConversationStatus) -> Conversation: ...

    def escalate(
        self,
        conversation_id: str,
        escalation_type: EscalationType,
        driver_id: Optional[str] = None,
        support_agent_id: Optional[str] = None,
    ) -> Conversation: ...

    def close(self, conversation_id: str, reason: Optional[str] = None) -> Conversation: ...

    def update_flow_state(self, conversation_id: str, state: Dict[str, Any]) -> Conversation: ...

    def list_by_user(self, user_id: str, limit: int = 10) -> List[Conversation]: ...

    def summary(self, conversation_id: str) -> Dict[str, Any]: ...


class InMemoryConversationStore:
    """Conversations and their append-only message logs, kept in dicts."""

    def __init__(self):
        self._lock = threading.RLock()
        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, List[Message]] = {}

    def _require(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        return conversation

    @staticmethod
    def _snapshot(conversation: Conversation) -> Conversation:
        return replace(conversation, flow_state=dict(conversation.flow_state))

    def create(self, booking_id: str, user_id: str, driver_id: Optional[str] = None) -> Conversation:
        conversation = Conversation(id=str(uuid4()), booking_id=booking_id, user_id=user_id, driver_id=driver_id)
        with self._lock:
            self._conversations[conversation.id] = conversation
            self._messages[conversation.id] = []
        logger.info("Conversation created: %s (booking=%s, user=%s)", conversation.id, booking_id, user_id)
        return self._snapshot(conversation)

    def get(self, conversation_id: str) -> Conversation:
        with self._lock:
            return self._snapshot(self._require(conversation_id))

    def append_message(self, conversation_id, sender, text, metadata=None) -> Message:
        with self._lock:
            conversation = self._require(conversation_id)
            message = Message(
                id=str(uuid4()),
                conversation_id=conversation_id,
                sender=sender,
                text=text,
                timestamp=utcnow(),
                metadata=dict(metadata or {}),
            )
            self._messages[conversation_id].append(message)
            conversation.message_count += 1
            conversation.updated_at = message.timestamp
        logger.debug("Message added to %s (sender=%s, length=%d)", conversation_id, sender.value, len(text))
        return message

    def get_messages(self, conversation_id: str, limit: Optional[int] = None) -> List[Message]:
        with self._lock:
            self._require(conversation_id)
            messages = list(self._messages[conversation_id])
        if limit and limit > 0:
            return messages[-limit:]
        return messages

    def set_status(self, conversation_id: str, status: ConversationStatus) -> Conversation:
        with self._lock:
            conversation = self._require(conversation_id)
            check_transition(conversation.status, status)
            conversation.status = status
            conversation.updated_at = utcnow()
            logger.info("Conversation %s status -> %s", conversation_id, status.value)
            return self._snapshot(conversation)

    def escalate(self, conversation_id, escalation_type, driver_id=None, support_agent_id=None) -> Conversation:
        with self._lock:
            conversation = self._require(conversation_id)
            check_transition(conversation.status, ConversationStatus.ESCALATED)
            conversation.status = ConversationStatus.ESCALATED
            conversation.escalation_type = escalation_type
            if driver_id:
                conversation.driver_id = driver_id
            if support_agent_id:
                conversation.support_agent_id = support_agent_id
            conversation.updated_at = utcnow()
            logger.info("Conversation %s escalated (%s)", conversation_id, escalation_type.value)
            return self._snapshot(conversation)

    def close(self, conversation_id: str, reason: Optional[str] = None) -> Conversation:
        with self._lock:
            conversation = self._require(conversation_id)
            if conversation.status != ConversationStatus.CLOSED:
                conversation.status = ConversationStatus.CLOSED
                conversation.updated_at = utcnow()
                logger.info("Conversation %s closed (%s)", conversation_id, reason or "no reason given")
            return self._snapshot(conversation)

    def update_flow_state(self, conversation_id: str, state: Dict[str, Any]) -> Conversation:
        with self._lock:
            conversation = self._require(conversation_id)
            conversation.flow_state.update(state)
            return self._snapshot(conversation)

    def list_by_user(self, user_id: str, limit: int = 10) -> List[Conversation]:
        with self._lock:
            conversations = [self._snapshot(c) for c in self._conversations.values() if c.user_id == user_id]
        conversations.sort(key=lambda c: c.updated_at, reverse=True)
        return conversations[:limit]

    def summary(self, conversation_id: str) -> Dict[str, Any]:
        return conversation_summary(self.get(conversation_id))


class EscalationStore(Protocol):
    def add_request(self, request: EscalationRequest) -> None: ...

    def get_request(self, request_id: str) -> EscalationRequest: ...

    def add_ticket(self, ticket: SupportTicket) -> None: ...

    def get_ticket(self, ticket_id: str) -> SupportTicket: ...

    def save_ticket(self, ticket: SupportTicket) -> None: ...

    def list_tickets(self, user_id: Optional[str] = None) -> List[SupportTicket]: ...


class InMemoryEscalationStore:
    """Append-only escalation requests and mutable support tickets."""

    def __init__(self):
        self._lock = threading.RLock()
        self._requests: Dict[str, EscalationRequest] = {}
        self._tickets: Dict[str, SupportTicket] = {}

    def add_request(self, request: EscalationRequest) -> None:
        with self._lock:
            self._requests[request.id] = request

    def get_request(self, request_id: str) -> EscalationRequest:
        with self._lock:
            request = self._requests.get(request_id)
        if request is None:
            raise NotFoundError("Escalation request", request_id)
        return request

    def add_ticket(self, ticket: SupportTicket) -> None:
        with self._lock:
            self._tickets[ticket.id] = replace(ticket)

    def get_ticket(self, ticket_id: str) -> SupportTicket:
        with self._lock:
            ticket = self._tickets.get(ticket_id)
            if ticket is None:
                raise NotFoundError("Support ticket", ticket_id)
            return replace(ticket)

    def save_ticket(self, ticket: SupportTicket) -> None:
        with self._lock:
            if ticket.id not in self._tickets:
                raise NotFoundError("Support ticket", ticket.id)
            self._tickets[ticket.id] = replace(ticket)

    def list_tickets(self, user_id: Optional[str] = None) -> List[SupportTicket]:
        with self._lock:
            tickets = [replace(t) for t in self._tickets.values()]
        if user_id is not None:
            tickets = [t for t in tickets if t.user_id == user_id]
        return sorted(tickets, key=lambda t: t.created_at)
