import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStatus(enum.Enum):
    ACTIVE = "active"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    CLOSED = "closed"


# Allowed moves; a conversation never goes back to active
CONVERSATION_TRANSITIONS = {
    ConversationStatus.ACTIVE: {ConversationStatus.ESCALATED, ConversationStatus.RESOLVED, ConversationStatus.CLOSED},
    ConversationStatus.ESCALATED: {ConversationStatus.ESCALATED, ConversationStatus.RESOLVED, ConversationStatus.CLOSED},
    ConversationStatus.RESOLVED: {ConversationStatus.ESCALATED, ConversationStatus.CLOSED},
    ConversationStatus.CLOSED: set(),
}


class EscalationType(enum.Enum):
    DRIVER = "driver"
    SUPPORT = "support"
    SAFETY = "safety"


class SenderRole(enum.Enum):
    USER = "user"
    BOT = "bot"
    DRIVER = "driver"
    SUPPORT_AGENT = "support_agent"


class Severity(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(Severity).index(self)


# Priorities share the severity scale
Priority = Severity


class SafetyEventStatus(enum.Enum):
    DETECTED = "detected"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class TicketStatus(enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"

    @property
    def rank(self) -> int:
        return list(TicketStatus).index(self)

    @property
    def is_terminal(self) -> bool:
        return self in (TicketStatus.RESOLVED, TicketStatus.CLOSED)


@dataclass(frozen=True)
class Message:
    id: str
    conversation_id: str
    sender: SenderRole
    text: str
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "sender": self.sender.value,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }


@dataclass
class Conversation:
    id: str
    booking_id: str
    user_id: str
    driver_id: Optional[str] = None
    support_agent_id: Optional[str] = None
    status: ConversationStatus = ConversationStatus.ACTIVE
    escalation_type: Optional[EscalationType] = None
    flow_state: Dict[str, Any] = field(default_factory=dict)
    message_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class IntentResult:
    intent: str
    confidence: float
    entities: Dict[str, Any] = field(default_factory=dict)
    action: Optional[str] = None
    runner_up: Optional[str] = None

    @property
    def is_known(self) -> bool:
        return self.intent != "unknown"


@dataclass
class FlowResult:
    success: bool
    message: str
    suggested_actions: List[str] = field(default_factory=list)
    escalate: bool = False
    escalation_type: Optional[EscalationType] = None
    state: Dict[str, Any] = field(default_factory=dict)
    flow_id: str = ""
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SafetyEvent:
    id: str
    conversation_id: str
    user_id: str
    severity: Severity
    keywords: List[str]
    driver_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)
    status: SafetyEventStatus = SafetyEventStatus.DETECTED
    escalated_to: Optional[str] = None


@dataclass(frozen=True)
class EscalationRequest:
    id: str
    conversation_id: str
    booking_id: str
    user_id: str
    escalation_type: EscalationType
    reason: str
    priority: Priority
    timestamp: datetime
    context: Dict[str, Any]

    @property
    def transcript(self) -> List[Dict[str, Any]]:
        return self.context.get("chat_transcript", [])


@dataclass
class SupportTicket:
    id: str
    escalation_request_id: str
    conversation_id: str
    user_id: str
    priority: Priority
    status: TicketStatus = TicketStatus.OPEN
    assigned_agent: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None
    resolution: Optional[str] = None
    booking_context: Dict[str, Any] = field(default_factory=dict)
