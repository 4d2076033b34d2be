from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime

from .models import ConversationStatus, EscalationType, SenderRole, Severity, TicketStatus


class InitiateRequest(BaseModel):
    booking_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    driver_id: Optional[str] = None


class InitiateOut(BaseModel):
    conversation_id: str
    message: str
    suggested_actions: List[str]
    booking_context: Dict[str, Any]

    class Config:
        from_attributes = True


class MessageRequest(BaseModel):
    conversation_id: str
    booking_id: str
    user_id: str
    message: str = Field(min_length=1)


class QuickActionRequest(BaseModel):
    conversation_id: str
    booking_id: str
    user_id: str
    action: str = Field(min_length=1)


class ChatResponseOut(BaseModel):
    conversation_id: str
    message: str
    suggested_actions: List[str]
    requires_escalation: bool
    escalation_type: Optional[EscalationType] = None
    metadata: Dict[str, Any] = {}
    booking_context: Optional[Dict[str, Any]] = None
    escalation_request_id: Optional[str] = None
    ticket_id: Optional[str] = None

    class Config:
        from_attributes = True


class MessageOut(BaseModel):
    id: str
    sender: SenderRole
    text: str
    timestamp: datetime
    metadata: Dict[str, Any] = {}

    class Config:
        from_attributes = True


class ConversationOut(BaseModel):
    id: str
    booking_id: str
    user_id: str
    driver_id: Optional[str] = None
    support_agent_id: Optional[str] = None
    status: ConversationStatus
    escalation_type: Optional[EscalationType] = None
    message_count: int = 0
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ConversationDetailOut(BaseModel):
    conversation: ConversationOut
    messages: List[MessageOut]


class ConversationSummaryOut(BaseModel):
    id: str
    booking_id: str
    user_id: str
    status: str
    message_count: int
    escalated: bool
    escalation_type: Optional[str] = None
    duration_seconds: float
    created_at: datetime
    updated_at: datetime


class HistoryOut(BaseModel):
    conversations: List[ConversationSummaryOut]
    total: int


class EscalateRequest(BaseModel):
    conversation_id: str
    escalation_type: EscalationType
    reason: Optional[str] = None
    priority: Optional[Severity] = None


class EscalationOut(BaseModel):
    conversation_id: str
    escalation_request_id: str
    ticket_id: Optional[str] = None
    message: str
    transcript_length: int

    class Config:
        from_attributes = True


class EscalationRequestOut(BaseModel):
    id: str
    conversation_id: str
    booking_id: str
    user_id: str
    escalation_type: EscalationType
    reason: str
    priority: Severity
    timestamp: datetime
    context: Dict[str, Any]

    class Config:
        from_attributes = True


class TicketOut(BaseModel):
    id: str
    escalation_request_id: str
    conversation_id: str
    user_id: str
    priority: Severity
    status: TicketStatus
    assigned_agent: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime] = None
    resolution: Optional[str] = None
    booking_context: Dict[str, Any] = {}

    class Config:
        from_attributes = True


class TicketUpdate(BaseModel):
    status: TicketStatus
    resolution: Optional[str] = None
    assigned_agent: Optional[str] = None


class TicketListOut(BaseModel):
    tickets: List[TicketOut]
    total: int


class CancelRequest(BaseModel):
    conversation_id: str
    reason: Optional[str] = None


class CloseRequest(BaseModel):
    conversation_id: str
    reason: Optional[str] = None


class CloseOut(BaseModel):
    message: str
    conversation_id: str
    status: ConversationStatus
