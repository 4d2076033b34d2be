from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, JSON, Enum, Text
from sqlalchemy.orm import relationship

from app.core.database import Base
from .models import ConversationStatus, EscalationType, SenderRole


class ConversationRow(Base):
    __tablename__ = "conversations"
    id = Column(String(36), primary_key=True)
    booking_id = Column(String, index=True, nullable=False)
    user_id = Column(String, index=True, nullable=False)
    driver_id = Column(String, nullable=True)
    support_agent_id = Column(String, nullable=True)
    status = Column(Enum(ConversationStatus), default=ConversationStatus.ACTIVE, nullable=False)
    escalation_type = Column(Enum(EscalationType), nullable=True)
    flow_state = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    messages = relationship(
        "MessageRow",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="MessageRow.seq",
    )


class MessageRow(Base):
    __tablename__ = "messages"
    # seq keeps insertion order independent of timestamp resolution
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), unique=True, index=True, nullable=False)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), index=True, nullable=False)
    sender = Column(Enum(SenderRole), nullable=False)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    extra_data = Column(JSON, nullable=True)

    conversation = relationship("ConversationRow", back_populates="messages")
