import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session, sessionmaker

from app.core.errors import NotFoundError
from .models import Conversation, ConversationStatus, Message, SenderRole, utcnow
from .store import check_transition, conversation_summary
from .tables import ConversationRow, MessageRow

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands datetimes back without tzinfo
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlConversationStore:
    """Conversation store backed by SQLAlchemy, one session per operation."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _require(self, db: Session, conversation_id: str) -> ConversationRow:
        row = db.get(ConversationRow, conversation_id)
        if row is None:
            raise NotFoundError("Conversation", conversation_id)
        return row

    @staticmethod
    def _message_count(db: Session, conversation_id: str) -> int:
        return db.scalar(
            select(func.count(MessageRow.seq)).where(MessageRow.conversation_id == conversation_id)
        ) or 0

    def _to_conversation(self, db: Session, row: ConversationRow) -> Conversation:
        return Conversation(
            id=row.id,
            booking_id=row.booking_id,
            user_id=row.user_id,
            driver_id=row.driver_id,
            support_agent_id=row.support_agent_id,
            status=row.status,
            escalation_type=row.escalation_type,
            flow_state=dict(row.flow_state or {}),
            message_count=self._message_count(db, row.id),
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    @staticmethod
    def _to_message(row: MessageRow) -> Message:
        return Message(
            id=row.id,
            conversation_id=row.conversation_id,
            sender=row.sender,
            text=row.text,
            timestamp=_aware(row.created_at),
            metadata=dict(row.extra_data or {}),
        )

    def create(self, booking_id: str, user_id: str, driver_id: Optional[str] = None) -> Conversation:
        now = utcnow()
        with self.session_factory() as db:
            row = ConversationRow(
                id=str(uuid4()),
                booking_id=booking_id,
                user_id=user_id,
                driver_id=driver_id,
                status=ConversationStatus.ACTIVE,
                flow_state={},
                created_at=now,
                updated_at=now,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            logger.info("Conversation created: %s (booking=%s, user=%s)", row.id, booking_id, user_id)
            return self._to_conversation(db, row)

    def get(self, conversation_id: str) -> Conversation:
        with self.session_factory() as db:
            return self._to_conversation(db, self._require(db, conversation_id))

    def append_message(self, conversation_id, sender: SenderRole, text: str, metadata=None) -> Message:
        with self.session_factory() as db:
            conversation = self._require(db, conversation_id)
            row = MessageRow(
                id=str(uuid4()),
                conversation_id=conversation_id,
                sender=sender,
                text=text,
                created_at=utcnow(),
                extra_data=dict(metadata or {}),
            )
            db.add(row)
            conversation.updated_at = row.created_at
            db.commit()
            db.refresh(row)
            return self._to_message(row)

    def get_messages(self, conversation_id: str, limit: Optional[int] = None) -> List[Message]:
        with self.session_factory() as db:
            self._require(db, conversation_id)
            query = select(MessageRow).where(MessageRow.conversation_id == conversation_id)
            if limit and limit > 0:
                rows = db.scalars(query.order_by(desc(MessageRow.seq)).limit(limit)).all()
                rows = list(reversed(rows))
            else:
                rows = db.scalars(query.order_by(MessageRow.seq)).all()
            return [self._to_message(row) for row in rows]

    def set_status(self, conversation_id: str, status: ConversationStatus) -> Conversation:
        with self.session_factory() as db:
            row = self._require(db, conversation_id)
            check_transition(row.status, status)
            row.status = status
            row.updated_at = utcnow()
            db.commit()
            db.refresh(row)
            logger.info("Conversation %s status -> %s", conversation_id, status.value)
            return self._to_conversation(db, row)

    def escalate(self, conversation_id, escalation_type, driver_id=None, support_agent_id=None) -> Conversation:
        with self.session_factory() as db:
            row = self._require(db, conversation_id)
            check_transition(row.status, ConversationStatus.ESCALATED)
            row.status = ConversationStatus.ESCALATED
            row.escalation_type = escalation_type
            if driver_id:
                row.driver_id = driver_id
            if support_agent_id:
                row.support_agent_id = support_agent_id
            row.updated_at = utcnow()
            db.commit()
            db.refresh(row)
            logger.info("Conversation %s escalated (%s)", conversation_id, escalation_type.value)
            return self._to_conversation(db, row)

    def close(self, conversation_id: str, reason: Optional[str] = None) -> Conversation:
        with self.session_factory() as db:
            row = self._require(db, conversation_id)
            if row.status != ConversationStatus.CLOSED:
                row.status = ConversationStatus.CLOSED
                row.updated_at = utcnow()
                db.commit()
                db.refresh(row)
                logger.info("Conversation %s closed (%s)", conversation_id, reason or "no reason given")
            return self._to_conversation(db, row)

    def update_flow_state(self, conversation_id: str, state: Dict[str, Any]) -> Conversation:
        with self.session_factory() as db:
            row = self._require(db, conversation_id)
            # JSON columns only notice reassignment
            row.flow_state = {**(row.flow_state or {}), **state}
            db.commit()
            db.refresh(row)
            return self._to_conversation(db, row)

    def list_by_user(self, user_id: str, limit: int = 10) -> List[Conversation]:
        with self.session_factory() as db:
            rows = db.scalars(
                select(ConversationRow)
                .where(ConversationRow.user_id == user_id)
                .order_by(desc(ConversationRow.updated_at))
                .limit(limit)
            ).all()
            return [self._to_conversation(db, row) for row in rows]

    def summary(self, conversation_id: str) -> Dict[str, Any]:
        return conversation_summary(self.get(conversation_id))
