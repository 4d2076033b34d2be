import logging
from typing import Any, Dict, List, Optional, Set

import socketio

from app.chat.events import ESCALATION_CREATED, TICKET_CREATED, TICKET_UPDATED, EscalationEvent, EventChannel
from app.core.config import settings

logger = logging.getLogger(__name__)

SUPPORT_ROOM = "support"


def conversation_room(conversation_id: str) -> str:
    return f"conversation_{conversation_id}"


class SocketManager:
    def __init__(self, allowed_origins: Optional[List[str]] = None):
        self.sio = socketio.AsyncServer(
            cors_allowed_origins=allowed_origins or list(settings.cors_origins),
            async_mode="asgi",
        )

        # Room tracking
        self.conversation_rooms: Dict[str, Set[str]] = {}  # conversation_id -> session ids
        self.support_sessions: Set[str] = set()
        # session id -> {type, agent_id?, conversations[]}
        self.user_sessions: Dict[str, Dict[str, Any]] = {}

        self.setup_events()

    def setup_events(self):
        @self.sio.event
        async def connect(sid: str, environ: dict, auth: Optional[dict] = None):
            logger.info("Client connected: %s", sid)
            await self.sio.emit("connected", {"status": "success"}, to=sid)

        @self.sio.event
        async def disconnect(sid: str):
            logger.info("Client disconnected: %s", sid)
            self.cleanup_session(sid)

        @self.sio.event
        async def join_conversation(sid: str, data: dict):
            conversation_id = (data or {}).get("conversation_id")
            if not conversation_id:
                await self.sio.emit("error", {"message": "conversation_id required"}, to=sid)
                return

            await self.sio.enter_room(sid, conversation_room(conversation_id))
            self.conversation_rooms.setdefault(conversation_id, set()).add(sid)
            session = self.user_sessions.setdefault(sid, {"type": "rider", "conversations": []})
            if conversation_id not in session["conversations"]:
                session["conversations"].append(conversation_id)

            logger.info("Session %s joined conversation %s", sid, conversation_id)
            await self.sio.emit("joined_conversation", {"conversation_id": conversation_id}, to=sid)

        @self.sio.event
        async def join_support(sid: str, data: dict):
            agent_id = (data or {}).get("agent_id")
            if not agent_id:
                await self.sio.emit("error", {"message": "agent_id required"}, to=sid)
                return

            await self.sio.enter_room(sid, SUPPORT_ROOM)
            self.support_sessions.add(sid)
            session = self.user_sessions.setdefault(sid, {"conversations": []})
            session["type"] = "support"
            session["agent_id"] = agent_id

            logger.info("Support agent %s (%s) joined, %d online", agent_id, sid, len(self.support_sessions))
            await self.sio.emit("joined_support", {"agent_id": agent_id}, to=sid)

        @self.sio.event
        async def leave_conversation(sid: str, data: dict):
            conversation_id = (data or {}).get("conversation_id")
            if not conversation_id:
                return
            self._discard(conversation_id, sid)
            await self.sio.leave_room(sid, conversation_room(conversation_id))
            logger.info("Session %s left conversation %s", sid, conversation_id)

    def _discard(self, conversation_id: str, sid: str):
        members = self.conversation_rooms.get(conversation_id)
        if members is None:
            return
        members.discard(sid)
        if not members:
            del self.conversation_rooms[conversation_id]

    def cleanup_session(self, sid: str):
        """Forget a disconnected session and its room memberships."""
        session = self.user_sessions.pop(sid, None)
        if session is None:
            return
        for conversation_id in session.get("conversations", []):
            self._discard(conversation_id, sid)
        if session.get("type") == "support":
            self.support_sessions.discard(sid)
            if not self.support_sessions:
                logger.warning("Last support agent disconnected, no agents online")

    def attach(self, events: EventChannel):
        """Forward escalation events from the chatbot to connected clients."""
        events.subscribe(ESCALATION_CREATED, self.on_escalation_created)
        events.subscribe(TICKET_CREATED, self.on_ticket_event)
        events.subscribe(TICKET_UPDATED, self.on_ticket_event)

    async def on_escalation_created(self, event: EscalationEvent):
        payload = event.payload
        await self.sio.emit(ESCALATION_CREATED, payload, room=SUPPORT_ROOM)
        await self.sio.emit(
            "conversation_escalated",
            {
                "conversation_id": payload["conversation_id"],
                "escalation_type": payload["escalation_type"],
                "priority": payload["priority"],
            },
            room=conversation_room(payload["conversation_id"]),
        )
        if payload["priority"] == "critical":
            logger.warning(
                "Critical escalation %s broadcast to %d support sessions",
                payload["id"], len(self.support_sessions),
            )

    async def on_ticket_event(self, event: EscalationEvent):
        payload = event.payload
        await self.sio.emit(event.event_type, payload, room=SUPPORT_ROOM)
        await self.sio.emit(event.event_type, payload, room=conversation_room(payload["conversation_id"]))


socket_manager = SocketManager()
