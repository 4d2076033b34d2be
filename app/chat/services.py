"""
Turn processing for the support chatbot.

Each rider turn goes through the safety gate, intent classification, the
flow engine and, when needed, the escalation manager. Turns on the same
conversation are serialized; every turn ends in a well-formed response.
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from app.core.config import Settings, settings as default_settings
from app.core.database import Base, make_engine, make_session_factory
from app.core.errors import ConversationClosedError, UpstreamUnavailableError
from app.core.mock_trips import MockTripDataProvider
from app.core.trip_client import (
    Booking,
    Driver,
    HttpTripDataProvider,
    TimeoutTripProvider,
    TrafficSnapshot,
    TripDataProvider,
)
from .enrichment import enrich_message
from .escalation import EscalationManager
from .events import EventChannel
from .flow_engine import FlowEngine, build_default_flows
from .flows import FlowContext
from .intent_classifier import IntentClassifier
from .models import (
    Conversation,
    ConversationStatus,
    EscalationRequest,
    EscalationType,
    IntentResult,
    Message,
    Priority,
    SafetyEvent,
    SenderRole,
    SupportTicket,
    TicketStatus,
)
from .safety_detector import SafetyDetector
from .sql_store import SqlConversationStore
from .store import ConversationStore, InMemoryConversationStore, InMemoryEscalationStore

logger = logging.getLogger(__name__)

QUICK_ACTION_MESSAGES: Mapping[str, str] = MappingProxyType({
    "where_is_driver": "Where is my driver?",
    "driver_late": "My driver is late",
    "contact_driver": "I want to contact my driver",
    "cannot_contact_driver": "I cannot reach my driver",
    "cancel_booking": "I want to cancel my booking",
    "confirm_cancellation": "Yes, please cancel my booking",
    "payment_query": "What is the fare for my ride?",
    "safety_concern": "I have a safety concern",
    "call_driver": "Call my driver",
    "message_driver": "Send a message to my driver",
    "talk_to_agent": "I want to talk to a support agent",
    "ok_thanks": "OK, thanks",
    "wait": "I'll wait for the driver",
    "emergency_contact": "I need emergency help",
})

STATUS_QUICK_ACTIONS: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "confirmed": (
        "where_is_driver", "driver_late", "contact_driver", "cancel_booking",
        "payment_query", "talk_to_agent",
    ),
    "in_progress": (
        "where_is_driver", "driver_late", "contact_driver", "cannot_contact_driver",
        "safety_concern", "payment_query", "talk_to_agent",
    ),
    "arrived": (
        "contact_driver", "cannot_contact_driver", "cancel_booking", "payment_query",
        "safety_concern", "talk_to_agent",
    ),
    "completed": ("payment_query", "safety_concern", "talk_to_agent"),
    "cancelled": ("payment_query", "talk_to_agent"),
})
DEFAULT_QUICK_ACTIONS = (
    "where_is_driver", "driver_late", "contact_driver", "cannot_contact_driver",
    "cancel_booking", "payment_query", "talk_to_agent",
)

STATUS_LABELS = {
    "confirmed": "Confirmed",
    "in_progress": "In progress",
    "arrived": "Driver arrived",
    "completed": "Completed",
    "cancelled": "Cancelled",
}

ERROR_MESSAGE = (
    "I encountered an error processing your request. Let me connect you with a support agent "
    "who can help right away."
)
LOW_CONFIDENCE_NOTE = (
    "I'm not fully confident I understood your request, so I'm connecting you with a support agent."
)


@dataclass
class TurnResponse:
    conversation_id: str
    message: str
    suggested_actions: List[str]
    requires_escalation: bool
    escalation_type: Optional[EscalationType] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    booking_context: Optional[Dict[str, Any]] = None
    escalation_request_id: Optional[str] = None
    ticket_id: Optional[str] = None


@dataclass
class InitiateResult:
    conversation_id: str
    message: str
    suggested_actions: List[str]
    booking_context: Dict[str, Any]


@dataclass
class EscalationOutcome:
    conversation_id: str
    escalation_request_id: str
    ticket_id: Optional[str]
    message: str
    transcript_length: int


@dataclass
class TripContext:
    booking: Optional[Booking] = None
    driver: Optional[Driver] = None
    traffic: Optional[TrafficSnapshot] = None
    errors: List[str] = field(default_factory=list)


def quick_actions_for(status: Optional[str]) -> List[str]:
    return list(STATUS_QUICK_ACTIONS.get(status or "", DEFAULT_QUICK_ACTIONS))


def build_booking_context(
    booking: Optional[Booking],
    driver: Optional[Driver],
    user_name: Optional[str] = None,
) -> Dict[str, Any]:
    context = {
        "booking_id": booking.id if booking else "",
        "status": booking.status if booking else "confirmed",
        "driver_name": driver.name if driver else "",
        "driver_vehicle": driver.vehicle_info if driver else "",
        "driver_phone": driver.phone if driver else "",
        "driver_rating": driver.rating if driver else 0,
        "driver_license_plate": driver.license_plate if driver else "",
        "eta": driver.eta_minutes if driver else 0,
        "pickup": booking.pickup if booking else "",
        "dropoff": booking.dropoff if booking else "",
        "estimated_fare": booking.estimated_fare if booking else "",
        "distance": booking.distance if booking else "",
        "ride_type": booking.ride_type if booking else "",
    }
    if user_name is not None:
        context["user_name"] = user_name
    return context


class ChatbotService:
    def __init__(
        self,
        store: ConversationStore,
        escalations: EscalationManager,
        provider: TripDataProvider,
        classifier: IntentClassifier,
        safety_detector: SafetyDetector,
        flow_engine: FlowEngine,
        config: Settings = default_settings,
    ):
        self.store = store
        self.escalations = escalations
        self.provider = provider
        self.classifier = classifier
        self.safety_detector = safety_detector
        self.flow_engine = flow_engine
        self.config = config
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @property
    def events(self) -> EventChannel:
        return self.escalations.events

    @asynccontextmanager
    async def _conversation_lock(self, conversation_id: str):
        """Serialize work on one conversation; the lock is dropped once idle."""
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = asyncio.Lock()
        self._lock_users[conversation_id] = self._lock_users.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[conversation_id] - 1
            if remaining:
                self._lock_users[conversation_id] = remaining
            else:
                del self._lock_users[conversation_id]
                del self._locks[conversation_id]

    def _open_conversation(self, conversation_id: str) -> Conversation:
        conversation = self.store.get(conversation_id)
        if conversation.status == ConversationStatus.CLOSED:
            raise ConversationClosedError(conversation_id)
        return conversation

    # Session start

    async def initiate(self, booking_id: str, user_id: str, driver_id: Optional[str] = None) -> InitiateResult:
        booking = driver = None
        user_name = "there"
        booking_outcome, profile_outcome = await asyncio.gather(
            self.provider.get_booking(booking_id),
            self.provider.get_user_profile(user_id),
            return_exceptions=True,
        )
        for outcome in (booking_outcome, profile_outcome):
            if isinstance(outcome, BaseException) and not isinstance(outcome, UpstreamUnavailableError):
                raise outcome
        if isinstance(profile_outcome, UpstreamUnavailableError):
            logger.warning("Could not load profile for user %s: %s", user_id, profile_outcome)
        else:
            user_name = profile_outcome.name or user_name
        if isinstance(booking_outcome, UpstreamUnavailableError):
            logger.error("Could not load booking %s for greeting: %s", booking_id, booking_outcome)
        else:
            booking = booking_outcome

        target = driver_id or (booking.driver_id if booking else None)
        if target:
            try:
                driver = await self.provider.get_driver(target)
            except UpstreamUnavailableError as e:
                logger.warning("Could not load driver %s for greeting: %s", target, e)

        conversation = self.store.create(
            booking_id, user_id, driver_id or (booking.driver_id if booking else None)
        )
        message = self._greeting(user_name, booking, driver)
        self.store.append_message(conversation.id, SenderRole.BOT, message, {"type": "greeting"})

        booking_context = build_booking_context(booking, driver, user_name)
        booking_context["booking_id"] = booking_id
        return InitiateResult(
            conversation_id=conversation.id,
            message=message,
            suggested_actions=quick_actions_for(booking.status if booking else None),
            booking_context=booking_context,
        )

    @staticmethod
    def _greeting(user_name: str, booking: Optional[Booking], driver: Optional[Driver]) -> str:
        if booking is None:
            return "Hi there! I'm here to help you with your current ride. How can I assist you?"
        lines = [
            f"Hi {user_name}! I'm here to help you with your current ride.",
            "",
            f"Ride status: {STATUS_LABELS.get(booking.status, booking.status)}",
        ]
        if driver is not None:
            plate = f" ({driver.license_plate})" if driver.license_plate else ""
            lines.append(f"Driver: {driver.name}")
            lines.append(f"Vehicle: {driver.vehicle_info}{plate}")
            lines.append(f"ETA: {driver.eta_minutes} minutes")
        if booking.pickup or booking.dropoff:
            lines.append(f"{booking.pickup} -> {booking.dropoff}")
        lines.extend(["", "How can I assist you?"])
        return "\n".join(lines)

    # Turns

    async def process_turn(self, conversation_id: str, booking_id: str, user_id: str, text: str) -> TurnResponse:
        async with self._conversation_lock(conversation_id):
            conversation = self._open_conversation(conversation_id)
            return await self._run_turn(conversation, booking_id, user_id, text)

    async def process_action(self, conversation_id: str, booking_id: str, user_id: str, action: str) -> TurnResponse:
        """Handle a quick-action button tap.

        Buttons bound to a flow skip classification, but their canonical text
        still goes through the safety gate.
        """
        if action == "confirm_cancellation":
            return await self.confirm_cancellation(conversation_id)
        text = QUICK_ACTION_MESSAGES.get(action, action.replace("_", " "))
        intent = action if self.flow_engine.has_flow(action) else None
        async with self._conversation_lock(conversation_id):
            conversation = self._open_conversation(conversation_id)
            return await self._run_turn(conversation, booking_id, user_id, text, action=action, intent=intent)

    async def _run_turn(
        self,
        conversation: Conversation,
        booking_id: str,
        user_id: str,
        text: str,
        action: Optional[str] = None,
        intent: Optional[str] = None,
    ) -> TurnResponse:
        started = time.perf_counter()
        try:
            event = self.safety_detector.scan(text, conversation.id, user_id, conversation.driver_id)
            if self.safety_detector.requires_escalation(event):
                return self._safety_escalation(event, conversation, booking_id, text, started)
            return await self._normal_turn(conversation, booking_id, user_id, text, action, intent, started)
        except Exception as e:
            logger.exception("Error processing turn for conversation %s", conversation.id)
            return self._failure_response(conversation.id, booking_id, user_id, e, started)

    async def _normal_turn(self, conversation, booking_id, user_id, text, action, intent, started) -> TurnResponse:
        user_metadata = {"action": action} if action else {}
        self.store.append_message(conversation.id, SenderRole.USER, text, user_metadata)

        if intent is not None:
            result = IntentResult(intent=intent, confidence=1.0, action=intent)
        else:
            result = self.classifier.classify(text)

        trip = await self._fetch_trip_context(booking_id, conversation.driver_id)
        context = FlowContext(
            conversation_id=conversation.id,
            booking_id=booking_id,
            user_id=user_id,
            intent=result.intent,
            user_input=text,
            driver_id=conversation.driver_id,
            booking=trip.booking,
            driver=trip.driver,
            traffic=trip.traffic,
            contact_attempts=int(conversation.flow_state.get("contact_attempts", 0)),
            provider=self.provider,
            upstream_errors=trip.errors,
        )
        flow_result = await self.flow_engine.execute(result.intent, context)
        if flow_result.state:
            self.store.update_flow_state(conversation.id, flow_result.state)

        message = enrich_message(result.intent, flow_result, context)
        escalate = flow_result.escalate
        escalation_type = flow_result.escalation_type
        suggestions = list(flow_result.suggested_actions) or quick_actions_for(
            trip.booking.status if trip.booking else None
        )

        if result.is_known and not escalate:
            if result.confidence < self.config.low_confidence_floor:
                escalate = True
                escalation_type = EscalationType.SUPPORT
                message += "\n\n" + LOW_CONFIDENCE_NOTE
            elif result.confidence < self.config.nlp_confidence_threshold:
                runner_up = result.runner_up
                if runner_up and runner_up not in suggestions and self.flow_engine.has_flow(runner_up):
                    suggestions.append(runner_up)

        latency_ms = int((time.perf_counter() - started) * 1000)
        metadata = {
            "intent": result.intent,
            "confidence": result.confidence,
            "flow_type": flow_result.flow_id,
            "escalated": escalate,
            "latency_ms": latency_ms,
        }
        self.store.append_message(conversation.id, SenderRole.BOT, message, metadata)

        request = ticket = None
        booking_context = build_booking_context(trip.booking, trip.driver)
        if escalate and escalation_type is not None:
            request, ticket = self._escalate(
                conversation.id,
                booking_id,
                user_id,
                escalation_type,
                f"User needs {escalation_type.value} assistance. Intent: {result.intent}",
                {
                    "intent": result.intent,
                    "confidence": result.confidence,
                    "entities": result.entities,
                    "user_input": text,
                    "upstream_errors": list(trip.errors),
                    "booking_context": booking_context,
                },
                driver_id=trip.driver.id if trip.driver else conversation.driver_id,
            )

        logger.info(
            "Turn processed (conversation=%s, intent=%s, confidence=%.2f, escalated=%s, latency=%dms)",
            conversation.id, result.intent, result.confidence, escalate, latency_ms,
        )
        return TurnResponse(
            conversation_id=conversation.id,
            message=message,
            suggested_actions=suggestions,
            requires_escalation=escalate,
            escalation_type=escalation_type if escalate else None,
            metadata=metadata,
            booking_context=booking_context,
            escalation_request_id=request.id if request else None,
            ticket_id=ticket.id if ticket else None,
        )

    async def _fetch_trip_context(self, booking_id: str, driver_id: Optional[str]) -> TripContext:
        trip = TripContext()

        def unwrap(service: str, outcome):
            if isinstance(outcome, UpstreamUnavailableError):
                logger.warning("Context fetch failed (%s): %s", service, outcome)
                trip.errors.append(service)
                return None
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome

        calls = [self.provider.get_booking(booking_id), self.provider.get_traffic(booking_id)]
        if driver_id:
            calls.append(self.provider.get_driver(driver_id))
        outcomes = await asyncio.gather(*calls, return_exceptions=True)

        trip.booking = unwrap("booking", outcomes[0])
        trip.traffic = unwrap("traffic", outcomes[1])
        if driver_id:
            trip.driver = unwrap("driver", outcomes[2])
        elif trip.booking is not None and trip.booking.driver_id:
            try:
                trip.driver = await self.provider.get_driver(trip.booking.driver_id)
            except UpstreamUnavailableError as e:
                unwrap("driver", e)
        return trip

    def _safety_escalation(
        self,
        event: SafetyEvent,
        conversation: Conversation,
        booking_id: str,
        text: str,
        started: float,
    ) -> TurnResponse:
        self.store.append_message(
            conversation.id,
            SenderRole.USER,
            text,
            {"intent": "safety_concern", "safety_keywords": list(event.keywords), "severity": event.severity.value},
        )
        risk = self.safety_detector.risk_pattern(event.user_id)
        request, ticket = self.escalations.escalate_safety_event(
            event,
            booking_id,
            {"user_input": text, "risk_level": risk.risk_level.value, "risk_pattern": risk.pattern},
        )
        self.store.escalate(conversation.id, EscalationType.SAFETY)

        message = (
            f"{self.safety_detector.response_for(event.severity)}\n\n"
            "Emergency contacts:\n"
            f"- Safety line: {self.config.safety_hotline}\n"
            f"- Local emergency: {self.config.emergency_number}\n\n"
            f"Support ticket: #{ticket.id[:8].upper()}\n"
            f"Priority: {request.priority.value.upper()}\n\n"
            "Please stay in a public, well-lit area if possible. Help is on the way."
        )
        latency_ms = int((time.perf_counter() - started) * 1000)
        metadata = {
            "intent": "safety_concern",
            "confidence": 1.0,
            "flow_type": "safety_escalation",
            "escalated": True,
            "latency_ms": latency_ms,
            "severity": event.severity.value,
        }
        self.store.append_message(
            conversation.id,
            SenderRole.BOT,
            message,
            {**metadata, "ticket_id": ticket.id, "priority": request.priority.value},
        )
        return TurnResponse(
            conversation_id=conversation.id,
            message=message,
            suggested_actions=["emergency_contact", "talk_to_agent"],
            requires_escalation=True,
            escalation_type=EscalationType.SAFETY,
            metadata=metadata,
            escalation_request_id=request.id,
            ticket_id=ticket.id,
        )

    def _failure_response(
        self,
        conversation_id: str,
        booking_id: str,
        user_id: str,
        error: Exception,
        started: float,
    ) -> TurnResponse:
        request = ticket = None
        try:
            self.store.append_message(conversation_id, SenderRole.BOT, ERROR_MESSAGE, {"intent": "error"})
            request, ticket = self._escalate(
                conversation_id,
                booking_id,
                user_id,
                EscalationType.SUPPORT,
                f"Error processing message: {error}",
                {"error": type(error).__name__},
            )
        except Exception:
            logger.exception("Could not escalate conversation %s after a failed turn", conversation_id)

        return TurnResponse(
            conversation_id=conversation_id,
            message=ERROR_MESSAGE,
            suggested_actions=["talk_to_agent"],
            requires_escalation=True,
            escalation_type=EscalationType.SUPPORT,
            metadata={
                "intent": "error",
                "confidence": 0.0,
                "flow_type": "error_escalation",
                "escalated": True,
                "latency_ms": int((time.perf_counter() - started) * 1000),
            },
            escalation_request_id=request.id if request else None,
            ticket_id=ticket.id if ticket else None,
        )

    # Escalation

    def _escalate(
        self,
        conversation_id: str,
        booking_id: str,
        user_id: str,
        escalation_type: EscalationType,
        reason: str,
        context: Dict[str, Any],
        driver_id: Optional[str] = None,
        priority: Optional[Priority] = None,
    ) -> Tuple[EscalationRequest, Optional[SupportTicket]]:
        request = self.escalations.create_escalation_request(
            conversation_id, booking_id, user_id, escalation_type, reason, context, priority
        )
        ticket = None
        if escalation_type != EscalationType.DRIVER:
            ticket = self.escalations.create_support_ticket(
                request.id, conversation_id, user_id, context.get("booking_context")
            )
        self.store.escalate(
            conversation_id,
            escalation_type,
            driver_id=driver_id if escalation_type == EscalationType.DRIVER else None,
        )
        return request, ticket

    async def escalate_manually(
        self,
        conversation_id: str,
        escalation_type: EscalationType,
        reason: Optional[str] = None,
        priority: Optional[Priority] = None,
    ) -> EscalationOutcome:
        async with self._conversation_lock(conversation_id):
            conversation = self._open_conversation(conversation_id)
            request, ticket = self._escalate(
                conversation.id,
                conversation.booking_id,
                conversation.user_id,
                escalation_type,
                reason or "Manual escalation by user",
                {},
                driver_id=conversation.driver_id,
                priority=priority,
            )
        return EscalationOutcome(
            conversation_id=conversation_id,
            escalation_request_id=request.id,
            ticket_id=ticket.id if ticket else None,
            message=(
                f"Your conversation has been escalated to {escalation_type.value}. "
                "Chat transcript has been shared."
            ),
            transcript_length=len(request.transcript),
        )

    # Cancellation

    async def confirm_cancellation(self, conversation_id: str, reason: Optional[str] = None) -> TurnResponse:
        """Cancel the booking after the rider confirmed the policy shown earlier."""
        async with self._conversation_lock(conversation_id):
            conversation = self._open_conversation(conversation_id)
            started = time.perf_counter()
            self.store.append_message(
                conversation.id, SenderRole.USER, QUICK_ACTION_MESSAGES["confirm_cancellation"],
                {"action": "confirm_cancellation"},
            )
            try:
                outcome = await self.provider.cancel_booking(conversation.booking_id, reason or "Cancelled by rider")
            except UpstreamUnavailableError as e:
                logger.error("Cancellation of booking %s failed: %s", conversation.booking_id, e)
                message = "I couldn't cancel your booking right now. Let me connect you with support."
                self.store.append_message(conversation.id, SenderRole.BOT, message, {"intent": "cancel_booking"})
                request, ticket = self._escalate(
                    conversation.id, conversation.booking_id, conversation.user_id,
                    EscalationType.SUPPORT, f"Cancellation failed: {e}", {},
                )
                return TurnResponse(
                    conversation_id=conversation.id,
                    message=message,
                    suggested_actions=["talk_to_agent"],
                    requires_escalation=True,
                    escalation_type=EscalationType.SUPPORT,
                    metadata={"intent": "cancel_booking", "confidence": 1.0, "flow_type": "cancel_confirmation",
                              "escalated": True,
                              "latency_ms": int((time.perf_counter() - started) * 1000)},
                    escalation_request_id=request.id,
                    ticket_id=ticket.id if ticket else None,
                )

            refund = outcome.get("refundStatus", "processing")
            message = f"Your booking #{conversation.booking_id} has been cancelled. Refund status: {refund}."
            metadata = {
                "intent": "cancel_booking",
                "confidence": 1.0,
                "flow_type": "cancel_confirmation",
                "escalated": False,
                "latency_ms": int((time.perf_counter() - started) * 1000),
            }
            self.store.append_message(conversation.id, SenderRole.BOT, message, metadata)
            if conversation.status != ConversationStatus.RESOLVED:
                self.store.set_status(conversation.id, ConversationStatus.RESOLVED)
            logger.info("Booking %s cancelled via conversation %s", conversation.booking_id, conversation.id)
            return TurnResponse(
                conversation_id=conversation.id,
                message=message,
                suggested_actions=quick_actions_for("cancelled"),
                requires_escalation=False,
                metadata=metadata,
            )

    # Reads and lifecycle

    def close_conversation(self, conversation_id: str, reason: Optional[str] = None) -> Conversation:
        return self.store.close(conversation_id, reason)

    def get_conversation(self, conversation_id: str, limit: Optional[int] = None) -> Tuple[Conversation, List[Message]]:
        conversation = self.store.get(conversation_id)
        return conversation, self.store.get_messages(conversation_id, limit)

    def history(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        return [self.store.summary(c.id) for c in self.store.list_by_user(user_id, limit)]

    def get_escalation_request(self, request_id: str) -> EscalationRequest:
        return self.escalations.get_escalation_request(request_id)

    def get_ticket(self, ticket_id: str) -> SupportTicket:
        return self.escalations.get_ticket(ticket_id)

    def update_ticket(
        self,
        ticket_id: str,
        status: TicketStatus,
        resolution: Optional[str] = None,
        agent: Optional[str] = None,
    ) -> SupportTicket:
        ticket = self.escalations.update_ticket_status(ticket_id, status, resolution, agent)
        if agent:
            conversation = self.store.get(ticket.conversation_id)
            if conversation.status == ConversationStatus.ESCALATED:
                self.store.escalate(conversation.id, conversation.escalation_type, support_agent_id=agent)
        return ticket

    def open_tickets(self, user_id: Optional[str] = None) -> List[SupportTicket]:
        return self.escalations.open_tickets(user_id)

    @staticmethod
    def quick_actions_for(status: Optional[str]) -> List[str]:
        return quick_actions_for(status)

    async def close(self):
        close = getattr(self.provider, "close", None)
        if close is not None:
            await close()


def build_provider(config: Settings) -> TripDataProvider:
    if config.trip_provider == "http":
        inner = HttpTripDataProvider(config)
    else:
        inner = MockTripDataProvider()
    return TimeoutTripProvider(inner, config.upstream_timeout_seconds)


def build_store(config: Settings) -> ConversationStore:
    if not config.database_url:
        return InMemoryConversationStore()
    engine = make_engine(config.database_url)
    Base.metadata.create_all(bind=engine)
    return SqlConversationStore(make_session_factory(engine))


def build_chatbot_service(
    config: Settings = default_settings,
    provider: Optional[TripDataProvider] = None,
    store: Optional[ConversationStore] = None,
) -> ChatbotService:
    """Wire the chatbot from settings; explicit collaborators win."""
    store = store or build_store(config)
    detector = SafetyDetector(enabled=config.enable_safety_detection)
    escalations = EscalationManager(store, EventChannel(), InMemoryEscalationStore(), detector)
    return ChatbotService(
        store=store,
        escalations=escalations,
        provider=provider or build_provider(config),
        classifier=IntentClassifier(enabled=config.enable_nlp),
        safety_detector=detector,
        flow_engine=FlowEngine(build_default_flows(config)),
        config=config,
    )
