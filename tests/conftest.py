"""
Shared fixtures for the chatbot tests.
"""
import asyncio
from datetime import timedelta
from typing import Any, Dict, List, Optional, Set

import pytest
from fastapi.testclient import TestClient

from app.chat.escalation import EscalationManager
from app.chat.events import EventChannel
from app.chat.flow_engine import FlowEngine, build_default_flows
from app.chat.intent_classifier import IntentClassifier
from app.chat.safety_detector import SafetyDetector
from app.chat.services import ChatbotService
from app.chat.sql_store import SqlConversationStore
from app.chat.store import InMemoryConversationStore, InMemoryEscalationStore
from app.core.config import Settings
from app.core.database import Base, make_engine, make_session_factory
from app.core.errors import UpstreamUnavailableError
from app.core.trip_client import (
    Booking,
    Driver,
    Location,
    PaymentDetails,
    TimeoutTripProvider,
    TrafficSnapshot,
    UserProfile,
)
from app.chat.models import utcnow


class StubTripProvider:
    """Deterministic trip data; tweak attributes per test."""

    def __init__(self):
        self.eta_minutes = 5
        self.booking_status = "in_progress"
        self.booking_age = timedelta(seconds=30)
        self.driver_id: Optional[str] = "driver_1"
        self.failing: Set[str] = set()
        self.delays: Dict[str, float] = {}
        self.notifications: List[Dict[str, str]] = []
        self.cancellations: List[Dict[str, str]] = []

    async def _enter(self, service: str):
        if service in self.delays:
            await asyncio.sleep(self.delays[service])
        if service in self.failing:
            raise UpstreamUnavailableError(service, "stubbed failure")

    async def get_booking(self, booking_id: str) -> Booking:
        await self._enter("booking")
        return Booking(
            id=booking_id,
            status=self.booking_status,
            user_id="user_1",
            pickup="123 Main St",
            dropoff="456 Oak Ave",
            estimated_fare="$24.50",
            distance="8.3 km",
            ride_type="comfort",
            created_at=utcnow() - self.booking_age if self.booking_age is not None else None,
            driver_id=self.driver_id,
        )

    async def get_driver(self, driver_id: str) -> Driver:
        await self._enter("driver")
        return Driver(
            id=driver_id,
            name="Maria Garcia",
            rating=4.9,
            vehicle_info="Toyota Prius - Blue",
            eta_minutes=self.eta_minutes,
            phone="+15550001111",
            license_plate="ABC-1234",
            location=Location(40.7128, -74.006),
        )

    async def get_traffic(self, booking_id: str) -> TrafficSnapshot:
        await self._enter("traffic")
        return TrafficSnapshot(congestion_level="heavy", delay_minutes=4, average_speed="25 km/h")

    async def get_payment(self, booking_id: str) -> PaymentDetails:
        await self._enter("payment")
        return PaymentDetails(booking_id=booking_id, estimated_fare="24.50", method="credit_card", status="pending")

    async def get_user_profile(self, user_id: str) -> UserProfile:
        await self._enter("user")
        return UserProfile(id=user_id, name="Jessica Lee")

    async def send_notification(self, recipient_id: str, message: str) -> Dict[str, Any]:
        await self._enter("notification")
        self.notifications.append({"recipient_id": recipient_id, "message": message})
        return {"success": True}

    async def cancel_booking(self, booking_id: str, reason: str) -> Dict[str, Any]:
        await self._enter("cancel")
        self.cancellations.append({"booking_id": booking_id, "reason": reason})
        return {"status": "success", "bookingId": booking_id, "refundStatus": "processing"}


@pytest.fixture
def config():
    """Settings with defaults only, ignoring any local .env."""
    return Settings(_env_file=None, upstream_timeout_seconds=0.2)


@pytest.fixture
def trips():
    return StubTripProvider()


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def events():
    return EventChannel()


@pytest.fixture
def detector():
    return SafetyDetector()


@pytest.fixture
def escalation_manager(store, events, detector):
    return EscalationManager(store, events, InMemoryEscalationStore(), detector)


@pytest.fixture(scope="session")
def classifier():
    return IntentClassifier()


@pytest.fixture
def service(config, trips, store, escalation_manager, classifier, detector):
    return ChatbotService(
        store=store,
        escalations=escalation_manager,
        provider=TimeoutTripProvider(trips, config.upstream_timeout_seconds),
        classifier=classifier,
        safety_detector=detector,
        flow_engine=FlowEngine(build_default_flows(config)),
        config=config,
    )


@pytest.fixture
def conversation(store):
    """An active conversation for booking_1 / user_1 with driver_1."""
    return store.create("booking_1", "user_1", "driver_1")


@pytest.fixture(scope="function")
def session_factory():
    """SQLite in-memory database; each test gets clean tables."""
    engine = make_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    try:
        yield make_session_factory(engine)
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def sql_store(session_factory):
    return SqlConversationStore(session_factory)


@pytest.fixture(scope="function")
def client(config, service):
    """API client wired to the test service."""
    from app.main import create_app
    from app.websocket.manager import SocketManager

    test_app = create_app(config, service=service, manager=SocketManager())
    with TestClient(test_app) as test_client:
        yield test_client
