"""
Conversation flows, one class per intent.

Every flow implements ``execute(context) -> FlowResult``. Trip data arrives
pre-fetched on the context; flows that need live data and don't have it
hand the rider over to support instead of guessing.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from app.core.errors import UpstreamUnavailableError
from app.core.trip_client import Booking, Driver, TrafficSnapshot, TripDataProvider, to_dict
from .models import EscalationType, FlowResult, utcnow

logger = logging.getLogger(__name__)


@dataclass
class FlowContext:
    conversation_id: str
    booking_id: str
    user_id: str
    intent: str
    user_input: str = ""
    driver_id: Optional[str] = None
    booking: Optional[Booking] = None
    driver: Optional[Driver] = None
    traffic: Optional[TrafficSnapshot] = None
    contact_attempts: int = 0
    now: datetime = field(default_factory=utcnow)
    provider: Optional[TripDataProvider] = None
    upstream_errors: List[str] = field(default_factory=list)

    @property
    def target_driver_id(self) -> Optional[str]:
        if self.driver is not None:
            return self.driver.id
        return self.driver_id


def support_escalation(flow_id: str, message: str) -> FlowResult:
    return FlowResult(
        success=False,
        message=message,
        suggested_actions=["talk_to_agent"],
        escalate=True,
        escalation_type=EscalationType.SUPPORT,
        flow_id=flow_id,
    )


class Flow(ABC):
    flow_id: str = ""

    @abstractmethod
    async def execute(self, context: FlowContext) -> FlowResult:
        ...


class MessageFlow(Flow):
    """Static reply with fixed follow-ups."""

    def __init__(self, flow_id: str, message: str, suggested_actions: Sequence[str] = ()):
        self.flow_id = flow_id
        self.message = message
        self.suggested_actions = list(suggested_actions)

    async def execute(self, context: FlowContext) -> FlowResult:
        return FlowResult(
            success=True,
            message=self.message,
            suggested_actions=list(self.suggested_actions),
            flow_id=self.flow_id,
        )


class EscalationFlow(Flow):
    """Unconditional handover to a human channel."""

    def __init__(
        self,
        flow_id: str,
        escalation_type: EscalationType,
        message: str,
        suggested_actions: Sequence[str] = (),
    ):
        self.flow_id = flow_id
        self.escalation_type = escalation_type
        self.message = message
        self.suggested_actions = list(suggested_actions)

    async def execute(self, context: FlowContext) -> FlowResult:
        if self.escalation_type == EscalationType.SAFETY:
            logger.warning(
                "Safety escalation via flow (user=%s, conversation=%s)",
                context.user_id, context.conversation_id,
            )
        return FlowResult(
            success=True,
            message=self.message,
            suggested_actions=list(self.suggested_actions),
            escalate=True,
            escalation_type=self.escalation_type,
            flow_id=self.flow_id,
        )


class WhereIsDriverFlow(Flow):
    flow_id = "where_is_driver"

    async def execute(self, context: FlowContext) -> FlowResult:
        driver = context.driver
        if driver is None:
            logger.error("Driver location unavailable for booking %s", context.booking_id)
            return support_escalation(
                self.flow_id,
                "Unable to fetch your driver's location right now. Let me connect you with support.",
            )
        return FlowResult(
            success=True,
            message=f"Your driver {driver.name} is {driver.eta_minutes} minutes away, driving a {driver.vehicle_info}.",
            suggested_actions=["contact_driver", "driver_late", "ok_thanks"],
            flow_id=self.flow_id,
            data={"driver": to_dict(driver)},
        )


class DriverLateFlow(Flow):
    flow_id = "driver_late"

    def __init__(self, delay_threshold_minutes: int = 15):
        self.delay_threshold_minutes = delay_threshold_minutes

    async def execute(self, context: FlowContext) -> FlowResult:
        driver = context.driver
        if driver is None:
            logger.error("Cannot check delay for booking %s without driver data", context.booking_id)
            return support_escalation(
                self.flow_id, "Unable to check your driver's delay status. Let me connect you with support."
            )

        traffic = context.traffic
        congestion = traffic.congestion_level if traffic else "moderate"
        traffic_delay = traffic.delay_minutes if traffic else 0
        significant = driver.eta_minutes > self.delay_threshold_minutes

        if significant:
            message = (
                f"We sincerely apologize. Your driver {driver.name} is significantly delayed "
                f"(ETA: {driver.eta_minutes} minutes). Traffic is {congestion} with a "
                f"{traffic_delay} min delay. Would you like to wait, cancel the ride or call the driver?"
            )
            actions = ["wait", "cancel_booking", "call_driver", "talk_to_agent"]
        else:
            message = (
                f"We apologize for the delay. Your driver {driver.name} is running a bit late due to "
                f"{congestion} traffic. Updated ETA: {driver.eta_minutes} minutes."
            )
            actions = ["contact_driver", "cancel_booking", "ok_thanks"]

        return FlowResult(
            success=True,
            message=message,
            suggested_actions=actions,
            flow_id=self.flow_id,
            data={"eta_minutes": driver.eta_minutes, "significant_delay": significant},
        )


class CannotContactDriverFlow(Flow):
    """Counts failed contact attempts; too many hands the rider to support."""

    flow_id = "cannot_contact_driver"

    def __init__(self, max_attempts: int = 3):
        self.max_attempts = max_attempts

    async def execute(self, context: FlowContext) -> FlowResult:
        attempts = context.contact_attempts + 1
        state = {"contact_attempts": attempts}

        if attempts >= self.max_attempts:
            logger.info(
                "Contact attempts exhausted for conversation %s (%d)", context.conversation_id, attempts
            )
            result = support_escalation(
                self.flow_id,
                "We've tried multiple times to reach your driver without success. I'm escalating this "
                "to our support team. A support agent will assist you within 1-2 minutes.",
            )
            result.state = state
            return result

        who = context.driver.name if context.driver else "Your driver"
        return FlowResult(
            success=True,
            message=(
                f"Attempt {attempts}/{self.max_attempts}: I understand the frustration. {who} may be in "
                "a low-reception area. I can try calling again, send an automated message to the "
                "driver, or connect you with support."
            ),
            suggested_actions=["call_driver", "message_driver", "talk_to_agent"],
            state=state,
            flow_id=self.flow_id,
        )


def _describe_window(seconds: int) -> str:
    if seconds % 60 == 0:
        minutes = seconds // 60
        return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"
    return f"{seconds} seconds"


class CancelBookingFlow(Flow):
    """Presents the cancellation policy; the cancellation itself needs confirmation."""

    flow_id = "cancel_booking"

    def __init__(self, free_window_seconds: int = 120, cancellation_fee: float = 3.50):
        self.free_window_seconds = free_window_seconds
        self.cancellation_fee = cancellation_fee

    def is_free(self, booking: Booking, now: datetime) -> bool:
        # A booking without a creation time is treated as just created
        if booking.created_at is None:
            return True
        elapsed = (now - booking.created_at).total_seconds()
        return elapsed < self.free_window_seconds

    async def execute(self, context: FlowContext) -> FlowResult:
        booking = context.booking
        if booking is None:
            logger.error("Cancellation policy unavailable for booking %s", context.booking_id)
            return support_escalation(
                self.flow_id, "Unable to process cancellation right now. Let me connect you with support."
            )

        free = self.is_free(booking, context.now)
        window = _describe_window(self.free_window_seconds)
        if free:
            message = (
                f"Free cancellation is available because your booking was made less than {window} ago. "
                f"Booking #{booking.id}, estimated fare {booking.estimated_fare}. A full refund will be "
                "processed. Would you like to confirm the cancellation?"
            )
            fee = 0.0
        else:
            message = (
                f"Cancelling now will incur a ${self.cancellation_fee:.2f} cancellation fee. "
                f"Booking #{booking.id}, estimated fare {booking.estimated_fare}. The refund is the "
                "estimated fare minus the fee. Would you like to confirm the cancellation?"
            )
            fee = self.cancellation_fee

        return FlowResult(
            success=True,
            message=message,
            suggested_actions=["confirm_cancellation", "where_is_driver", "ok_thanks"],
            flow_id=self.flow_id,
            data={"is_free": free, "fee": fee},
        )


class ContactDriverFlow(Flow):
    flow_id = "contact_driver"

    async def execute(self, context: FlowContext) -> FlowResult:
        driver = context.driver
        if driver is None:
            message = "How would you like to contact your driver?"
        else:
            message = (
                f"You can reach {driver.name} at {driver.phone}. Vehicle: {driver.vehicle_info}. "
                f"Rating: {driver.rating}. How would you like to reach them?"
            )
        return FlowResult(
            success=True,
            message=message,
            suggested_actions=["call_driver", "message_driver"],
            flow_id=self.flow_id,
        )


class _NotifyDriverFlow(Flow):
    """Notifies the driver through the provider; a failed send still answers."""

    notification = ""
    fallback_message = ""
    suggested_actions: List[str] = []

    def success_message(self, context: FlowContext) -> str:
        raise NotImplementedError

    async def execute(self, context: FlowContext) -> FlowResult:
        driver_id = context.target_driver_id
        sent = False
        if context.provider is not None and driver_id:
            try:
                await context.provider.send_notification(
                    driver_id, self.notification.format(booking_id=context.booking_id)
                )
                sent = True
            except UpstreamUnavailableError as e:
                logger.warning("Driver notification failed for booking %s: %s", context.booking_id, e)

        return FlowResult(
            success=True,
            message=self.success_message(context) if sent else self.fallback_message,
            suggested_actions=list(self.suggested_actions),
            flow_id=self.flow_id,
            data={"notification_sent": sent},
        )


class CallDriverFlow(_NotifyDriverFlow):
    flow_id = "call_driver"
    notification = "Rider is trying to reach you. Booking: {booking_id}"
    fallback_message = "Initiating a call to your driver. If the call doesn't connect, try sending a message instead."
    suggested_actions = ["message_driver", "cannot_contact_driver"]

    def success_message(self, context: FlowContext) -> str:
        driver = context.driver
        who = f"{driver.name} at {driver.phone}" if driver else "your driver"
        return (
            f"Calling {who}. Your conversation has been shared with the driver for context. "
            "If the call doesn't connect, try sending a message instead."
        )


class MessageDriverFlow(_NotifyDriverFlow):
    flow_id = "message_driver"
    notification = "Message from rider. Booking: {booking_id}. Please check your app."
    fallback_message = "I couldn't deliver the message just now. Please try again in a moment."
    suggested_actions = ["cannot_contact_driver", "where_is_driver", "ok_thanks"]

    def success_message(self, context: FlowContext) -> str:
        who = context.driver.name if context.driver else "your driver"
        return (
            f"An automated message has been sent to {who}. They will get a notification to check "
            "their app. If you don't hear back within 2 minutes, we can escalate to support."
        )


class PaymentQueryFlow(Flow):
    flow_id = "payment_query"

    async def execute(self, context: FlowContext) -> FlowResult:
        if context.provider is None:
            return support_escalation(self.flow_id, "Unable to get payment details. Let me connect you with support.")
        try:
            payment = await context.provider.get_payment(context.booking_id)
        except UpstreamUnavailableError as e:
            logger.error("Payment details unavailable for booking %s: %s", context.booking_id, e)
            return support_escalation(self.flow_id, "Unable to get payment details. Let me connect you with support.")

        fare = payment.estimated_fare.lstrip("$")
        method = payment.method.replace("_", " ")
        data: Dict[str, Any] = {"payment": to_dict(payment)}
        return FlowResult(
            success=True,
            message=f"Your estimated fare is ${fare}. Payment method: {method}. Status: {payment.status}.",
            suggested_actions=["talk_to_agent", "ok_thanks"],
            flow_id=self.flow_id,
            data=data,
        )
