import logging
from types import MappingProxyType
from typing import Mapping

from app.core.config import Settings, settings as default_settings
from .flows import (
    CallDriverFlow,
    CancelBookingFlow,
    CannotContactDriverFlow,
    ContactDriverFlow,
    DriverLateFlow,
    EscalationFlow,
    Flow,
    FlowContext,
    MessageDriverFlow,
    MessageFlow,
    PaymentQueryFlow,
    WhereIsDriverFlow,
    support_escalation,
)
from .models import EscalationType, FlowResult

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = (
    "I'm not sure I understood that. Here's what I can help you with:\n"
    "- Where is my driver\n"
    "- Driver is late\n"
    "- Contact driver\n"
    "- Cancel booking\n"
    "- Payment questions\n"
    "- Safety concerns\n\n"
    "Please try asking one of these, or tap a quick action below."
)


def fallback_result() -> FlowResult:
    return FlowResult(
        success=True,
        message=FALLBACK_MESSAGE,
        suggested_actions=["where_is_driver", "contact_driver", "payment_query", "talk_to_agent"],
        flow_id="fallback",
    )


def build_default_flows(config: Settings = default_settings) -> Mapping[str, Flow]:
    """Registry of every supported intent, frozen once built."""
    flows = {
        "where_is_driver": WhereIsDriverFlow(),
        "driver_late": DriverLateFlow(config.delay_threshold_minutes),
        "cannot_contact_driver": CannotContactDriverFlow(config.max_contact_attempts),
        "cancel_booking": CancelBookingFlow(config.free_cancel_window_seconds, config.cancellation_fee),
        "contact_driver": ContactDriverFlow(),
        "call_driver": CallDriverFlow(),
        "message_driver": MessageDriverFlow(),
        "payment_query": PaymentQueryFlow(),
        "safety_concern": EscalationFlow(
            "safety_concern",
            EscalationType.SAFETY,
            "Your safety is our top priority. I'm connecting you with emergency support immediately.",
            ["emergency_contact", "talk_to_agent"],
        ),
        "talk_to_agent": EscalationFlow(
            "talk_to_agent",
            EscalationType.SUPPORT,
            "I'm connecting you with a support agent. Your chat history and booking details will be "
            "shared automatically. Estimated wait: 1-2 minutes.",
        ),
        "ok_thanks": MessageFlow(
            "ok_thanks",
            "You're welcome! If you need anything else during your ride, just tap a quick action "
            "or type your question. Have a great ride!",
            ["where_is_driver", "contact_driver", "payment_query"],
        ),
        "wait": MessageFlow(
            "wait",
            "No problem, we'll keep you posted. You can check on your driver at any time.",
            ["where_is_driver", "cancel_booking", "ok_thanks"],
        ),
    }
    return MappingProxyType(flows)


class FlowEngine:
    def __init__(self, flows: Mapping[str, Flow]):
        self.flows = flows

    def has_flow(self, intent: str) -> bool:
        return intent in self.flows

    async def execute(self, intent: str, context: FlowContext) -> FlowResult:
        """Run the flow bound to ``intent``.

        Unknown intents get the capabilities fallback. A flow that raises is
        turned into a support escalation; nothing escapes this method.
        """
        flow = self.flows.get(intent)
        if flow is None:
            logger.info("No flow for intent %r, using fallback", intent)
            return fallback_result()

        try:
            result = await flow.execute(context)
        except Exception:
            logger.exception("Flow %s failed (conversation=%s)", intent, context.conversation_id)
            return support_escalation(flow.flow_id or intent, "An error occurred. Let me connect you with support.")

        if not result.flow_id:
            result.flow_id = flow.flow_id or intent
        return result
