"""
Safety keyword detection for rider messages.

Runs before intent classification on every turn. Any match produces a
SafetyEvent carrying the highest severity found; medium and above must be
escalated, low is only logged.
"""
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Pattern, Sequence, Tuple
from uuid import uuid4

from .models import SafetyEvent, SafetyEventStatus, Severity, utcnow

logger = logging.getLogger(__name__)

SAFETY_KEYWORDS: Mapping[Severity, Tuple[str, ...]] = MappingProxyType({
    Severity.CRITICAL: (
        "emergency", "emergencies", "danger", "threat", "911", "police",
        "kidnap", "assault", "attack", "weapon", "gun", "knife", "knives",
        "help me",
    ),
    Severity.HIGH: (
        "unsafe", "uncomfortable", "scared", "harassment", "harassing",
        "inappropriate", "threatening", "threatened", "injured", "dangerous",
    ),
    Severity.MEDIUM: (
        "concern", "worried", "anxious", "suspicious", "wrong route",
        "detour", "speeding",
    ),
    Severity.LOW: (
        "question", "concerned", "wondering", "check",
    ),
})

SAFETY_RESPONSES: Mapping[Severity, str] = MappingProxyType({
    Severity.LOW: "I understand your concern. Let me help you with that.",
    Severity.MEDIUM: "Your safety is important to us. I'm escalating this to our support team.",
    Severity.HIGH: "This is concerning. I'm immediately connecting you with emergency support.",
    Severity.CRITICAL: (
        "EMERGENCY: I'm connecting you with emergency services and our support team "
        "immediately. Stay in a public place if you can."
    ),
})


@dataclass
class RiskPattern:
    risk_level: Severity
    pattern: str
    counts: Dict[str, int]


def _compile(keyword: str) -> Pattern:
    """Match from a word start; single words also match inflected forms ("attacked")."""
    words = [re.escape(word) for word in keyword.split()]
    suffix = r"\w*" if len(words) == 1 else r"\b"
    return re.compile(r"\b" + r"\s+".join(words) + suffix, re.IGNORECASE)


class SafetyDetector:
    """Keyword scan with per-user event history."""

    def __init__(
        self,
        keywords: Mapping[Severity, Sequence[str]] = SAFETY_KEYWORDS,
        enabled: bool = True,
        retention_hours: float = 24,
    ):
        self.enabled = enabled
        self.keywords = keywords
        self.retention_hours = retention_hours
        self._patterns: List[Tuple[str, Severity, Pattern]] = [
            (keyword, severity, _compile(keyword))
            for severity, words in keywords.items()
            for keyword in words
        ]
        self._events: Dict[str, List[SafetyEvent]] = {}
        self._lock = threading.Lock()

    def _analyze_keywords(self, text: str) -> Tuple[Optional[Severity], List[str]]:
        """Return the highest matched severity and every matched keyword."""
        found = []
        max_severity = None
        for keyword, severity, pattern in self._patterns:
            if pattern.search(text):
                found.append(keyword)
                if max_severity is None or severity.rank > max_severity.rank:
                    max_severity = severity
        return max_severity, found

    def scan(
        self,
        text: str,
        conversation_id: str,
        user_id: str,
        driver_id: Optional[str] = None,
    ) -> Optional[SafetyEvent]:
        if not self.enabled or not text:
            return None

        severity, found = self._analyze_keywords(text)
        if severity is None:
            return None

        event = SafetyEvent(
            id=f"safety_{uuid4().hex[:12]}",
            conversation_id=conversation_id,
            user_id=user_id,
            driver_id=driver_id,
            severity=severity,
            keywords=found,
        )
        # Nothing older than the risk pattern window is ever read back
        cutoff = event.timestamp - timedelta(hours=self.retention_hours)
        with self._lock:
            history = [e for e in self._events.get(user_id, []) if e.timestamp > cutoff]
            history.append(event)
            self._events[user_id] = history

        logger.warning(
            "Safety event %s detected (severity=%s, keywords=%s, user=%s, conversation=%s)",
            event.id, severity.value, found, user_id, conversation_id,
        )
        return event

    @staticmethod
    def requires_escalation(event: Optional[SafetyEvent]) -> bool:
        return event is not None and event.severity.rank >= Severity.MEDIUM.rank

    @staticmethod
    def response_for(severity: Severity) -> str:
        return SAFETY_RESPONSES[severity]

    def recent_events(
        self,
        user_id: str,
        window_hours: float = 1,
        now: Optional[datetime] = None,
    ) -> List[SafetyEvent]:
        cutoff = (now or utcnow()) - timedelta(hours=window_hours)
        with self._lock:
            events = list(self._events.get(user_id, []))
        return [event for event in events if event.timestamp > cutoff]

    def risk_pattern(self, user_id: str, window_hours: float = 24, now: Optional[datetime] = None) -> RiskPattern:
        """Aggregate recent events into a coarse risk level.

        This only informs agents about recurring concerns; it never triggers
        an escalation by itself.
        """
        events = self.recent_events(user_id, window_hours, now)
        counts = {severity.value: 0 for severity in Severity}
        for event in events:
            counts[event.severity.value] += 1

        if not events:
            return RiskPattern(Severity.LOW, "No recent safety concerns", counts)
        if counts["critical"] > 0:
            return RiskPattern(Severity.HIGH, "Critical safety events detected", counts)
        if counts["high"] > 1 or (counts["high"] > 0 and counts["medium"] > 0):
            return RiskPattern(Severity.HIGH, "Multiple high-severity safety concerns", counts)
        if counts["medium"] > 2:
            return RiskPattern(Severity.MEDIUM, "Recurring medium-severity concerns", counts)
        return RiskPattern(Severity.LOW, "Isolated safety concern", counts)

    def _find(self, event_id: str, user_id: str) -> Optional[SafetyEvent]:
        for event in self._events.get(user_id, []):
            if event.id == event_id:
                return event
        return None

    def mark_escalated(self, event_id: str, user_id: str, escalated_to: str) -> bool:
        with self._lock:
            event = self._find(event_id, user_id)
            if event is None:
                return False
            event.status = SafetyEventStatus.ESCALATED
            event.escalated_to = escalated_to
        logger.info("Safety event %s escalated to %s", event_id, escalated_to)
        return True

    def resolve(self, event_id: str, user_id: str) -> bool:
        with self._lock:
            event = self._find(event_id, user_id)
            if event is None:
                return False
            event.status = SafetyEventStatus.RESOLVED
        logger.info("Safety event %s resolved", event_id)
        return True
