"""
Outbound event queue for escalation notifications.

Publishing never blocks and never fails the publisher. A dispatcher task
(``run``) or an explicit ``drain`` delivers queued events to subscribers;
a subscriber that raises is logged and skipped.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Union

from .models import utcnow

logger = logging.getLogger(__name__)

ESCALATION_CREATED = "escalation_created"
TICKET_CREATED = "ticket_created"
TICKET_UPDATED = "ticket_updated"
EVENT_TYPES = (ESCALATION_CREATED, TICKET_CREATED, TICKET_UPDATED)


@dataclass(frozen=True)
class EscalationEvent:
    event_type: str
    payload: Dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)


Handler = Callable[[EscalationEvent], Union[None, Awaitable[None]]]


class EventChannel:
    def __init__(self):
        self._queue: "asyncio.Queue[EscalationEvent]" = asyncio.Queue()
        self._subscribers: Dict[str, List[Handler]] = {}

    def subscribe(self, event_type: str, handler: Handler) -> None:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        self._subscribers.setdefault(event_type, []).append(handler)

    def publish(self, event_type: str, payload: Dict[str, Any]) -> EscalationEvent:
        event = EscalationEvent(event_type=event_type, payload=payload)
        self._queue.put_nowait(event)
        logger.debug("Event queued: %s", event_type)
        return event

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _deliver(self, event: EscalationEvent) -> None:
        for handler in list(self._subscribers.get(event.event_type, [])):
            try:
                outcome = handler(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Subscriber %r failed for %s", handler, event.event_type)

    async def drain(self) -> int:
        """Deliver everything queued so far; returns how many events went out."""
        delivered = 0
        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()
            delivered += 1
        return delivered

    async def run(self) -> None:
        """Dispatch forever; meant to run as a background task."""
        logger.info("Event dispatcher started")
        try:
            while True:
                event = await self._queue.get()
                try:
                    await self._deliver(event)
                finally:
                    self._queue.task_done()
        except asyncio.CancelledError:
            logger.info("Event dispatcher stopped")
            raise
