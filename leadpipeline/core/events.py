"""
Domain events and the in-process event bus.

Publishing is fire-and-forget: callers wrap publish() so a failing bus never
fails the state change that produced the event, and the in-memory bus itself
swallows (and logs) handler failures.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Protocol
from uuid import UUID, uuid4

from pydantic import Field

from leadpipeline.models.base import BaseModel, utc_now

logger = logging.getLogger(__name__)


class DomainEvent(BaseModel):
    event_id: UUID = Field(default_factory=uuid4)
    occurred_at: datetime = Field(default_factory=utc_now)
    lead_id: UUID
    lead_service_id: UUID
    tenant_id: UUID

    @property
    def name(self) -> str:
        return type(self).__name__


class PipelineStageChanged(DomainEvent):
    old_stage: str
    new_stage: str


class LeadAutoDisqualified(DomainEvent):
    analysis_id: Optional[UUID] = None
    old_stage: str
    old_status: str
    reason: str = "junk_quality"


class AuditCompleted(DomainEvent):
    passed: bool
    findings: List[str] = Field(default_factory=list)


EventHandler = Callable[[DomainEvent], Awaitable[None]]


class EventBus(Protocol):
    async def publish(self, event: DomainEvent) -> None: ...


class InMemoryEventBus:
    """Fans events out to handlers subscribed by event class name."""

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        self._handlers[event_name].append(handler)

    async def publish(self, event: DomainEvent) -> None:
        for handler in list(self._handlers.get(event.name, [])):
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"[EVENT_BUS] Handler for {event.name} failed: {e}")


async def publish_best_effort(event_bus: Optional[EventBus], event: DomainEvent) -> bool:
    """Publish an event, logging instead of raising on failure. Returns True on success."""
    if event_bus is None:
        return False
    try:
        await event_bus.publish(event)
        return True
    except Exception as e:
        logger.warning(f"[EVENT_BUS] Failed to publish {event.name} for service {event.lead_service_id}: {e}")
        return False
