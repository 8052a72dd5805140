"""Lifecycle events emitted to downstream analytics and notifications"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Protocol

from farewelly_payments.utils.date_utils import utc_now


class EventType(str, Enum):
    SPLIT_COMPUTED = "split_computed"
    REFUND_CREATED = "refund_created"
    REFUND_APPROVED = "refund_approved"
    DISPUTE_CREATED = "dispute_created"
    DISPUTE_RESOLVED = "dispute_resolved"
    CHARGEBACK_RECEIVED = "chargeback_received"


@dataclass(frozen=True)
class EngineEvent:
    """Entity snapshot plus UTC timestamp"""

    type: EventType
    payload: Dict[str, Any]
    occurred_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.type.value,
            "occurred_at": self.occurred_at.isoformat(),
            "data": self.payload,
        }


class EventSink(Protocol):
    async def publish(self, event: EngineEvent) -> None:
        ...


class InMemoryEventSink:
    """Collects events in order; used for local runs and tests"""

    def __init__(self) -> None:
        self.events: List[EngineEvent] = []

    async def publish(self, event: EngineEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> List[EngineEvent]:
        return [e for e in self.events if e.type == event_type]
