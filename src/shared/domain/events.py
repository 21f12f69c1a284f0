"""Domain event envelope shared by publishers and consumers.

Every message crossing a service boundary is an ``EventEnvelope``:
type tag, ISO timestamp, tenant, source service, optional correlation id,
schema version and a typed payload.  Payload schemas live next to the
module that owns the event and subclass ``EventPayload``; consumers
re-validate ``data`` against the schema instead of trusting its shape.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SCHEMA_VERSION = 1

P = TypeVar("P", bound="EventPayload")


class EventType(str, Enum):
    ORDER_CREATED = "order.created"
    ORDER_CONFIRMED = "order.confirmed"
    OFFER_APPROVED = "offer.approved"


class EventPayload(BaseModel):
    """Base for typed event payloads (camelCase on the wire)."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class EventEnvelope(BaseModel):
    """Immutable event as published on the bus."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    type: str
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    tenant_id: str
    source: str
    correlation_id: Optional[str] = None
    version: int = SCHEMA_VERSION
    data: Dict[str, Any] = Field(default_factory=dict)

    def to_message(self) -> Dict[str, Any]:
        """JSON-compatible dict with wire aliases."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def payload(self, schema: Type[P]) -> P:
        """Validate ``data`` against *schema*.

        Raises ``pydantic.ValidationError`` when the payload shape is wrong.
        """
        return schema.model_validate(self.data)


def make_event(
    event_type: EventType | str,
    tenant_id: str,
    data: EventPayload,
    source: str,
) -> EventEnvelope:
    """Build an envelope, picking up the correlation id bound in structlog."""
    correlation_id = structlog.contextvars.get_contextvars().get("correlation_id")
    return EventEnvelope(
        type=event_type.value if isinstance(event_type, EventType) else event_type,
        tenant_id=tenant_id,
        source=source,
        correlation_id=correlation_id,
        data=data.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


class DomainEventMixin:
    """Mixin for aggregate roots that collect events until they are flushed."""

    _domain_events: list[EventEnvelope]

    def add_domain_event(self, event: EventEnvelope) -> None:
        if not hasattr(self, "_domain_events"):
            self._domain_events = []
        self._domain_events.append(event)

    def clear_domain_events(self) -> None:
        if hasattr(self, "_domain_events"):
            self._domain_events.clear()

    @property
    def domain_events(self) -> list[EventEnvelope]:
        if not hasattr(self, "_domain_events"):
            self._domain_events = []
        return list(self._domain_events)
