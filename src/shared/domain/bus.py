"""Event bus interfaces for publishing and consuming domain events."""

from __future__ import annotations

from typing import Protocol

from shared.domain.events import EventEnvelope


class IEventHandler(Protocol):
    """Handler interface for consumed events.

    Handlers must be idempotent: delivery is at-least-once and any raised
    exception causes the message to be redelivered.
    """

    def handle(self, event: EventEnvelope) -> None: ...


class IEventBus(Protocol):
    """Event bus interface."""

    def publish(self, event: EventEnvelope) -> None: ...

    def subscribe(self, event_type: str, handler: IEventHandler) -> None: ...
