"""Event bus implementations.

``KombuEventBus`` publishes envelopes to a durable topic exchange (routing
key = event type) and consumes them from one durable queue per
subscribed event type, named ``<service>-<event type>``.  Delivery is
at-least-once: a message is acked only after every handler succeeded and
is requeued when a handler raises.

``InMemoryEventBus`` honours the same contract in-process and records
what was published; it is used in tests and when no broker is configured.
"""

from __future__ import annotations

import socket
import threading
from typing import Any, Dict, List, Optional

import structlog
from django.conf import settings
from kombu import Connection, Consumer, Exchange, Producer, Queue
from kombu.entity import PERSISTENT_DELIVERY_MODE
from kombu.exceptions import KombuError
from pydantic import ValidationError

from shared.domain.bus import IEventBus, IEventHandler
from shared.domain.events import EventEnvelope

logger = structlog.get_logger(__name__)


def _context(event: EventEnvelope) -> Dict[str, str]:
    context = {"event_type": event.type, "tenant_id": event.tenant_id}
    if event.correlation_id:
        context["correlation_id"] = event.correlation_id
    return context


class InMemoryEventBus(IEventBus):
    """Simple in-process event bus."""

    def __init__(self) -> None:
        self._handlers: Dict[str, List[IEventHandler]] = {}
        self.published: List[EventEnvelope] = []

    def subscribe(self, event_type: str, handler: IEventHandler) -> None:
        handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

    def publish(self, event: EventEnvelope) -> None:
        self.published.append(event)
        logger.info("event_bus.published", event_type=event.type, transport="memory")
        for handler in self._handlers.get(event.type, []):
            with structlog.contextvars.bound_contextvars(**_context(event)):
                try:
                    handler.handle(event)
                except Exception:
                    logger.exception(
                        "event_bus.handler_failed",
                        handler=type(handler).__name__,
                    )

    def events_of(self, event_type: str) -> List[EventEnvelope]:
        return [event for event in self.published if event.type == event_type]


class KombuEventBus(IEventBus):
    """Broker-backed bus over a durable kombu topic exchange."""

    def __init__(
        self,
        url: str,
        exchange_name: str = "collector-events",
        service_name: str = "orders-service",
        connection: Optional[Connection] = None,
    ) -> None:
        self.url = url
        self.service_name = service_name
        self.exchange = Exchange(exchange_name, type="topic", durable=True)
        self.connected = False
        self._connection = connection
        self._producer: Optional[Producer] = None
        self._handlers: Dict[str, List[IEventHandler]] = {}
        self._queues: Dict[str, Queue] = {}
        self._lock = threading.Lock()
        self._stopping = False

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> bool:
        """Connect and declare topology; stays disconnected on failure."""
        try:
            if self._connection is None:
                self._connection = Connection(self.url)
            self._connection.ensure_connection(max_retries=1)
            channel = self._connection.default_channel
            self.exchange(channel).declare()
            for queue in self._queues.values():
                queue(channel).declare()
            self._producer = Producer(channel, exchange=self.exchange, serializer="json")
        except (OSError, KombuError) as exc:
            self.connected = False
            logger.error(
                "event_bus.connection_failed",
                exchange=self.exchange.name,
                error=str(exc),
            )
            return False

        self.connected = True
        logger.info("event_bus.connected", exchange=self.exchange.name)
        return True

    def close(self) -> None:
        self._stopping = True
        if self._connection is not None:
            self._connection.release()
        self._producer = None
        self.connected = False

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, event: EventEnvelope) -> None:
        if not self.connected or self._producer is None:
            logger.warning("event_bus.publish_skipped", event_type=event.type)
            return
        try:
            with self._lock:
                self._producer.publish(
                    event.to_message(),
                    exchange=self.exchange,
                    routing_key=event.type,
                    delivery_mode=PERSISTENT_DELIVERY_MODE,
                )
        except Exception as exc:
            logger.error(
                "event_bus.publish_failed", event_type=event.type, error=str(exc)
            )
            return
        logger.info("event_bus.published", event_type=event.type, transport="kombu")

    # ------------------------------------------------------------------
    # Consuming
    # ------------------------------------------------------------------

    def queue_name(self, event_type: str) -> str:
        return f"{self.service_name}-{event_type}"

    def subscribe(self, event_type: str, handler: IEventHandler) -> None:
        handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)
        if event_type not in self._queues:
            queue = Queue(
                self.queue_name(event_type),
                exchange=self.exchange,
                routing_key=event_type,
                durable=True,
            )
            self._queues[event_type] = queue
            if self.connected:
                queue(self._connection.default_channel).declare()
        logger.info(
            "event_bus.subscribed",
            event_type=event_type,
            queue=self.queue_name(event_type),
        )

    def _on_message(self, body: Any, message: Any) -> None:
        try:
            event = EventEnvelope.model_validate(body)
        except ValidationError as exc:
            logger.error("event_bus.invalid_envelope", errors=exc.error_count())
            message.reject()
            return

        with structlog.contextvars.bound_contextvars(**_context(event)):
            try:
                for handler in self._handlers.get(event.type, []):
                    handler.handle(event)
            except Exception:
                logger.exception("event_bus.handler_failed")
                message.requeue()
                return
            message.ack()
            logger.info("event_bus.consumed")

    def consume(self, timeout: Optional[float] = 1.0) -> bool:
        """Drain one batch of messages; ``False`` when nothing arrived."""
        if not self.connected or not self._queues:
            return False
        with Consumer(
            self._connection,
            queues=list(self._queues.values()),
            callbacks=[self._on_message],
            accept=["json"],
        ):
            try:
                self._connection.drain_events(timeout=timeout)
            except socket.timeout:
                return False
        return True

    def run(self, poll_timeout: float = 1.0) -> None:
        """Consume until ``close`` is called."""
        self._stopping = False
        logger.info("event_bus.consuming", queues=sorted(q.name for q in self._queues.values()))
        while not self._stopping:
            self.consume(timeout=poll_timeout)


def build_event_bus(connect: bool = True) -> IEventBus:
    """Broker-backed bus when ``EVENT_BUS_URL`` is set, in-memory otherwise."""
    if settings.EVENT_BUS_URL:
        bus = KombuEventBus(
            settings.EVENT_BUS_URL,
            exchange_name=settings.EVENT_EXCHANGE,
            service_name=settings.SERVICE_NAME,
        )
        if connect:
            bus.connect()
        return bus
    return InMemoryEventBus()
