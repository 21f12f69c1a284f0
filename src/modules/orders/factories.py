"""Composition of the orders services from settings.

Orchestrators never build their own collaborators; these factories are
the single place where adapters, repository and bus are wired together.
"""

from __future__ import annotations

from typing import Optional

from modules.orders.handlers import OfferApprovedHandler
from modules.orders.integrations.inventory import InventoryClient
from modules.orders.integrations.offers import OffersClient
from modules.orders.integrations.payment_gateway import PaymentGatewayClient
from modules.orders.integrations.shipping import ShippingClient
from modules.orders.payments import PaymentService
from modules.orders.repositories import OrderDjangoRepository
from modules.orders.services import OrderService
from shared.domain.bus import IEventBus
from shared.domain.events import EventType
from shared.infrastructure.bus import build_event_bus


def build_order_service(event_bus: Optional[IEventBus] = None) -> OrderService:
    return OrderService(
        order_repository=OrderDjangoRepository(),
        offers_client=OffersClient.from_settings(),
        inventory_client=InventoryClient.from_settings(),
        shipping_client=ShippingClient.from_settings(),
        event_bus=event_bus or build_event_bus(),
    )


def build_payment_service(order_service: Optional[OrderService] = None) -> PaymentService:
    return PaymentService(
        order_repository=OrderDjangoRepository(),
        gateway=PaymentGatewayClient.from_settings(),
        order_service=order_service or build_order_service(),
    )


def register_consumers(event_bus: IEventBus, order_service: OrderService) -> None:
    event_bus.subscribe(EventType.OFFER_APPROVED.value, OfferApprovedHandler(order_service))
