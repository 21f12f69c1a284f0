"""Domain events for the Orders bounded context."""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from django.core.exceptions import ObjectDoesNotExist

from shared.domain.events import EventEnvelope, EventPayload, EventType, make_event


class OrderLineData(EventPayload):
    product_id: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal
    sku: Optional[str] = None


class OrderCreatedData(EventPayload):
    """Payload of ``order.created``."""

    order_id: str
    order_number: str
    customer_id: str
    status: str
    grand_total: Decimal
    offer_id: Optional[str] = None
    line_items: List[OrderLineData]
    currency: str


class OrderConfirmedData(EventPayload):
    """Payload of ``order.confirmed``."""

    order_id: str
    order_number: str
    customer_id: str
    payment_status: str
    shipping_address_id: Optional[str] = None
    line_items: List[OrderLineData]


def _line_items(order) -> List[OrderLineData]:
    return [
        OrderLineData(
            product_id=item.product_id,
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_price=item.total_price,
            sku=item.sku,
        )
        for item in order.line_items.all()
    ]


def _shipping_address_id(order) -> Optional[str]:
    try:
        return str(order.shipping_address.id)
    except ObjectDoesNotExist:
        return None


def order_created(order, source: str) -> EventEnvelope:
    data = OrderCreatedData(
        order_id=str(order.id),
        order_number=order.order_number,
        customer_id=order.customer_id,
        status=order.status,
        grand_total=order.grand_total,
        offer_id=str(order.offer_id) if order.offer_id else None,
        line_items=_line_items(order),
        currency=order.currency,
    )
    return make_event(EventType.ORDER_CREATED, order.tenant_id, data, source)


def order_confirmed(order, source: str) -> EventEnvelope:
    data = OrderConfirmedData(
        order_id=str(order.id),
        order_number=order.order_number,
        customer_id=order.customer_id,
        payment_status=order.payment_status,
        shipping_address_id=_shipping_address_id(order),
        line_items=_line_items(order),
    )
    return make_event(EventType.ORDER_CONFIRMED, order.tenant_id, data, source)
