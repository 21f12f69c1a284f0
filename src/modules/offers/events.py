"""Offer event payload schemas and builders."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from shared.domain.events import EventEnvelope, EventPayload, EventType, make_event


class OfferLineData(EventPayload):
    description: str
    quantity: Decimal
    unit_price: Decimal
    discount_percent: Decimal = Decimal("0")
    tax_percent: Decimal = Decimal("0")
    product_id: Optional[str] = None
    sku: Optional[str] = None


class OfferApprovedData(EventPayload):
    """Payload of ``offer.approved``."""

    offer_id: str
    offer_number: str
    customer_id: str
    valid_until: Optional[datetime] = None
    currency: str
    grand_total: Decimal
    line_items: List[OfferLineData]


def offer_approved(offer, source: str) -> EventEnvelope:
    data = OfferApprovedData(
        offer_id=str(offer.id),
        offer_number=offer.offer_number,
        customer_id=offer.customer_id,
        valid_until=offer.valid_until,
        currency=offer.currency,
        grand_total=offer.grand_total,
        line_items=[
            OfferLineData(
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                discount_percent=item.discount_percent,
                tax_percent=item.tax_percent,
                product_id=item.product_id,
                sku=item.sku,
            )
            for item in offer.line_items.all()
        ],
    )
    return make_event(EventType.OFFER_APPROVED, offer.tenant_id, data, source)
