"""Event handlers consumed by the Orders bounded context."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from modules.offers.events import OfferApprovedData
from shared.domain.bus import IEventHandler
from shared.domain.events import EventEnvelope

if TYPE_CHECKING:
    from modules.orders.services import OrderService

logger = structlog.get_logger(__name__)


class OfferApprovedHandler(IEventHandler):
    """Reacts to ``offer.approved``.

    The event carries no shipping address, so the order is not created
    here; the trigger is recorded and a redelivery for an offer that
    already has an order is recognised.  Invalid payloads are logged and
    acknowledged since redelivery can never fix them.
    """

    def __init__(self, order_service: OrderService) -> None:
        self._orders = order_service

    def handle(self, event: EventEnvelope) -> None:
        try:
            data = event.payload(OfferApprovedData)
        except ValidationError as exc:
            logger.error("offer_approved.invalid_payload", errors=exc.error_count())
            return

        existing = self._orders.get_by_offer_id(data.offer_id, event.tenant_id)
        if existing is not None:
            logger.info(
                "offer_approved.already_ordered",
                offer_id=data.offer_id,
                order_id=str(existing.id),
            )
            return

        logger.info(
            "offer_approved.received",
            offer_id=data.offer_id,
            offer_number=data.offer_number,
            customer_id=data.customer_id,
            grand_total=str(data.grand_total),
        )
