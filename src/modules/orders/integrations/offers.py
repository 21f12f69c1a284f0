"""Offers service adapter."""

from __future__ import annotations

from datetime import timezone as dt_timezone
from typing import Any
from uuid import UUID

import structlog
from django.conf import settings
from django.utils import timezone

from modules.offers.exceptions import OfferExpired, OfferNotApproved, OfferNotFound
from modules.orders.integrations.schemas import OfferSnapshot
from shared.domain.exceptions import CollaboratorRejected
from shared.infrastructure.http import CollaboratorClient, error_message

logger = structlog.get_logger(__name__)


class OffersClient(CollaboratorClient):
    service_name = "offers-service"

    @classmethod
    def from_settings(cls, **kwargs: Any) -> "OffersClient":
        return cls(settings.OFFERS_SERVICE_URL, **{**cls.settings_kwargs(), **kwargs})

    def get_approved_offer(self, offer_id: UUID | str, tenant_id: str) -> OfferSnapshot:
        """Fetch an offer and check it is APPROVED and still valid.

        Raises:
            OfferNotFound: the offers service does not know the offer.
            OfferNotApproved: the offer is in any status but APPROVED.
            OfferExpired: the offer expired or is past ``validUntil``.
        """
        response = self.request("GET", f"/api/offers/{offer_id}", tenant_id=tenant_id)
        if response.status_code == 404:
            raise OfferNotFound(f"Offer {offer_id} not found.")
        if response.is_error:
            raise CollaboratorRejected(
                error_message(response),
                service=self.service_name,
                status=response.status_code,
            )

        body = self.json_body(response)
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            body = body["data"]
        offer = self.parse(OfferSnapshot, body)

        if offer.status == "EXPIRED":
            raise OfferExpired(f"Offer {offer_id} has expired.")
        if offer.status != "APPROVED":
            raise OfferNotApproved(
                f"Offer {offer_id} is not approved. Current status: {offer.status}",
                status=offer.status,
            )
        valid_until = offer.valid_until
        if valid_until is not None:
            if timezone.is_naive(valid_until):
                valid_until = valid_until.replace(tzinfo=dt_timezone.utc)
            if valid_until < timezone.now():
                raise OfferExpired(f"Offer {offer_id} has expired.")
        return offer

    def consume(self, offer_id: UUID | str, order_id: UUID | str, tenant_id: str) -> None:
        """Mark the offer as used by *order_id*."""
        response = self.request(
            "POST",
            f"/api/offers/{offer_id}/consume",
            tenant_id=tenant_id,
            json={"orderId": str(order_id)},
        )
        if response.status_code == 404:
            raise OfferNotFound(f"Offer {offer_id} not found.")
        if response.is_error:
            raise CollaboratorRejected(
                error_message(response),
                service=self.service_name,
                status=response.status_code,
            )
        logger.info("offers.consumed", offer_id=str(offer_id), order_id=str(order_id))
