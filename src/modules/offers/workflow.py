"""Offer workflow state machine.

::

    DRAFT --send--> SENT --approve--> APPROVED
      |               |---reject----> REJECTED
      |               |---deadline--> EXPIRED
      +---cancel------+---cancel----> CANCELLED

Approve and reject are also accepted straight from DRAFT.  A decision
taken after ``valid_until`` fails with ``OfferExpired``; a SENT offer is
moved to EXPIRED on the way (a DRAFT one keeps its status).  Terminal
offers reject every transition.

Each decision writes an ``Approval`` record; an approval publishes
``offer.approved`` once the transaction has committed.
"""

from __future__ import annotations

import secrets
from typing import Optional
from uuid import UUID

import structlog
from django.db import transaction
from django.utils import timezone

from modules.offers.constants import ApprovalDecision, OfferStatus
from modules.offers.events import offer_approved
from modules.offers.exceptions import (
    InvalidApprovalToken,
    InvalidOfferStatus,
    OfferExpired,
    OfferHasNoLineItems,
)
from modules.offers.models import Approval, Offer
from modules.offers.services import find_offer
from shared.domain.bus import IEventBus
from shared.infrastructure.resilience import fire_and_log

logger = structlog.get_logger(__name__)

APPROVAL_TOKEN_BYTES = 32


class OfferWorkflow:
    """Status transitions of a single offer."""

    def __init__(self, event_bus: IEventBus, source: str = "offers-service") -> None:
        self._event_bus = event_bus
        self._source = source

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def send(self, offer_id: UUID | str, tenant_id: str) -> Offer:
        """DRAFT -> SENT; issues the approval token when the offer has none."""
        with transaction.atomic():
            offer = find_offer(offer_id, tenant_id, for_update=True)
            if offer.status != OfferStatus.DRAFT:
                raise InvalidOfferStatus(
                    f"Offer {offer.offer_number} is {offer.status}; only DRAFT offers can be sent."
                )
            if not offer.line_items.exists():
                raise OfferHasNoLineItems(
                    f"Offer {offer.offer_number} has no line items."
                )
            if not offer.approval_token:
                offer.approval_token = secrets.token_urlsafe(APPROVAL_TOKEN_BYTES)
            offer.status = OfferStatus.SENT
            offer.save(update_fields=["status", "approval_token"])

        logger.info("offer.sent", offer_id=str(offer.id), tenant_id=tenant_id)
        return offer

    def approve(
        self,
        offer_id: UUID | str,
        tenant_id: str,
        approver_email: str,
        comments: Optional[str] = None,
    ) -> Offer:
        return self._decide(
            lambda: find_offer(offer_id, tenant_id, for_update=True),
            approver_email,
            approved=True,
            comments=comments,
        )

    def reject(
        self,
        offer_id: UUID | str,
        tenant_id: str,
        approver_email: str,
        comments: Optional[str] = None,
    ) -> Offer:
        return self._decide(
            lambda: find_offer(offer_id, tenant_id, for_update=True),
            approver_email,
            approved=False,
            comments=comments,
        )

    def decide_by_token(
        self,
        token: str,
        approver_email: str,
        approved: bool,
        comments: Optional[str] = None,
    ) -> Offer:
        """Decision taken through the external approval link (no tenant header)."""

        def load() -> Offer:
            offer = (
                Offer.objects.select_for_update()
                .filter(approval_token=token)
                .first()
                if token
                else None
            )
            if offer is None:
                raise InvalidApprovalToken("Invalid or unknown approval token.")
            return offer

        return self._decide(load, approver_email, approved=approved, comments=comments)

    def regenerate_approval_token(self, offer_id: UUID | str, tenant_id: str) -> str:
        """Replace the approval token; links issued earlier stop working."""
        with transaction.atomic():
            offer = find_offer(offer_id, tenant_id, for_update=True)
            if offer.is_terminal:
                raise InvalidOfferStatus(
                    f"Offer {offer.offer_number} is {offer.status}; no approval token can be issued."
                )
            offer.approval_token = secrets.token_urlsafe(APPROVAL_TOKEN_BYTES)
            offer.save(update_fields=["approval_token"])

        logger.info("offer.approval_token_regenerated", offer_id=str(offer.id), tenant_id=tenant_id)
        return offer.approval_token

    def cancel(self, offer_id: UUID | str, tenant_id: str) -> Offer:
        with transaction.atomic():
            offer = find_offer(offer_id, tenant_id, for_update=True)
            if offer.is_terminal:
                raise InvalidOfferStatus(
                    f"Offer {offer.offer_number} is {offer.status} and cannot be cancelled."
                )
            offer.status = OfferStatus.CANCELLED
            offer.save(update_fields=["status"])

        logger.info("offer.cancelled", offer_id=str(offer.id), tenant_id=tenant_id)
        return offer

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _decide(self, load, approver_email: str, approved: bool, comments: Optional[str]) -> Offer:
        expired = False
        with transaction.atomic():
            offer = load()
            if offer.is_terminal:
                raise InvalidOfferStatus(
                    f"Offer {offer.offer_number} is {offer.status}; no decision can be taken."
                )
            if offer.is_past_deadline():
                if offer.status == OfferStatus.SENT:
                    offer.status = OfferStatus.EXPIRED
                    offer.save(update_fields=["status"])
                expired = True
            else:
                decision = ApprovalDecision.APPROVED if approved else ApprovalDecision.REJECTED
                offer.status = OfferStatus.APPROVED if approved else OfferStatus.REJECTED
                offer.save(update_fields=["status"])
                Approval.objects.create(
                    offer=offer,
                    approver_email=approver_email,
                    decision=decision,
                    comments=comments or "",
                    decided_at=timezone.now(),
                )

        log = logger.bind(offer_id=str(offer.id), tenant_id=offer.tenant_id)
        if expired:
            log.info("offer.expired", trigger="decision")
            raise OfferExpired(f"Offer {offer.offer_number} expired on {offer.valid_until:%Y-%m-%d}.")

        if approved:
            log.info("offer.approved", approver=approver_email)
            fire_and_log(
                "publish.offer.approved",
                self._event_bus.publish,
                offer_approved(offer, self._source),
            )
        else:
            log.info("offer.rejected", approver=approver_email)
        return offer
