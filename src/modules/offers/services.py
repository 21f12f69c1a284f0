"""Offer service layer.

``OfferService`` creates, lists, updates and clones offers, serves reads
(expiring overdue SENT offers as a side effect), marks approved offers as
consumed by an order and expires overdue offers in bulk.
``LineItemService`` edits line items while the offer is DRAFT/SENT and
keeps offer totals equal to the aggregate of the current lines.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, NamedTuple, Optional
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from modules.offers.constants import (
    EDITABLE_STATES,
    OFFER_NUMBER_PREFIX,
    OFFER_NUMBER_WIDTH,
    OfferStatus,
)
from modules.offers.dtos import (
    CreateOfferDTO,
    OfferLineItemDTO,
    OfferListFilters,
    UpdateOfferDTO,
    UpdateOfferLineItemDTO,
)
from modules.offers.exceptions import (
    InvalidOfferStatus,
    LineItemNotFound,
    OfferAlreadyConsumed,
    OfferNotFound,
)
from modules.offers.models import Offer, OfferLineItem
from shared.domain.exceptions import InvalidInput
from shared.domain.pricing import line_total

logger = structlog.get_logger(__name__)


class OfferPage(NamedTuple):
    offers: List[Offer]
    total: int


def find_offer(offer_id, tenant_id: str, for_update: bool = False) -> Offer:
    """Load an offer of *tenant_id* or raise ``OfferNotFound``."""
    queryset = Offer.objects.filter(tenant_id=tenant_id)
    if for_update:
        queryset = queryset.select_for_update()
    try:
        offer = queryset.filter(id=offer_id).first()
    except (ValidationError, ValueError):
        offer = None
    if offer is None:
        raise OfferNotFound(f"Offer {offer_id} not found.")
    return offer


def next_offer_number(tenant_id: str) -> str:
    last = (
        Offer.objects.filter(tenant_id=tenant_id)
        .order_by("-offer_number")
        .values_list("offer_number", flat=True)
        .first()
    )
    sequence = int(last.rsplit("-", 1)[1]) + 1 if last else 1
    return f"{OFFER_NUMBER_PREFIX}-{sequence:0{OFFER_NUMBER_WIDTH}d}"


class OfferService:
    """Application service for offer reads and lifecycle bookkeeping."""

    @transaction.atomic
    def create_offer(self, dto: CreateOfferDTO, tenant_id: str) -> Offer:
        offer = Offer.objects.create(
            tenant_id=tenant_id,
            offer_number=next_offer_number(tenant_id),
            customer_id=dto.customer_id,
            currency=dto.currency.upper(),
            valid_until=dto.valid_until,
            notes=dto.notes,
        )
        for number, item in enumerate(dto.line_items, start=1):
            _create_line(offer, item, number)
        offer.recompute_totals()

        logger.info(
            "offer.created",
            offer_id=str(offer.id),
            offer_number=offer.offer_number,
            tenant_id=tenant_id,
            line_count=len(dto.line_items),
        )
        return offer

    def get_offer(self, offer_id: UUID | str, tenant_id: str) -> Offer:
        """Return the offer, expiring it first when a SENT offer is overdue."""
        offer = find_offer(offer_id, tenant_id)
        if offer.status == OfferStatus.SENT and offer.is_past_deadline():
            offer.status = OfferStatus.EXPIRED
            offer.save(update_fields=["status"])
            logger.info("offer.expired", offer_id=str(offer.id), trigger="read")
        return offer

    def list_offers(
        self, tenant_id: str, filters: Optional[OfferListFilters] = None
    ) -> OfferPage:
        """Newest first, with the total count of matching offers."""
        filters = filters or OfferListFilters()
        queryset = Offer.objects.filter(tenant_id=tenant_id)
        if filters.customer_id:
            queryset = queryset.filter(customer_id=filters.customer_id)
        if filters.status:
            queryset = queryset.filter(status=filters.status)
        if filters.created_from:
            queryset = queryset.filter(created_at__gte=filters.created_from)
        if filters.created_to:
            queryset = queryset.filter(created_at__lte=filters.created_to)

        total = queryset.count()
        page = queryset.prefetch_related("line_items").order_by("-created_at", "-id")
        offers = list(page[filters.offset : filters.offset + filters.limit])
        return OfferPage(offers=offers, total=total)

    def get_offers_by_customer(
        self, customer_id: str, tenant_id: str, active_only: bool = False
    ) -> List[Offer]:
        """Offers of one customer; ``active_only`` keeps open offers still in time."""
        queryset = Offer.objects.filter(tenant_id=tenant_id, customer_id=customer_id)
        if active_only:
            queryset = queryset.filter(status__in=EDITABLE_STATES).filter(
                Q(valid_until__isnull=True) | Q(valid_until__gte=timezone.now())
            )
        return list(queryset.prefetch_related("line_items").order_by("-created_at", "-id"))

    @transaction.atomic
    def update_offer(
        self, offer_id: UUID | str, tenant_id: str, dto: UpdateOfferDTO
    ) -> Offer:
        """Change header fields of a DRAFT/SENT offer."""
        offer = find_offer(offer_id, tenant_id, for_update=True)
        if not offer.is_editable:
            raise InvalidOfferStatus(
                f"Offer {offer.offer_number} is {offer.status} and can no longer be changed."
            )
        changes = dto.model_dump(exclude_none=True)
        if "valid_until" in changes and changes["valid_until"] <= timezone.now():
            raise InvalidInput("valid_until must be in the future.")
        if "currency" in changes:
            changes["currency"] = changes["currency"].upper()

        for field, value in changes.items():
            setattr(offer, field, value)
        if changes:
            offer.save(update_fields=list(changes))
        logger.info("offer.updated", offer_id=str(offer.id), fields=sorted(changes))
        return offer

    @transaction.atomic
    def clone_offer(self, offer_id: UUID | str, tenant_id: str) -> Offer:
        """Copy an offer into a new DRAFT revision with its own number."""
        original = find_offer(offer_id, tenant_id)
        clone = Offer.objects.create(
            tenant_id=tenant_id,
            offer_number=next_offer_number(tenant_id),
            customer_id=original.customer_id,
            currency=original.currency,
            valid_until=original.valid_until,
            notes=original.notes,
            parent_offer_id=original.id,
            revision=original.revision + 1,
        )
        OfferLineItem.objects.bulk_create(
            OfferLineItem(
                offer=clone,
                product_id=line.product_id,
                sku=line.sku,
                description=line.description,
                quantity=line.quantity,
                unit_price=line.unit_price,
                discount_percent=line.discount_percent,
                tax_percent=line.tax_percent,
                total_price=line.total_price,
                line_number=line.line_number,
            )
            for line in original.line_items.order_by("line_number")
        )
        clone.recompute_totals()
        logger.info(
            "offer.cloned",
            offer_id=str(clone.id),
            parent_offer_id=str(original.id),
            revision=clone.revision,
        )
        return clone

    @transaction.atomic
    def consume(self, offer_id: UUID | str, order_id: UUID | str, tenant_id: str) -> Offer:
        """Link an APPROVED offer to the order created from it.

        Repeating the call for the same order is a no-op.
        """
        offer = find_offer(offer_id, tenant_id, for_update=True)
        if offer.status != OfferStatus.APPROVED:
            raise InvalidOfferStatus(
                f"Offer {offer.offer_number} is {offer.status}; only APPROVED offers can be consumed."
            )
        order_uuid = UUID(str(order_id))
        if offer.order_id is not None:
            if offer.order_id == order_uuid:
                return offer
            raise OfferAlreadyConsumed(
                f"Offer {offer.offer_number} already belongs to order {offer.order_id}."
            )
        offer.order_id = order_uuid
        offer.save(update_fields=["order_id"])
        logger.info("offer.consumed", offer_id=str(offer.id), order_id=str(order_uuid))
        return offer

    def expire_overdue(self, now: Optional[datetime] = None) -> int:
        """Move every SENT offer past its deadline to EXPIRED."""
        now = now or timezone.now()
        count = Offer.objects.filter(
            status=OfferStatus.SENT,
            valid_until__isnull=False,
            valid_until__lt=now,
        ).update(status=OfferStatus.EXPIRED, updated_at=now)
        if count:
            logger.info("offer.expired_overdue", count=count)
        return count


def _create_line(offer: Offer, item: OfferLineItemDTO, line_number: int) -> OfferLineItem:
    return OfferLineItem.objects.create(
        offer=offer,
        product_id=item.product_id,
        sku=item.sku,
        description=item.description,
        quantity=item.quantity,
        unit_price=item.unit_price,
        discount_percent=item.discount_percent,
        tax_percent=item.tax_percent,
        total_price=line_total(
            item.quantity, item.unit_price, item.discount_percent, item.tax_percent
        ),
        line_number=line_number,
    )


class LineItemService:
    """Line-item edits on DRAFT/SENT offers."""

    def _editable_offer(self, offer_id, tenant_id: str) -> Offer:
        offer = find_offer(offer_id, tenant_id, for_update=True)
        if not offer.is_editable:
            raise InvalidOfferStatus(
                f"Offer {offer.offer_number} is {offer.status}; line items are frozen."
            )
        return offer

    def _line(self, offer: Offer, line_item_id) -> OfferLineItem:
        try:
            line = offer.line_items.filter(id=line_item_id).first()
        except (ValidationError, ValueError):
            line = None
        if line is None:
            raise LineItemNotFound(f"Line item {line_item_id} not found.")
        return line

    @transaction.atomic
    def add(self, offer_id: UUID | str, tenant_id: str, dto: OfferLineItemDTO) -> OfferLineItem:
        offer = self._editable_offer(offer_id, tenant_id)
        line = _create_line(offer, dto, offer.line_items.count() + 1)
        offer.recompute_totals()
        logger.info("offer.line_item_added", offer_id=str(offer.id), line_item_id=str(line.id))
        return line

    @transaction.atomic
    def update(
        self,
        offer_id: UUID | str,
        line_item_id: UUID | str,
        tenant_id: str,
        dto: UpdateOfferLineItemDTO,
    ) -> OfferLineItem:
        offer = self._editable_offer(offer_id, tenant_id)
        line = self._line(offer, line_item_id)
        for field, value in dto.model_dump(exclude_none=True).items():
            setattr(line, field, value)
        line.total_price = line_total(
            line.quantity, line.unit_price, line.discount_percent, line.tax_percent
        )
        line.save()
        offer.recompute_totals()
        logger.info("offer.line_item_updated", offer_id=str(offer.id), line_item_id=str(line.id))
        return line

    @transaction.atomic
    def delete(self, offer_id: UUID | str, line_item_id: UUID | str, tenant_id: str) -> None:
        offer = self._editable_offer(offer_id, tenant_id)
        line = self._line(offer, line_item_id)
        line.delete()
        for number, remaining in enumerate(offer.line_items.order_by("line_number"), start=1):
            if remaining.line_number != number:
                remaining.line_number = number
                remaining.save(update_fields=["line_number"])
        offer.recompute_totals()
        logger.info("offer.line_item_deleted", offer_id=str(offer.id), line_item_id=str(line_item_id))
