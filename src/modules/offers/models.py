"""Offer, OfferLineItem, and Approval models.

Business rules implemented:
- Offer totals are always the aggregate of the current line items and are
  only written by ``Offer.recompute_totals``.
- Line items are frozen once the offer leaves DRAFT/SENT.
- Each approval or rejection leaves an ``Approval`` audit record.
- ``offer_number`` is sequential per tenant (``OFF-00001``).
- A clone is a new DRAFT revision pointing at its parent offer.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from django.db import models
from django.utils import timezone

from modules.core.models import BaseModel, TenantModel, money_field
from modules.offers.constants import (
    EDITABLE_STATES,
    TERMINAL_STATES,
    ApprovalDecision,
    OfferStatus,
)
from shared.domain.pricing import aggregate_totals


class Offer(TenantModel):
    """Commercial proposal sent to a customer."""

    offer_number: models.CharField = models.CharField(max_length=20, editable=False)
    customer_id: models.CharField = models.CharField(max_length=64)
    status: models.CharField = models.CharField(
        max_length=20,
        choices=OfferStatus.choices,
        default=OfferStatus.DRAFT,
    )
    currency: models.CharField = models.CharField(max_length=3, default="EUR")
    valid_until: models.DateTimeField = models.DateTimeField(null=True, blank=True)
    subtotal = money_field()
    discount_total = money_field()
    tax_total = money_field()
    grand_total = money_field()
    approval_token: models.CharField = models.CharField(
        max_length=64, unique=True, null=True, blank=True
    )
    order_id: models.UUIDField = models.UUIDField(null=True, blank=True)
    notes: models.TextField = models.TextField(blank=True, default="")
    parent_offer_id: models.UUIDField = models.UUIDField(null=True, blank=True)
    revision: models.PositiveIntegerField = models.PositiveIntegerField(default=1)

    class Meta:
        db_table = "offers"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "offer_number"],
                name="offers_tenant_number_uniq",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "status"], name="offers_tenant_status_idx"),
        ]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    @property
    def is_editable(self) -> bool:
        return self.status in EDITABLE_STATES

    def is_past_deadline(self, now: Optional[datetime] = None) -> bool:
        if self.valid_until is None:
            return False
        return self.valid_until < (now or timezone.now())

    def recompute_totals(self) -> None:
        """Refresh totals from the current line items and persist them."""
        totals = aggregate_totals(list(self.line_items.all()))
        self.subtotal = totals.subtotal
        self.discount_total = totals.discount_total
        self.tax_total = totals.tax_total
        self.grand_total = totals.grand_total
        self.save(
            update_fields=["subtotal", "discount_total", "tax_total", "grand_total"]
        )

    def __str__(self) -> str:
        return f"{self.offer_number} ({self.status})"


class OfferLineItem(BaseModel):
    """Priced line on an offer; ``total_price`` comes from the pricing engine."""

    offer: models.ForeignKey = models.ForeignKey(
        "offers.Offer",
        on_delete=models.CASCADE,
        related_name="line_items",
    )
    product_id: models.CharField = models.CharField(max_length=64, null=True, blank=True)
    sku: models.CharField = models.CharField(max_length=64, null=True, blank=True)
    description: models.CharField = models.CharField(max_length=255)
    quantity = money_field()
    unit_price = money_field()
    discount_percent = money_field()
    tax_percent = money_field()
    total_price = money_field()
    line_number: models.PositiveIntegerField = models.PositiveIntegerField()

    class Meta:
        db_table = "offer_line_items"
        ordering = ["line_number"]

    def __str__(self) -> str:
        return f"#{self.line_number} {self.description} x{self.quantity}"


class Approval(BaseModel):
    """Immutable record of one approve/reject decision."""

    offer: models.ForeignKey = models.ForeignKey(
        "offers.Offer",
        on_delete=models.CASCADE,
        related_name="approvals",
    )
    approver_email: models.EmailField = models.EmailField()
    decision: models.CharField = models.CharField(
        max_length=10, choices=ApprovalDecision.choices
    )
    comments: models.TextField = models.TextField(blank=True, default="")
    decided_at: models.DateTimeField = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "offer_approvals"
        ordering = ["-decided_at"]

    def __str__(self) -> str:
        return f"{self.offer} {self.decision} by {self.approver_email}"
