"""Order, ShippingAddress, OrderLineItem, OrderStatusHistory and Payment models.

Business rules implemented:
- Status transitions validated against the state machine (service layer).
- Each status change generates an append-only history record with the
  payment status snapshot at that moment.
- Order number auto-generated as human-readable identifier
  (``ORD-YYYYMMDD-NNNNNN``), regenerated on collision.
- Orders are priced once at creation and never re-priced.
- ``version`` is bumped on every status or payment write.
"""

from __future__ import annotations

import secrets
from typing import Any

import structlog
from django.conf import settings
from django.db import models
from django.utils import timezone

from modules.core.models import BaseModel, TenantModel, money_field
from modules.orders.constants import (
    ORDER_NUMBER_MAX_RETRIES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    OrderStatus,
    PaymentProvider,
    PaymentStatus,
    PaymentTransactionStatus,
)
from shared.domain.events import DomainEventMixin

logger = structlog.get_logger(__name__)


class Order(DomainEventMixin, TenantModel):
    """Order aggregate root.

    ``order_number`` is a human-readable identifier auto-generated on first
    save.  The UUIDv7 ``id`` is used for all internal references.
    """

    order_number: models.CharField = models.CharField(
        max_length=24, unique=True, editable=False
    )
    offer_id: models.UUIDField = models.UUIDField(null=True, blank=True, db_index=True)
    customer_id: models.CharField = models.CharField(max_length=64)
    status: models.CharField = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
    )
    payment_status: models.CharField = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.UNPAID,
    )
    currency: models.CharField = models.CharField(max_length=3, default="EUR")
    subtotal = money_field()
    tax_total = money_field()
    shipping_cost = money_field()
    discount_amount = money_field()
    grand_total = money_field()
    payment_reference: models.CharField = models.CharField(
        max_length=255, blank=True, default=""
    )
    notes: models.TextField = models.TextField(blank=True, default="")
    version: models.PositiveIntegerField = models.PositiveIntegerField(default=1)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["tenant_id", "status"], name="orders_tenant_status_idx"),
            models.Index(fields=["tenant_id", "-created_at"], name="orders_tenant_created_idx"),
        ]

    # ------------------------------------------------------------------
    # State Machine helpers
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        """Return ``True`` if the order is in a terminal state."""
        return self.status in TERMINAL_STATES

    def can_transition_to(self, new_status: str) -> bool:
        """Check whether transitioning to *new_status* is valid."""
        allowed = VALID_TRANSITIONS.get(self.status, set())
        return new_status in allowed

    # ------------------------------------------------------------------
    # Order number generation
    # ------------------------------------------------------------------

    @staticmethod
    def generate_order_number() -> str:
        """Generate a human-readable order number: ``ORD-YYYYMMDD-NNNNNN``."""
        now = timezone.now()
        sequence = secrets.randbelow(1_000_000)
        return f"{settings.ORDER_NUMBER_PREFIX}-{now:%Y%m%d}-{sequence:06d}"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self.order_number:
            for attempt in range(ORDER_NUMBER_MAX_RETRIES):
                candidate = self.generate_order_number()
                if not Order.objects.filter(order_number=candidate).exists():
                    self.order_number = candidate
                    break
                logger.warning("order.number_collision", attempt=attempt + 1)
            else:
                raise RuntimeError(
                    f"Failed to generate unique order_number after "
                    f"{ORDER_NUMBER_MAX_RETRIES} attempts"
                )
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.order_number} ({self.status})"


class ShippingAddress(BaseModel):
    """Delivery address, one per order."""

    order: models.OneToOneField = models.OneToOneField(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="shipping_address",
    )
    full_name: models.CharField = models.CharField(max_length=255)
    street: models.CharField = models.CharField(max_length=255)
    city: models.CharField = models.CharField(max_length=120)
    postal_code: models.CharField = models.CharField(max_length=20)
    country: models.CharField = models.CharField(max_length=2)
    state: models.CharField = models.CharField(max_length=120, blank=True, default="")
    phone: models.CharField = models.CharField(max_length=40, blank=True, default="")
    email: models.EmailField = models.EmailField(blank=True, default="")

    class Meta:
        db_table = "order_shipping_addresses"

    def __str__(self) -> str:
        return f"{self.full_name}, {self.city} ({self.country})"


class OrderLineItem(BaseModel):
    """Line item snapshot; prices never change after creation."""

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="line_items",
    )
    product_id: models.CharField = models.CharField(max_length=64)
    sku: models.CharField = models.CharField(max_length=64, null=True, blank=True)
    description: models.CharField = models.CharField(max_length=255)
    quantity = money_field()
    unit_price = money_field()
    discount_percent = money_field()
    tax_percent = money_field()
    total_price = money_field()
    line_number: models.PositiveIntegerField = models.PositiveIntegerField()

    class Meta:
        db_table = "order_line_items"
        ordering = ["line_number"]

    def __str__(self) -> str:
        return f"#{self.line_number} {self.product_id} x{self.quantity} ({self.total_price})"


class OrderStatusHistory(BaseModel):
    """Append-only audit trail for order status transitions.

    ``changed_by`` is empty when the change was performed by the system.
    """

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="status_history",
    )
    old_status: models.CharField = models.CharField(  # noqa: DJ01
        max_length=20,
        choices=OrderStatus.choices,
        null=True,
        blank=True,
    )
    new_status: models.CharField = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
    )
    payment_status: models.CharField = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
    )
    notes: models.TextField = models.TextField(blank=True, default="")
    changed_by: models.CharField = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        db_table = "order_status_history"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(
                fields=["order", "created_at"],
                name="osh_order_created_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.order} : {self.old_status} -> {self.new_status}"


class Payment(TenantModel):
    """One charge attempt against an order."""

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="payments",
    )
    provider: models.CharField = models.CharField(
        max_length=20, choices=PaymentProvider.choices
    )
    status: models.CharField = models.CharField(
        max_length=20,
        choices=PaymentTransactionStatus.choices,
        default=PaymentTransactionStatus.PENDING,
    )
    amount = money_field()
    currency: models.CharField = models.CharField(max_length=3)
    payment_method: models.CharField = models.CharField(max_length=64, null=True, blank=True)
    transaction_id: models.CharField = models.CharField(max_length=255, null=True, blank=True)
    payment_reference: models.CharField = models.CharField(
        max_length=255, null=True, blank=True
    )
    last4: models.CharField = models.CharField(max_length=4, null=True, blank=True)
    processed_at: models.DateTimeField = models.DateTimeField(null=True, blank=True)
    refund_amount = money_field(null=True, blank=True, default=None)
    refunded_at: models.DateTimeField = models.DateTimeField(null=True, blank=True)
    failure_reason: models.TextField = models.TextField(null=True, blank=True)

    class Meta:
        db_table = "order_payments"
        ordering = ["created_at", "id"]

    def __str__(self) -> str:
        return f"{self.provider} {self.amount} {self.currency} ({self.status})"
