"""Django ORM implementation of the Order repository.

Satisfies ``IOrderRepository`` using Django's QuerySet API.
``create`` is wrapped in ``transaction.atomic()`` so the Order aggregate
(Order + ShippingAddress + line items + first history row) is persisted
as one unit.

Status and payment writes load the order through ``get_for_update``
(``select_for_update()``) inside the caller's transaction and bump
``version``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Sum

from modules.orders.constants import DEFAULT_LIST_LIMIT, PaymentTransactionStatus
from modules.orders.models import (
    Order,
    OrderLineItem,
    OrderStatusHistory,
    Payment,
    ShippingAddress,
)
from modules.orders.repositories.interfaces import IOrderRepository

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")

_EAGER = ("line_items", "status_history", "payments")


class OrderDjangoRepository(IOrderRepository):
    """Concrete Order repository backed by Django ORM."""

    # ------------------------------------------------------------------
    # Create (aggregate root + children)
    # ------------------------------------------------------------------

    @transaction.atomic
    def create(self, data: Dict[str, Any], tenant_id: str) -> Order:
        data = dict(data)
        address = data.pop("shipping_address")
        line_items = data.pop("line_items", [])
        history_notes = data.pop("history_notes", "Order created")
        changed_by = data.pop("changed_by", None)

        order = Order(tenant_id=tenant_id, **data)
        order.save()

        ShippingAddress.objects.create(order=order, **address)
        OrderLineItem.objects.bulk_create(
            [
                OrderLineItem(order=order, line_number=number, **item)
                for number, item in enumerate(line_items, start=1)
            ]
        )
        self.add_history(order, None, order.status, history_notes, changed_by)

        logger.info(
            "order.persisted",
            order_id=str(order.id),
            order_number=order.order_number,
            item_count=len(line_items),
        )
        return order

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def _scoped(self, tenant_id: str):
        return Order.objects.filter(tenant_id=tenant_id)

    def get_by_id(self, id: UUID | str, tenant_id: str) -> Optional[Order]:
        """Retrieve an order with eager-loaded relations.

        Returns ``None`` for non-existent or invalid IDs.
        """
        try:
            return (
                self._scoped(tenant_id)
                .select_related("shipping_address")
                .prefetch_related(*_EAGER)
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def get_for_update(self, id: UUID | str, tenant_id: str) -> Optional[Order]:
        try:
            return self._scoped(tenant_id).select_for_update().filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def get_by_order_number(self, order_number: str, tenant_id: str) -> Optional[Order]:
        return (
            self._scoped(tenant_id)
            .select_related("shipping_address")
            .prefetch_related(*_EAGER)
            .filter(order_number=order_number)
            .first()
        )

    def get_by_offer_id(self, offer_id: UUID | str, tenant_id: str) -> Optional[Order]:
        try:
            return (
                self._scoped(tenant_id)
                .prefetch_related(*_EAGER)
                .filter(offer_id=offer_id)
                .order_by("created_at")
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def list(
        self, tenant_id: str, filters: Optional[Dict[str, Any]] = None
    ) -> List[Order]:
        """List orders, newest first.

        Supported filter keys: ``customer_id``, ``status``,
        ``payment_status``, ``created_from``, ``created_to``, ``offset``,
        ``limit``.
        """
        filters = dict(filters or {})
        offset = filters.pop("offset", 0) or 0
        limit = filters.pop("limit", DEFAULT_LIST_LIMIT) or DEFAULT_LIST_LIMIT

        queryset = self._scoped(tenant_id).prefetch_related("line_items")
        lookups = {
            "customer_id": "customer_id",
            "status": "status",
            "payment_status": "payment_status",
            "created_from": "created_at__gte",
            "created_to": "created_at__lte",
        }
        for key, lookup in lookups.items():
            value = filters.get(key)
            if value is not None:
                queryset = queryset.filter(**{lookup: value})
        return list(queryset.order_by("-created_at", "-id")[offset : offset + limit])

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, entity: Order) -> Order:
        """Persist an order; bumps ``version``."""
        entity.version = (entity.version or 0) + 1
        entity.save()
        return entity

    def add_history(
        self,
        order: Order,
        old_status: Optional[str],
        new_status: str,
        notes: str = "",
        changed_by: Optional[str] = None,
    ) -> OrderStatusHistory:
        history = OrderStatusHistory.objects.create(
            order=order,
            old_status=old_status,
            new_status=new_status,
            payment_status=order.payment_status,
            notes=notes,
            changed_by=changed_by or "",
        )
        logger.info(
            "order.history_added",
            order_id=str(order.id),
            old_status=old_status,
            new_status=new_status,
        )
        return history

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def create_payment(self, order: Order, data: Dict[str, Any]) -> Payment:
        return Payment.objects.create(order=order, tenant_id=order.tenant_id, **data)

    def get_payment(self, order: Order, payment_id: UUID | str) -> Optional[Payment]:
        try:
            return Payment.objects.filter(order=order, id=payment_id).first()
        except (ValueError, ValidationError):
            return None

    def save_payment(self, payment: Payment) -> Payment:
        payment.save()
        return payment

    def _sum(self, order: Order, field: str, statuses) -> Decimal:
        total = Payment.objects.filter(order=order, status__in=statuses).aggregate(
            total=Sum(field)
        )["total"]
        return total or ZERO

    def total_paid(self, order: Order) -> Decimal:
        return self._sum(order, "amount", [PaymentTransactionStatus.SUCCEEDED])

    def total_committed(self, order: Order) -> Decimal:
        return self._sum(
            order,
            "amount",
            [PaymentTransactionStatus.SUCCEEDED, PaymentTransactionStatus.PENDING],
        )

    def total_captured(self, order: Order) -> Decimal:
        return self._sum(
            order,
            "amount",
            [PaymentTransactionStatus.SUCCEEDED, PaymentTransactionStatus.REFUNDED],
        )

    def total_refunded(self, order: Order) -> Decimal:
        return self._sum(order, "refund_amount", [PaymentTransactionStatus.REFUNDED])
