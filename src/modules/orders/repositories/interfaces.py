"""Order repository interface.

Extends ``IRepository[Order]`` with methods required by the Order
aggregate: atomic creation with address, line items and first history
row; row-locked loads; status history; payments and their sums.

The Service Layer depends exclusively on this contract (DIP).
"""

from __future__ import annotations

from abc import abstractmethod
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import UUID

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.orders.models import Order, OrderStatusHistory, Payment


class IOrderRepository(IRepository["Order"]):
    """Repository contract for the Order aggregate root.

    The Order aggregate includes its ShippingAddress, OrderLineItem
    children, OrderStatusHistory records and Payments.
    """

    @abstractmethod
    def create(self, data: Dict[str, Any], tenant_id: str) -> Order:
        """Create an order with address, line items and history atomically.

        ``data`` holds the order fields plus ``shipping_address`` (dict),
        ``line_items`` (list of dicts), ``history_notes`` and
        ``changed_by``.
        """

    @abstractmethod
    def get_for_update(self, id: UUID | str, tenant_id: str) -> Optional[Order]:
        """Retrieve an order with a row-level lock (caller owns the transaction)."""

    @abstractmethod
    def get_by_order_number(self, order_number: str, tenant_id: str) -> Optional[Order]:
        """Retrieve an order by its human-readable number."""

    @abstractmethod
    def get_by_offer_id(self, offer_id: UUID | str, tenant_id: str) -> Optional[Order]:
        """Retrieve the order created from an offer, if any."""

    @abstractmethod
    def add_history(
        self,
        order: Order,
        old_status: Optional[str],
        new_status: str,
        notes: str = "",
        changed_by: Optional[str] = None,
    ) -> OrderStatusHistory:
        """Record a status change in the order's audit trail."""

    @abstractmethod
    def create_payment(self, order: Order, data: Dict[str, Any]) -> Payment:
        """Persist a new payment row for *order*."""

    @abstractmethod
    def get_payment(self, order: Order, payment_id: UUID | str) -> Optional[Payment]:
        """Retrieve a payment that belongs to *order*."""

    @abstractmethod
    def save_payment(self, payment: Payment) -> Payment:
        """Persist payment changes."""

    @abstractmethod
    def total_paid(self, order: Order) -> Decimal:
        """Sum of SUCCEEDED payment amounts."""

    @abstractmethod
    def total_committed(self, order: Order) -> Decimal:
        """Sum of SUCCEEDED and in-flight PENDING payment amounts."""

    @abstractmethod
    def total_captured(self, order: Order) -> Decimal:
        """Sum of amounts ever captured (SUCCEEDED and REFUNDED payments)."""

    @abstractmethod
    def total_refunded(self, order: Order) -> Decimal:
        """Sum of refunded amounts."""

    @abstractmethod
    def list(
        self, tenant_id: str, filters: Optional[Dict[str, Any]] = None
    ) -> List[Order]:
        """List orders with optional filters, offset and limit."""
