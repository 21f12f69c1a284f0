"""Order service layer (Use Cases).

Orchestrates order creation from an approved offer or from explicit
line items, status management and cancellation.

Creation is a saga over collaborators (offers, inventory, shipping);
only the order rows are written locally, inside one
``transaction.atomic()`` unit.  Collaborator calls and event publication
always happen outside transactions.

Business rules enforced:
- Only APPROVED, unexpired offers become orders.
- An inventory shortfall leaves no order behind.
- A failed reservation voids the persisted order (CANCELED + history).
- Status transitions validated against the state machine; every change
  is recorded in history and bumps ``version``.
- ``order.confirmed`` is published once per transition into CONFIRMED.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional
from uuid import UUID

import structlog
from django.conf import settings
from django.db import transaction

from modules.orders.constants import OrderStatus
from modules.orders.dtos import CreateOrderDTO, OrderFilters, ShippingAddressDTO
from modules.orders.events import order_confirmed, order_created
from modules.orders.exceptions import (
    AlreadyCanceled,
    AlreadyDelivered,
    InvalidOrderStatus,
    OrderNotFound,
)
from modules.orders.integrations.schemas import InventoryItem
from modules.orders.saga import Saga, SagaStep
from shared.domain.exceptions import InsufficientInventory, InvalidInput
from shared.domain.pricing import Totals, aggregate_totals, line_total, quantize
from shared.infrastructure.resilience import fire_and_log

if TYPE_CHECKING:
    from modules.orders.integrations.inventory import InventoryClient
    from modules.orders.integrations.offers import OffersClient
    from modules.orders.integrations.shipping import ShippingClient
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository
    from shared.domain.bus import IEventBus

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


def _line_rows(lines: Iterable[Any]) -> List[Dict[str, Any]]:
    """Order line-item rows priced by the pricing engine."""
    rows = []
    for line in lines:
        product_id = line.product_id or line.sku
        if not product_id:
            raise InvalidInput(f"Line '{line.description}' has no product reference.")
        rows.append(
            {
                "product_id": product_id,
                "sku": line.sku,
                "description": line.description,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "discount_percent": line.discount_percent,
                "tax_percent": line.tax_percent,
                "total_price": line_total(
                    line.quantity,
                    line.unit_price,
                    line.discount_percent,
                    line.tax_percent,
                ),
            }
        )
    return rows


def _inventory_items(rows: List[Dict[str, Any]]) -> List[InventoryItem]:
    return [
        InventoryItem(product_id=row["product_id"], sku=row["sku"], quantity=row["quantity"])
        for row in rows
    ]


class OrderService:
    """Application service for Order use-cases.

    Receives the repository, the collaborator adapters and the event bus
    via constructor injection (DIP).
    """

    def __init__(
        self,
        order_repository: IOrderRepository,
        offers_client: OffersClient,
        inventory_client: InventoryClient,
        shipping_client: ShippingClient,
        event_bus: IEventBus,
        auto_confirm: Optional[bool] = None,
        source: Optional[str] = None,
    ) -> None:
        self._order_repo = order_repository
        self._offers = offers_client
        self._inventory = inventory_client
        self._shipping = shipping_client
        self._event_bus = event_bus
        self._auto_confirm = (
            settings.AUTO_CONFIRM_ORDERS if auto_confirm is None else auto_confirm
        )
        self._source = source or settings.SERVICE_NAME

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_from_offer(
        self,
        offer_id: UUID | str,
        shipping_address: ShippingAddressDTO,
        tenant_id: str,
        notes: Optional[str] = None,
        changed_by: Optional[str] = None,
    ) -> Order:
        """Turn an approved offer into an order.

        Raises:
            OfferNotFound / OfferNotApproved / OfferExpired: offer checks.
            InsufficientInventory: validation or reservation shortfall.
            DependencyUnavailable: a collaborator kept failing.
        """
        log = logger.bind(tenant_id=tenant_id, offer_id=str(offer_id))
        log.info("order.creation_started", origin="offer")

        def persist(ctx: Dict[str, Any]) -> Order:
            offer = ctx["offer"]
            return self._persist(
                tenant_id,
                ctx["totals"],
                ctx["rows"],
                shipping_address,
                shipping_cost=ZERO,
                fields={
                    "offer_id": offer.id,
                    "customer_id": offer.customer_id,
                    "currency": offer.currency,
                    "notes": notes or "",
                },
                history_notes="Order created from offer",
                changed_by=changed_by,
            )

        saga = Saga(
            "create_order_from_offer",
            [
                SagaStep("offer", lambda ctx: self._offers.get_approved_offer(offer_id, tenant_id)),
                SagaStep("rows", lambda ctx: _line_rows(ctx["offer"].line_items)),
                SagaStep("inventory_check", lambda ctx: self._check_inventory(ctx["rows"], tenant_id)),
                SagaStep("totals", lambda ctx: aggregate_totals(ctx["offer"].line_items)),
                SagaStep("order", persist, compensation=self._void_order),
                SagaStep("reservation", lambda ctx: self._reserve(ctx, tenant_id)),
            ],
        )
        order = saga.run()["order"]

        fire_and_log("offers.consume", self._offers.consume, offer_id, order.id, tenant_id)
        return self._after_create(order, log)

    def create(
        self,
        dto: CreateOrderDTO,
        tenant_id: str,
        changed_by: Optional[str] = None,
    ) -> Order:
        """Create an order from explicit line items (no offer).

        The shipping quote is added to the grand total.
        """
        log = logger.bind(tenant_id=tenant_id, customer_id=dto.customer_id)
        log.info("order.creation_started", origin="direct")

        def persist(ctx: Dict[str, Any]) -> Order:
            return self._persist(
                tenant_id,
                ctx["totals"],
                ctx["rows"],
                dto.shipping_address,
                shipping_cost=ctx["shipping"].cost,
                fields={
                    "customer_id": dto.customer_id,
                    "currency": dto.currency.upper(),
                    "notes": dto.notes or "",
                },
                history_notes="Order created",
                changed_by=changed_by,
            )

        saga = Saga(
            "create_order",
            [
                SagaStep("rows", lambda ctx: _line_rows(dto.line_items)),
                SagaStep("inventory_check", lambda ctx: self._check_inventory(ctx["rows"], tenant_id)),
                SagaStep(
                    "shipping",
                    lambda ctx: self._shipping.calculate(
                        dto.shipping_address, _inventory_items(ctx["rows"]), tenant_id
                    ),
                ),
                SagaStep("totals", lambda ctx: aggregate_totals(dto.line_items)),
                SagaStep("order", persist, compensation=self._void_order),
                SagaStep("reservation", lambda ctx: self._reserve(ctx, tenant_id)),
            ],
        )
        order = saga.run()["order"]
        return self._after_create(order, log)

    def update_status(
        self,
        order_id: UUID | str,
        tenant_id: str,
        new_status: str,
        notes: str = "",
        changed_by: Optional[str] = None,
    ) -> Order:
        """Transition an order to a new status.

        Acquires a row-level lock (``SELECT FOR UPDATE``) on the order
        before validating the transition.  CANCELED is delegated to
        ``cancel``.

        Raises:
            OrderNotFound: order does not exist.
            InvalidOrderStatus: transition is not allowed.
        """
        if new_status == OrderStatus.CANCELED:
            return self.cancel(order_id, tenant_id, reason=notes or "status update", changed_by=changed_by)

        with transaction.atomic():
            order = self._order_repo.get_for_update(order_id, tenant_id)
            if not order:
                raise OrderNotFound(f"Order {order_id} not found.")

            log = logger.bind(
                order_id=str(order.id),
                current_status=order.status,
                new_status=new_status,
            )
            if order.is_terminal or not order.can_transition_to(new_status):
                log.warning("order.invalid_transition")
                raise InvalidOrderStatus(
                    f"Cannot transition from {order.status} to {new_status}."
                )

            old_status = order.status
            order.status = new_status
            self._order_repo.save(order)
            self._order_repo.add_history(order, old_status, new_status, notes, changed_by)

        log.info("order.status_updated")
        if new_status == OrderStatus.CONFIRMED and old_status != OrderStatus.CONFIRMED:
            order.add_domain_event(order_confirmed(order, self._source))
        self._flush_events(order)
        return order

    def cancel(
        self,
        order_id: UUID | str,
        tenant_id: str,
        reason: str,
        changed_by: Optional[str] = None,
    ) -> Order:
        """Cancel an order and release its inventory reservation.

        Raises:
            OrderNotFound: order does not exist.
            AlreadyCanceled: the order is already canceled.
            AlreadyDelivered: delivered orders cannot be canceled.
        """
        with transaction.atomic():
            order = self._order_repo.get_for_update(order_id, tenant_id)
            if not order:
                raise OrderNotFound(f"Order {order_id} not found.")

            log = logger.bind(order_id=str(order.id), current_status=order.status)
            if order.status == OrderStatus.CANCELED:
                log.warning("order.cancel_not_allowed")
                raise AlreadyCanceled(f"Order {order.order_number} is already canceled.")
            if order.status == OrderStatus.DELIVERED:
                log.warning("order.cancel_not_allowed")
                raise AlreadyDelivered(
                    f"Order {order.order_number} was delivered and cannot be canceled."
                )

            old_status = order.status
            order.status = OrderStatus.CANCELED
            self._order_repo.save(order)
            self._order_repo.add_history(
                order,
                old_status,
                OrderStatus.CANCELED,
                f"Order canceled: {reason}",
                changed_by,
            )

        fire_and_log("inventory.release", self._inventory.release, order.id, tenant_id)
        log.info("order.canceled", reason=reason)
        return order

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id: UUID | str, tenant_id: str) -> Order:
        """Retrieve a single order by ID.

        Raises:
            OrderNotFound: if the order does not exist.
        """
        order = self._order_repo.get_by_id(order_id, tenant_id)
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    def get_by_order_number(self, order_number: str, tenant_id: str) -> Order:
        order = self._order_repo.get_by_order_number(order_number, tenant_id)
        if not order:
            raise OrderNotFound(f"Order {order_number} not found.")
        return order

    def get_by_offer_id(self, offer_id: UUID | str, tenant_id: str) -> Optional[Order]:
        return self._order_repo.get_by_offer_id(offer_id, tenant_id)

    def list_orders(
        self, tenant_id: str, filters: Optional[OrderFilters] = None
    ) -> List[Order]:
        """Return a page of orders, newest first."""
        filters = filters or OrderFilters()
        return self._order_repo.list(tenant_id, filters.model_dump())

    # ------------------------------------------------------------------
    # Saga steps
    # ------------------------------------------------------------------

    def _check_inventory(self, rows: List[Dict[str, Any]], tenant_id: str) -> None:
        result = self._inventory.validate(_inventory_items(rows), tenant_id)
        if not result.valid:
            logger.warning(
                "order.inventory_shortfall",
                tenant_id=tenant_id,
                unavailable_items=result.unavailable_items,
            )
            raise InsufficientInventory(result.unavailable_items)

    def _reserve(self, ctx: Dict[str, Any], tenant_id: str):
        return self._inventory.reserve(
            _inventory_items(ctx["rows"]), ctx["order"].id, tenant_id
        )

    def _persist(
        self,
        tenant_id: str,
        totals: Totals,
        rows: List[Dict[str, Any]],
        address: ShippingAddressDTO,
        shipping_cost: Decimal,
        fields: Dict[str, Any],
        history_notes: str,
        changed_by: Optional[str],
    ) -> Order:
        shipping_cost = quantize(Decimal(shipping_cost))
        data = {
            **fields,
            "subtotal": totals.subtotal,
            "discount_amount": totals.discount_total,
            # grand_total = subtotal + tax_total + shipping - discount holds exactly.
            "tax_total": totals.grand_total - totals.subtotal + totals.discount_total,
            "shipping_cost": shipping_cost,
            "grand_total": totals.grand_total + shipping_cost,
            "shipping_address": address.model_dump(exclude_none=True),
            "line_items": rows,
            "history_notes": history_notes,
            "changed_by": changed_by,
        }
        return self._order_repo.create(data, tenant_id)

    def _void_order(self, ctx: Dict[str, Any], error: BaseException) -> None:
        order = ctx["order"]
        with transaction.atomic():
            locked = self._order_repo.get_for_update(order.id, order.tenant_id)
            old_status = locked.status
            locked.status = OrderStatus.CANCELED
            self._order_repo.save(locked)
            self._order_repo.add_history(
                locked,
                old_status,
                OrderStatus.CANCELED,
                f"Order voided: inventory reservation failed ({error})",
            )
        logger.warning("order.voided", order_id=str(order.id), error=str(error))

    def _after_create(self, order: Order, log) -> Order:
        log.info(
            "order.created",
            order_id=str(order.id),
            order_number=order.order_number,
            grand_total=str(order.grand_total),
        )
        order.add_domain_event(order_created(order, self._source))
        self._flush_events(order)

        if self._auto_confirm:
            self.update_status(
                order.id, order.tenant_id, OrderStatus.CONFIRMED, notes="Order auto-confirmed"
            )
        return self._order_repo.get_by_id(order.id, order.tenant_id) or order

    def _flush_events(self, order: Order) -> None:
        for event in order.domain_events:
            fire_and_log(f"publish.{event.type}", self._event_bus.publish, event)
        order.clear_domain_events()
