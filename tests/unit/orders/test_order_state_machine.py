"""Status transitions and cancellation on OrderService."""

from uuid import uuid4

import pytest

from modules.orders.constants import VALID_TRANSITIONS, OrderStatus
from modules.orders.exceptions import (
    AlreadyCanceled,
    AlreadyDelivered,
    InvalidOrderStatus,
    OrderNotFound,
)
from modules.orders.models import Order
from shared.domain.exceptions import DependencyUnavailable

pytestmark = pytest.mark.unit


@pytest.fixture()
def order(order_service, approved_offer, address, tenant_id):
    return order_service.create_from_offer(approved_offer.id, address, tenant_id)


def _walk(service, order, tenant_id, *statuses):
    for status in statuses:
        order = service.update_status(order.id, tenant_id, status)
    return order


# ============================================================================
# Transition table
# ============================================================================


class TestTransitionTable:
    @pytest.mark.parametrize(
        "current, target, allowed",
        [
            (OrderStatus.PENDING, OrderStatus.CONFIRMED, True),
            (OrderStatus.PENDING, OrderStatus.SHIPPED, False),
            (OrderStatus.CONFIRMED, OrderStatus.SHIPPED, True),
            (OrderStatus.CONFIRMED, OrderStatus.PENDING, False),
            (OrderStatus.PROCESSING, OrderStatus.SHIPPED, True),
            (OrderStatus.SHIPPED, OrderStatus.DELIVERED, True),
            (OrderStatus.SHIPPED, OrderStatus.CANCELED, True),
            (OrderStatus.DELIVERED, OrderStatus.CANCELED, False),
            (OrderStatus.CANCELED, OrderStatus.PENDING, False),
        ],
    )
    def test_can_transition_to(self, current, target, allowed):
        assert Order(status=current).can_transition_to(target) is allowed

    def test_terminal_states_have_no_exits(self):
        assert VALID_TRANSITIONS[OrderStatus.DELIVERED] == set()
        assert VALID_TRANSITIONS[OrderStatus.CANCELED] == set()
        assert Order(status=OrderStatus.DELIVERED).is_terminal
        assert not Order(status=OrderStatus.SHIPPED).is_terminal


# ============================================================================
# update_status
# ============================================================================


class TestUpdateStatus:
    def test_full_lifecycle_records_history_and_versions(self, order_service, order, tenant_id):
        delivered = _walk(
            order_service,
            order,
            tenant_id,
            OrderStatus.CONFIRMED,
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
        )

        assert delivered.status == OrderStatus.DELIVERED
        assert delivered.version == 5
        transitions = [
            (h.old_status, h.new_status)
            for h in Order.objects.get(id=order.id).status_history.all()
        ]
        assert transitions == [
            (None, OrderStatus.PENDING),
            (OrderStatus.PENDING, OrderStatus.CONFIRMED),
            (OrderStatus.CONFIRMED, OrderStatus.PROCESSING),
            (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
            (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
        ]

    def test_order_confirmed_published_once(self, order_service, order, tenant_id, event_bus):
        _walk(order_service, order, tenant_id, OrderStatus.CONFIRMED, OrderStatus.SHIPPED)

        (event,) = event_bus.events_of("order.confirmed")
        assert event.data["orderId"] == str(order.id)
        assert event.data["shippingAddressId"] == str(order.shipping_address.id)
        assert event.data["lineItems"][0]["productId"] == "prod-1"
        assert set(event.data) == {
            "orderId",
            "orderNumber",
            "customerId",
            "paymentStatus",
            "shippingAddressId",
            "lineItems",
        }

    def test_history_carries_notes_and_actor(self, order_service, order, tenant_id):
        order_service.update_status(
            order.id, tenant_id, OrderStatus.CONFIRMED, notes="checked", changed_by="ops@example.com"
        )
        last = Order.objects.get(id=order.id).status_history.last()
        assert (last.notes, last.changed_by) == ("checked", "ops@example.com")

    def test_invalid_transition_changes_nothing(self, order_service, order, tenant_id):
        with pytest.raises(InvalidOrderStatus):
            order_service.update_status(order.id, tenant_id, OrderStatus.DELIVERED)

        reloaded = Order.objects.get(id=order.id)
        assert reloaded.status == OrderStatus.PENDING
        assert reloaded.version == 1
        assert reloaded.status_history.count() == 1

    def test_delivered_is_final(self, order_service, order, tenant_id):
        _walk(order_service, order, tenant_id, OrderStatus.CONFIRMED, OrderStatus.SHIPPED, OrderStatus.DELIVERED)
        with pytest.raises(InvalidOrderStatus):
            order_service.update_status(order.id, tenant_id, OrderStatus.SHIPPED)

    def test_unknown_order(self, order_service, tenant_id):
        with pytest.raises(OrderNotFound):
            order_service.update_status(uuid4(), tenant_id, OrderStatus.CONFIRMED)

    def test_canceled_target_delegates_to_cancel(self, order_service, order, tenant_id, inventory_client):
        canceled = order_service.update_status(order.id, tenant_id, OrderStatus.CANCELED, notes="fraud")

        assert canceled.status == OrderStatus.CANCELED
        inventory_client.release.assert_called_once_with(order.id, tenant_id)
        last = Order.objects.get(id=order.id).status_history.last()
        assert last.notes == "Order canceled: fraud"


# ============================================================================
# cancel
# ============================================================================


class TestCancel:
    def test_cancel_releases_inventory_once(self, order_service, order, tenant_id, inventory_client):
        canceled = order_service.cancel(order.id, tenant_id, reason="customer request")

        assert canceled.status == OrderStatus.CANCELED
        assert canceled.version == 2
        inventory_client.release.assert_called_once_with(order.id, tenant_id)
        history = Order.objects.get(id=order.id).status_history.last()
        assert history.old_status == OrderStatus.PENDING
        assert history.notes == "Order canceled: customer request"

    def test_cancel_twice(self, order_service, order, tenant_id, inventory_client):
        order_service.cancel(order.id, tenant_id, reason="first")

        with pytest.raises(AlreadyCanceled):
            order_service.cancel(order.id, tenant_id, reason="second")

        assert inventory_client.release.call_count == 1
        assert Order.objects.get(id=order.id).status_history.count() == 2

    def test_delivered_cannot_be_canceled(self, order_service, order, tenant_id, inventory_client):
        _walk(order_service, order, tenant_id, OrderStatus.CONFIRMED, OrderStatus.SHIPPED, OrderStatus.DELIVERED)

        with pytest.raises(AlreadyDelivered):
            order_service.cancel(order.id, tenant_id, reason="too late")

        assert Order.objects.get(id=order.id).status == OrderStatus.DELIVERED
        inventory_client.release.assert_not_called()

    def test_shipped_order_can_be_canceled(self, order_service, order, tenant_id):
        _walk(order_service, order, tenant_id, OrderStatus.CONFIRMED, OrderStatus.SHIPPED)
        assert order_service.cancel(order.id, tenant_id, reason="lost").status == OrderStatus.CANCELED

    def test_release_failure_is_swallowed(self, order_service, order, tenant_id, inventory_client):
        inventory_client.release.side_effect = DependencyUnavailable("down", service="inventory-service")

        canceled = order_service.cancel(order.id, tenant_id, reason="customer request")

        assert canceled.status == OrderStatus.CANCELED
        assert Order.objects.get(id=order.id).status == OrderStatus.CANCELED

    def test_unknown_order(self, order_service, tenant_id):
        with pytest.raises(OrderNotFound):
            order_service.cancel(uuid4(), tenant_id, reason="x")
