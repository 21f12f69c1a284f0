from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import structlog

from modules.orders.dtos import ShippingAddressDTO
from modules.orders.integrations.inventory import InventoryClient
from modules.orders.integrations.offers import OffersClient
from modules.orders.integrations.schemas import (
    InventoryValidation,
    OfferLine,
    OfferSnapshot,
    ReservationResult,
    ShippingQuote,
)
from modules.orders.integrations.shipping import ShippingClient
from modules.orders.repositories import OrderDjangoRepository
from modules.orders.services import OrderService
from shared.infrastructure.bus import InMemoryEventBus

TENANT = "tenant-a"


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture(autouse=True)
def _clear_log_context():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture()
def tenant_id():
    return TENANT


@pytest.fixture()
def address():
    return ShippingAddressDTO(
        full_name="Ada Lovelace",
        street="12 Analytical Row",
        city="London",
        postal_code="N1 9GU",
        country="GB",
    )


@pytest.fixture()
def approved_offer():
    return OfferSnapshot(
        id="0190a5f0-0000-7000-8000-000000000001",
        customer_id="cust-1",
        status="APPROVED",
        currency="EUR",
        line_items=[
            OfferLine(
                product_id="prod-1",
                sku="SKU-1",
                description="Widget",
                quantity=Decimal("10"),
                unit_price=Decimal("100"),
                discount_percent=Decimal("5"),
                tax_percent=Decimal("10"),
            )
        ],
    )


@pytest.fixture()
def offers_client(approved_offer):
    client = MagicMock(spec=OffersClient)
    client.get_approved_offer.return_value = approved_offer
    return client


@pytest.fixture()
def inventory_client():
    client = MagicMock(spec=InventoryClient)
    client.validate.return_value = InventoryValidation(valid=True)
    client.reserve.return_value = ReservationResult(success=True)
    return client


@pytest.fixture()
def shipping_client():
    client = MagicMock(spec=ShippingClient)
    client.calculate.return_value = ShippingQuote(cost=Decimal("15.00"), currency="EUR")
    return client


@pytest.fixture()
def event_bus():
    return InMemoryEventBus()


@pytest.fixture()
def order_repository():
    return OrderDjangoRepository()


@pytest.fixture()
def order_service(order_repository, offers_client, inventory_client, shipping_client, event_bus):
    return OrderService(
        order_repository=order_repository,
        offers_client=offers_client,
        inventory_client=inventory_client,
        shipping_client=shipping_client,
        event_bus=event_bus,
        auto_confirm=False,
        source="orders-service",
    )
