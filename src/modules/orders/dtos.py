"""Order DTOs for the Service Layer.

Framework-agnostic data transfer objects using Pydantic v2.
DTOs are immutable (``frozen=True``).

- ``ShippingAddressDTO``: delivery address for a new order.
- ``CreateOrderLineItemDTO``: input for a single order line item.
- ``CreateOrderDTO``: input for direct order creation (nested items).
- ``OrderFilters``: criteria accepted by ``OrderService.list_orders``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from modules.orders.constants import DEFAULT_LIST_LIMIT, OrderStatus, PaymentStatus


class ShippingAddressDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    full_name: str = Field(min_length=1)
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    postal_code: str = Field(min_length=1)
    country: str = Field(min_length=2, max_length=2)
    state: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class CreateOrderLineItemDTO(BaseModel):
    """Immutable DTO for a single line in a creation request."""

    model_config = ConfigDict(frozen=True)

    product_id: str = Field(min_length=1)
    description: str = Field(min_length=1)
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    discount_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    tax_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    sku: Optional[str] = None


class CreateOrderDTO(BaseModel):
    """Immutable DTO for direct order creation.

    Validates:
    - ``line_items`` must contain at least one item.
    """

    model_config = ConfigDict(frozen=True)

    customer_id: str = Field(min_length=1)
    line_items: List[CreateOrderLineItemDTO]
    shipping_address: ShippingAddressDTO
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    notes: Optional[str] = ""

    @field_validator("line_items")
    @classmethod
    def items_must_not_be_empty(
        cls, v: List[CreateOrderLineItemDTO]
    ) -> List[CreateOrderLineItemDTO]:
        if not v:
            raise ValueError("Order must have at least one line item.")
        return v


class OrderFilters(BaseModel):
    model_config = ConfigDict(frozen=True)

    customer_id: Optional[str] = None
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=DEFAULT_LIST_LIMIT, ge=1, le=500)
