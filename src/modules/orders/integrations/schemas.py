"""Wire schemas for collaborator requests and responses.

Collaborators speak camelCase JSON; every model accepts both the wire
alias and the Python field name.  Responses tolerate unknown fields.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Offers
# ---------------------------------------------------------------------------


class OfferLine(WireModel):
    description: str
    quantity: Decimal
    unit_price: Decimal
    discount_percent: Decimal = Decimal("0")
    tax_percent: Decimal = Decimal("0")
    product_id: Optional[str] = None
    sku: Optional[str] = None


class OfferSnapshot(WireModel):
    id: str
    offer_number: Optional[str] = None
    customer_id: str
    status: str
    currency: str = "EUR"
    valid_until: Optional[datetime] = None
    line_items: List[OfferLine] = Field(default_factory=list)
    grand_total: Optional[Decimal] = None


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


class InventoryItem(WireModel):
    product_id: str
    quantity: Decimal
    sku: Optional[str] = None


class InventoryValidation(WireModel):
    valid: bool
    unavailable_items: List[str] = Field(default_factory=list)


class ReservedItem(WireModel):
    product_id: str
    quantity: Decimal
    sku: Optional[str] = None
    reservation_id: Optional[str] = None


class ReservationResult(WireModel):
    success: bool = True
    reserved_items: List[ReservedItem] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Shipping
# ---------------------------------------------------------------------------


class ShippingQuote(WireModel):
    cost: Decimal
    currency: str


# ---------------------------------------------------------------------------
# Payment gateway
# ---------------------------------------------------------------------------

GatewayStatus = Literal["succeeded", "pending", "failed"]


class PaymentRequest(WireModel):
    amount: Decimal
    currency: str
    order_id: str
    customer_id: str
    payment_method: Optional[str] = None
    payment_token: Optional[str] = None


class GatewayPayment(WireModel):
    payment_id: str
    status: GatewayStatus
    payment_reference: str
    transaction_id: Optional[str] = None
    last4: Optional[str] = None
    failure_reason: Optional[str] = None


class RefundRequest(WireModel):
    payment_reference: str
    amount: Optional[Decimal] = None
    reason: Optional[str] = None


class GatewayRefund(WireModel):
    refund_id: str
    status: GatewayStatus
    refund_amount: Decimal
    failure_reason: Optional[str] = None
