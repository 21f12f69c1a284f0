"""Offer DTOs for the Service Layer.

Immutable Pydantic v2 inputs for offer creation, header updates, listing
and line-item edits.
Range checks mirror the pricing engine so bad input is rejected before
anything is written.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class OfferLineItemDTO(BaseModel):
    """A single priced line for an offer."""

    model_config = ConfigDict(frozen=True)

    description: str = Field(min_length=1, max_length=255)
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    discount_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    tax_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    product_id: Optional[str] = None
    sku: Optional[str] = None


class UpdateOfferLineItemDTO(BaseModel):
    """Partial update of a line item; ``None`` keeps the stored value."""

    model_config = ConfigDict(frozen=True)

    description: Optional[str] = Field(default=None, min_length=1, max_length=255)
    quantity: Optional[Decimal] = Field(default=None, gt=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    discount_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    tax_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    product_id: Optional[str] = None
    sku: Optional[str] = None


class CreateOfferDTO(BaseModel):
    """Input for a new DRAFT offer."""

    model_config = ConfigDict(frozen=True)

    customer_id: str = Field(min_length=1)
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    valid_until: Optional[datetime] = None
    notes: str = ""
    line_items: List[OfferLineItemDTO] = Field(default_factory=list)


class UpdateOfferDTO(BaseModel):
    """Partial update of offer header fields; ``None`` keeps the stored value."""

    model_config = ConfigDict(frozen=True)

    customer_id: Optional[str] = Field(default=None, min_length=1)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    valid_until: Optional[datetime] = None
    notes: Optional[str] = None


class OfferListFilters(BaseModel):
    """Filters for ``OfferService.list_offers``."""

    model_config = ConfigDict(frozen=True)

    customer_id: Optional[str] = None
    status: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=50, gt=0, le=500)
