"""Decimal pricing engine shared by offers and orders.

Every amount is a ``decimal.Decimal``.  Results are quantized to four
fractional digits with ``ROUND_HALF_UP`` (half away from zero).  Floats
are rejected so binary rounding drift can never creep into a total.

Line formula::

    total = quantity * unit_price * (1 - discount/100) * (1 + tax/100)

``aggregate_totals`` sums the already-rounded line totals for the grand
total, so it always equals the sum of the totals shown per line.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Protocol, Union

from shared.domain.exceptions import InvalidInput

Number = Union[Decimal, int, str]

PRECISION = Decimal("0.0001")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


class PricedLine(Protocol):
    quantity: Number
    unit_price: Number
    discount_percent: Number
    tax_percent: Number


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount_total: Decimal
    tax_total: Decimal
    grand_total: Decimal


def to_decimal(value: Number, field: str = "value") -> Decimal:
    """Coerce *value* to ``Decimal`` without going through ``float``."""
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidInput(f"{field} must be a Decimal, int or str, not {type(value).__name__}.")
    if value is None:
        return ZERO
    try:
        result = value if isinstance(value, Decimal) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInput(f"{field} is not a valid number: {value!r}.") from None
    if not result.is_finite():
        raise InvalidInput(f"{field} must be finite.")
    return result


def quantize(value: Decimal) -> Decimal:
    return value.quantize(PRECISION, rounding=ROUND_HALF_UP)


def _validate(
    quantity: Decimal, unit_price: Decimal, discount: Decimal, tax: Decimal
) -> None:
    if quantity <= ZERO:
        raise InvalidInput("Quantity must be greater than zero.")
    if unit_price < ZERO:
        raise InvalidInput("Unit price cannot be negative.")
    if not ZERO <= discount <= HUNDRED:
        raise InvalidInput("Discount percent must be between 0 and 100.")
    if not ZERO <= tax <= HUNDRED:
        raise InvalidInput("Tax percent must be between 0 and 100.")


def _parts(
    quantity: Number, unit_price: Number, discount_percent: Number, tax_percent: Number
) -> tuple[Decimal, Decimal, Decimal]:
    """Return the unrounded (subtotal, discount, tax) for one line."""
    q = to_decimal(quantity, "quantity")
    p = to_decimal(unit_price, "unit_price")
    d = to_decimal(discount_percent, "discount_percent")
    t = to_decimal(tax_percent, "tax_percent")
    _validate(q, p, d, t)

    subtotal = q * p
    discount = subtotal * d / HUNDRED
    tax = (subtotal - discount) * t / HUNDRED
    return subtotal, discount, tax


def line_subtotal(quantity: Number, unit_price: Number) -> Decimal:
    """Pre-discount subtotal ``quantity * unit_price``."""
    subtotal, _, _ = _parts(quantity, unit_price, ZERO, ZERO)
    return quantize(subtotal)


def line_total(
    quantity: Number,
    unit_price: Number,
    discount_percent: Number = ZERO,
    tax_percent: Number = ZERO,
) -> Decimal:
    subtotal, discount, tax = _parts(quantity, unit_price, discount_percent, tax_percent)
    return quantize(subtotal - discount + tax)


def discount_amount(
    quantity: Number, unit_price: Number, discount_percent: Number = ZERO
) -> Decimal:
    _, discount, _ = _parts(quantity, unit_price, discount_percent, ZERO)
    return quantize(discount)


def tax_amount(
    quantity: Number,
    unit_price: Number,
    discount_percent: Number = ZERO,
    tax_percent: Number = ZERO,
) -> Decimal:
    _, _, tax = _parts(quantity, unit_price, discount_percent, tax_percent)
    return quantize(tax)


def aggregate_totals(lines: Iterable[PricedLine]) -> Totals:
    """Aggregate offer/order totals from *lines*.

    ``grand_total`` is the sum of each rounded ``line_total``; it is never
    re-derived from the aggregated subtotal, discount and tax.
    """
    subtotal = discount_total = tax_total = grand_total = ZERO
    for line in lines:
        args = (
            line.quantity,
            line.unit_price,
            line.discount_percent or ZERO,
            line.tax_percent or ZERO,
        )
        raw_subtotal, _, _ = _parts(*args)
        subtotal += raw_subtotal
        discount_total += discount_amount(*args[:3])
        tax_total += tax_amount(*args)
        grand_total += line_total(*args)

    return Totals(
        subtotal=quantize(subtotal),
        discount_total=quantize(discount_total),
        tax_total=quantize(tax_total),
        grand_total=quantize(grand_total),
    )
