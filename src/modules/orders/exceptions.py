"""Order and payment domain exceptions.

Raised by the Service Layer when business rules are violated.  Each
class belongs to one category of ``shared.domain.exceptions`` so outer
layers can translate it without knowing the concrete type.
"""

from __future__ import annotations

from shared.domain.exceptions import (
    DomainError,
    PaymentFailed,
    ResourceNotFound,
    StateConflict,
)


class OrderNotFound(ResourceNotFound):
    """The requested order does not exist for this tenant."""

    code = "order_not_found"


class PaymentNotFound(ResourceNotFound):
    """The requested payment does not belong to the order."""

    code = "payment_not_found"


class InvalidOrderStatus(StateConflict):
    """An invalid status transition was attempted."""

    code = "invalid_order_status"


class AlreadyCanceled(StateConflict):
    """The order is already canceled."""

    code = "already_canceled"


class AlreadyDelivered(StateConflict):
    """A delivered order cannot be canceled."""

    code = "already_delivered"


class OrderCanceled(StateConflict):
    """Payments cannot be taken for a canceled order."""

    code = "order_canceled"


class AlreadyPaid(StateConflict):
    """The order is already fully paid."""

    code = "already_paid"


class AmountExceedsTotal(StateConflict):
    """The requested amount exceeds what the order allows."""

    code = "amount_exceeds_total"


class PaymentNotRefundable(StateConflict):
    """Only succeeded payments can be refunded."""

    code = "payment_not_refundable"


class MissingPaymentReference(StateConflict):
    """The payment has no gateway reference to refund against."""

    code = "missing_payment_reference"


class PaymentProcessingFailed(PaymentFailed):
    """The payment provider declined or failed the charge."""

    code = "payment_processing_failed"


class RefundProcessingFailed(PaymentFailed):
    """The payment provider declined or failed the refund."""

    code = "refund_processing_failed"


class UnsupportedPaymentProvider(DomainError):
    """The payment provider is not supported."""

    code = "unsupported_payment_provider"
    status_code = 501
