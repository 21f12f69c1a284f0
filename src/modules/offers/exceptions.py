"""Offer domain exceptions.

Raised by the offer services and by the orders-side Offers adapter when
the remote offer is missing, not approved or past its deadline.
"""

from __future__ import annotations

from typing import Optional

from shared.domain.exceptions import ResourceNotFound, StateConflict


class OfferNotFound(ResourceNotFound):
    """The requested offer does not exist for this tenant."""

    code = "offer_not_found"


class LineItemNotFound(ResourceNotFound):
    """The requested line item does not belong to the offer."""

    code = "line_item_not_found"


class InvalidApprovalToken(ResourceNotFound):
    """No offer matches the approval token."""

    code = "invalid_approval_token"


class OfferNotApproved(StateConflict):
    """The offer has not been approved."""

    code = "offer_not_approved"

    def __init__(self, message: Optional[str] = None, status: str = "") -> None:
        self.status = status
        super().__init__(message)


class OfferExpired(StateConflict):
    """The offer is past its validity deadline."""

    code = "offer_expired"


class InvalidOfferStatus(StateConflict):
    """The offer status does not allow this operation."""

    code = "invalid_offer_status"


class OfferAlreadyConsumed(StateConflict):
    """The offer was already turned into another order."""

    code = "offer_already_consumed"


class OfferHasNoLineItems(StateConflict):
    """An offer needs at least one line item to be sent."""

    code = "offer_has_no_line_items"
