"""Offer domain constants."""

from django.db import models


class OfferStatus(models.TextChoices):
    DRAFT = "DRAFT", "Draft"
    SENT = "SENT", "Sent"
    APPROVED = "APPROVED", "Approved"
    REJECTED = "REJECTED", "Rejected"
    EXPIRED = "EXPIRED", "Expired"
    CANCELLED = "CANCELLED", "Cancelled"


class ApprovalDecision(models.TextChoices):
    APPROVED = "APPROVED", "Approved"
    REJECTED = "REJECTED", "Rejected"


# Line items may only change while the offer is negotiable.
EDITABLE_STATES: set[str] = {OfferStatus.DRAFT, OfferStatus.SENT}

TERMINAL_STATES: set[str] = {
    OfferStatus.APPROVED,
    OfferStatus.REJECTED,
    OfferStatus.EXPIRED,
    OfferStatus.CANCELLED,
}

OFFER_NUMBER_PREFIX = "OFF"
OFFER_NUMBER_WIDTH = 5
