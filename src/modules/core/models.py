"""Base abstract models shared by every module.

Provides:
- ``BaseModel``: UUIDv7 primary key + created_at / updated_at timestamps.
- ``TenantModel``: Extends BaseModel with the owning ``tenant_id``.
- ``money_field``: DecimalField preset for amounts and percentages.

Tenant identity is always an explicit column; every query issued by the
services filters on it, there is no implicit global tenant context.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import uuid6
from django.db import models

MONEY_MAX_DIGITS = 18
MONEY_DECIMAL_PLACES = 4


def money_field(**kwargs: Any) -> models.DecimalField:
    """DecimalField with four fractional digits (pricing engine precision)."""
    kwargs.setdefault("max_digits", MONEY_MAX_DIGITS)
    kwargs.setdefault("decimal_places", MONEY_DECIMAL_PLACES)
    kwargs.setdefault("default", Decimal("0"))
    return models.DecimalField(**kwargs)


# ---------------------------------------------------------------------------
# BaseModel
# ---------------------------------------------------------------------------


class BaseModel(models.Model):
    """Abstract base with UUIDv7 PK and timestamp bookkeeping."""

    id = models.UUIDField(
        primary_key=True,
        default=uuid6.uuid7,
        editable=False,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True

    def save(self, *args, **kwargs) -> None:
        """Ensure ``updated_at`` is refreshed even when ``update_fields`` is passed."""
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "updated_at" not in update_fields:
            kwargs["update_fields"] = list(update_fields) + ["updated_at"]
        super().save(*args, **kwargs)


# ---------------------------------------------------------------------------
# Tenant scoping
# ---------------------------------------------------------------------------


class TenantModel(BaseModel):
    """Abstract model owned by exactly one tenant."""

    tenant_id = models.CharField(max_length=64, db_index=True)

    class Meta:
        abstract = True
