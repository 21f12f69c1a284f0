"""Inventory service adapter."""

from __future__ import annotations

from typing import Any, List
from uuid import UUID

import structlog
from django.conf import settings

from modules.orders.integrations.schemas import (
    InventoryItem,
    InventoryValidation,
    ReservationResult,
)
from shared.domain.exceptions import CollaboratorRejected, InsufficientInventory
from shared.infrastructure.http import CollaboratorClient, error_message

logger = structlog.get_logger(__name__)

CONFLICT = 409


class InventoryClient(CollaboratorClient):
    service_name = "inventory-service"

    @classmethod
    def from_settings(cls, **kwargs: Any) -> "InventoryClient":
        return cls(settings.INVENTORY_SERVICE_URL, **{**cls.settings_kwargs(), **kwargs})

    def _unavailable(self, response) -> List[str]:
        try:
            body = response.json()
        except ValueError:
            return []
        if isinstance(body, dict):
            return [str(item) for item in body.get("unavailableItems") or []]
        return []

    def _rejected(self, response) -> CollaboratorRejected:
        return CollaboratorRejected(
            error_message(response),
            service=self.service_name,
            status=response.status_code,
        )

    def validate(self, items: List[InventoryItem], tenant_id: str) -> InventoryValidation:
        """Check availability; a 409 answer is a normal "not valid" result."""
        response = self.request(
            "POST",
            "/api/inventory/validate",
            tenant_id=tenant_id,
            json={"items": [item.to_wire() for item in items]},
        )
        if response.status_code == CONFLICT:
            return InventoryValidation(valid=False, unavailable_items=self._unavailable(response))
        if response.is_error:
            raise self._rejected(response)
        return self.parse(InventoryValidation, self.json_body(response))

    def reserve(
        self, items: List[InventoryItem], order_id: UUID | str, tenant_id: str
    ) -> ReservationResult:
        """Reserve stock for *order_id*.

        Raises:
            InsufficientInventory: stock vanished since validation.
        """
        response = self.request(
            "POST",
            "/api/inventory/reserve",
            tenant_id=tenant_id,
            json={"items": [item.to_wire() for item in items], "orderId": str(order_id)},
        )
        if response.status_code == CONFLICT:
            unavailable = self._unavailable(response)
            raise InsufficientInventory(
                unavailable,
                message=f"Insufficient inventory: {error_message(response)}",
            )
        if response.is_error:
            raise self._rejected(response)
        result = self.parse(ReservationResult, self.json_body(response))
        if not result.success:
            raise InsufficientInventory([item.product_id for item in items])
        logger.info("inventory.reserved", order_id=str(order_id), items=len(items))
        return result

    def release(self, order_id: UUID | str, tenant_id: str) -> None:
        response = self.request(
            "POST",
            "/api/inventory/release",
            tenant_id=tenant_id,
            json={"orderId": str(order_id)},
        )
        if response.is_error:
            raise self._rejected(response)
        logger.info("inventory.released", order_id=str(order_id))
