"""Shipping service adapter."""

from __future__ import annotations

from typing import Any, List, Optional
from uuid import UUID

from django.conf import settings
from pydantic.alias_generators import to_camel

from modules.orders.dtos import ShippingAddressDTO
from modules.orders.integrations.schemas import InventoryItem, ShippingQuote
from shared.domain.exceptions import CollaboratorRejected
from shared.infrastructure.http import CollaboratorClient, error_message


class ShippingClient(CollaboratorClient):
    service_name = "shipping-service"

    @classmethod
    def from_settings(cls, **kwargs: Any) -> "ShippingClient":
        return cls(settings.SHIPPING_SERVICE_URL, **{**cls.settings_kwargs(), **kwargs})

    def calculate(
        self,
        address: ShippingAddressDTO,
        items: List[InventoryItem],
        tenant_id: str,
        order_id: Optional[UUID | str] = None,
    ) -> ShippingQuote:
        payload = {
            "address": {
                to_camel(key): value
                for key, value in address.model_dump(exclude_none=True).items()
            },
            "items": [item.to_wire() for item in items],
        }
        if order_id is not None:
            payload["orderId"] = str(order_id)

        response = self.request(
            "POST", "/api/shipping/calculate", tenant_id=tenant_id, json=payload
        )
        if response.is_error:
            raise CollaboratorRejected(
                error_message(response),
                service=self.service_name,
                status=response.status_code,
            )
        return self.parse(ShippingQuote, self.json_body(response))
