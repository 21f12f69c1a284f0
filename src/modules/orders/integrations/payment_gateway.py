"""Payment gateway adapter.

STRIPE charges go to ``/payment_intents`` and refunds to ``/refunds``,
form-encoded with the API key as basic-auth user and amounts in minor
units.  MANUAL and BANK_TRANSFER charges are settled out of band and
come back as a local ``pending`` result.  PAYPAL is not supported.

Card errors (4xx answers) are normalised into a ``failed`` result that
carries the gateway message; the caller decides what a failure means.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import httpx
import structlog
import uuid6
from django.conf import settings

from modules.orders.constants import PaymentProvider
from modules.orders.exceptions import UnsupportedPaymentProvider
from modules.orders.integrations.schemas import (
    GatewayPayment,
    GatewayRefund,
    PaymentRequest,
    RefundRequest,
)
from shared.domain.exceptions import DependencyUnavailable
from shared.infrastructure.http import CollaboratorClient, error_message

logger = structlog.get_logger(__name__)

MINOR_UNITS = Decimal("100")

CHARGE_PROVIDERS = {
    PaymentProvider.STRIPE,
    PaymentProvider.MANUAL,
    PaymentProvider.BANK_TRANSFER,
}
REFUND_PROVIDERS = {PaymentProvider.STRIPE}
OFFLINE_PROVIDERS = {PaymentProvider.MANUAL, PaymentProvider.BANK_TRANSFER}


def to_minor_units(amount: Decimal) -> int:
    return int((amount * MINOR_UNITS).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: Any) -> Decimal:
    return Decimal(str(amount)) / MINOR_UNITS


def _normalise_status(status: Optional[str]) -> str:
    if status == "succeeded":
        return "succeeded"
    if status in ("failed", "canceled"):
        return "failed"
    return "pending"


class PaymentGatewayClient(CollaboratorClient):
    service_name = "payment-gateway"

    def __init__(self, base_url: str, api_key: str = "", **kwargs: Any) -> None:
        self.api_key = api_key
        auth = httpx.BasicAuth(api_key, "") if api_key else None
        super().__init__(base_url, auth=auth, **kwargs)

    @classmethod
    def from_settings(cls, **kwargs: Any) -> "PaymentGatewayClient":
        return cls(
            settings.PAYMENT_GATEWAY_URL,
            api_key=settings.PAYMENT_GATEWAY_API_KEY,
            **{**cls.settings_kwargs(), **kwargs},
        )

    @staticmethod
    def supports_charge(provider: str) -> bool:
        return provider in CHARGE_PROVIDERS

    @staticmethod
    def supports_refund(provider: str) -> bool:
        return provider in REFUND_PROVIDERS

    def _require_key(self) -> None:
        if not self.api_key:
            raise DependencyUnavailable(
                "Stripe API key not configured", service=self.service_name
            )

    # ------------------------------------------------------------------
    # Charges
    # ------------------------------------------------------------------

    def charge(self, provider: str, request: PaymentRequest) -> GatewayPayment:
        if provider == PaymentProvider.STRIPE:
            return self._stripe_charge(request)
        if provider in OFFLINE_PROVIDERS:
            return GatewayPayment(
                payment_id=f"manual-{uuid6.uuid7()}",
                status="pending",
                payment_reference=f"MANUAL-{request.order_id}",
            )
        raise UnsupportedPaymentProvider(f"Payment provider {provider} is not supported.")

    def _stripe_charge(self, request: PaymentRequest) -> GatewayPayment:
        self._require_key()
        form: Dict[str, str] = {
            "amount": str(to_minor_units(request.amount)),
            "currency": request.currency.lower(),
            "confirm": "true",
            "metadata[orderId]": request.order_id,
            "metadata[customerId]": request.customer_id,
        }
        if request.payment_token:
            form["payment_method"] = request.payment_token

        response = self.request("POST", "/payment_intents", data=form)
        if response.is_error:
            reason = error_message(response)
            logger.warning("payment_gateway.charge_declined", reason=reason)
            return GatewayPayment(
                payment_id="",
                status="failed",
                payment_reference="",
                failure_reason=reason,
            )

        intent = self.json_body(response)
        if not isinstance(intent, dict):
            intent = {}
        payment_method = intent.get("payment_method")
        last4 = None
        if isinstance(payment_method, dict):
            last4 = (payment_method.get("card") or {}).get("last4")
        return self.parse(
            GatewayPayment,
            {
                "paymentId": intent.get("id"),
                "status": _normalise_status(intent.get("status")),
                "transactionId": intent.get("id"),
                "paymentReference": intent.get("id"),
                "last4": last4,
                "failureReason": (intent.get("last_payment_error") or {}).get("message"),
            },
        )

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    def refund(self, provider: str, request: RefundRequest) -> GatewayRefund:
        if provider != PaymentProvider.STRIPE:
            raise UnsupportedPaymentProvider(
                f"Refund not supported for provider: {provider}"
            )
        self._require_key()
        form: Dict[str, str] = {"payment_intent": request.payment_reference}
        if request.amount is not None:
            form["amount"] = str(to_minor_units(request.amount))
        if request.reason:
            form["metadata[reason]"] = request.reason

        response = self.request("POST", "/refunds", data=form)
        if response.is_error:
            reason = error_message(response)
            logger.warning("payment_gateway.refund_declined", reason=reason)
            return GatewayRefund(
                refund_id="",
                status="failed",
                refund_amount=request.amount or Decimal("0"),
                failure_reason=reason,
            )

        refund = self.json_body(response)
        if not isinstance(refund, dict):
            refund = {}
        amount = refund.get("amount")
        return self.parse(
            GatewayRefund,
            {
                "refundId": refund.get("id"),
                "status": _normalise_status(refund.get("status")),
                "refundAmount": from_minor_units(amount) if amount is not None else request.amount,
                "failureReason": refund.get("failure_reason"),
            },
        )
