"""Payment service layer.

Charges and refunds through the payment gateway adapter and keeps the
order's payment status in line with its payments:

- PAID once succeeded payments cover the grand total, PARTIALLY_PAID
  while they cover part of it.
- REFUNDED once refunds cover everything captured, PARTIALLY_REFUNDED
  before that.
- FAILED when the latest charge failed.

Amount checks and the PENDING payment row happen under the order row
lock, and in-flight PENDING charges count against the balance, so
overlapping charges cannot capture more than the grand total.  The
gateway call is made outside any transaction; its outcome is recorded in
one atomic unit on the row-locked order.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Optional
from uuid import UUID

import structlog
from django.db import transaction
from django.utils import timezone

from modules.orders.constants import (
    OrderStatus,
    PaymentStatus,
    PaymentTransactionStatus,
)
from modules.orders.exceptions import (
    AlreadyPaid,
    AmountExceedsTotal,
    MissingPaymentReference,
    OrderCanceled,
    OrderNotFound,
    PaymentNotFound,
    PaymentNotRefundable,
    PaymentProcessingFailed,
    RefundProcessingFailed,
    UnsupportedPaymentProvider,
)
from modules.orders.integrations.schemas import PaymentRequest, RefundRequest
from shared.domain.exceptions import DomainError, InvalidInput
from shared.domain.pricing import Number, quantize, to_decimal

if TYPE_CHECKING:
    from modules.orders.integrations.payment_gateway import PaymentGatewayClient
    from modules.orders.models import Order, Payment
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.orders.services import OrderService

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


class PaymentService:
    """Application service for payments and refunds."""

    def __init__(
        self,
        order_repository: IOrderRepository,
        gateway: PaymentGatewayClient,
        order_service: OrderService,
    ) -> None:
        self._order_repo = order_repository
        self._gateway = gateway
        self._orders = order_service

    def _order(self, order_id: UUID | str, tenant_id: str) -> Order:
        order = self._order_repo.get_by_id(order_id, tenant_id)
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    # ------------------------------------------------------------------
    # Charges
    # ------------------------------------------------------------------

    def process_payment(
        self,
        order_id: UUID | str,
        tenant_id: str,
        provider: str,
        amount: Optional[Number] = None,
        method: Optional[str] = None,
        token: Optional[str] = None,
        changed_by: Optional[str] = None,
    ) -> Payment:
        """Charge the order; the amount defaults to the outstanding balance.

        Raises:
            OrderNotFound, OrderCanceled, AlreadyPaid: order checks.
            InvalidInput: non-positive amount.
            AmountExceedsTotal: amount above grand total or remaining balance.
            UnsupportedPaymentProvider: provider cannot take charges.
            PaymentProcessingFailed: the gateway failed or declined.
        """
        with transaction.atomic():
            order = self._order_repo.get_for_update(order_id, tenant_id)
            if not order:
                raise OrderNotFound(f"Order {order_id} not found.")
            if order.status == OrderStatus.CANCELED:
                raise OrderCanceled(f"Order {order.order_number} is canceled.")
            if order.payment_status == PaymentStatus.PAID:
                raise AlreadyPaid(f"Order {order.order_number} is already paid.")
            if not self._gateway.supports_charge(provider):
                raise UnsupportedPaymentProvider(f"Payment provider {provider} is not supported.")

            # In-flight PENDING charges hold their share of the balance.
            committed = self._order_repo.total_committed(order)
            outstanding = order.grand_total - committed
            if amount is None:
                if outstanding <= ZERO:
                    raise AmountExceedsTotal(
                        f"Order {order.order_number} has no outstanding balance; "
                        f"{committed} is paid or being processed."
                    )
                amount = outstanding
            else:
                amount = to_decimal(amount, "amount")
                if amount <= ZERO:
                    raise InvalidInput("Payment amount must be positive.")
                if amount > outstanding:
                    raise AmountExceedsTotal(
                        f"Payment of {amount} exceeds the remaining balance "
                        f"{outstanding} of order {order.order_number}."
                    )
            amount = quantize(amount)

            payment = self._order_repo.create_payment(
                order,
                {
                    "provider": provider,
                    "status": PaymentTransactionStatus.PENDING,
                    "amount": amount,
                    "currency": order.currency,
                    "payment_method": method,
                },
            )

        log = logger.bind(order_id=str(order.id), provider=provider, amount=str(amount))
        log.info("payment.started", payment_id=str(payment.id))

        request = PaymentRequest(
            amount=amount,
            currency=order.currency,
            order_id=str(order.id),
            customer_id=order.customer_id,
            payment_method=method,
            payment_token=token,
        )
        try:
            result = self._gateway.charge(provider, request)
        except DomainError as exc:
            self._record_failure(order, payment, exc.message)
            raise PaymentProcessingFailed(f"Payment processing failed: {exc.message}") from exc
        if result.status == "failed":
            reason = result.failure_reason or "Payment declined"
            self._record_failure(order, payment, reason)
            raise PaymentProcessingFailed(f"Payment processing failed: {reason}")

        with transaction.atomic():
            locked = self._order_repo.get_for_update(order.id, tenant_id)
            previous_status = locked.payment_status

            payment.transaction_id = result.transaction_id
            payment.payment_reference = result.payment_reference
            payment.last4 = result.last4
            payment.processed_at = timezone.now()
            overshoot = (
                result.status == "succeeded"
                and self._order_repo.total_paid(locked) + payment.amount > locked.grand_total
            )
            if overshoot:
                payment.status = PaymentTransactionStatus.FAILED
                payment.failure_reason = "Captured amount exceeds the order grand total"
            elif result.status == "succeeded":
                payment.status = PaymentTransactionStatus.SUCCEEDED
            else:
                payment.status = PaymentTransactionStatus.PENDING
            self._order_repo.save_payment(payment)

            if not overshoot:
                total_paid = self._order_repo.total_paid(locked)
                if total_paid >= locked.grand_total:
                    locked.payment_status = PaymentStatus.PAID
                elif total_paid > ZERO:
                    locked.payment_status = PaymentStatus.PARTIALLY_PAID
                locked.payment_reference = result.payment_reference
                self._order_repo.save(locked)

        if overshoot:
            log.error(
                "payment.overcharge",
                payment_id=str(payment.id),
                payment_reference=payment.payment_reference,
            )
            raise PaymentProcessingFailed(
                f"Payment processing failed: {payment.failure_reason}."
            )

        log.info(
            "payment.processed",
            payment_id=str(payment.id),
            status=payment.status,
            payment_status=locked.payment_status,
        )

        became_paid = (
            previous_status != PaymentStatus.PAID
            and locked.payment_status == PaymentStatus.PAID
        )
        if became_paid and locked.status == OrderStatus.PENDING:
            self._orders.update_status(
                locked.id,
                tenant_id,
                OrderStatus.CONFIRMED,
                notes="Order confirmed after payment",
                changed_by=changed_by,
            )
        return payment

    def _record_failure(self, order: Order, payment: Payment, reason: str) -> None:
        with transaction.atomic():
            locked = self._order_repo.get_for_update(order.id, order.tenant_id)
            payment.status = PaymentTransactionStatus.FAILED
            payment.failure_reason = reason
            payment.processed_at = timezone.now()
            self._order_repo.save_payment(payment)
            locked.payment_status = PaymentStatus.FAILED
            self._order_repo.save(locked)
        logger.warning(
            "payment.failed",
            order_id=str(order.id),
            payment_id=str(payment.id),
            reason=reason,
        )

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    def process_refund(
        self,
        order_id: UUID | str,
        tenant_id: str,
        payment_id: UUID | str,
        amount: Optional[Number] = None,
        reason: Optional[str] = None,
    ) -> Payment:
        """Refund a succeeded payment, fully by default.

        Raises:
            OrderNotFound, PaymentNotFound: unknown order or payment.
            PaymentNotRefundable: the payment has not succeeded.
            MissingPaymentReference: no gateway reference to refund against.
            AmountExceedsTotal: amount above the payment amount.
            RefundProcessingFailed: the gateway failed or declined.
        """
        order = self._order(order_id, tenant_id)
        payment = self._order_repo.get_payment(order, payment_id)
        if not payment:
            raise PaymentNotFound(f"Payment {payment_id} not found.")
        if payment.status != PaymentTransactionStatus.SUCCEEDED:
            raise PaymentNotRefundable(
                f"Payment {payment.id} is {payment.status}; only SUCCEEDED payments can be refunded."
            )
        if not payment.payment_reference:
            raise MissingPaymentReference(f"Payment {payment.id} has no gateway reference.")

        amount = payment.amount if amount is None else to_decimal(amount, "amount")
        if amount <= ZERO:
            raise InvalidInput("Refund amount must be positive.")
        if amount > payment.amount:
            raise AmountExceedsTotal(
                f"Refund of {amount} exceeds payment amount {payment.amount}."
            )
        amount = quantize(amount)

        log = logger.bind(order_id=str(order.id), payment_id=str(payment.id), amount=str(amount))
        request = RefundRequest(
            payment_reference=payment.payment_reference,
            amount=amount,
            reason=reason,
        )
        try:
            result = self._gateway.refund(payment.provider, request)
        except DomainError as exc:
            log.warning("refund.failed", reason=exc.message)
            raise RefundProcessingFailed(f"Refund processing failed: {exc.message}") from exc
        if result.status == "failed":
            reason_text = result.failure_reason or "Refund declined"
            log.warning("refund.failed", reason=reason_text)
            raise RefundProcessingFailed(f"Refund processing failed: {reason_text}")

        with transaction.atomic():
            locked = self._order_repo.get_for_update(order.id, tenant_id)
            payment.status = PaymentTransactionStatus.REFUNDED
            payment.refund_amount = amount
            payment.refunded_at = timezone.now()
            self._order_repo.save_payment(payment)

            refunded = self._order_repo.total_refunded(locked)
            captured = self._order_repo.total_captured(locked)
            locked.payment_status = (
                PaymentStatus.REFUNDED if refunded >= captured else PaymentStatus.PARTIALLY_REFUNDED
            )
            self._order_repo.save(locked)

        log.info("refund.processed", payment_status=locked.payment_status, gateway_status=result.status)
        return payment
