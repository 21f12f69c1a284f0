"""Unit tests for PaymentService against a MockTransport Stripe."""

from decimal import Decimal
from urllib.parse import parse_qs
from uuid import uuid4

import httpx
import pytest

from modules.orders.constants import (
    OrderStatus,
    PaymentProvider,
    PaymentStatus,
    PaymentTransactionStatus,
)
from modules.orders.exceptions import (
    AlreadyPaid,
    AmountExceedsTotal,
    OrderCanceled,
    OrderNotFound,
    PaymentNotFound,
    PaymentNotRefundable,
    PaymentProcessingFailed,
    RefundProcessingFailed,
    UnsupportedPaymentProvider,
)
from modules.orders.integrations.payment_gateway import PaymentGatewayClient
from modules.orders.integrations.schemas import OfferLine, OfferSnapshot
from modules.orders.models import Order, Payment
from modules.orders.payments import PaymentService
from shared.domain.exceptions import InvalidInput

pytestmark = pytest.mark.unit


class FakeStripe:
    """Minimal payment_intents / refunds endpoint."""

    def __init__(self):
        self.requests = []
        self.charge_response = None
        self.refund_response = None
        self.on_charge = None

    def __call__(self, request):
        form = {key: values[0] for key, values in parse_qs(request.content.decode()).items()}
        self.requests.append((request.url.path, form))
        if request.url.path == "/payment_intents":
            if self.on_charge is not None:
                hook, self.on_charge = self.on_charge, None
                hook()
            if self.charge_response is not None:
                return self.charge_response
            return httpx.Response(
                200,
                json={
                    "id": f"pi_{len(self.requests)}",
                    "status": "succeeded",
                    "payment_method": {"card": {"last4": "4242"}},
                },
            )
        if self.refund_response is not None:
            return self.refund_response
        return httpx.Response(
            200, json={"id": f"re_{len(self.requests)}", "status": "succeeded", "amount": int(form["amount"])}
        )

    def forms(self, path):
        return [form for request_path, form in self.requests if request_path == path]


@pytest.fixture()
def stripe():
    return FakeStripe()


@pytest.fixture()
def payment_service(order_repository, order_service, stripe):
    gateway = PaymentGatewayClient(
        "http://stripe.test",
        api_key="sk_test_1",
        transport=httpx.MockTransport(stripe),
        timeout=None,
        max_attempts=1,
    )
    return PaymentService(order_repository, gateway, order_service)


@pytest.fixture()
def order(order_service, offers_client, address, tenant_id):
    offers_client.get_approved_offer.return_value = OfferSnapshot(
        id=str(uuid4()),
        customer_id="cust-1",
        status="APPROVED",
        line_items=[
            OfferLine(
                product_id="prod-1",
                description="Widget",
                quantity=Decimal("10"),
                unit_price=Decimal("100"),
            )
        ],
    )
    order = order_service.create_from_offer(uuid4(), address, tenant_id)
    assert order.grand_total == Decimal("1000.0000")
    return order


def _reload(order):
    return Order.objects.get(id=order.id)


# ============================================================================
# Charges
# ============================================================================


class TestProcessPayment:
    def test_full_payment_confirms_pending_order(self, payment_service, order, tenant_id, stripe, event_bus):
        payment = payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE, token="pm_1")

        assert payment.status == PaymentTransactionStatus.SUCCEEDED
        assert payment.amount == Decimal("1000.0000")
        assert payment.last4 == "4242"
        assert payment.payment_reference == "pi_1"
        assert stripe.forms("/payment_intents")[0]["amount"] == "100000"

        reloaded = _reload(order)
        assert reloaded.payment_status == PaymentStatus.PAID
        assert reloaded.status == OrderStatus.CONFIRMED
        assert reloaded.payment_reference == "pi_1"
        assert reloaded.status_history.last().notes == "Order confirmed after payment"
        assert len(event_bus.events_of("order.confirmed")) == 1

    def test_split_payment(self, payment_service, order, tenant_id, event_bus):
        payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE, amount="600")

        partial = _reload(order)
        assert partial.payment_status == PaymentStatus.PARTIALLY_PAID
        assert partial.status == OrderStatus.PENDING

        payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE, amount="400")

        paid = _reload(order)
        assert paid.payment_status == PaymentStatus.PAID
        assert paid.status == OrderStatus.CONFIRMED
        assert len(event_bus.events_of("order.confirmed")) == 1

    def test_remaining_balance_is_the_default_amount(self, payment_service, order, tenant_id):
        payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE, amount="250.50")
        second = payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE)
        assert second.amount == Decimal("749.5000")

    def test_already_confirmed_order_is_not_confirmed_again(
        self, payment_service, order_service, order, tenant_id, event_bus
    ):
        order_service.update_status(order.id, tenant_id, OrderStatus.CONFIRMED)

        payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE)

        reloaded = _reload(order)
        assert reloaded.status == OrderStatus.CONFIRMED
        assert reloaded.payment_status == PaymentStatus.PAID
        assert len(event_bus.events_of("order.confirmed")) == 1

    def test_already_paid(self, payment_service, order, tenant_id):
        payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE)
        with pytest.raises(AlreadyPaid):
            payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE, amount="1")

    def test_amount_above_total_writes_nothing(self, payment_service, order, tenant_id, stripe):
        with pytest.raises(AmountExceedsTotal):
            payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE, amount="1000.01")
        assert Payment.objects.count() == 0
        assert stripe.requests == []

    def test_amount_above_remaining_balance(self, payment_service, order, tenant_id):
        payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE, amount="600")
        with pytest.raises(AmountExceedsTotal):
            payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE, amount="500")
        assert Payment.objects.count() == 1

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_non_positive_amount(self, payment_service, order, tenant_id, amount):
        with pytest.raises(InvalidInput):
            payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE, amount=amount)

    def test_canceled_order(self, payment_service, order_service, order, tenant_id):
        order_service.cancel(order.id, tenant_id, reason="changed mind")
        with pytest.raises(OrderCanceled):
            payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE)

    def test_unsupported_provider_writes_nothing(self, payment_service, order, tenant_id):
        with pytest.raises(UnsupportedPaymentProvider):
            payment_service.process_payment(order.id, tenant_id, PaymentProvider.PAYPAL)
        assert Payment.objects.count() == 0

    def test_unknown_order(self, payment_service, tenant_id):
        with pytest.raises(OrderNotFound):
            payment_service.process_payment(uuid4(), tenant_id, PaymentProvider.STRIPE)

    def test_decline_marks_payment_and_order_failed(self, payment_service, order, tenant_id, stripe):
        stripe.charge_response = httpx.Response(402, json={"error": {"message": "Your card was declined."}})

        with pytest.raises(PaymentProcessingFailed) as exc_info:
            payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE)

        assert "Your card was declined." in exc_info.value.message
        payment = Payment.objects.get()
        assert payment.status == PaymentTransactionStatus.FAILED
        assert payment.failure_reason == "Your card was declined."
        reloaded = _reload(order)
        assert reloaded.payment_status == PaymentStatus.FAILED
        assert reloaded.status == OrderStatus.PENDING

    def test_retry_after_failure(self, payment_service, order, tenant_id, stripe):
        stripe.charge_response = httpx.Response(402, json={"error": {"message": "declined"}})
        with pytest.raises(PaymentProcessingFailed):
            payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE)

        stripe.charge_response = None
        payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE)

        assert _reload(order).payment_status == PaymentStatus.PAID

    def test_gateway_outage_is_a_processing_failure(self, payment_service, order, tenant_id, stripe):
        stripe.charge_response = httpx.Response(503)

        with pytest.raises(PaymentProcessingFailed):
            payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE)

        assert Payment.objects.get().status == PaymentTransactionStatus.FAILED

    def test_manual_payment_stays_pending(self, payment_service, order, tenant_id, stripe):
        payment = payment_service.process_payment(order.id, tenant_id, PaymentProvider.MANUAL)

        assert payment.status == PaymentTransactionStatus.PENDING
        assert payment.payment_reference == f"MANUAL-{order.id}"
        assert _reload(order).payment_status == PaymentStatus.UNPAID
        assert stripe.requests == []


# ============================================================================
# Overlapping charges
# ============================================================================


class TestOverlappingCharges:
    def test_in_flight_charge_holds_the_balance(self, payment_service, order, tenant_id, stripe):
        errors = []

        def second_charge():
            try:
                payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE)
            except AmountExceedsTotal as exc:
                errors.append(exc)

        stripe.on_charge = second_charge

        payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE)

        assert len(errors) == 1
        succeeded = Payment.objects.filter(status=PaymentTransactionStatus.SUCCEEDED)
        assert [p.amount for p in succeeded] == [Decimal("1000.0000")]
        assert len(stripe.forms("/payment_intents")) == 1
        assert _reload(order).payment_status == PaymentStatus.PAID

    def test_in_flight_charge_limits_a_partial_amount(self, payment_service, order, tenant_id, stripe):
        stripe.on_charge = lambda: payment_service.process_payment(
            order.id, tenant_id, PaymentProvider.STRIPE, amount="300"
        )

        payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE, amount="700")

        amounts = sorted(p.amount for p in Payment.objects.filter(status=PaymentTransactionStatus.SUCCEEDED))
        assert amounts == [Decimal("300.0000"), Decimal("700.0000")]
        assert _reload(order).payment_status == PaymentStatus.PAID

    def test_pending_manual_payment_counts_against_the_balance(self, payment_service, order, tenant_id):
        payment_service.process_payment(order.id, tenant_id, PaymentProvider.MANUAL, amount="900")
        with pytest.raises(AmountExceedsTotal):
            payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE, amount="200")

    def test_capture_beyond_grand_total_is_not_recorded(
        self, payment_service, order_repository, order, tenant_id, stripe
    ):
        def sneak_in_a_capture():
            order_repository.create_payment(
                _reload(order),
                {
                    "provider": "STRIPE",
                    "currency": "EUR",
                    "amount": Decimal("500"),
                    "status": PaymentTransactionStatus.SUCCEEDED,
                },
            )

        stripe.on_charge = sneak_in_a_capture

        with pytest.raises(PaymentProcessingFailed):
            payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE, amount="600")

        overshot = Payment.objects.get(amount=Decimal("600"))
        assert overshot.status == PaymentTransactionStatus.FAILED
        assert overshot.payment_reference
        assert _reload(order).payment_status == PaymentStatus.UNPAID


# ============================================================================
# Refunds
# ============================================================================


class TestProcessRefund:
    @pytest.fixture()
    def payments(self, payment_service, order, tenant_id):
        first = payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE, amount="600")
        second = payment_service.process_payment(order.id, tenant_id, PaymentProvider.STRIPE, amount="400")
        return first, second

    def test_partial_then_full_refund(self, payment_service, order, tenant_id, payments, stripe):
        first, second = payments

        refunded = payment_service.process_refund(order.id, tenant_id, second.id, reason="damaged")

        assert refunded.status == PaymentTransactionStatus.REFUNDED
        assert refunded.refund_amount == Decimal("400.0000")
        assert _reload(order).payment_status == PaymentStatus.PARTIALLY_REFUNDED
        assert stripe.forms("/refunds")[0] == {
            "payment_intent": second.payment_reference,
            "amount": "40000",
            "metadata[reason]": "damaged",
        }

        payment_service.process_refund(order.id, tenant_id, first.id)
        assert _reload(order).payment_status == PaymentStatus.REFUNDED

    def test_partial_amount(self, payment_service, order, tenant_id, payments):
        first, _ = payments
        refunded = payment_service.process_refund(order.id, tenant_id, first.id, amount="100")
        assert refunded.refund_amount == Decimal("100.0000")
        assert _reload(order).payment_status == PaymentStatus.PARTIALLY_REFUNDED

    def test_refund_above_payment_amount(self, payment_service, order, tenant_id, payments):
        _, second = payments
        with pytest.raises(AmountExceedsTotal):
            payment_service.process_refund(order.id, tenant_id, second.id, amount="400.01")

    def test_refunded_payment_cannot_be_refunded_again(self, payment_service, order, tenant_id, payments):
        _, second = payments
        payment_service.process_refund(order.id, tenant_id, second.id)
        with pytest.raises(PaymentNotRefundable):
            payment_service.process_refund(order.id, tenant_id, second.id)

    def test_unknown_payment(self, payment_service, order, tenant_id, payments):
        with pytest.raises(PaymentNotFound):
            payment_service.process_refund(order.id, tenant_id, uuid4())

    def test_pending_manual_payment_is_not_refundable(self, payment_service, order, tenant_id):
        manual = payment_service.process_payment(order.id, tenant_id, PaymentProvider.MANUAL)
        with pytest.raises(PaymentNotRefundable):
            payment_service.process_refund(order.id, tenant_id, manual.id)

    def test_declined_refund_keeps_payment(self, payment_service, order, tenant_id, payments, stripe):
        _, second = payments
        stripe.refund_response = httpx.Response(400, json={"error": {"message": "charge disputed"}})

        with pytest.raises(RefundProcessingFailed):
            payment_service.process_refund(order.id, tenant_id, second.id)

        second.refresh_from_db()
        assert second.status == PaymentTransactionStatus.SUCCEEDED
        assert _reload(order).payment_status == PaymentStatus.PAID
