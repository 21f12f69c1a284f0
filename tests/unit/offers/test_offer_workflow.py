from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from freezegun import freeze_time

from modules.offers.constants import ApprovalDecision, OfferStatus
from modules.offers.dtos import CreateOfferDTO, OfferLineItemDTO
from modules.offers.events import OfferApprovedData
from modules.offers.exceptions import (
    InvalidApprovalToken,
    InvalidOfferStatus,
    OfferExpired,
    OfferHasNoLineItems,
)
from modules.offers.models import Offer
from modules.offers.services import OfferService
from modules.offers.workflow import OfferWorkflow
from shared.infrastructure.bus import InMemoryEventBus

pytestmark = pytest.mark.unit

TENANT = "tenant-a"
DEADLINE = datetime(2026, 6, 30, tzinfo=timezone.utc)


def _create(line_items=True, valid_until=DEADLINE):
    items = (
        [
            OfferLineItemDTO(
                description="Widget",
                quantity=Decimal("10"),
                unit_price=Decimal("100"),
                discount_percent=Decimal("5"),
                tax_percent=Decimal("10"),
                product_id="prod-1",
                sku="SKU-1",
            )
        ]
        if line_items
        else []
    )
    return OfferService().create_offer(
        CreateOfferDTO(customer_id="cust-1", valid_until=valid_until, line_items=items), TENANT
    )


@pytest.fixture()
def bus():
    return InMemoryEventBus()


@pytest.fixture()
def workflow(bus):
    return OfferWorkflow(bus)


# ============================================================================
# send
# ============================================================================


class TestSend:
    def test_draft_becomes_sent_with_token(self, workflow):
        offer = workflow.send(_create().id, TENANT)

        assert offer.status == OfferStatus.SENT
        assert offer.approval_token

    def test_empty_offer_cannot_be_sent(self, workflow):
        with pytest.raises(OfferHasNoLineItems):
            workflow.send(_create(line_items=False).id, TENANT)

    def test_only_draft_can_be_sent(self, workflow):
        offer = workflow.send(_create().id, TENANT)
        with pytest.raises(InvalidOfferStatus):
            workflow.send(offer.id, TENANT)


# ============================================================================
# approve / reject
# ============================================================================


@freeze_time("2026-06-01")
class TestDecisions:
    def test_approve_publishes_offer_approved(self, workflow, bus):
        offer = workflow.send(_create().id, TENANT)

        approved = workflow.approve(offer.id, TENANT, "buyer@example.com", "ok")

        assert approved.status == OfferStatus.APPROVED
        approval = approved.approvals.get()
        assert approval.decision == ApprovalDecision.APPROVED
        assert approval.comments == "ok"
        (event,) = bus.events_of("offer.approved")
        assert event.tenant_id == TENANT
        data = event.payload(OfferApprovedData)
        assert data.offer_id == str(offer.id)
        assert data.valid_until == DEADLINE
        assert data.grand_total == Decimal("1045.0000")
        assert data.line_items[0].sku == "SKU-1"
        assert set(event.data) == {
            "offerId",
            "offerNumber",
            "customerId",
            "validUntil",
            "currency",
            "grandTotal",
            "lineItems",
        }

    def test_approval_survives_a_failing_bus(self):
        failing = MagicMock(spec=InMemoryEventBus)
        failing.publish.side_effect = TypeError("a bytes-like object is required")
        offer = _create()

        approved = OfferWorkflow(failing).approve(offer.id, TENANT, "buyer@example.com")

        assert approved.status == OfferStatus.APPROVED
        assert Offer.objects.get(id=offer.id).status == OfferStatus.APPROVED
        failing.publish.assert_called_once()

    def test_approve_straight_from_draft(self, workflow):
        assert workflow.approve(_create().id, TENANT, "a@example.com").status == OfferStatus.APPROVED

    def test_reject_records_decision_without_event(self, workflow, bus):
        offer = workflow.send(_create().id, TENANT)

        rejected = workflow.reject(offer.id, TENANT, "buyer@example.com", "too expensive")

        assert rejected.status == OfferStatus.REJECTED
        assert rejected.approvals.get().decision == ApprovalDecision.REJECTED
        assert bus.published == []

    def test_terminal_offer_rejects_decisions(self, workflow):
        offer = workflow.approve(_create().id, TENANT, "a@example.com")
        with pytest.raises(InvalidOfferStatus):
            workflow.reject(offer.id, TENANT, "a@example.com")
        with pytest.raises(InvalidOfferStatus):
            workflow.cancel(offer.id, TENANT)


class TestDeadline:
    def test_late_approval_expires_sent_offer(self, workflow, bus):
        with freeze_time("2026-06-01"):
            offer = workflow.send(_create().id, TENANT)

        with freeze_time("2026-07-01"):
            with pytest.raises(OfferExpired):
                workflow.approve(offer.id, TENANT, "a@example.com")

        reloaded = Offer.objects.get(id=offer.id)
        assert reloaded.status == OfferStatus.EXPIRED
        assert reloaded.approvals.count() == 0
        assert bus.published == []

    def test_late_decision_keeps_draft_status(self, workflow):
        offer = _create()
        with freeze_time("2026-07-01"):
            with pytest.raises(OfferExpired):
                workflow.reject(offer.id, TENANT, "a@example.com")
        assert Offer.objects.get(id=offer.id).status == OfferStatus.DRAFT

    def test_no_deadline_never_expires(self, workflow):
        offer = _create(valid_until=None)
        with freeze_time("2099-01-01"):
            assert workflow.approve(offer.id, TENANT, "a@example.com").status == OfferStatus.APPROVED


# ============================================================================
# token decisions
# ============================================================================


@freeze_time("2026-06-01")
class TestDecideByToken:
    def test_token_approval(self, workflow, bus):
        offer = workflow.send(_create().id, TENANT)

        decided = workflow.decide_by_token(offer.approval_token, "buyer@example.com", approved=True)

        assert decided.id == offer.id
        assert decided.status == OfferStatus.APPROVED
        assert len(bus.events_of("offer.approved")) == 1

    def test_token_rejection(self, workflow):
        offer = workflow.send(_create().id, TENANT)
        decided = workflow.decide_by_token(offer.approval_token, "b@example.com", approved=False)
        assert decided.status == OfferStatus.REJECTED

    @pytest.mark.parametrize("token", ["", "unknown-token"])
    def test_unknown_token(self, workflow, token):
        with pytest.raises(InvalidApprovalToken):
            workflow.decide_by_token(token, "b@example.com", approved=True)


@freeze_time("2026-06-01")
class TestRegenerateApprovalToken:
    def test_old_link_stops_working(self, workflow):
        offer = workflow.send(_create().id, TENANT)
        old_token = offer.approval_token

        new_token = workflow.regenerate_approval_token(offer.id, TENANT)

        assert new_token and new_token != old_token
        assert Offer.objects.get(id=offer.id).approval_token == new_token
        with pytest.raises(InvalidApprovalToken):
            workflow.decide_by_token(old_token, "b@example.com", approved=True)
        assert workflow.decide_by_token(new_token, "b@example.com", approved=True).status == (
            OfferStatus.APPROVED
        )

    def test_draft_gets_a_token(self, workflow):
        offer = _create()
        assert workflow.regenerate_approval_token(offer.id, TENANT)

    def test_closed_offer_gets_no_token(self, workflow):
        offer = workflow.cancel(_create().id, TENANT)
        with pytest.raises(InvalidOfferStatus):
            workflow.regenerate_approval_token(offer.id, TENANT)


class TestCancel:
    def test_cancel_draft_and_sent(self, workflow):
        assert workflow.cancel(_create().id, TENANT).status == OfferStatus.CANCELLED
        with freeze_time("2026-06-01"):
            sent = workflow.send(_create().id, TENANT)
        assert workflow.cancel(sent.id, TENANT).status == OfferStatus.CANCELLED
