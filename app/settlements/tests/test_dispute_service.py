"""
Tests for DisputeService.

A dispute freezes auto-release until staff resolve it by refunding the
buyer, releasing to the seller or reinstating escrow.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from core.exceptions import PermissionDeniedError
from settlements.exceptions import (
    GatewayUnavailableError,
    InvalidStateTransitionError,
    StaleRecordError,
    TransactionValidationError,
)
from settlements.ledger import TransactionLedger
from settlements.services import DisputeService, EscrowReleaseService
from settlements.state_machines import (
    DisputeOutcome,
    DisputeResolutionStatus,
    TransactionStatus,
)
from settlements.tests.factories import TransactionFactory


# =============================================================================
# Initiation
# =============================================================================


@pytest.mark.django_db
class TestInitiateDispute:
    def test_buyer_opens_dispute(self, held_transaction, buyer):
        txn = DisputeService.initiate_dispute(
            held_transaction.id,
            initiator=buyer,
            reason="not_as_described",
            description="Screen is cracked",
            evidence=[{"type": "image", "url": "https://img.example.com/1.jpg"}],
        )

        assert txn.status == TransactionStatus.DISPUTED
        assert txn.is_disputed is True
        assert txn.dispute_initiated_by == buyer
        assert txn.dispute_initiated_at is not None
        assert txn.dispute_reason == "not_as_described"
        assert txn.dispute_description == "Screen is cracked"
        assert txn.dispute_resolution_status == DisputeResolutionStatus.PENDING
        assert txn.dispute_evidence[0]["type"] == "image"
        assert "uploaded_at" in txn.dispute_evidence[0]
        assert txn.timeline.get().note == "Dispute initiated: not_as_described"

    def test_seller_can_open_dispute(self, held_transaction, seller):
        txn = DisputeService.initiate_dispute(
            held_transaction.id, initiator=seller, reason="buyer_unresponsive"
        )

        assert txn.dispute_initiated_by == seller

    def test_outsider_rejected(self, held_transaction, outsider):
        with pytest.raises(PermissionDeniedError):
            DisputeService.initiate_dispute(
                held_transaction.id, initiator=outsider, reason="spam"
            )

    def test_reason_required(self, held_transaction, buyer):
        with pytest.raises(TransactionValidationError) as exc_info:
            DisputeService.initiate_dispute(held_transaction.id, initiator=buyer, reason="  ")

        assert exc_info.value.error_code == "DISPUTE_REASON_REQUIRED"

    def test_only_held_transactions(self, pending_transaction, buyer):
        with pytest.raises(InvalidStateTransitionError):
            DisputeService.initiate_dispute(
                pending_transaction.id, initiator=buyer, reason="not_received"
            )

    def test_malformed_evidence_rejected(self, held_transaction, buyer):
        with pytest.raises(TransactionValidationError) as exc_info:
            DisputeService.initiate_dispute(
                held_transaction.id,
                initiator=buyer,
                reason="not_received",
                evidence=[{"type": "hologram", "url": "https://x.example.com"}],
            )

        assert exc_info.value.error_code == "INVALID_EVIDENCE"
        assert TransactionLedger.get(held_transaction.id).status == TransactionStatus.HELD_IN_ESCROW

    def test_stale_version_rejected(self, held_transaction, buyer):
        with pytest.raises(StaleRecordError):
            DisputeService.initiate_dispute(
                held_transaction.id,
                initiator=buyer,
                reason="not_received",
                expected_version=4,
            )

    def test_dispute_blocks_sweep(self, buyer, listing, payout_account, fake_gateway):
        txn = TransactionFactory(
            buyer=buyer,
            listing=listing,
            held=True,
            escrow_release_date=timezone.now() + timedelta(hours=1),
        )
        DisputeService.initiate_dispute(txn.id, initiator=buyer, reason="not_received")

        result = EscrowReleaseService.run_release_sweep(now=timezone.now() + timedelta(days=2))

        assert result.released_count == 0
        assert fake_gateway.disbursements == []


# =============================================================================
# Evidence and Escalation
# =============================================================================


@pytest.mark.django_db
class TestEvidenceAndEscalation:
    def test_add_evidence_appends(self, disputed_transaction, seller):
        txn = DisputeService.add_evidence(
            disputed_transaction.id,
            actor=seller,
            type="message",
            url="https://chat.example.com/thread/1",
        )

        assert len(txn.dispute_evidence) == 1
        assert txn.dispute_evidence[0]["url"] == "https://chat.example.com/thread/1"
        assert txn.status == TransactionStatus.DISPUTED
        assert txn.version == disputed_transaction.version + 1

    def test_add_evidence_requires_open_dispute(self, held_transaction, buyer):
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            DisputeService.add_evidence(
                held_transaction.id, actor=buyer, type="image", url="https://x.example.com"
            )

        assert exc_info.value.error_code == "NO_OPEN_DISPUTE"

    def test_add_evidence_outsider_rejected(self, disputed_transaction, outsider):
        with pytest.raises(PermissionDeniedError):
            DisputeService.add_evidence(
                disputed_transaction.id,
                actor=outsider,
                type="image",
                url="https://x.example.com",
            )

    def test_escalate(self, disputed_transaction, staff_user):
        txn = DisputeService.escalate_dispute(
            disputed_transaction.id, actor=staff_user, note="High value"
        )

        assert txn.status == TransactionStatus.DISPUTED
        assert txn.dispute_resolution_status == DisputeResolutionStatus.ESCALATED
        assert "High value" in txn.internal_notes


# =============================================================================
# Resolution
# =============================================================================


@pytest.mark.django_db
class TestResolveDispute:
    def test_refund_resolution(self, disputed_transaction, staff_user, fake_gateway):
        txn = DisputeService.resolve_dispute(
            disputed_transaction.id,
            resolver=staff_user,
            resolution="Partial refund agreed",
            refund_amount=500,
        )

        assert txn.status == TransactionStatus.REFUNDED
        assert txn.is_disputed is False
        assert txn.is_refunded is True
        assert txn.refund_amount == 500
        assert txn.dispute_refund_amount == 500
        assert txn.dispute_resolution_status == DisputeResolutionStatus.RESOLVED
        assert txn.dispute_resolved_by == staff_user
        assert txn.dispute_resolution == "Partial refund agreed"
        assert fake_gateway.refunds[0]["amount"] == 500

    def test_reinstate_keeps_release_date(self, disputed_transaction, staff_user):
        original_release = disputed_transaction.escrow_release_date

        txn = DisputeService.resolve_dispute(
            disputed_transaction.id,
            resolver=staff_user,
            resolution="Item as described",
            outcome=DisputeOutcome.REINSTATE,
        )

        assert txn.status == TransactionStatus.HELD_IN_ESCROW
        assert txn.is_disputed is False
        assert txn.escrow_release_date == original_release
        assert txn.dispute_resolution_status == DisputeResolutionStatus.RESOLVED

    def test_reinstated_overdue_escrow_released_by_next_sweep(
        self, buyer, listing, payout_account, staff_user, fake_gateway
    ):
        txn = TransactionFactory(
            buyer=buyer,
            listing=listing,
            disputed=True,
            escrow_release_date=timezone.now() - timedelta(days=1),
        )
        DisputeService.resolve_dispute(
            txn.id, resolver=staff_user, resolution="No fault found"
        )

        result = EscrowReleaseService.run_release_sweep()

        assert result.released_count == 1
        assert TransactionLedger.get(txn.id).status == TransactionStatus.COMPLETED

    def test_release_resolution_pays_seller(
        self, disputed_transaction, staff_user, fake_gateway
    ):
        txn = DisputeService.resolve_dispute(
            disputed_transaction.id,
            resolver=staff_user,
            resolution="Buyer received the item",
            outcome=DisputeOutcome.RELEASE,
        )

        assert txn.status == TransactionStatus.COMPLETED
        assert txn.escrow_is_released is True
        assert txn.escrow_released_by == staff_user
        assert txn.is_disputed is False
        assert txn.escrow_payout_reference == "tr_fake_1"
        assert len(fake_gateway.disbursements) == 1

    def test_only_staff_can_resolve(self, disputed_transaction, buyer):
        with pytest.raises(PermissionDeniedError):
            DisputeService.resolve_dispute(
                disputed_transaction.id, resolver=buyer, resolution="I win"
            )

    def test_unknown_outcome(self, disputed_transaction, staff_user):
        with pytest.raises(TransactionValidationError):
            DisputeService.resolve_dispute(
                disputed_transaction.id,
                resolver=staff_user,
                resolution="?",
                outcome="split",
            )

    def test_requires_open_dispute(self, held_transaction, staff_user):
        with pytest.raises(InvalidStateTransitionError):
            DisputeService.resolve_dispute(
                held_transaction.id, resolver=staff_user, resolution="n/a"
            )

    def test_failed_refund_keeps_dispute_open(
        self, disputed_transaction, staff_user, fake_gateway, settings
    ):
        settings.SETTLEMENTS_GATEWAY_INLINE_RETRIES = 0
        fake_gateway.refund_error = GatewayUnavailableError("Stripe down")

        with pytest.raises(GatewayUnavailableError):
            DisputeService.resolve_dispute(
                disputed_transaction.id,
                resolver=staff_user,
                resolution="Refund",
                refund_amount=1000,
            )

        txn = TransactionLedger.get(disputed_transaction.id)
        assert txn.status == TransactionStatus.DISPUTED
        assert txn.is_disputed is True
        assert txn.dispute_resolution_status == DisputeResolutionStatus.PENDING


@pytest.mark.django_db
class TestRepeatDispute:
    def test_new_dispute_clears_previous_outcome(
        self, held_transaction, buyer, seller, staff_user
    ):
        DisputeService.initiate_dispute(
            held_transaction.id,
            initiator=buyer,
            reason="late_delivery",
            evidence=[{"type": "image", "url": "https://example.com/box.jpg"}],
        )
        DisputeService.resolve_dispute(
            held_transaction.id,
            resolver=staff_user,
            resolution="Delivered on the second attempt",
            outcome=DisputeOutcome.REINSTATE,
        )

        txn = DisputeService.initiate_dispute(
            held_transaction.id,
            initiator=seller,
            reason="buyer_unresponsive",
            description="Buyer stopped replying",
        )

        assert txn.status == TransactionStatus.DISPUTED
        assert txn.is_disputed is True
        assert txn.dispute_initiated_by == seller
        assert txn.dispute_reason == "buyer_unresponsive"
        assert txn.dispute_description == "Buyer stopped replying"
        assert txn.dispute_evidence == []
        assert txn.dispute_resolution_status == DisputeResolutionStatus.PENDING
        assert txn.dispute_resolved_by is None
        assert txn.dispute_resolved_at is None
        assert txn.dispute_resolution == ""
        assert txn.dispute_refund_amount is None
