"""
Tests for TransactionLedger.

Covers validated creation (with its initial timeline entry) and the
version-guarded conditional update that every later write goes through.
"""

import uuid

import pytest

from listings.models import ListingAvailability, ListingStatus
from settlements.exceptions import (
    StaleRecordError,
    TransactionNotFoundError,
    TransactionValidationError,
)
from settlements.ledger import TimelineRecord, TransactionLedger
from settlements.models import TimelineEntry, Transaction
from settlements.state_machines import TransactionStatus
from settlements.tests.factories import ListingFactory, UserFactory


# =============================================================================
# Creation
# =============================================================================


@pytest.mark.django_db
class TestLedgerCreate:
    def test_creates_pending_transaction_with_fees(self, buyer, listing):
        txn = TransactionLedger.create(
            buyer=buyer,
            listing=listing,
            amount_final=1000,
            payment_method="card",
        )

        txn = Transaction.objects.get(pk=txn.pk)
        assert txn.status == TransactionStatus.PENDING
        assert txn.version == 1
        assert txn.seller_id == listing.seller_id
        assert txn.amount_original == 1000
        assert (txn.fee_platform, txn.fee_payment, txn.fee_total) == (25, 29, 54)
        assert txn.currency == "INR"
        assert txn.gateway == "stripe"
        assert txn.escrow_release_date is None

    def test_writes_initial_timeline_entry(self, buyer, listing):
        txn = TransactionLedger.create(buyer=buyer, listing=listing)

        entries = list(TransactionLedger.timeline(txn.id))
        assert len(entries) == 1
        assert entries[0].status == TransactionStatus.PENDING
        assert entries[0].note == "Transaction created"
        assert entries[0].actor_id == buyer.pk
        assert entries[0].timestamp == txn.created_at

    def test_amount_defaults_to_listing_price(self, buyer, seller):
        listing = ListingFactory(seller=seller, price_amount=2500)

        txn = TransactionLedger.create(buyer=buyer, listing=listing.id)

        assert txn.amount_final == 2500

    def test_negotiated_amount_keeps_original_price(self, buyer, listing):
        txn = TransactionLedger.create(buyer=buyer, listing=listing, amount_final=800)

        assert txn.amount_original == 1000
        assert txn.amount_final == 800
        assert txn.fee_total == 20 + 23

    def test_currency_is_upper_cased(self, buyer, listing):
        txn = TransactionLedger.create(buyer=buyer, listing=listing, currency="usd")

        assert txn.currency == "USD"

    def test_hold_period_override(self, buyer, listing):
        txn = TransactionLedger.create(buyer=buyer, listing=listing, hold_period_days=3)

        assert txn.escrow_hold_period_days == 3

    def test_fulfillment_is_stored_as_given(self, buyer, listing):
        fulfillment = {"method": "pickup", "address": {"city": "Pune"}}

        txn = TransactionLedger.create(
            buyer=buyer, listing=listing, fulfillment=fulfillment
        )

        assert Transaction.objects.get(pk=txn.pk).fulfillment == fulfillment

    def test_unknown_buyer_rejected(self, listing):
        with pytest.raises(TransactionValidationError) as exc_info:
            TransactionLedger.create(buyer=999_999, listing=listing)

        assert exc_info.value.error_code == "BUYER_NOT_FOUND"

    def test_unknown_listing_rejected(self, buyer):
        with pytest.raises(TransactionValidationError) as exc_info:
            TransactionLedger.create(buyer=buyer, listing=uuid.uuid4())

        assert exc_info.value.error_code == "LISTING_NOT_FOUND"

    def test_malformed_listing_id_rejected(self, buyer):
        with pytest.raises(TransactionValidationError) as exc_info:
            TransactionLedger.create(buyer=buyer, listing="not-a-uuid")

        assert exc_info.value.error_code == "LISTING_NOT_FOUND"

    @pytest.mark.parametrize(
        "status,availability",
        [
            (ListingStatus.SOLD, ListingAvailability.SOLD),
            (ListingStatus.DRAFT, ListingAvailability.AVAILABLE),
            (ListingStatus.ACTIVE, ListingAvailability.RESERVED),
        ],
    )
    def test_unpurchasable_listing_rejected(self, buyer, seller, status, availability):
        listing = ListingFactory(seller=seller, status=status, availability=availability)

        with pytest.raises(TransactionValidationError) as exc_info:
            TransactionLedger.create(buyer=buyer, listing=listing)

        assert exc_info.value.error_code == "LISTING_NOT_PURCHASABLE"

    def test_buyer_cannot_buy_own_listing(self, seller, listing):
        with pytest.raises(TransactionValidationError) as exc_info:
            TransactionLedger.create(buyer=seller, listing=listing)

        assert exc_info.value.error_code == "BUYER_IS_SELLER"

    def test_seller_must_own_listing(self, buyer, listing):
        other = UserFactory()

        with pytest.raises(TransactionValidationError) as exc_info:
            TransactionLedger.create(buyer=buyer, listing=listing, seller=other)

        assert exc_info.value.error_code == "SELLER_MISMATCH"

    @pytest.mark.parametrize("amount", [-5, 10.5, "1000"])
    def test_invalid_amount_rejected(self, buyer, listing, amount):
        with pytest.raises(TransactionValidationError) as exc_info:
            TransactionLedger.create(buyer=buyer, listing=listing, amount_final=amount)

        assert exc_info.value.error_code == "INVALID_AMOUNT"

    @pytest.mark.parametrize(
        "kwargs,error_code",
        [
            ({"payment_method": "cheque"}, "INVALID_PAYMENT_METHOD"),
            ({"currency": "XYZ"}, "INVALID_CURRENCY"),
            ({"gateway": "square"}, "INVALID_GATEWAY"),
            ({"hold_period_days": -1}, "INVALID_HOLD_PERIOD"),
        ],
    )
    def test_invalid_options_rejected(self, buyer, listing, kwargs, error_code):
        with pytest.raises(TransactionValidationError) as exc_info:
            TransactionLedger.create(buyer=buyer, listing=listing, **kwargs)

        assert exc_info.value.error_code == error_code
        assert not Transaction.objects.exists()


# =============================================================================
# Reads
# =============================================================================


@pytest.mark.django_db
class TestLedgerGet:
    def test_returns_fresh_copy(self, pending_transaction):
        txn = TransactionLedger.get(pending_transaction.id)

        assert txn == pending_transaction
        assert txn is not pending_transaction

    def test_missing_transaction(self):
        with pytest.raises(TransactionNotFoundError):
            TransactionLedger.get(uuid.uuid4())

    def test_malformed_id(self):
        with pytest.raises(TransactionNotFoundError):
            TransactionLedger.get("not-a-uuid")


# =============================================================================
# Conditional Update
# =============================================================================


@pytest.mark.django_db
class TestConditionalUpdate:
    def test_applies_fields_and_bumps_version(self, pending_transaction):
        new_version = TransactionLedger.conditional_update(
            pending_transaction.id,
            expected_version=1,
            fields={"notes": "Leave at the door"},
        )

        txn = TransactionLedger.get(pending_transaction.id)
        assert new_version == 2
        assert txn.version == 2
        assert txn.notes == "Leave at the door"
        assert txn.updated_at >= pending_transaction.updated_at

    def test_stale_version_raises_and_writes_nothing(self, pending_transaction):
        TransactionLedger.conditional_update(
            pending_transaction.id, expected_version=1, fields={"notes": "first"}
        )

        with pytest.raises(StaleRecordError) as exc_info:
            TransactionLedger.conditional_update(
                pending_transaction.id, expected_version=1, fields={"notes": "second"}
            )

        assert exc_info.value.details["current_version"] == 2
        assert TransactionLedger.get(pending_transaction.id).notes == "first"

    def test_missing_transaction_raises_not_found(self):
        with pytest.raises(TransactionNotFoundError):
            TransactionLedger.conditional_update(
                uuid.uuid4(), expected_version=1, fields={"notes": "x"}
            )

    def test_expected_status_guard(self, pending_transaction):
        with pytest.raises(StaleRecordError):
            TransactionLedger.conditional_update(
                pending_transaction.id,
                expected_version=1,
                fields={"notes": "x"},
                expected_status=TransactionStatus.HELD_IN_ESCROW,
            )

        assert TransactionLedger.get(pending_transaction.id).version == 1

    @pytest.mark.parametrize(
        "field", ["version", "id", "reference", "buyer_id", "seller", "listing_id"]
    )
    def test_protected_fields_rejected(self, pending_transaction, field):
        with pytest.raises(TransactionValidationError) as exc_info:
            TransactionLedger.conditional_update(
                pending_transaction.id, expected_version=1, fields={field: None}
            )

        assert exc_info.value.error_code == "FIELD_NOT_WRITABLE"

    def test_timeline_entry_written_with_update(self, pending_transaction, staff_user):
        TransactionLedger.conditional_update(
            pending_transaction.id,
            expected_version=1,
            fields={"internal_notes": "checked"},
            timeline_entry=TimelineRecord(
                status=TransactionStatus.PENDING, note="Reviewed", actor=staff_user
            ),
        )

        entry = TimelineEntry.objects.get(transaction=pending_transaction)
        assert entry.note == "Reviewed"
        assert entry.actor == staff_user

    def test_stale_update_writes_no_timeline_entry(self, pending_transaction):
        with pytest.raises(StaleRecordError):
            TransactionLedger.conditional_update(
                pending_transaction.id,
                expected_version=7,
                fields={"notes": "x"},
                timeline_entry=TimelineRecord(status=TransactionStatus.PENDING),
            )

        assert not TimelineEntry.objects.filter(transaction=pending_transaction).exists()
