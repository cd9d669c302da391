"""
API tests for the settlements endpoints.

Authentication is forced on the DRF test client; services run against the
fake gateway installed by conftest.
"""

import pytest
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from settlements.exceptions import GatewayDeclinedError, GatewayUnavailableError
from settlements.ledger import TransactionLedger
from settlements.state_machines import TransactionStatus
from settlements.tests.factories import TransactionFactory


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def as_user(api_client):
    """Return a client authenticated as the given user."""

    def _as(user):
        api_client.force_authenticate(user=user)
        return api_client

    return _as


def detail_url(name, txn):
    return reverse(f"settlements:transaction-{name}", kwargs={"pk": txn.pk})


LIST_URL = "/api/v1/settlements/transactions/"


# =============================================================================
# Creation and Reads
# =============================================================================


@pytest.mark.django_db
class TestTransactionReads:
    def test_requires_authentication(self, api_client):
        response = api_client.get(LIST_URL)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_list_shows_only_own_transactions(self, as_user, buyer, pending_transaction):
        TransactionFactory()

        response = as_user(buyer).get(LIST_URL)

        assert response.status_code == status.HTTP_200_OK
        ids = [row["id"] for row in response.data["results"]]
        assert ids == [str(pending_transaction.id)]
        assert response.data["results"][0]["total_amount"] == 1054

    def test_seller_sees_sale(self, as_user, seller, pending_transaction):
        response = as_user(seller).get(LIST_URL)

        assert response.data["count"] == 1

    def test_retrieve_as_party(self, as_user, buyer, pending_transaction):
        response = as_user(buyer).get(detail_url("detail", pending_transaction))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["reference"] == pending_transaction.reference
        assert response.data["fee_total"] == 54
        assert "internal_notes" not in response.data

    def test_retrieve_as_outsider_is_not_found(self, as_user, outsider, pending_transaction):
        response = as_user(outsider).get(detail_url("detail", pending_transaction))

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_staff_sees_internal_notes(self, as_user, staff_user, pending_transaction):
        response = as_user(staff_user).get(detail_url("detail", pending_transaction))

        assert response.status_code == status.HTTP_200_OK
        assert "internal_notes" in response.data

    def test_timeline(self, as_user, buyer, listing):
        txn = TransactionLedger.create(buyer=buyer, listing=listing)

        response = as_user(buyer).get(detail_url("timeline", txn))

        assert response.status_code == status.HTTP_200_OK
        assert [e["status"] for e in response.data] == [TransactionStatus.PENDING]
        assert response.data[0]["note"] == "Transaction created"

    def test_seller_stats(self, as_user, seller, pending_transaction, held_transaction):
        response = as_user(seller).get(f"{LIST_URL}stats/", {"period": 7})

        assert response.status_code == status.HTTP_200_OK
        assert response.data["period_days"] == 7
        assert response.data["total_count"] == 2

    def test_seller_stats_invalid_period(self, as_user, seller):
        response = as_user(seller).get(f"{LIST_URL}stats/", {"period": 0})

        assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.django_db
class TestCreateTransaction:
    def test_buyer_creates_transaction(self, as_user, buyer, listing):
        response = as_user(buyer).post(
            LIST_URL,
            {"listing_id": str(listing.id), "amount_final": 900, "payment_method": "upi"},
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["status"] == TransactionStatus.PENDING
        assert response.data["buyer"] == buyer.pk
        assert response.data["amount_final"] == 900
        assert response.data["fee_total"] == 23 + 14
        assert response.data["version"] == 1

    def test_own_listing_rejected(self, as_user, seller, listing):
        response = as_user(seller).post(
            LIST_URL, {"listing_id": str(listing.id)}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "BUYER_IS_SELLER"

    def test_invalid_payload(self, as_user, buyer):
        response = as_user(buyer).post(LIST_URL, {"amount_final": -1}, format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "listing_id" in response.data


# =============================================================================
# Payment Leg
# =============================================================================


@pytest.mark.django_db
class TestPayAndCancel:
    def test_buyer_starts_payment(self, as_user, buyer, pending_transaction):
        response = as_user(buyer).post(detail_url("pay", pending_transaction))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["client_secret"] == "pi_fake_1_secret"
        assert response.data["transaction"]["status"] == TransactionStatus.PROCESSING

    def test_seller_cannot_pay(self, as_user, seller, pending_transaction):
        response = as_user(seller).post(detail_url("pay", pending_transaction))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_declined_payment_is_bad_gateway(
        self, as_user, buyer, pending_transaction, fake_gateway
    ):
        fake_gateway.charge_error = GatewayDeclinedError("Card declined")

        response = as_user(buyer).post(detail_url("pay", pending_transaction))

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert response.data["error_code"] == "GATEWAY_DECLINED"

    def test_cancel(self, as_user, buyer, pending_transaction):
        response = as_user(buyer).post(
            detail_url("cancel", pending_transaction),
            {"reason": "Changed my mind"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == TransactionStatus.CANCELLED


@pytest.mark.django_db
class TestTermsEndpoint:
    def test_seller_lowers_price(self, as_user, seller, pending_transaction):
        response = as_user(seller).post(
            detail_url("terms", pending_transaction),
            {"amount_final": 800, "expected_version": 1},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["amount_final"] == 800
        assert response.data["fee_total"] == 43
        assert response.data["version"] == 2

    def test_buyer_changes_method(self, as_user, buyer, pending_transaction):
        response = as_user(buyer).post(
            detail_url("terms", pending_transaction),
            {"payment_method": "upi", "expected_version": 1},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["payment_method"] == "upi"
        assert response.data["fee_total"] == 40

    def test_new_terms_are_charged(self, as_user, buyer, pending_transaction, fake_gateway):
        client = as_user(buyer)
        client.post(
            detail_url("terms", pending_transaction),
            {"amount_final": 2000, "expected_version": 1},
            format="json",
        )

        response = client.post(detail_url("pay", pending_transaction))

        assert response.status_code == status.HTTP_200_OK
        assert fake_gateway.charges[0]["amount"] == 2108

    def test_nothing_to_change(self, as_user, buyer, pending_transaction):
        response = as_user(buyer).post(
            detail_url("terms", pending_transaction),
            {"expected_version": 1},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_stale_version_is_conflict(self, as_user, buyer, pending_transaction):
        response = as_user(buyer).post(
            detail_url("terms", pending_transaction),
            {"amount_final": 800, "expected_version": 4},
            format="json",
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert TransactionLedger.get(pending_transaction.id).amount_final == 1000

    def test_locked_once_paid(self, as_user, buyer, held_transaction):
        response = as_user(buyer).post(
            detail_url("terms", held_transaction),
            {"amount_final": 800, "expected_version": 1},
            format="json",
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "TERMS_LOCKED"

    def test_outsider_cannot_see_transaction(self, as_user, outsider, pending_transaction):
        response = as_user(outsider).post(
            detail_url("terms", pending_transaction),
            {"amount_final": 1, "expected_version": 1},
            format="json",
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND


# =============================================================================
# Staff Transition
# =============================================================================


@pytest.mark.django_db
class TestTransitionEndpoint:
    def test_staff_transition(self, as_user, staff_user, pending_transaction):
        response = as_user(staff_user).post(
            detail_url("transition", pending_transaction),
            {"target_status": "processing", "expected_version": 1, "note": "Manual"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == TransactionStatus.PROCESSING
        assert response.data["version"] == 2

    def test_illegal_transition_is_conflict(self, as_user, staff_user, held_transaction):
        response = as_user(staff_user).post(
            detail_url("transition", held_transaction),
            {"target_status": "cancelled", "expected_version": 1},
            format="json",
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "INVALID_STATE_TRANSITION"
        assert TransactionLedger.get(held_transaction.id).version == 1

    @pytest.mark.parametrize("target", ["completed", "refunded", "disputed", "held_in_escrow"])
    def test_settlement_statuses_not_settable(
        self, as_user, staff_user, held_transaction, fake_gateway, target
    ):
        response = as_user(staff_user).post(
            detail_url("transition", held_transaction),
            {"target_status": target, "expected_version": 1},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        txn = TransactionLedger.get(held_transaction.id)
        assert txn.status == TransactionStatus.HELD_IN_ESCROW
        assert txn.version == 1
        assert fake_gateway.refunds == []
        assert fake_gateway.disbursements == []

    def test_stale_version_is_conflict(self, as_user, staff_user, pending_transaction):
        response = as_user(staff_user).post(
            detail_url("transition", pending_transaction),
            {"target_status": "processing", "expected_version": 9},
            format="json",
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "STALE_RECORD"

    def test_expected_version_required(self, as_user, staff_user, pending_transaction):
        response = as_user(staff_user).post(
            detail_url("transition", pending_transaction),
            {"target_status": "processing"},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_non_staff_forbidden(self, as_user, buyer, pending_transaction):
        response = as_user(buyer).post(
            detail_url("transition", pending_transaction),
            {"target_status": "cancelled", "expected_version": 1},
            format="json",
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN


# =============================================================================
# Release, Disputes and Refunds
# =============================================================================


@pytest.mark.django_db
class TestReleaseEndpoint:
    def test_buyer_releases(self, as_user, buyer, held_transaction):
        response = as_user(buyer).post(detail_url("release", held_transaction), {}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["outcome"] == "released"
        assert response.data["payout_reference"] == "tr_fake_1"
        assert response.data["transaction"]["status"] == TransactionStatus.COMPLETED

    def test_seller_cannot_release(self, as_user, seller, held_transaction):
        response = as_user(seller).post(detail_url("release", held_transaction), {}, format="json")

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_release_of_pending_is_conflict(self, as_user, buyer, pending_transaction):
        response = as_user(buyer).post(
            detail_url("release", pending_transaction), {}, format="json"
        )

        assert response.status_code == status.HTTP_409_CONFLICT

    def test_payout_still_queued(self, as_user, buyer, held_transaction, mocker):
        mocker.patch(
            "settlements.workers.release_sweeper.disburse_released_transaction.delay"
        )

        response = as_user(buyer).post(detail_url("release", held_transaction), {}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["outcome"] == "disbursement_pending"
        assert response.data["payout_reference"] is None
        assert response.data["transaction"]["status"] == TransactionStatus.COMPLETED

    def test_release_during_refund_is_conflict(
        self, as_user, buyer, held_transaction, fake_redis
    ):
        fake_redis.store[f"lock:settlements:transaction:{held_transaction.id}"] = "refund"

        response = as_user(buyer).post(detail_url("release", held_transaction), {}, format="json")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "LOCK_ACQUISITION_FAILED"
        assert TransactionLedger.get(held_transaction.id).status == (
            TransactionStatus.HELD_IN_ESCROW
        )


@pytest.mark.django_db
class TestDisputeEndpoints:
    def test_buyer_opens_dispute(self, as_user, buyer, held_transaction):
        response = as_user(buyer).post(
            detail_url("dispute", held_transaction),
            {
                "reason": "not_as_described",
                "description": "Wrong colour",
                "evidence": [{"type": "image", "url": "https://img.example.com/1.jpg"}],
            },
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == TransactionStatus.DISPUTED
        assert response.data["dispute_evidence"][0]["type"] == "image"

    def test_outsider_cannot_dispute(self, as_user, outsider, held_transaction):
        response = as_user(outsider).post(
            detail_url("dispute", held_transaction), {"reason": "x"}, format="json"
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_add_evidence(self, as_user, seller, disputed_transaction):
        response = as_user(seller).post(
            detail_url("evidence", disputed_transaction),
            {"type": "document", "url": "https://docs.example.com/receipt.pdf"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert len(response.data["dispute_evidence"]) == 1

    def test_staff_resolves_with_refund(
        self, as_user, staff_user, disputed_transaction, fake_gateway
    ):
        response = as_user(staff_user).post(
            detail_url("resolve-dispute", disputed_transaction),
            {"resolution": "Refund half", "refund_amount": 500},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == TransactionStatus.REFUNDED
        assert response.data["dispute_refund_amount"] == 500

    def test_party_cannot_resolve(self, as_user, buyer, disputed_transaction):
        response = as_user(buyer).post(
            detail_url("resolve-dispute", disputed_transaction),
            {"resolution": "I win"},
            format="json",
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.django_db
class TestRefundEndpoint:
    def test_staff_refunds(self, as_user, staff_user, held_transaction):
        response = as_user(staff_user).post(
            detail_url("refund", held_transaction),
            {"refund_amount": 1000, "reason": "Seller cancelled"},
            format="json",
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == TransactionStatus.REFUNDED
        assert response.data["refund_amount"] == 1000

    def test_amount_above_total_rejected(self, as_user, staff_user, held_transaction):
        response = as_user(staff_user).post(
            detail_url("refund", held_transaction),
            {"refund_amount": 5000},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "INVALID_REFUND_AMOUNT"

    def test_gateway_outage_is_service_unavailable(
        self, as_user, staff_user, held_transaction, fake_gateway, settings
    ):
        settings.SETTLEMENTS_GATEWAY_INLINE_RETRIES = 0
        fake_gateway.refund_error = GatewayUnavailableError("Stripe down")

        response = as_user(staff_user).post(
            detail_url("refund", held_transaction), {}, format="json"
        )

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert (
            TransactionLedger.get(held_transaction.id).status
            == TransactionStatus.HELD_IN_ESCROW
        )

    def test_buyer_cannot_refund(self, as_user, buyer, held_transaction):
        response = as_user(buyer).post(
            detail_url("refund", held_transaction), {}, format="json"
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
