"""
Tests for the Stripe webhook endpoint and its handlers.

Signature verification is patched; events are plain dicts shaped like
Stripe's payloads.
"""

import json

import pytest
from django.test import RequestFactory

from settlements.exceptions import GatewayInvalidRequestError, InvalidStateTransitionError
from settlements.ledger import TransactionLedger
from settlements.services import SettlementService
from settlements.state_machines import TransactionStatus
from settlements.tests.factories import TransactionFactory
from settlements.webhooks import dispatch_event, register_handler
from settlements.webhooks.handlers import EVENT_HANDLERS
from settlements.webhooks.views import stripe_webhook

WEBHOOK_PATH = "/api/v1/settlements/webhooks/stripe/"
VERIFY = "settlements.webhooks.views.StripeGateway.verify_webhook_signature"


@pytest.fixture
def rf():
    return RequestFactory()


def make_webhook_request(rf, payload: dict, signature: str = "test_sig"):
    return rf.post(
        WEBHOOK_PATH,
        data=json.dumps(payload),
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE=signature,
    )


def intent_event(event_type, intent_id, **intent):
    return {
        "id": f"evt_{intent_id}",
        "type": event_type,
        "data": {"object": {"id": intent_id, "object": "payment_intent", **intent}},
    }


@pytest.fixture
def processing_transaction(buyer, listing):
    return TransactionFactory(
        buyer=buyer, listing=listing, processing=True, gateway_order_id="pi_42"
    )


# =============================================================================
# Endpoint
# =============================================================================


@pytest.mark.django_db
class TestStripeWebhookView:
    def test_missing_signature_returns_400(self, rf):
        request = rf.post(
            WEBHOOK_PATH, data=json.dumps({"id": "evt_1"}), content_type="application/json"
        )

        response = stripe_webhook(request)

        assert response.status_code == 400
        assert b"Missing signature" in response.content

    def test_invalid_signature_returns_400(self, rf, mocker, processing_transaction):
        mocker.patch(VERIFY, side_effect=GatewayInvalidRequestError("Invalid webhook signature"))
        event = intent_event("payment_intent.succeeded", "pi_42")

        response = stripe_webhook(make_webhook_request(rf, event, signature="forged"))

        assert response.status_code == 400
        assert TransactionLedger.get(processing_transaction.id).status == (
            TransactionStatus.PROCESSING
        )

    def test_event_without_type_returns_400(self, rf, mocker):
        mocker.patch(VERIFY, return_value={"id": "evt_1"})

        response = stripe_webhook(make_webhook_request(rf, {"id": "evt_1"}))

        assert response.status_code == 400

    def test_get_not_allowed(self, rf):
        response = stripe_webhook(rf.get(WEBHOOK_PATH))

        assert response.status_code == 405

    def test_succeeded_holds_funds(self, rf, mocker, processing_transaction):
        event = intent_event(
            "payment_intent.succeeded",
            "pi_42",
            latest_charge="ch_42",
            payment_method="pm_1",
            payment_method_types=["card"],
        )
        verify = mocker.patch(VERIFY, return_value=event)

        response = stripe_webhook(make_webhook_request(rf, event))

        assert response.status_code == 200
        verify.assert_called_once()
        assert verify.call_args.args[1] == "test_sig"
        txn = TransactionLedger.get(processing_transaction.id)
        assert txn.status == TransactionStatus.HELD_IN_ESCROW
        assert txn.gateway_transaction_id == "ch_42"
        assert txn.payment_method_details == {
            "payment_method": "pm_1",
            "payment_method_types": ["card"],
        }
        assert txn.escrow_release_date is not None

    def test_redelivered_event_is_acknowledged(self, rf, mocker, processing_transaction):
        event = intent_event("payment_intent.succeeded", "pi_42", latest_charge="ch_42")
        mocker.patch(VERIFY, return_value=event)
        stripe_webhook(make_webhook_request(rf, event))

        response = stripe_webhook(make_webhook_request(rf, event))

        assert response.status_code == 200
        txn = TransactionLedger.get(processing_transaction.id)
        assert txn.status == TransactionStatus.HELD_IN_ESCROW
        assert txn.version == 2

    def test_transaction_moved_on_during_handling(self, rf, mocker, processing_transaction):
        event = intent_event("payment_intent.succeeded", "pi_42", latest_charge="ch_42")
        mocker.patch(VERIFY, return_value=event)
        mocker.patch.object(
            SettlementService,
            "confirm_payment",
            side_effect=InvalidStateTransitionError("Cannot hold a cancelled transaction"),
        )

        response = stripe_webhook(make_webhook_request(rf, event))

        assert response.status_code == 200
        assert b"Already processed" in response.content

    def test_routed_through_urls(self, client, mocker, processing_transaction):
        event = intent_event("payment_intent.succeeded", "pi_42", latest_charge="ch_42")
        mocker.patch(VERIFY, return_value=event)

        response = client.post(
            WEBHOOK_PATH,
            data=json.dumps(event),
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE="test_sig",
        )

        assert response.status_code == 200
        assert TransactionLedger.get(processing_transaction.id).status == (
            TransactionStatus.HELD_IN_ESCROW
        )


# =============================================================================
# Handlers
# =============================================================================


@pytest.mark.django_db
class TestPaymentIntentHandlers:
    def test_payment_failed(self, processing_transaction):
        event = intent_event(
            "payment_intent.payment_failed",
            "pi_42",
            last_payment_error={"message": "Your card has insufficient funds."},
        )

        txn = dispatch_event(event)

        assert txn.status == TransactionStatus.FAILED
        assert txn.timeline.get().note == "Payment failed: Your card has insufficient funds."

    def test_payment_failed_without_details(self, processing_transaction):
        txn = dispatch_event(
            intent_event("payment_intent.payment_failed", "pi_42", last_payment_error=None)
        )

        assert txn.status == TransactionStatus.FAILED
        assert txn.timeline.get().note == "Payment failed: Payment failed"

    def test_charge_id_falls_back_to_intent(self, processing_transaction):
        txn = dispatch_event(intent_event("payment_intent.succeeded", "pi_42"))

        assert txn.gateway_transaction_id == "pi_42"

    def test_unknown_intent_ignored(self, processing_transaction):
        assert dispatch_event(intent_event("payment_intent.succeeded", "pi_other")) is None
        assert TransactionLedger.get(processing_transaction.id).status == (
            TransactionStatus.PROCESSING
        )

    def test_cancelled_transaction_not_revived(self, processing_transaction, buyer):
        SettlementService.cancel_transaction(processing_transaction.id, actor=buyer)

        assert dispatch_event(intent_event("payment_intent.succeeded", "pi_42")) is None
        assert TransactionLedger.get(processing_transaction.id).status == (
            TransactionStatus.CANCELLED
        )

    def test_event_without_object_ignored(self):
        assert dispatch_event({"id": "evt_1", "type": "payment_intent.succeeded"}) is None

    def test_unhandled_event_type(self, processing_transaction):
        assert dispatch_event(intent_event("payment_intent.created", "pi_42")) is None

    def test_register_handler(self, mocker):
        mocker.patch.dict(EVENT_HANDLERS)
        seen = []

        @register_handler("charge.dispute.created")
        def handle(event):
            seen.append(event["id"])

        dispatch_event({"id": "evt_9", "type": "charge.dispute.created"})

        assert seen == ["evt_9"]
