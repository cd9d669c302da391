"""
Pytest fixtures for settlement tests.

The fake gateway records every call and can be told to fail, so service
tests never reach Stripe. It is installed for every test through
set_gateway() and removed afterwards. Distributed locks run against an
in-memory Redis stand-in, so lock contention behaves as in production.

Usage:
    def test_refund(held_transaction, fake_gateway, staff_user):
        RefundService.process_refund(held_transaction.id, actor=staff_user)
        assert fake_gateway.refunds[0]["amount"] == 1000
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from settlements.gateways import (
    ChargeResult,
    PayoutResult,
    RefundResult,
    reset_gateways,
    set_gateway,
)
from settlements.locks import DistributedLock
from settlements.tests.factories import (
    ListingFactory,
    PayoutAccountFactory,
    StaffUserFactory,
    TransactionFactory,
    UserFactory,
)


class FakeGateway:
    """
    In-memory PaymentGateway.

    Set charge_error / refund_error / disburse_error to an exception (or a
    list of exceptions, raised one per call) to simulate failures.
    """

    name = "stripe"

    def __init__(self):
        self.charges = []
        self.refunds = []
        self.disbursements = []
        self.charge_error = None
        self.refund_error = None
        self.disburse_error = None

    @staticmethod
    def _maybe_raise(error):
        if isinstance(error, list):
            if error:
                raise error.pop(0)
            return
        if error is not None:
            raise error

    def charge(self, transaction_ref, amount, currency, payment_method, idempotency_key):
        self._maybe_raise(self.charge_error)
        self.charges.append(
            {
                "transaction_ref": transaction_ref,
                "amount": amount,
                "currency": currency,
                "payment_method": payment_method,
                "idempotency_key": idempotency_key,
            }
        )
        n = len(self.charges)
        return ChargeResult(order_id=f"pi_fake_{n}", client_secret=f"pi_fake_{n}_secret")

    def refund(self, transaction_ref, amount, currency, idempotency_key, reason=""):
        self._maybe_raise(self.refund_error)
        self.refunds.append(
            {
                "transaction_ref": transaction_ref,
                "amount": amount,
                "currency": currency,
                "idempotency_key": idempotency_key,
                "reason": reason,
            }
        )
        return RefundResult(
            id=f"re_fake_{len(self.refunds)}", amount=amount, currency=currency
        )

    def disburse(self, seller_ref, amount, currency, idempotency_key):
        self._maybe_raise(self.disburse_error)
        self.disbursements.append(
            {
                "seller_ref": seller_ref,
                "amount": amount,
                "currency": currency,
                "idempotency_key": idempotency_key,
            }
        )
        return PayoutResult(
            id=f"tr_fake_{len(self.disbursements)}",
            amount=amount,
            currency=currency,
            destination=seller_ref,
        )


class FakeRedis:
    """
    Dict-backed stand-in for the Redis commands DistributedLock uses.

    Keys never expire; tests release locks explicitly.
    """

    def __init__(self):
        self.store = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    def get(self, key):
        return self.store.get(key)

    def eval(self, script, numkeys, key, token, *args):
        if self.store.get(key) != token:
            return 0
        if script == DistributedLock.RELEASE_SCRIPT:
            del self.store[key]
        return 1


# =============================================================================
# Gateway Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def fake_gateway():
    """Install a FakeGateway under the stripe name for every test."""
    gateway = FakeGateway()
    set_gateway("stripe", gateway)
    yield gateway
    reset_gateways()


@pytest.fixture(autouse=True)
def fake_redis(mocker):
    """In-memory Redis behind every DistributedLock."""
    client = FakeRedis()
    mocker.patch("settlements.locks.get_redis_connection", return_value=client)
    return client


@pytest.fixture
def mock_redis(mocker):
    """
    Mock Redis client for distributed lock tests.

    Returns a MagicMock configured for basic lock operations.
    """
    mock_client = mocker.MagicMock()
    mock_client.set.return_value = True
    mock_client.get.return_value = None
    mock_client.eval.return_value = 1
    mocker.patch("settlements.locks.get_redis_connection", return_value=mock_client)
    return mock_client


# =============================================================================
# User and Listing Fixtures
# =============================================================================


@pytest.fixture
def buyer(db):
    return UserFactory()


@pytest.fixture
def seller(db):
    return UserFactory()


@pytest.fixture
def staff_user(db):
    return StaffUserFactory()


@pytest.fixture
def outsider(db):
    """A user who is party to nothing."""
    return UserFactory()


@pytest.fixture
def listing(db, seller):
    return ListingFactory(seller=seller, price_amount=1000)


@pytest.fixture
def payout_account(db, seller):
    return PayoutAccountFactory(user=seller)


# =============================================================================
# Transaction State Fixtures
# =============================================================================


@pytest.fixture
def pending_transaction(db, buyer, listing):
    return TransactionFactory(buyer=buyer, listing=listing)


@pytest.fixture
def held_transaction(db, buyer, listing, payout_account):
    """Held in escrow, release date 7 days out, seller can receive payouts."""
    return TransactionFactory(buyer=buyer, listing=listing, held=True)


@pytest.fixture
def overdue_transaction(db, buyer, listing, payout_account):
    """Held in escrow with the release date already passed."""
    return TransactionFactory(
        buyer=buyer,
        listing=listing,
        held=True,
        escrow_release_date=timezone.now() - timedelta(days=1),
    )


@pytest.fixture
def disputed_transaction(db, buyer, listing, payout_account):
    return TransactionFactory(buyer=buyer, listing=listing, disputed=True)
