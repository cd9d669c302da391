"""
Tests for fee calculation.

Fees are integers in the smallest currency unit, rounded half-up from the
agreed amount. The buyer pays amount_final + fee_total.
"""

import pytest

from settlements.exceptions import TransactionValidationError
from settlements.fees import (
    PAYMENT_METHOD_FEE_RATES,
    FeeBreakdown,
    compute_fees,
    get_payment_fee_rate,
)
from settlements.state_machines import PaymentMethod


class TestComputeFees:
    def test_card_fees_on_1000(self):
        fees = compute_fees(1000, PaymentMethod.CARD)

        assert fees == FeeBreakdown(platform=25, payment=29, total=54)

    @pytest.mark.parametrize(
        "method,expected_payment",
        [
            (PaymentMethod.NETBANKING, 19),
            (PaymentMethod.UPI, 15),
            (PaymentMethod.WALLET, 20),
            (PaymentMethod.BANK_TRANSFER, 10),
        ],
    )
    def test_payment_fee_depends_on_method(self, method, expected_payment):
        fees = compute_fees(1000, method)

        assert fees.platform == 25
        assert fees.payment == expected_payment
        assert fees.total == 25 + expected_payment

    def test_rounds_half_up(self):
        """2.5 rounds to 3 and 1.5 rounds to 2."""
        fees = compute_fees(100, PaymentMethod.UPI)

        assert fees.platform == 3
        assert fees.payment == 2
        assert fees.total == 5

    def test_small_amount_rounds_down_to_zero(self):
        fees = compute_fees(10, PaymentMethod.CARD)

        assert fees == FeeBreakdown(platform=0, payment=0, total=0)

    def test_zero_amount_has_no_fees(self):
        assert compute_fees(0, PaymentMethod.CARD).total == 0

    def test_unknown_method_uses_card_rate(self):
        assert compute_fees(1000, "carrier_pigeon") == compute_fees(1000, "card")
        assert compute_fees(1000, None) == compute_fees(1000, "card")

    def test_total_is_sum_of_parts(self):
        for amount in (1, 99, 1234, 999_999):
            fees = compute_fees(amount, PaymentMethod.WALLET)
            assert fees.total == fees.platform + fees.payment

    def test_platform_rate_comes_from_settings(self, settings):
        settings.PLATFORM_FEE_RATE = "0.05"

        fees = compute_fees(1000, PaymentMethod.CARD)

        assert fees.platform == 50
        assert fees.total == 79

    @pytest.mark.parametrize("amount", [-1, "abc", None, True, float("nan")])
    def test_invalid_amount_raises(self, amount):
        with pytest.raises(TransactionValidationError) as exc_info:
            compute_fees(amount, PaymentMethod.CARD)

        assert exc_info.value.error_code == "INVALID_AMOUNT"


class TestFeeBreakdown:
    def test_as_model_fields(self):
        fees = FeeBreakdown(platform=25, payment=29, total=54)

        assert fees.as_model_fields() == {
            "fee_platform": 25,
            "fee_payment": 29,
            "fee_total": 54,
        }

    def test_every_payment_method_has_a_rate(self):
        for method in PaymentMethod.values:
            assert method in PAYMENT_METHOD_FEE_RATES
            assert get_payment_fee_rate(method) == PAYMENT_METHOD_FEE_RATES[method]
