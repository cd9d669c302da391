"""
Stripe implementation of the PaymentGateway contract.

Charges are Stripe PaymentIntents, refunds are Stripe Refunds against
the captured PaymentIntent, and disbursements are Connect Transfers to
the seller's connected account. Stripe SDK errors are translated to
GatewayError subclasses so services can decide retry behavior.

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Signing secret for verify_webhook_signature()
- SETTLEMENTS_GATEWAY_TIMEOUT_SECONDS: API call timeout (default: 10)

Usage:
    from settlements.gateways import get_gateway

    gateway = get_gateway("stripe")
    payout = gateway.disburse(
        seller_ref="acct_1Hh1XYZ",
        amount=1000,
        currency="INR",
        idempotency_key="disburse:550e8400-e29b-41d4-a716-446655440000",
    )
"""

from __future__ import annotations

import logging
import time
from typing import Any

import stripe
from django.conf import settings

from settlements.exceptions import (
    GatewayDeclinedError,
    GatewayInvalidRequestError,
    GatewayRateLimitError,
    GatewayTimeoutError,
    GatewayUnavailableError,
)
from settlements.gateways.base import ChargeResult, PayoutResult, RefundResult
from settlements.state_machines import GatewayName, PaymentMethod

# Stripe payment method types per marketplace payment method.
# Methods missing here cannot be charged through Stripe.
STRIPE_PAYMENT_METHOD_TYPES = {
    PaymentMethod.CARD: ["card"],
    PaymentMethod.WALLET: ["card"],
}

# Stripe only accepts a fixed set of refund reasons
STRIPE_REFUND_REASON = "requested_by_customer"


class StripeGateway:
    """
    Stripe adapter for settlement operations.

    Stateless - a single instance is shared by the gateway registry.
    Thread-safe for use from Celery workers.
    """

    name = GatewayName.STRIPE

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe() -> None:
        """Configure Stripe client with API key and timeout."""
        stripe.api_key = settings.STRIPE_SECRET_KEY
        timeout = getattr(settings, "SETTLEMENTS_GATEWAY_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # Operations
    # =========================================================================

    def charge(
        self,
        transaction_ref: str,
        amount: int,
        currency: str,
        payment_method: str,
        idempotency_key: str,
    ) -> ChargeResult:
        """
        Create a PaymentIntent for the buyer to confirm.

        Args:
            transaction_ref: Transaction reference, stored in metadata
            amount: Amount to charge (agreed price plus fees)
            currency: ISO 4217 currency code
            payment_method: Marketplace payment method
            idempotency_key: Unique key for idempotent creation

        Returns:
            ChargeResult with the PaymentIntent ID and client secret

        Raises:
            GatewayInvalidRequestError: Method unsupported or bad parameters
            GatewayDeclinedError: Card was declined
            GatewayRateLimitError / GatewayUnavailableError / GatewayTimeoutError
        """
        method_types = STRIPE_PAYMENT_METHOD_TYPES.get(payment_method)
        if method_types is None:
            raise GatewayInvalidRequestError(
                f"Payment method '{payment_method}' is not supported by Stripe",
                error_code="PAYMENT_METHOD_NOT_SUPPORTED",
                gateway=self.name,
            )

        log_context = {
            "operation": "charge",
            "transaction_ref": transaction_ref,
            "amount": amount,
            "currency": currency,
            "idempotency_key": idempotency_key,
        }
        self._configure_stripe()
        logger = self.get_logger()
        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency.lower(),
                payment_method_types=method_types,
                metadata={"transaction_ref": transaction_ref},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            self._handle_stripe_error(e, log_context, start_time)
            raise

        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "payment_intent_id": intent.id,
                "status": intent.status,
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )
        return ChargeResult(
            order_id=intent.id,
            client_secret=intent.client_secret,
            status=intent.status,
            raw_response=intent.to_dict(),
        )

    def refund(
        self,
        transaction_ref: str,
        amount: int,
        currency: str,
        idempotency_key: str,
        reason: str = "",
    ) -> RefundResult:
        """
        Refund part or all of a captured PaymentIntent.

        Args:
            transaction_ref: PaymentIntent ID (pi_xxx)
            amount: Amount to refund
            currency: Currency code (for the result and logs)
            idempotency_key: Unique key for idempotent refund
            reason: Free-text reason, stored in metadata
        """
        log_context = {
            "operation": "refund",
            "payment_intent_id": transaction_ref,
            "amount": amount,
            "idempotency_key": idempotency_key,
        }
        self._configure_stripe()
        logger = self.get_logger()
        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            refund = stripe.Refund.create(
                payment_intent=transaction_ref,
                amount=amount,
                reason=STRIPE_REFUND_REASON,
                metadata={"reason": reason[:500]} if reason else {},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            self._handle_stripe_error(e, log_context, start_time)
            raise

        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "refund_id": refund.id,
                "status": refund.status,
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )
        return RefundResult(
            id=refund.id,
            amount=refund.amount,
            currency=currency,
            status=refund.status,
            raw_response=refund.to_dict(),
        )

    def disburse(
        self,
        seller_ref: str,
        amount: int,
        currency: str,
        idempotency_key: str,
    ) -> PayoutResult:
        """
        Transfer released funds to the seller's connected account.

        Args:
            seller_ref: Stripe Connect account ID (acct_xxx)
            amount: Amount to transfer
            currency: Currency code
            idempotency_key: Unique key for idempotent transfer
        """
        log_context = {
            "operation": "disburse",
            "destination_account": seller_ref,
            "amount": amount,
            "idempotency_key": idempotency_key,
        }
        self._configure_stripe()
        logger = self.get_logger()
        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            transfer = stripe.Transfer.create(
                amount=amount,
                currency=currency.lower(),
                destination=seller_ref,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            self._handle_stripe_error(e, log_context, start_time)
            raise

        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "transfer_id": transfer.id,
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )
        return PayoutResult(
            id=transfer.id,
            amount=transfer.amount,
            currency=currency,
            destination=transfer.destination,
            raw_response=transfer.to_dict(),
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    @classmethod
    def verify_webhook_signature(cls, payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify and parse a Stripe webhook event.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header value

        Returns:
            Parsed event data dict

        Raises:
            GatewayInvalidRequestError: Bad signature or unparseable payload
        """
        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                settings.STRIPE_WEBHOOK_SECRET,
            )
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise GatewayInvalidRequestError(
                "Invalid webhook signature",
                error_code="WEBHOOK_SIGNATURE_INVALID",
                gateway=cls.name,
                gateway_code="signature_verification_failed",
                details={"error": str(e)},
            ) from e
        return event.to_dict()

    # =========================================================================
    # Error Translation
    # =========================================================================

    def _handle_stripe_error(
        self,
        error: stripe.StripeError,
        log_context: dict[str, Any],
        start_time: float,
    ) -> None:
        """
        Translate Stripe exceptions to gateway exceptions.

        Raises:
            GatewayDeclinedError: Card was declined
            GatewayInvalidRequestError: Invalid parameters or credentials
            GatewayRateLimitError: Rate limited
            GatewayTimeoutError: Request timed out
            GatewayUnavailableError: Connection or server error
        """
        logger = self.get_logger()
        log_context = {**log_context, "duration_ms": (time.time() - start_time) * 1000}
        code = getattr(error, "code", None)

        if isinstance(error, stripe.CardError):
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": getattr(error, "decline_code", None)},
            )
            raise GatewayDeclinedError(
                str(error.user_message or error),
                gateway=self.name,
                gateway_code=code,
            )

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": code},
            )
            raise GatewayInvalidRequestError(
                str(error),
                gateway=self.name,
                gateway_code=code,
            )

        if isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise GatewayInvalidRequestError(
                "Stripe authentication failed",
                gateway=self.name,
                gateway_code="authentication_error",
            )

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise GatewayRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                gateway=self.name,
                gateway_code="rate_limit",
            )

        if isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            if "timeout" in str(error).lower() or "timed out" in str(error).lower():
                raise GatewayTimeoutError(
                    "Stripe request timed out. Please retry.",
                    gateway=self.name,
                    gateway_code="timeout",
                )
            raise GatewayUnavailableError(
                "Could not connect to Stripe. Please retry.",
                gateway=self.name,
                gateway_code="api_connection_error",
            )

        logger.error(
            f"Stripe API error: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        raise GatewayUnavailableError(
            "Stripe service error. Please retry.",
            gateway=self.name,
            gateway_code=code or "api_error",
        )


__all__ = [
    "StripeGateway",
]
