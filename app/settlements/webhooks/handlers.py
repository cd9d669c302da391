"""
Stripe event handlers for the payment leg.

A PaymentIntent created by SettlementService.start_payment reports its
outcome here. payment_intent.succeeded holds the funds in escrow and
payment_intent.payment_failed fails the transaction. Stripe delivers
events at least once, so a handler that finds the transaction already
past PROCESSING logs the duplicate and returns.

Usage:
    from settlements.webhooks.handlers import dispatch_event, register_handler

    @register_handler("charge.refunded")
    def handle_charge_refunded(event: dict) -> Transaction | None:
        ...

    txn = dispatch_event(event)
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from settlements.models import Transaction
from settlements.services import SettlementService
from settlements.state_machines import TransactionStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps Stripe event types to handler functions
EVENT_HANDLERS: dict[str, Callable[[dict[str, Any]], Transaction | None]] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a Stripe event handler.

    Args:
        event_type: The Stripe event type (e.g., "payment_intent.succeeded")
    """

    def decorator(func: Callable[[dict[str, Any]], Transaction | None]) -> Callable:
        EVENT_HANDLERS[event_type] = func
        return func

    return decorator


def dispatch_event(event: dict[str, Any]) -> Transaction | None:
    """
    Dispatch a verified event to its handler.

    Event types without a handler are acknowledged and ignored.

    Returns:
        The affected transaction, or None when nothing was changed
    """
    event_type = event.get("type")
    handler = EVENT_HANDLERS.get(event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {event_type}",
            extra={"stripe_event_id": event.get("id")},
        )
        return None

    logger.info(
        f"Dispatching {event_type} to handler",
        extra={"stripe_event_id": event.get("id")},
    )
    return handler(event)


def _event_object(event: dict[str, Any]) -> dict[str, Any]:
    return (event.get("data") or {}).get("object") or {}


def _processing_transaction(event: dict[str, Any]) -> Transaction | None:
    """
    Find the transaction a PaymentIntent event belongs to.

    Returns None (after logging) for unknown intents and for transactions
    that have already left PROCESSING.
    """
    intent_id = _event_object(event).get("id")
    if not intent_id:
        logger.error(
            f"{event.get('type')}: event carries no payment_intent id",
            extra={"stripe_event_id": event.get("id")},
        )
        return None

    txn = Transaction.objects.filter(gateway_order_id=intent_id).first()
    if txn is None:
        logger.warning(
            "No transaction for payment_intent",
            extra={"payment_intent_id": intent_id, "stripe_event_id": event.get("id")},
        )
        return None

    if txn.status != TransactionStatus.PROCESSING:
        logger.info(
            f"Transaction {txn.reference} already {txn.status}, ignoring {event.get('type')}",
            extra={"transaction_id": str(txn.id), "stripe_event_id": event.get("id")},
        )
        return None

    return txn


# =============================================================================
# Payment Intent Handlers
# =============================================================================


@register_handler("payment_intent.succeeded")
def handle_payment_intent_succeeded(event: dict[str, Any]) -> Transaction | None:
    """Record the capture and hold the funds in escrow."""
    txn = _processing_transaction(event)
    if txn is None:
        return None

    intent = _event_object(event)
    return SettlementService.confirm_payment(
        txn.id,
        gateway_transaction_id=intent.get("latest_charge") or intent["id"],
        payment_method_details={
            "payment_method": intent.get("payment_method"),
            "payment_method_types": intent.get("payment_method_types") or [],
        },
    )


@register_handler("payment_intent.payment_failed")
def handle_payment_intent_failed(event: dict[str, Any]) -> Transaction | None:
    txn = _processing_transaction(event)
    if txn is None:
        return None

    last_error = _event_object(event).get("last_payment_error") or {}
    return SettlementService.fail_payment(
        txn.id,
        reason=last_error.get("message") or "Payment failed",
    )
