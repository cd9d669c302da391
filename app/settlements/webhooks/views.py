"""
Webhook endpoint for Stripe.

The view verifies the signature, hands the event to the handler
registry and answers Stripe. Handlers are quick (one status change) so
events are processed in the request. A transaction that moved on while
the event was handled is acknowledged with 200; any other failure
returns 500 so that Stripe redelivers.

Usage:
    # In urls.py
    from settlements.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from core.exceptions import ConflictError
from settlements.exceptions import GatewayInvalidRequestError
from settlements.gateways.stripe_gateway import StripeGateway
from settlements.webhooks.handlers import dispatch_event

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive a Stripe webhook event.

    Returns:
        HttpResponse with status:
        - 200: Event handled, ignored or already applied
        - 400: Missing or invalid signature

    Example Stripe-Signature header:
        t=1614556800,v1=xxx,v0=yyy
    """
    payload = request.body
    signature = request.headers.get("Stripe-Signature", "")

    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return HttpResponse("Missing signature", status=400)

    try:
        event = StripeGateway.verify_webhook_signature(payload, signature)
    except GatewayInvalidRequestError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error": str(e)},
        )
        return HttpResponse("Invalid signature", status=400)

    if not event.get("id") or not event.get("type"):
        logger.warning("Webhook missing required fields")
        return HttpResponse("Invalid event", status=400)

    logger.info(
        f"Received Stripe webhook: {event['type']}",
        extra={"stripe_event_id": event["id"], "event_type": event["type"]},
    )

    try:
        dispatch_event(event)
    except ConflictError as e:
        # The transaction moved on between lookup and update
        logger.info(
            "Webhook event no longer applies",
            extra={"stripe_event_id": event["id"], "error_code": e.error_code},
        )
        return HttpResponse("Already processed", status=200)

    return HttpResponse("Accepted", status=200)
