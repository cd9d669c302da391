"""
Inbound Stripe webhooks for the payment leg.

Events are signature-checked and applied in the request; see views and
handlers.

Usage:
    # In urls.py
    from settlements.webhooks import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from settlements.webhooks.handlers import dispatch_event, register_handler
from settlements.webhooks.views import stripe_webhook

__all__ = [
    "dispatch_event",
    "register_handler",
    "stripe_webhook",
]
