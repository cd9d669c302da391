"""
URL configuration for the settlements API.

All URLs are prefixed with /api/v1/settlements/ in the main URL
configuration. See settlements.views for the route table.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from settlements.views import TransactionViewSet
from settlements.webhooks import stripe_webhook

router = DefaultRouter()
router.register(r"transactions", TransactionViewSet, basename="transaction")

app_name = "settlements"

urlpatterns = [
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    path("", include(router.urls)),
]
