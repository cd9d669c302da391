"""
Settlements app configuration.

This app provides escrow settlement for marketplace purchases:
- Fee calculation
- Versioned transaction ledger with conditional writes
- Status transition management and timeline history
- Scheduled escrow release and seller disbursement
- Disputes and refunds
"""

from django.apps import AppConfig


class SettlementsConfig(AppConfig):
    """Configuration for the settlements application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "settlements"
    verbose_name = "Settlements"

    def ready(self):
        """Connect signal receivers."""
        from settlements import signals  # noqa: F401
