"""
Listings app configuration.

Holds the minimal listing record that settlement transactions reference.
"""

from django.apps import AppConfig


class ListingsConfig(AppConfig):
    """Configuration for the listings application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "listings"
    verbose_name = "Listings"
