"""
Read-only lookups for users and listings.

The settlement engine only needs to confirm that parties and listings
exist and that a listing can still be bought. These directories wrap
the ORM so that services never query other apps' tables directly.

Usage:
    from settlements.directories import ListingDirectory, UserDirectory

    listing = ListingDirectory.resolve(listing_id)
    if listing is None or not ListingDirectory.is_purchasable(listing):
        ...

    if not UserDirectory.exists(user_id):
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError

from listings.models import Listing

if TYPE_CHECKING:
    from typing import Any


class UserDirectory:
    """Existence checks against the configured user model."""

    @staticmethod
    def exists(user_id: Any) -> bool:
        return get_user_model().objects.filter(pk=user_id, is_active=True).exists()

    @staticmethod
    def resolve(user_id: Any):
        """Return the active user with this id, or None."""
        return get_user_model().objects.filter(pk=user_id, is_active=True).first()


class ListingDirectory:
    """Lookups against the listings app."""

    @staticmethod
    def resolve(listing_id: Any) -> Listing | None:
        """
        Return the listing with this id, or None.

        Malformed ids resolve to None rather than raising.
        """
        if isinstance(listing_id, Listing):
            listing_id = listing_id.pk
        try:
            return Listing.objects.select_related("seller").filter(pk=listing_id).first()
        except (DjangoValidationError, ValueError, TypeError):
            return None

    @staticmethod
    def is_purchasable(listing: Listing) -> bool:
        return listing.is_purchasable


__all__ = [
    "ListingDirectory",
    "UserDirectory",
]
