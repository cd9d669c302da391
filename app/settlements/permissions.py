"""
Permission classes for the settlements API.

- IsTransactionParty: buyer, seller or staff may see the transaction
- IsTransactionBuyerOrStaff: buyer or staff (manual release, payment)

Services re-check the same rules, so these only shape the HTTP answer
early. Staff-only actions use DRF's IsAdminUser.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import permissions

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView

    from settlements.models import Transaction


class IsTransactionParty(permissions.BasePermission):
    """Allows access to the buyer, the seller and staff."""

    message = "You are not a party to this transaction."

    def has_object_permission(
        self, request: Request, view: APIView, obj: Transaction
    ) -> bool:
        if not request.user.is_authenticated:
            return False
        if request.user.is_staff:
            return True
        return request.user.pk in (obj.buyer_id, obj.seller_id)


class IsTransactionBuyerOrStaff(permissions.BasePermission):
    message = "Only the buyer or staff can do this."

    def has_object_permission(
        self, request: Request, view: APIView, obj: Transaction
    ) -> bool:
        if not request.user.is_authenticated:
            return False
        return request.user.is_staff or request.user.pk == obj.buyer_id
