"""
Base service class for business logic.

Services hold the business rules between views and models. They are
stateless classes of classmethods that raise core.exceptions errors for
expected failures and let unexpected ones propagate. Database
transaction boundaries belong to the persistence layer they call.

Usage:
    from core.services import BaseService

    class PayoutService(BaseService):
        @classmethod
        def pay(cls, account, amount):
            ...
            cls.get_logger().info(f"Paid {amount}", extra={"account_id": account.pk})
"""

from __future__ import annotations

import logging


class BaseService:
    """
    Base class for service layer classes.

    Design Notes:
        - Use @classmethod or @staticmethod (no instance state)
        - Raise BaseApplicationError subclasses for expected failures
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Named after the module and class (for example
        settlements.services.refund_service.RefundService) so service logs
        can be filtered per class.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")
