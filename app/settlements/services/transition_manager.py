"""
State transition manager: the single path for transaction status changes.

A transition is computed in memory on a fresh read through the
django-fsm transition method for the target status, then persisted with
one conditional write that also inserts the timeline entry. Nothing is
written when the transition is illegal.

Usage:
    from settlements.services import TransitionManager
    from settlements.state_machines import TransactionStatus

    txn = TransitionManager.transition(
        txn.id,
        TransactionStatus.DISPUTED,
        actor=request.user,
        note="Item not as described",
        changes={"dispute_reason": "not_as_described"},
    )
"""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from django_fsm import can_proceed

from core.services import BaseService
from settlements.exceptions import (
    InvalidStateTransitionError,
    StaleRecordError,
    TransactionValidationError,
)
from settlements.ledger import TimelineRecord, TransactionLedger
from settlements.signals import send_status_changed_on_commit
from settlements.state_machines import (
    TRANSITION_METHODS,
    TransactionStatus,
    is_legal_transition,
)

if TYPE_CHECKING:
    import uuid
    from datetime import datetime
    from typing import Any

    from settlements.models import Transaction

# Fields that only the manager itself may change
RESERVED_CHANGE_FIELDS = frozenset({"id", "status", "version", "reference"})

# Settlement records that must be written in the same update as the status
REQUIRED_CHANGE_FIELDS = {
    TransactionStatus.COMPLETED: ("escrow_is_released",),
    TransactionStatus.REFUNDED: ("refund_amount", "refund_gateway_reference"),
    TransactionStatus.DISPUTED: ("dispute_initiated_by", "dispute_reason"),
}


class TransitionManager(BaseService):
    """
    Validates and applies status transitions.

    All methods are class methods - no instance state is maintained.
    """

    @classmethod
    def transition(
        cls,
        transaction_id: uuid.UUID | str,
        target_status: str,
        *,
        actor=None,
        note: str = "",
        expected_version: int | None = None,
        changes: dict[str, Any] | None = None,
        reset_release_date: bool = False,
        now: datetime | None = None,
    ) -> Transaction:
        """
        Move a transaction to target_status.

        Args:
            transaction_id: Transaction primary key
            target_status: Status to enter
            actor: User causing the change (None for system actions)
            note: Timeline note
            expected_version: Version the caller read. When given, a
                mismatch raises immediately. When omitted, conflicts are
                retried on a fresh read.
            changes: Extra field values written in the same update
            reset_release_date: Recompute the escrow release date when
                entering HELD_IN_ESCROW even if one is already set
            now: Transition time (defaults to timezone.now())

        Returns:
            Fresh copy of the transaction after the write

        Raises:
            TransactionNotFoundError: Transaction doesn't exist
            InvalidStateTransitionError: Unknown target or illegal edge
            StaleRecordError: Version mismatch, or retries exhausted
        """
        changes = changes or {}
        reserved = RESERVED_CHANGE_FIELDS & set(changes)
        if reserved:
            raise TransactionValidationError(
                "Changes cannot include reserved fields",
                error_code="FIELD_NOT_WRITABLE",
                details={"fields": sorted(reserved)},
            )

        max_attempts = (
            1
            if expected_version is not None
            else getattr(settings, "SETTLEMENTS_TRANSITION_MAX_ATTEMPTS", 3)
        )
        logger = cls.get_logger()

        for attempt in range(1, max_attempts + 1):
            txn = TransactionLedger.get(transaction_id)
            if expected_version is not None and txn.version != expected_version:
                raise StaleRecordError(
                    f"Transaction {transaction_id} has been modified "
                    f"(expected version {expected_version}, current {txn.version})",
                    details={
                        "pk": str(transaction_id),
                        "expected_version": expected_version,
                        "current_version": txn.version,
                    },
                )

            try:
                return cls._apply(
                    txn,
                    target_status,
                    actor=actor,
                    note=note,
                    changes=changes,
                    reset_release_date=reset_release_date,
                    now=now or timezone.now(),
                )
            except StaleRecordError:
                if attempt >= max_attempts:
                    raise
                logger.info(
                    f"Conflict on transaction {transaction_id}, retrying",
                    extra={
                        "transaction_id": str(transaction_id),
                        "target_status": str(target_status),
                        "attempt": attempt,
                    },
                )

        # Unreachable: the last attempt either returns or raises
        raise StaleRecordError(f"Transaction {transaction_id} could not be updated")

    @classmethod
    def can_transition(cls, txn: Transaction, target_status: str) -> bool:
        """Whether target_status is reachable from txn's current status."""
        method_name = TRANSITION_METHODS.get(target_status)
        if method_name is None:
            return False
        return is_legal_transition(txn.status, target_status) and can_proceed(
            getattr(txn, method_name)
        )

    @classmethod
    def _apply(
        cls,
        txn: Transaction,
        target_status: str,
        *,
        actor,
        note: str,
        changes: dict[str, Any],
        reset_release_date: bool,
        now: datetime,
    ) -> Transaction:
        previous_status = txn.status
        if target_status not in TransactionStatus.values or not cls.can_transition(
            txn, target_status
        ):
            raise InvalidStateTransitionError(
                f"Cannot move transaction from {previous_status} to {target_status}",
                details={
                    "transaction_id": str(txn.id),
                    "current_status": previous_status,
                    "target_status": str(target_status),
                },
            )

        missing = [
            name
            for name in REQUIRED_CHANGE_FIELDS.get(target_status, ())
            if changes.get(name) is None or changes.get(name) is False or changes.get(name) == ""
        ]
        if missing:
            raise TransactionValidationError(
                f"Entering {target_status} requires {', '.join(missing)}",
                error_code="SETTLEMENT_FIELDS_REQUIRED",
                details={"transaction_id": str(txn.id), "fields": missing},
            )

        concrete_fields = [f for f in txn._meta.concrete_fields if f.attname != "status"]
        before = {f.attname: copy.deepcopy(getattr(txn, f.attname)) for f in concrete_fields}

        for name, value in changes.items():
            setattr(txn, name, value)

        method = getattr(txn, TRANSITION_METHODS[target_status])
        if target_status == TransactionStatus.HELD_IN_ESCROW:
            method(now=now, reset_release_date=reset_release_date)
        else:
            method(now=now)

        fields = {
            f.attname: getattr(txn, f.attname)
            for f in concrete_fields
            if getattr(txn, f.attname) != before[f.attname]
        }
        fields["status"] = target_status

        TransactionLedger.conditional_update(
            txn.id,
            expected_version=txn.version,
            fields=fields,
            timeline_entry=TimelineRecord(
                status=target_status,
                note=note,
                actor=actor,
                timestamp=now,
            ),
            expected_status=previous_status,
            now=now,
        )

        cls.get_logger().info(
            f"Transaction {txn.reference}: {previous_status} -> {target_status}",
            extra={
                "transaction_id": str(txn.id),
                "previous_status": previous_status,
                "new_status": target_status,
                "actor_id": getattr(actor, "pk", None),
            },
        )

        fresh = TransactionLedger.get(txn.id)
        send_status_changed_on_commit(fresh, previous_status, actor=actor, note=note)
        return fresh


__all__ = [
    "TransitionManager",
]
