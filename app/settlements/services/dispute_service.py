"""
Dispute service: open, document, escalate and resolve disputes.

A dispute freezes automatic release: the transaction moves to DISPUTED
and the sweep ignores it until staff resolve it in one of three ways:

- refund: RefundService.process_refund (DISPUTED -> REFUNDED)
- release: funds go to the seller (DISPUTED -> COMPLETED)
- reinstate: back to escrow (DISPUTED -> HELD_IN_ESCROW); the original
  release date is kept, so an overdue escrow is released on the next sweep

Usage:
    from settlements.services import DisputeService

    txn = DisputeService.initiate_dispute(
        txn.id,
        initiator=request.user,
        reason="not_as_described",
        description="Screen is cracked",
    )

    txn = DisputeService.resolve_dispute(
        txn.id,
        resolver=staff_user,
        resolution="Partial refund agreed",
        refund_amount=500,
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.utils import timezone

from core.exceptions import PermissionDeniedError
from core.services import BaseService
from settlements.exceptions import (
    InvalidStateTransitionError,
    StaleRecordError,
    TransactionValidationError,
)
from settlements.ledger import TransactionLedger
from settlements.services.refund_service import RefundService
from settlements.services.release_service import EscrowReleaseService
from settlements.services.transition_manager import TransitionManager
from settlements.state_machines import (
    DisputeOutcome,
    DisputeResolutionStatus,
    TransactionStatus,
)

if TYPE_CHECKING:
    import uuid
    from datetime import datetime
    from typing import Any

    from settlements.models import Transaction

# Attempts at non-status dispute updates against concurrent writers
DISPUTE_UPDATE_ATTEMPTS = 3

EVIDENCE_TYPES = frozenset({"image", "video", "document", "message", "other"})


class DisputeService(BaseService):
    """
    Manages the dispute sub-record of a transaction.

    All methods are class methods - no instance state is maintained.
    """

    # =========================================================================
    # Initiation
    # =========================================================================

    @classmethod
    def initiate_dispute(
        cls,
        transaction_id: uuid.UUID | str,
        initiator,
        reason: str,
        description: str = "",
        evidence: list[dict[str, Any]] | None = None,
        expected_version: int | None = None,
        now: datetime | None = None,
    ) -> Transaction:
        """
        Open a dispute on a transaction held in escrow.

        Transition: HELD_IN_ESCROW -> DISPUTED

        Args:
            transaction_id: Transaction to dispute
            initiator: Buyer or seller opening the dispute
            reason: Short reason
            description: Free-text details
            evidence: Optional list of {"type", "url"} items

        Raises:
            PermissionDeniedError: Initiator is not a party
            InvalidStateTransitionError: Not held in escrow
            TransactionValidationError: Missing reason or malformed evidence
        """
        now = now or timezone.now()
        txn = TransactionLedger.get(transaction_id)
        if initiator.pk not in (txn.buyer_id, txn.seller_id):
            raise PermissionDeniedError(
                "Only the buyer or seller can open a dispute",
                details={"transaction_id": str(txn.id)},
            )
        if not reason or not reason.strip():
            raise TransactionValidationError(
                "A dispute reason is required",
                error_code="DISPUTE_REASON_REQUIRED",
            )
        if txn.status != TransactionStatus.HELD_IN_ESCROW:
            raise InvalidStateTransitionError(
                f"Cannot dispute a {txn.status} transaction",
                details={
                    "transaction_id": str(txn.id),
                    "current_status": txn.status,
                    "target_status": TransactionStatus.DISPUTED,
                },
            )

        items = [cls._evidence_item(item, now) for item in evidence or []]

        disputed = TransitionManager.transition(
            txn.id,
            TransactionStatus.DISPUTED,
            actor=initiator,
            note=f"Dispute initiated: {reason}",
            expected_version=expected_version,
            changes={
                "dispute_initiated_by": initiator,
                "dispute_reason": reason.strip(),
                "dispute_description": description,
                "dispute_evidence": items,
            },
            now=now,
        )
        cls.get_logger().info(
            f"Dispute opened on {disputed.reference}",
            extra={
                "transaction_id": str(disputed.id),
                "initiator_id": initiator.pk,
                "reason": reason,
            },
        )
        return disputed

    # =========================================================================
    # Evidence and Escalation
    # =========================================================================

    @classmethod
    def add_evidence(
        cls,
        transaction_id: uuid.UUID | str,
        actor,
        type: str,
        url: str,
        now: datetime | None = None,
    ) -> Transaction:
        """
        Append an evidence item to an open dispute.

        Raises:
            PermissionDeniedError: Actor is neither a party nor staff
            InvalidStateTransitionError: No open dispute
        """
        now = now or timezone.now()
        item = cls._evidence_item({"type": type, "url": url}, now)

        def build(txn: Transaction) -> dict[str, Any]:
            cls._require_party_or_staff(txn, actor)
            cls._require_open_dispute(txn)
            return {"dispute_evidence": [*txn.dispute_evidence, item]}

        return cls._update_dispute(transaction_id, build)

    @classmethod
    def escalate_dispute(
        cls,
        transaction_id: uuid.UUID | str,
        actor,
        note: str = "",
    ) -> Transaction:
        """
        Flag an open dispute for senior review. Status does not change.

        Raises:
            PermissionDeniedError: Actor is neither a party nor staff
            InvalidStateTransitionError: No open dispute
        """

        def build(txn: Transaction) -> dict[str, Any]:
            cls._require_party_or_staff(txn, actor)
            cls._require_open_dispute(txn)
            fields: dict[str, Any] = {
                "dispute_resolution_status": DisputeResolutionStatus.ESCALATED
            }
            if note:
                line = f"Dispute escalated by {actor.pk}: {note}"
                fields["internal_notes"] = (
                    f"{txn.internal_notes}\n{line}" if txn.internal_notes else line
                )
            return fields

        escalated = cls._update_dispute(transaction_id, build)
        cls.get_logger().warning(
            f"Dispute escalated on {escalated.reference}",
            extra={"transaction_id": str(escalated.id), "actor_id": actor.pk},
        )
        return escalated

    # =========================================================================
    # Resolution
    # =========================================================================

    @classmethod
    def resolve_dispute(
        cls,
        transaction_id: uuid.UUID | str,
        resolver,
        resolution: str,
        refund_amount: int | None = None,
        outcome: str = DisputeOutcome.REINSTATE,
        expected_version: int | None = None,
        now: datetime | None = None,
    ) -> Transaction:
        """
        Close a dispute.

        With refund_amount the buyer is refunded (DISPUTED -> REFUNDED).
        Otherwise outcome decides: "reinstate" returns the funds to escrow
        with the original release date, "release" pays the seller now.

        Args:
            transaction_id: Disputed transaction
            resolver: Staff user deciding the dispute
            resolution: Decision text
            refund_amount: Amount to refund, if any
            outcome: DisputeOutcome when no refund is given
            expected_version: Version the caller read

        Raises:
            PermissionDeniedError: Resolver is not staff
            InvalidStateTransitionError: Transaction is not disputed
            TransactionValidationError: Unknown outcome or bad amount
            GatewayError: Refund failed (dispute stays open)
        """
        now = now or timezone.now()
        if not getattr(resolver, "is_staff", False):
            raise PermissionDeniedError(
                "Only staff can resolve disputes",
                details={"transaction_id": str(transaction_id)},
            )
        if refund_amount is None and outcome not in DisputeOutcome.values:
            raise TransactionValidationError(
                f"Unknown dispute outcome: {outcome}",
                error_code="INVALID_DISPUTE_OUTCOME",
                details={"outcome": outcome},
            )

        txn = TransactionLedger.get(transaction_id)
        cls._require_open_dispute(txn)

        resolution_fields: dict[str, Any] = {
            "is_disputed": False,
            "dispute_resolution_status": DisputeResolutionStatus.RESOLVED,
            "dispute_resolved_by": resolver,
            "dispute_resolved_at": now,
            "dispute_resolution": resolution,
            "dispute_refund_amount": refund_amount,
        }
        log_extra = {
            "transaction_id": str(txn.id),
            "resolver_id": resolver.pk,
            "refund_amount": refund_amount,
            "outcome": "refund" if refund_amount is not None else outcome,
        }

        if refund_amount is not None:
            resolved = RefundService.process_refund(
                txn.id,
                refund_amount=refund_amount,
                reason=resolution,
                actor=resolver,
                expected_version=expected_version,
                changes=resolution_fields,
                now=now,
            )
        elif outcome == DisputeOutcome.RELEASE:
            result = EscrowReleaseService.release_disputed(
                txn.id,
                actor=resolver,
                expected_version=txn.version if expected_version is None else expected_version,
                changes=resolution_fields,
                now=now,
            )
            resolved = result.transaction
        else:
            resolved = TransitionManager.transition(
                txn.id,
                TransactionStatus.HELD_IN_ESCROW,
                actor=resolver,
                note=f"Dispute resolved: {resolution}",
                expected_version=expected_version,
                changes=resolution_fields,
                now=now,
            )

        cls.get_logger().info(f"Dispute resolved on {resolved.reference}", extra=log_extra)
        return resolved

    # =========================================================================
    # Helpers
    # =========================================================================

    @classmethod
    def _update_dispute(cls, transaction_id, build) -> Transaction:
        """Apply a non-status dispute change, re-reading on conflicts."""
        for attempt in range(1, DISPUTE_UPDATE_ATTEMPTS + 1):
            txn = TransactionLedger.get(transaction_id)
            fields = build(txn)
            try:
                TransactionLedger.conditional_update(
                    txn.id,
                    expected_version=txn.version,
                    fields=fields,
                    expected_status=TransactionStatus.DISPUTED,
                )
            except StaleRecordError:
                if attempt >= DISPUTE_UPDATE_ATTEMPTS:
                    raise
                continue
            return TransactionLedger.get(txn.id)
        raise StaleRecordError(f"Transaction {transaction_id} could not be updated")

    @staticmethod
    def _evidence_item(item: dict[str, Any], now: datetime) -> dict[str, str]:
        evidence_type = item.get("type")
        url = item.get("url")
        if evidence_type not in EVIDENCE_TYPES or not url:
            raise TransactionValidationError(
                "Evidence needs a known type and a url",
                error_code="INVALID_EVIDENCE",
                details={"allowed_types": sorted(EVIDENCE_TYPES)},
            )
        return {"type": evidence_type, "url": url, "uploaded_at": now.isoformat()}

    @staticmethod
    def _require_party_or_staff(txn: Transaction, actor) -> None:
        if getattr(actor, "is_staff", False):
            return
        if actor.pk not in (txn.buyer_id, txn.seller_id):
            raise PermissionDeniedError(
                "Only the parties or staff can act on this dispute",
                details={"transaction_id": str(txn.id)},
            )

    @staticmethod
    def _require_open_dispute(txn: Transaction) -> None:
        if txn.status != TransactionStatus.DISPUTED:
            raise InvalidStateTransitionError(
                f"Transaction is {txn.status}, not disputed",
                error_code="NO_OPEN_DISPUTE",
                details={"transaction_id": str(txn.id), "current_status": txn.status},
            )


__all__ = [
    "DisputeService",
]
