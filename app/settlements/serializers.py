"""
Serializers for the settlements API.

Read serializers expose the transaction record and its timeline; write
serializers only validate request payloads. All state changes go through
the service layer, never through serializer.save().

Serializer Hierarchy:
    TransactionSerializer: Full transaction with fee breakdown
    TransactionListSerializer: Compact row for list views
    TimelineEntrySerializer: One status history entry

    TransactionCreateSerializer: Start a purchase
    TermsUpdateSerializer: Renegotiate a pending purchase
    TransitionRequestSerializer: Staff status change
    ReleaseRequestSerializer: Manual escrow release
    DisputeCreateSerializer / EvidenceSerializer / DisputeResolveSerializer
    RefundRequestSerializer: Refund to buyer
"""

from __future__ import annotations

from rest_framework import serializers

from settlements.models import TimelineEntry, Transaction
from settlements.state_machines import (
    Currency,
    DisputeOutcome,
    GatewayName,
    PaymentMethod,
    TransactionStatus,
)
from settlements.services.dispute_service import EVIDENCE_TYPES

# =============================================================================
# Read Serializers
# =============================================================================


class TimelineEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = TimelineEntry
        fields = ["id", "status", "timestamp", "note", "actor"]
        read_only_fields = fields


class TransactionListSerializer(serializers.ModelSerializer):
    """Compact transaction row for list endpoints."""

    total_amount = serializers.IntegerField(read_only=True)

    class Meta:
        model = Transaction
        fields = [
            "id",
            "reference",
            "buyer",
            "seller",
            "listing",
            "amount_final",
            "total_amount",
            "currency",
            "status",
            "version",
            "escrow_release_date",
            "is_disputed",
            "created_at",
        ]
        read_only_fields = fields


class TransactionSerializer(serializers.ModelSerializer):
    """
    Full transaction record.

    Internal notes are only included for staff.
    """

    total_amount = serializers.IntegerField(read_only=True)
    escrow_days_remaining = serializers.IntegerField(read_only=True)

    class Meta:
        model = Transaction
        fields = [
            "id",
            "reference",
            "buyer",
            "seller",
            "listing",
            "amount_original",
            "amount_final",
            "currency",
            "fee_platform",
            "fee_payment",
            "fee_total",
            "total_amount",
            "payment_method",
            "gateway",
            "gateway_order_id",
            "gateway_transaction_id",
            "status",
            "version",
            "is_escrow",
            "escrow_hold_period_days",
            "escrow_release_date",
            "escrow_days_remaining",
            "escrow_is_released",
            "escrow_released_at",
            "escrow_released_by",
            "escrow_auto_release_enabled",
            "escrow_payout_reference",
            "is_disputed",
            "dispute_initiated_by",
            "dispute_initiated_at",
            "dispute_reason",
            "dispute_description",
            "dispute_evidence",
            "dispute_resolution_status",
            "dispute_resolved_by",
            "dispute_resolved_at",
            "dispute_resolution",
            "dispute_refund_amount",
            "is_refunded",
            "refund_amount",
            "refund_reason",
            "refunded_at",
            "fulfillment",
            "notes",
            "internal_notes",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def to_representation(self, instance):
        data = super().to_representation(instance)
        request = self.context.get("request")
        if request is None or not getattr(request.user, "is_staff", False):
            data.pop("internal_notes", None)
        return data


# =============================================================================
# Write Serializers
# =============================================================================


class TransactionCreateSerializer(serializers.Serializer):
    """Buyer starts a purchase of a listing."""

    listing_id = serializers.UUIDField()
    amount_final = serializers.IntegerField(required=False, min_value=1)
    payment_method = serializers.ChoiceField(
        choices=PaymentMethod.choices, required=False
    )
    currency = serializers.ChoiceField(choices=Currency.choices, required=False)
    gateway = serializers.ChoiceField(choices=GatewayName.choices, required=False)
    fulfillment = serializers.JSONField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)


# Statuses that carry no settlement record; the others have their own endpoints
STAFF_TRANSITION_TARGETS = (
    TransactionStatus.PROCESSING,
    TransactionStatus.FAILED,
    TransactionStatus.CANCELLED,
)


class TransitionRequestSerializer(serializers.Serializer):
    target_status = serializers.ChoiceField(
        choices=[(s.value, s.label) for s in STAFF_TRANSITION_TARGETS]
    )
    expected_version = serializers.IntegerField(min_value=1)
    note = serializers.CharField(required=False, allow_blank=True, default="")


class ReleaseRequestSerializer(serializers.Serializer):
    expected_version = serializers.IntegerField(required=False, min_value=1)
    reason = serializers.CharField(
        required=False, allow_blank=True, default="Buyer confirmed receipt"
    )


class EvidenceSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=sorted(EVIDENCE_TYPES))
    url = serializers.URLField()


class DisputeCreateSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    evidence = EvidenceSerializer(many=True, required=False, default=list)
    expected_version = serializers.IntegerField(required=False, min_value=1)


class DisputeResolveSerializer(serializers.Serializer):
    """
    Staff decision on an open dispute.

    refund_amount refunds the buyer; otherwise outcome decides between
    reinstating escrow and releasing to the seller.
    """

    resolution = serializers.CharField()
    refund_amount = serializers.IntegerField(required=False, min_value=1)
    outcome = serializers.ChoiceField(
        choices=DisputeOutcome.choices, required=False, default=DisputeOutcome.REINSTATE
    )
    expected_version = serializers.IntegerField(required=False, min_value=1)


class RefundRequestSerializer(serializers.Serializer):
    refund_amount = serializers.IntegerField(required=False, min_value=1)
    reason = serializers.CharField(required=False, allow_blank=True, default="")
    expected_version = serializers.IntegerField(required=False, min_value=1)


class SellerStatsQuerySerializer(serializers.Serializer):
    period_days = serializers.IntegerField(required=False, min_value=1, default=30)


class TermsUpdateSerializer(serializers.Serializer):
    """Renegotiated price or payment method of a pending transaction."""

    amount_final = serializers.IntegerField(required=False, min_value=1)
    payment_method = serializers.ChoiceField(
        choices=PaymentMethod.choices, required=False
    )
    expected_version = serializers.IntegerField(min_value=1)

    def validate(self, attrs):
        if "amount_final" not in attrs and "payment_method" not in attrs:
            raise serializers.ValidationError(
                "Provide amount_final, payment_method or both."
            )
        return attrs


class CancelRequestSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")
    expected_version = serializers.IntegerField(required=False, min_value=1)
