"""
Settlements admin configuration.

Transactions and their timeline are an audit trail: the admin shows them
read-only and never deletes. Status changes go through the service layer.
"""

from django.contrib import admin

from settlements.models import PayoutAccount, TimelineEntry, Transaction

__all__ = [
    "PayoutAccountAdmin",
    "TimelineEntryInline",
    "TransactionAdmin",
]


class TimelineEntryInline(admin.TabularInline):
    model = TimelineEntry
    extra = 0
    can_delete = False
    fields = ["timestamp", "status", "note", "actor"]
    readonly_fields = fields
    ordering = ["timestamp", "id"]

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    """
    Read-only view of escrow transactions.

    Provides visibility into status, escrow and dispute state for
    support staff.
    """

    list_display = [
        "reference",
        "buyer",
        "seller",
        "amount_final",
        "currency",
        "status",
        "escrow_release_date",
        "is_disputed",
        "created_at",
    ]
    list_filter = ["status", "is_disputed", "escrow_is_released", "gateway", "currency"]
    search_fields = [
        "id",
        "reference",
        "gateway_order_id",
        "gateway_transaction_id",
        "buyer__username",
        "seller__username",
    ]
    ordering = ["-created_at"]
    inlines = [TimelineEntryInline]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "reference", "buyer", "seller", "listing", "status", "version"),
            },
        ),
        (
            "Amounts",
            {
                "fields": (
                    "amount_original",
                    "amount_final",
                    "currency",
                    "fee_platform",
                    "fee_payment",
                    "fee_total",
                ),
            },
        ),
        (
            "Payment",
            {
                "fields": (
                    "payment_method",
                    "payment_method_details",
                    "gateway",
                    "gateway_order_id",
                    "gateway_transaction_id",
                ),
            },
        ),
        (
            "Escrow",
            {
                "fields": (
                    "is_escrow",
                    "escrow_hold_period_days",
                    "escrow_release_date",
                    "escrow_is_released",
                    "escrow_released_at",
                    "escrow_released_by",
                    "escrow_auto_release_enabled",
                    "escrow_payout_reference",
                    "escrow_disbursement_error",
                ),
            },
        ),
        (
            "Dispute",
            {
                "fields": (
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
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Refund",
            {
                "fields": (
                    "is_refunded",
                    "refund_amount",
                    "refund_reason",
                    "refunded_at",
                    "refunded_by",
                    "refund_gateway_reference",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Notes",
            {
                "fields": ("fulfillment", "notes", "internal_notes", "metadata"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(PayoutAccount)
class PayoutAccountAdmin(admin.ModelAdmin):
    list_display = ["user", "gateway", "account_reference", "payouts_enabled", "created_at"]
    list_filter = ["gateway", "payouts_enabled"]
    search_fields = ["user__username", "account_reference"]
    readonly_fields = ["id", "created_at", "updated_at"]
    raw_id_fields = ["user"]
