"""
Create settlement models.

Changes:
    - Create Transaction with escrow, dispute and refund column groups
    - Create TimelineEntry (append-only status history)
    - Create PayoutAccount (seller payout destinations)
    - Add fee consistency and buyer/seller check constraints
"""

import uuid

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django_fsm

import settlements.models.transaction


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("listings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Transaction",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "reference",
                    models.CharField(
                        default=settlements.models.transaction.generate_transaction_reference,
                        editable=False,
                        help_text="Human-readable reference (TXN_<millis>_<hex>)",
                        max_length=40,
                        unique=True,
                    ),
                ),
                (
                    "amount_original",
                    models.PositiveBigIntegerField(
                        help_text="Listing price at creation, in smallest currency unit",
                    ),
                ),
                (
                    "amount_final",
                    models.PositiveBigIntegerField(
                        help_text="Agreed price, in smallest currency unit",
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        choices=[
                            ("INR", "Indian Rupee"),
                            ("USD", "US Dollar"),
                            ("EUR", "Euro"),
                            ("GBP", "British Pound"),
                        ],
                        default="INR",
                        help_text="ISO 4217 currency code",
                        max_length=3,
                    ),
                ),
                (
                    "fee_platform",
                    models.PositiveBigIntegerField(
                        default=0,
                        editable=False,
                        help_text="Platform commission in smallest currency unit",
                    ),
                ),
                (
                    "fee_payment",
                    models.PositiveBigIntegerField(
                        default=0,
                        editable=False,
                        help_text="Payment processing fee in smallest currency unit",
                    ),
                ),
                (
                    "fee_total",
                    models.PositiveBigIntegerField(
                        default=0,
                        editable=False,
                        help_text="fee_platform + fee_payment",
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(
                        choices=[
                            ("card", "Card"),
                            ("netbanking", "Net Banking"),
                            ("upi", "UPI"),
                            ("wallet", "Wallet"),
                            ("bank_transfer", "Bank Transfer"),
                        ],
                        default="card",
                        help_text="Method the buyer pays with",
                        max_length=20,
                    ),
                ),
                (
                    "payment_method_details",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Method details (last4, brand, bank, wallet, upi_id)",
                    ),
                ),
                (
                    "gateway",
                    models.CharField(
                        choices=[
                            ("razorpay", "Razorpay"),
                            ("stripe", "Stripe"),
                            ("paypal", "PayPal"),
                        ],
                        default="stripe",
                        help_text="Payment gateway handling this transaction",
                        max_length=20,
                    ),
                ),
                (
                    "gateway_order_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Gateway order / payment intent ID",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "gateway_transaction_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Gateway payment ID confirmed on capture",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("held_in_escrow", "Held in Escrow"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                            ("refunded", "Refunded"),
                            ("disputed", "Disputed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current status of the transaction (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each write",
                    ),
                ),
                (
                    "is_escrow",
                    models.BooleanField(
                        default=True,
                        help_text="Whether funds are held in escrow before release",
                    ),
                ),
                (
                    "escrow_hold_period_days",
                    models.PositiveSmallIntegerField(
                        default=settlements.models.transaction.default_hold_period_days,
                        help_text="Days funds stay in escrow before auto-release",
                    ),
                ),
                (
                    "escrow_release_date",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="When funds become due for release (set on entering escrow)",
                        null=True,
                    ),
                ),
                (
                    "escrow_is_released",
                    models.BooleanField(
                        db_index=True,
                        default=False,
                        help_text="Whether escrowed funds have been released",
                    ),
                ),
                (
                    "escrow_released_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the escrow was released",
                        null=True,
                    ),
                ),
                (
                    "escrow_auto_release_enabled",
                    models.BooleanField(
                        default=True,
                        help_text="Whether the release sweep may release this escrow",
                    ),
                ),
                (
                    "escrow_payout_reference",
                    models.CharField(
                        blank=True,
                        help_text="Gateway payout ID for the disbursement to the seller",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "escrow_disbursement_error",
                    models.TextField(
                        blank=True,
                        help_text="Last disbursement failure after release, for operators",
                        null=True,
                    ),
                ),
                (
                    "is_disputed",
                    models.BooleanField(
                        db_index=True,
                        default=False,
                        help_text="Whether an open dispute blocks automatic release",
                    ),
                ),
                (
                    "dispute_initiated_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the dispute was opened",
                        null=True,
                    ),
                ),
                (
                    "dispute_reason",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Short dispute reason",
                        max_length=255,
                    ),
                ),
                (
                    "dispute_description",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Detailed description of the dispute",
                    ),
                ),
                (
                    "dispute_evidence",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="Evidence items: [{type, url, uploaded_at}]",
                    ),
                ),
                (
                    "dispute_resolution_status",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("pending", "Pending"),
                            ("resolved", "Resolved"),
                            ("escalated", "Escalated"),
                        ],
                        help_text="Resolution state of the dispute",
                        max_length=20,
                        null=True,
                    ),
                ),
                (
                    "dispute_resolved_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the dispute was resolved",
                        null=True,
                    ),
                ),
                (
                    "dispute_resolution",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Resolution decision text",
                    ),
                ),
                (
                    "dispute_refund_amount",
                    models.PositiveBigIntegerField(
                        blank=True,
                        help_text="Refund granted by the resolution, if any",
                        null=True,
                    ),
                ),
                (
                    "is_refunded",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the buyer has been refunded",
                    ),
                ),
                (
                    "refund_amount",
                    models.PositiveBigIntegerField(
                        blank=True,
                        help_text="Refunded amount in smallest currency unit",
                        null=True,
                    ),
                ),
                (
                    "refund_reason",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Reason given for the refund",
                    ),
                ),
                (
                    "refunded_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the refund was processed",
                        null=True,
                    ),
                ),
                (
                    "refund_gateway_reference",
                    models.CharField(
                        blank=True,
                        help_text="Gateway refund ID",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "fulfillment",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Delivery details, stored as given",
                    ),
                ),
                (
                    "notes",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Notes visible to both parties",
                    ),
                ),
                (
                    "internal_notes",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Staff-only notes",
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON metadata for extensibility",
                    ),
                ),
                (
                    "buyer",
                    models.ForeignKey(
                        help_text="User paying for the item",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="purchases",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "seller",
                    models.ForeignKey(
                        help_text="User receiving the funds on release",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="sales",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "listing",
                    models.ForeignKey(
                        help_text="Listing being purchased",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="listings.listing",
                    ),
                ),
                (
                    "escrow_released_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who released the escrow (empty for automatic release)",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "dispute_initiated_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Party who opened the dispute",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "dispute_resolved_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Staff member who resolved the dispute",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "refunded_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who processed the refund",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Transaction",
                "verbose_name_plural": "Transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "escrow_release_date"],
                        name="txn_status_release_idx",
                    ),
                    models.Index(
                        fields=["buyer", "status"],
                        name="txn_buyer_status_idx",
                    ),
                    models.Index(
                        fields=["seller", "status"],
                        name="txn_seller_status_idx",
                    ),
                    models.Index(
                        fields=["seller", "created_at"],
                        name="txn_seller_created_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            fee_total=models.F("fee_platform") + models.F("fee_payment")
                        ),
                        name="txn_fee_total_consistent",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("buyer", models.F("seller")), _negated=True
                        ),
                        name="txn_buyer_not_seller",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="TimelineEntry",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("held_in_escrow", "Held in Escrow"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                            ("refunded", "Refunded"),
                            ("disputed", "Disputed"),
                        ],
                        help_text="Status entered",
                        max_length=20,
                    ),
                ),
                (
                    "timestamp",
                    models.DateTimeField(
                        db_index=True,
                        help_text="When the status was entered",
                    ),
                ),
                (
                    "note",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Human-readable note",
                    ),
                ),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who caused the change (empty for system actions)",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "transaction",
                    models.ForeignKey(
                        help_text="Transaction this entry belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="timeline",
                        to="settlements.transaction",
                    ),
                ),
            ],
            options={
                "verbose_name": "Timeline Entry",
                "verbose_name_plural": "Timeline Entries",
                "ordering": ["timestamp", "id"],
                "indexes": [
                    models.Index(
                        fields=["transaction", "timestamp"],
                        name="timeline_txn_timestamp_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PayoutAccount",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "gateway",
                    models.CharField(
                        choices=[
                            ("razorpay", "Razorpay"),
                            ("stripe", "Stripe"),
                            ("paypal", "PayPal"),
                        ],
                        default="stripe",
                        help_text="Gateway the account lives on",
                        max_length=20,
                    ),
                ),
                (
                    "account_reference",
                    models.CharField(
                        help_text="Gateway-side account ID (e.g., acct_xxx)",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "payouts_enabled",
                    models.BooleanField(
                        default=True,
                        help_text="Whether the gateway accepts payouts to this account",
                    ),
                ),
                (
                    "user",
                    models.OneToOneField(
                        help_text="Seller owning this payout account",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payout_account",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payout Account",
                "verbose_name_plural": "Payout Accounts",
                "ordering": ["-created_at"],
            },
        ),
    ]
