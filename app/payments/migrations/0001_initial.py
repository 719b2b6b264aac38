import uuid
from decimal import Decimal

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
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
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Flexible key-value metadata storage (merged on update)",
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
                        editable=False,
                        help_text="Merchant reference, e.g. PF-1700000000-ABC123 (immutable)",
                        max_length=64,
                        unique=True,
                    ),
                ),
                (
                    "gateway_transaction_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Provider-side transaction/charge identifier",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "gateway",
                    models.CharField(
                        choices=[
                            ("payfast", "PayFast"),
                            ("paystack", "PayStack"),
                            ("paypal", "PayPal"),
                            ("stripe", "Stripe"),
                            ("ozow", "Ozow"),
                            ("zapper", "Zapper"),
                            ("crypto", "Cryptocurrency"),
                            ("eft", "EFT/Bank Transfer"),
                            ("vodapay", "VodaPay"),
                            ("snapscan", "SnapScan"),
                        ],
                        db_index=True,
                        help_text="Gateway that processes this transaction",
                        max_length=20,
                    ),
                ),
                (
                    "transaction_type",
                    models.CharField(
                        choices=[
                            ("payment", "Payment"),
                            ("subscription_charge", "Subscription Charge"),
                            ("refund", "Refund"),
                        ],
                        default="payment",
                        help_text="Payment, subscription charge or refund",
                        max_length=30,
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Provider payment method (card, eft, instant_eft, ...)",
                        max_length=50,
                    ),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Transaction amount in major currency units",
                        max_digits=14,
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="ZAR",
                        help_text="ISO 4217 currency code (uppercase)",
                        max_length=5,
                    ),
                ),
                (
                    "fee_amount",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        help_text="Provider fee, once settled",
                        max_digits=14,
                        null=True,
                    ),
                ),
                (
                    "net_amount",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        help_text="Amount after fees, once settled",
                        max_digits=14,
                        null=True,
                    ),
                ),
                (
                    "refund_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        help_text="Cumulative amount refunded so far",
                        max_digits=14,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("created", "Created"),
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                            ("expired", "Expired"),
                            ("refunded", "Refunded"),
                            ("partially_refunded", "Partially Refunded"),
                            ("unknown", "Unknown"),
                            ("active", "Active"),
                            ("pending_renewal", "Pending Renewal"),
                        ],
                        db_index=True,
                        default="created",
                        help_text="Current status (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "error_code",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Last provider or processing error code",
                        max_length=100,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Last provider or processing error message",
                    ),
                ),
                (
                    "description",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Item or service description shown to the customer",
                        max_length=255,
                    ),
                ),
                (
                    "customer_email",
                    models.EmailField(
                        blank=True,
                        default="",
                        help_text="Customer email at time of payment",
                        max_length=254,
                    ),
                ),
                (
                    "customer_name",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Customer name at time of payment",
                        max_length=200,
                    ),
                ),
                (
                    "customer_phone",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Customer phone at time of payment",
                        max_length=30,
                    ),
                ),
                (
                    "attempts",
                    models.PositiveSmallIntegerField(
                        default=0,
                        help_text="Failed processing attempts so far",
                    ),
                ),
                (
                    "max_attempts",
                    models.PositiveSmallIntegerField(
                        default=3,
                        help_text="Attempts allowed before the record becomes terminal",
                    ),
                ),
                (
                    "retry_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="Earliest time the next attempt may run",
                        null=True,
                    ),
                ),
                (
                    "is_subscription",
                    models.BooleanField(
                        db_index=True,
                        default=False,
                        help_text="True for subscription parent records",
                    ),
                ),
                (
                    "subscription_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Provider-side subscription identifier",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "recurring_frequency",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("daily", "Daily"),
                            ("weekly", "Weekly"),
                            ("monthly", "Monthly"),
                            ("quarterly", "Quarterly"),
                            ("yearly", "Yearly"),
                        ],
                        default="",
                        help_text="Billing interval for subscriptions",
                        max_length=20,
                    ),
                ),
                (
                    "recurring_cycles",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Total cycles to bill (empty means until cancelled)",
                        null=True,
                    ),
                ),
                (
                    "cycles_completed",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Billing cycles charged successfully",
                    ),
                ),
                (
                    "next_billing_date",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="When the next subscription charge is due",
                        null=True,
                    ),
                ),
                (
                    "last_payment_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the last subscription charge succeeded",
                        null=True,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the provider started processing",
                        null=True,
                    ),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the payment completed",
                        null=True,
                    ),
                ),
                (
                    "failed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the payment last failed",
                        null=True,
                    ),
                ),
                (
                    "cancelled_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the payment was cancelled",
                        null=True,
                    ),
                ),
                (
                    "refunded_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the first refund was recorded",
                        null=True,
                    ),
                ),
                (
                    "parent_transaction",
                    models.ForeignKey(
                        blank=True,
                        help_text="Subscription parent for charges, original payment for refunds",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="child_transactions",
                        to="payments.transaction",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who initiated the payment (optional)",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_transactions",
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
                        fields=["gateway", "status"],
                        name="payments_tr_gateway_4c1f0e_idx",
                    ),
                    models.Index(
                        fields=["gateway", "gateway_transaction_id"],
                        name="payments_tr_gateway_9b7d2a_idx",
                    ),
                    models.Index(
                        fields=["is_subscription", "status", "next_billing_date"],
                        name="payments_tr_is_subs_3e8a51_idx",
                    ),
                    models.Index(
                        fields=["user", "created_at"],
                        name="payments_tr_user_id_7f2c64_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        check=models.Q(("amount__gt", 0)),
                        name="transaction_amount_positive",
                    ),
                    models.CheckConstraint(
                        check=models.Q(
                            ("refund_amount__gte", 0),
                            ("refund_amount__lte", models.F("amount")),
                        ),
                        name="transaction_refund_within_amount",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
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
                            ("payfast", "PayFast"),
                            ("paystack", "PayStack"),
                            ("paypal", "PayPal"),
                            ("stripe", "Stripe"),
                            ("ozow", "Ozow"),
                            ("zapper", "Zapper"),
                            ("crypto", "Cryptocurrency"),
                            ("eft", "EFT/Bank Transfer"),
                            ("vodapay", "VodaPay"),
                            ("snapscan", "SnapScan"),
                        ],
                        db_index=True,
                        help_text="Gateway that sent the notification",
                        max_length=20,
                    ),
                ),
                (
                    "event_id",
                    models.CharField(
                        help_text="Provider event id, or SHA-256 of the raw body",
                        max_length=255,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Provider event type (e.g. 'charge.success', 'COMPLETE')",
                        max_length=100,
                    ),
                ),
                (
                    "payload",
                    models.JSONField(
                        default=dict,
                        help_text="Parsed webhook payload (JSON body or form fields)",
                    ),
                ),
                (
                    "raw_body",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Raw request body, needed to re-check HMAC signatures",
                    ),
                ),
                (
                    "headers",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Signature-relevant request headers",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current processing status",
                        max_length=20,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When event was successfully processed",
                        null=True,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        help_text="Error message if processing failed",
                        null=True,
                    ),
                ),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(
                        default=0,
                        help_text="Number of processing attempts",
                    ),
                ),
                (
                    "transaction",
                    models.ForeignKey(
                        blank=True,
                        help_text="Transaction matched while processing",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="webhook_events",
                        to="payments.transaction",
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"],
                        name="payments_we_status_5a0c1d_idx",
                    ),
                    models.Index(
                        fields=["status", "retry_count"],
                        name="payments_we_status_e61b9f_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("gateway", "event_id"),
                        name="webhook_event_unique_per_gateway",
                    ),
                ],
            },
        ),
    ]
