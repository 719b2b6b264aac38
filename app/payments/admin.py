"""
Payment admin configuration.

Transactions are read-only here; status changes go through
TransactionStore so events and version checks still apply. The one
write path is confirming an EFT payment once the transfer is seen on
the bank statement.
"""

from django.contrib import admin, messages

from payments.exceptions import InvalidStateTransitionError, StaleRecordError
from payments.models import Transaction, WebhookEvent
from payments.services import TransactionStore
from payments.state_machines import GatewayCode, TransactionStatus, WebhookEventStatus

__all__ = [
    "TransactionAdmin",
    "WebhookEventAdmin",
]


class ChildTransactionInline(admin.TabularInline):
    """Refunds and recurring charges linked to a transaction."""

    model = Transaction
    fk_name = "parent_transaction"
    fields = ["reference", "transaction_type", "status", "amount", "currency", "created_at"]
    readonly_fields = fields
    extra = 0
    can_delete = False
    show_change_link = True

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    """
    Admin configuration for Transaction.

    Provides visibility into payments, refunds and subscriptions across
    all gateways.
    """

    list_display = [
        "reference",
        "gateway",
        "transaction_type",
        "amount_display",
        "status",
        "customer_email",
        "attempts",
        "created_at",
    ]
    list_filter = ["status", "gateway", "transaction_type", "is_subscription", "currency", "created_at"]
    search_fields = ["reference", "gateway_transaction_id", "subscription_id", "customer_email"]
    readonly_fields = [
        "id",
        "reference",
        "gateway",
        "gateway_transaction_id",
        "transaction_type",
        "status",
        "amount",
        "currency",
        "fee_amount",
        "net_amount",
        "refund_amount",
        "user",
        "parent_transaction",
        "attempts",
        "max_attempts",
        "retry_at",
        "subscription_id",
        "next_billing_date",
        "last_payment_at",
        "cycles_completed",
        "version",
        "completed_at",
        "failed_at",
        "refunded_at",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [ChildTransactionInline]
    actions = ["confirm_eft_payment"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "reference", "gateway", "gateway_transaction_id", "transaction_type", "status"),
            },
        ),
        (
            "Amount",
            {
                "fields": ("amount", "currency", "fee_amount", "net_amount", "refund_amount"),
            },
        ),
        (
            "Customer",
            {
                "fields": ("user", "customer_email", "customer_name", "customer_phone", "description"),
            },
        ),
        (
            "Subscription",
            {
                "fields": (
                    "is_subscription",
                    "subscription_id",
                    "recurring_frequency",
                    "recurring_cycles",
                    "cycles_completed",
                    "next_billing_date",
                    "last_payment_at",
                    "parent_transaction",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Retries",
            {
                "fields": ("attempts", "max_attempts", "retry_at", "error_code", "error_message"),
                "classes": ("collapse",),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("metadata", "version"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("completed_at", "failed_at", "refunded_at", "created_at", "updated_at"),
            },
        ),
    )

    def amount_display(self, obj: Transaction) -> str:
        return obj.formatted_amount

    amount_display.short_description = "Amount"

    @admin.action(description="Confirm EFT payment received")
    def confirm_eft_payment(self, request, queryset):
        """Complete pending EFT payments after the transfer has cleared."""
        store = TransactionStore()
        confirmed = 0
        for txn in queryset.filter(gateway=GatewayCode.EFT, status=TransactionStatus.PENDING):
            try:
                store.update_status(
                    txn,
                    TransactionStatus.COMPLETED,
                    extra_fields={"metadata": {"confirmed_by": request.user.get_username()}},
                )
            except (InvalidStateTransitionError, StaleRecordError) as e:
                self.message_user(request, f"{txn.reference}: {e.message}", level=messages.WARNING)
                continue
            confirmed += 1
        self.message_user(request, f"Confirmed {confirmed} EFT payment(s).")

    def has_add_permission(self, request) -> bool:
        """Transactions are created through the payment API."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for transactions (audit trail)."""
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Provider callbacks as received, with their processing status.

    Payloads are read-only; failed events can be requeued in bulk.
    """

    list_display = [
        "id",
        "gateway",
        "event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["gateway", "status", "event_type", "created_at"]
    search_fields = ["id", "event_id", "event_type", "transaction__reference"]
    readonly_fields = [
        "id",
        "gateway",
        "event_id",
        "event_type",
        "payload",
        "raw_body",
        "headers",
        "transaction",
        "processed_at",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["requeue_events"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "gateway", "event_id", "event_type", "status", "transaction"),
            },
        ),
        (
            "Payload",
            {
                "fields": ("payload", "raw_body", "headers"),
                "classes": ("collapse",),
            },
        ),
        (
            "Processing",
            {
                "fields": ("retry_count", "error_message", "processed_at"),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    @admin.action(description="Requeue selected failed events")
    def requeue_events(self, request, queryset):
        from payments.tasks import process_webhook_event

        count = 0
        for event in queryset.filter(status=WebhookEventStatus.FAILED):
            process_webhook_event.delay(str(event.id))
            count += 1
        self.message_user(request, f"Requeued {count} webhook event(s).")

    def has_add_permission(self, request) -> bool:
        return False
