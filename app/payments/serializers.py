"""
DRF serializers for payments app.

This module provides serializers for:
- Payment initialization and refund requests
- Transaction responses and history
- Gateway listings

Related files:
    - models/transaction.py: Transaction
    - views.py: Payment API views

Usage:
    serializer = InitializePaymentSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    payment_request = serializer.to_payment_request()
"""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from payments.gateways.registry import GATEWAY_CLASSES
from payments.gateways.types import CustomerDetails, PaymentRequest, SubscriptionTerms
from payments.models import Transaction
from payments.state_machines import RecurringFrequency


class SubscriptionTermsSerializer(serializers.Serializer):
    frequency = serializers.ChoiceField(
        choices=RecurringFrequency.choices,
        default=RecurringFrequency.MONTHLY,
    )
    cycles = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    billing_date = serializers.DateTimeField(required=False, allow_null=True)
    plan_code = serializers.CharField(required=False, allow_blank=True, max_length=100)


class InitializePaymentSerializer(serializers.Serializer):
    """
    Payment initialization request.

    Amount range and currency support are checked by the gateway, so
    limits are not duplicated here.
    """

    gateway = serializers.ChoiceField(choices=sorted(GATEWAY_CLASSES), required=False)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=Decimal("0.01"))
    currency = serializers.CharField(required=False, min_length=3, max_length=3)
    description = serializers.CharField(max_length=255)
    customer_email = serializers.EmailField(required=False, allow_blank=True)
    customer_name = serializers.CharField(required=False, allow_blank=True, max_length=200)
    customer_phone = serializers.CharField(required=False, allow_blank=True, max_length=30)
    payment_method = serializers.CharField(required=False, allow_blank=True, max_length=50)
    return_url = serializers.URLField(required=False, allow_blank=True)
    cancel_url = serializers.URLField(required=False, allow_blank=True)
    notify_url = serializers.URLField(required=False, allow_blank=True)
    metadata = serializers.DictField(required=False)
    subscription = SubscriptionTermsSerializer(required=False, allow_null=True)

    def to_payment_request(self) -> PaymentRequest:
        data = self.validated_data
        subscription = data.get("subscription")
        return PaymentRequest(
            amount=data["amount"],
            description=data["description"],
            currency=data.get("currency"),
            customer=CustomerDetails.from_dict(
                {
                    "email": data.get("customer_email", ""),
                    "name": data.get("customer_name", ""),
                    "phone": data.get("customer_phone", ""),
                }
            ),
            payment_method=data.get("payment_method") or None,
            return_url=data.get("return_url") or None,
            cancel_url=data.get("cancel_url") or None,
            notify_url=data.get("notify_url") or None,
            subscription=SubscriptionTerms(**subscription) if subscription else None,
            metadata=data.get("metadata") or {},
        )


class RefundRequestSerializer(serializers.Serializer):
    amount = serializers.DecimalField(
        max_digits=14,
        decimal_places=2,
        min_value=Decimal("0.01"),
        required=False,
        allow_null=True,
        help_text="Amount to refund; the full refundable balance when omitted",
    )
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)


class TransactionSerializer(serializers.ModelSerializer):
    """Transaction for API responses."""

    parent_reference = serializers.CharField(
        source="parent_transaction.reference",
        read_only=True,
        default=None,
    )
    refundable_amount = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)
    formatted_amount = serializers.CharField(read_only=True)

    class Meta:
        model = Transaction
        fields = [
            "id",
            "reference",
            "gateway",
            "gateway_transaction_id",
            "transaction_type",
            "status",
            "amount",
            "currency",
            "formatted_amount",
            "fee_amount",
            "net_amount",
            "refund_amount",
            "refundable_amount",
            "description",
            "customer_email",
            "customer_name",
            "payment_method",
            "attempts",
            "max_attempts",
            "retry_at",
            "is_subscription",
            "subscription_id",
            "recurring_frequency",
            "recurring_cycles",
            "cycles_completed",
            "next_billing_date",
            "parent_reference",
            "error_code",
            "error_message",
            "metadata",
            "completed_at",
            "failed_at",
            "refunded_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class GatewayInfoSerializer(serializers.Serializer):
    name = serializers.CharField()
    display_name = serializers.CharField()
    available = serializers.BooleanField()
    test_mode = serializers.BooleanField()
    currencies = serializers.ListField(child=serializers.CharField())
    payment_methods = serializers.ListField(child=serializers.CharField())
    minimum_amount = serializers.CharField()
    maximum_amount = serializers.CharField()
    capabilities = serializers.ListField(child=serializers.CharField())
