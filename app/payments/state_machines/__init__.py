"""
State machine enums for payment models.

This module defines the state enums used by payment models with django-fsm.
"""

from payments.state_machines.states import (
    REFUNDABLE_STATUSES,
    RETRYABLE_STATUSES,
    TERMINAL_STATUSES,
    GatewayCode,
    RecurringFrequency,
    TransactionStatus,
    TransactionType,
    WebhookEventStatus,
)

__all__ = [
    "GatewayCode",
    "RecurringFrequency",
    "REFUNDABLE_STATUSES",
    "RETRYABLE_STATUSES",
    "TERMINAL_STATUSES",
    "TransactionStatus",
    "TransactionType",
    "WebhookEventStatus",
]
