"""
Payment services.

- TransactionStore: Single mutation path for Transaction status
- PaymentOrchestrator: Initialize, verify, callback, refund and retry
- RecurringProcessor: Scheduled subscription billing

Usage:
    from payments.services import PaymentOrchestrator

    result = PaymentOrchestrator().refund("PF-1700000000-ABC123", Decimal("60.00"))
    if result.success and result.data.requires_manual_action:
        notify_finance(result.data.manual_action)
"""

from payments.services.payment_orchestrator import (
    CallbackOutcome,
    InitializeOutcome,
    PaymentOrchestrator,
    RefundRecord,
    VerifyOutcome,
)
from payments.services.recurring_processor import (
    RecurringChargeResult,
    RecurringProcessor,
    RecurringRunReport,
)
from payments.services.transaction_store import StatusChange, TransactionStore

__all__ = [
    "CallbackOutcome",
    "InitializeOutcome",
    "PaymentOrchestrator",
    "RecurringChargeResult",
    "RecurringProcessor",
    "RecurringRunReport",
    "RefundRecord",
    "StatusChange",
    "TransactionStore",
    "VerifyOutcome",
]
