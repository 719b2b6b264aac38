"""
Billing period and retry backoff arithmetic for subscriptions.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from dateutil.relativedelta import relativedelta

from payments.state_machines import RecurringFrequency

if TYPE_CHECKING:
    from datetime import datetime


FREQUENCY_DELTAS = {
    RecurringFrequency.DAILY: relativedelta(days=1),
    RecurringFrequency.WEEKLY: relativedelta(weeks=1),
    RecurringFrequency.MONTHLY: relativedelta(months=1),
    RecurringFrequency.QUARTERLY: relativedelta(months=3),
    RecurringFrequency.YEARLY: relativedelta(years=1),
}

# Retry delays stop growing after 2**4 = 16 hours
MAX_BACKOFF_EXPONENT = 4


def add_billing_period(start: datetime, frequency: str | None) -> datetime:
    """
    Next billing date one period after start.

    Unknown or empty frequencies bill monthly. relativedelta clamps month
    ends, so Jan 31 + 1 month is Feb 28/29.
    """
    delta = FREQUENCY_DELTAS.get(frequency or "", FREQUENCY_DELTAS[RecurringFrequency.MONTHLY])
    return start + delta


def retry_delay(attempts: int) -> timedelta:
    """Backoff before the next attempt: 1, 2, 4, 8, then 16 hours."""
    exponent = min(max(attempts - 1, 0), MAX_BACKOFF_EXPONENT)
    return timedelta(hours=2**exponent)
