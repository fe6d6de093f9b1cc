"""
Billing cycle date arithmetic.

Uses calendar dates only (no timezone, no time of day).

Cycles:
- monthly: +1 month
- quarterly: +3 months
- yearly: +1 year

A day-of-month that does not exist in the target month is not clamped: the
surplus days roll over into the following month, the same way a native
calendar "set month" works:

    2024-01-31 + monthly   -> 2024-03-02
    2023-01-31 + monthly   -> 2023-03-03
    2024-02-29 + yearly    -> 2025-03-01
"""
from datetime import date, datetime, timedelta


BILLING_CYCLE_MONTHLY = "monthly"
BILLING_CYCLE_QUARTERLY = "quarterly"
BILLING_CYCLE_YEARLY = "yearly"

VALID_BILLING_CYCLES = frozenset({
    BILLING_CYCLE_MONTHLY,
    BILLING_CYCLE_QUARTERLY,
    BILLING_CYCLE_YEARLY,
})

_CYCLE_MONTHS = {
    BILLING_CYCLE_MONTHLY: 1,
    BILLING_CYCLE_QUARTERLY: 3,
    BILLING_CYCLE_YEARLY: 12,
}


def as_calendar_date(value: date | datetime) -> date:
    """Drop the time-of-day part, if any."""
    if isinstance(value, datetime):
        return value.date()
    return value


def add_months_with_rollover(d: date, n: int) -> date:
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    # Start from the 1st and walk forward so an overflowing day spills over
    return date(year, month, 1) + timedelta(days=d.day - 1)


def next_payment_date(anchor: date | datetime, cycle: str) -> date:
    """
    Advance anchor by exactly one billing cycle.

    Raises:
        ValueError: unknown cycle. Cycles are validated at the API boundary,
            so reaching this is a programming error.
    """
    months = _CYCLE_MONTHS.get(cycle)
    if months is None:
        raise ValueError(f"invalid billing cycle: {cycle!r}")
    return add_months_with_rollover(as_calendar_date(anchor), months)
