"""
Reminder policy - decides whether a payment reminder is due today.

Pure functions: no I/O, no clock. The caller passes `today`.

A reminder is due when:
  - the subscription is active
  - days until next payment <= reminder_days (overdue counts, forever)
  - no reminder has been sent yet on this calendar day
"""
from datetime import date, datetime
from typing import Protocol

from subtracker.domain.billing_cycle import as_calendar_date


class RemindableSubscription(Protocol):
    is_active: bool
    next_payment_date: date
    reminder_days: int
    last_reminder_sent: date | None


def days_until_payment(next_payment: date | datetime, today: date | datetime) -> int:
    """Whole calendar days from today to next_payment. Negative when overdue."""
    return (as_calendar_date(next_payment) - as_calendar_date(today)).days


def is_due(subscription: RemindableSubscription, today: date | datetime) -> bool:
    if not subscription.is_active:
        return False

    if days_until_payment(subscription.next_payment_date, today) > subscription.reminder_days:
        return False

    if subscription.last_reminder_sent is None:
        return True

    # One reminder per calendar day
    return as_calendar_date(subscription.last_reminder_sent) != as_calendar_date(today)
