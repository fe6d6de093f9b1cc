"""
Tests for the payment reminder policy
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from subtracker.domain.reminder_policy import is_due, days_until_payment


TODAY = date(2024, 6, 10)


@dataclass
class _Sub:
    next_payment_date: date
    reminder_days: int = 7
    is_active: bool = True
    last_reminder_sent: date | None = None


class TestIsDue:
    def test_window_edge_never_reminded(self):
        """Payment exactly reminder_days away and no reminder yet → due."""
        sub = _Sub(next_payment_date=TODAY + timedelta(days=7))
        assert is_due(sub, TODAY) is True

    def test_already_reminded_today(self):
        sub = _Sub(next_payment_date=TODAY + timedelta(days=7), last_reminder_sent=TODAY)
        assert is_due(sub, TODAY) is False

    def test_overdue_reminded_yesterday(self):
        """Overdue subscriptions keep alerting once per day."""
        sub = _Sub(
            next_payment_date=TODAY - timedelta(days=5),
            last_reminder_sent=TODAY - timedelta(days=1),
        )
        assert is_due(sub, TODAY) is True

    def test_outside_window(self):
        sub = _Sub(next_payment_date=TODAY + timedelta(days=8))
        assert is_due(sub, TODAY) is False

    def test_payment_today(self):
        sub = _Sub(next_payment_date=TODAY, reminder_days=1)
        assert is_due(sub, TODAY) is True

    def test_inactive_never_due(self):
        sub = _Sub(next_payment_date=TODAY, is_active=False)
        assert is_due(sub, TODAY) is False

    def test_reminded_earlier_in_window(self):
        sub = _Sub(
            next_payment_date=TODAY + timedelta(days=3),
            last_reminder_sent=TODAY - timedelta(days=2),
        )
        assert is_due(sub, TODAY) is True

    def test_datetime_today_is_normalized(self):
        sub = _Sub(next_payment_date=TODAY + timedelta(days=7), last_reminder_sent=TODAY)
        assert is_due(sub, datetime(2024, 6, 10, 23, 59)) is False


def test_days_until_payment():
    assert days_until_payment(date(2024, 6, 17), TODAY) == 7
    assert days_until_payment(date(2024, 6, 5), TODAY) == -5
    assert days_until_payment(datetime(2024, 6, 11, 0, 1), datetime(2024, 6, 10, 23, 59)) == 1
