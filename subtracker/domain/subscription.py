"""
Subscription domain entity - recurring payment record and its state transitions.

States: active / inactive. No terminal state; a record lives until it is deleted.

Transitions:
- create:              active, next_payment_date = start_date + 1 cycle
- renew:               next_payment_date += 1 cycle, append a "paid" history entry
- mark_reminder_sent:  last_reminder_sent = today
- activate/deactivate: toggle is_active only
- edit:                overwrite fields; recompute next_payment_date when
                       start_date or billing_cycle changes
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from subtracker.domain.billing_cycle import (
    VALID_BILLING_CYCLES, BILLING_CYCLE_MONTHLY, next_payment_date as _next_date,
)
from subtracker.domain.reminder_policy import days_until_payment, is_due


CURRENCY_VND = "VND"
CURRENCY_USD = "USD"
CURRENCY_EUR = "EUR"
VALID_CURRENCIES = frozenset({CURRENCY_VND, CURRENCY_USD, CURRENCY_EUR})

PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_FAILED = "failed"
VALID_PAYMENT_STATUSES = frozenset({PAYMENT_STATUS_PAID, PAYMENT_STATUS_PENDING, PAYMENT_STATUS_FAILED})

DEFAULT_REMINDER_DAYS = 7
MIN_REMINDER_DAYS = 1
MAX_REMINDER_DAYS = 30
MAX_SERVICE_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500

MANUAL_RENEWAL_NOTE = "Manual renewal"

EDITABLE_FIELDS = (
    "service_name", "description", "cost", "currency", "billing_cycle",
    "start_date", "reminder_days", "auto_renew", "is_active", "tags",
)


class SubscriptionValidationError(ValueError):
    """Invalid subscription field value"""
    pass


class InactiveSubscriptionError(SubscriptionValidationError):
    """Operation is not allowed on an inactive subscription"""
    pass


def validate_subscription_fields(
    *,
    service_name: str | None = None,
    description: str | None = None,
    cost: Decimal | None = None,
    currency: str | None = None,
    billing_cycle: str | None = None,
    reminder_days: int | None = None,
) -> None:
    """
    Boundary validation. Only the provided (non-None) fields are checked.

    Raises:
        SubscriptionValidationError: on the first invalid field
    """
    if service_name is not None:
        name = service_name.strip()
        if not name:
            raise SubscriptionValidationError("Service name is required")
        if len(name) > MAX_SERVICE_NAME_LENGTH:
            raise SubscriptionValidationError(
                f"Service name must be at most {MAX_SERVICE_NAME_LENGTH} characters"
            )
    if description is not None and len(description.strip()) > MAX_DESCRIPTION_LENGTH:
        raise SubscriptionValidationError(
            f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters"
        )
    if cost is not None and Decimal(cost) < 0:
        raise SubscriptionValidationError("Cost must not be negative")
    if currency is not None and currency not in VALID_CURRENCIES:
        raise SubscriptionValidationError(
            f"Invalid currency: {currency}. Use VND, USD or EUR"
        )
    if billing_cycle is not None and billing_cycle not in VALID_BILLING_CYCLES:
        raise SubscriptionValidationError(
            f"Invalid billing cycle: {billing_cycle}. Use monthly, quarterly or yearly"
        )
    if reminder_days is not None and not (MIN_REMINDER_DAYS <= reminder_days <= MAX_REMINDER_DAYS):
        raise SubscriptionValidationError(
            f"Reminder days must be between {MIN_REMINDER_DAYS} and {MAX_REMINDER_DAYS}"
        )


@dataclass
class PaymentRecord:
    """One entry of the append-only payment history"""
    paid_on: date
    amount: Decimal
    status: str = PAYMENT_STATUS_PENDING
    notes: str | None = None
    id: int | None = None


@dataclass
class Subscription:
    """
    Recurring subscription owned by one user.

    next_payment_date is the single source of truth for when payment is due.
    last_reminder_sent is a calendar date, used to send at most one reminder a day.
    version is the optimistic concurrency token maintained by the repository.
    """
    user_id: int
    service_name: str
    cost: Decimal
    billing_cycle: str
    start_date: date
    next_payment_date: date
    currency: str = CURRENCY_VND
    description: str = ""
    reminder_days: int = DEFAULT_REMINDER_DAYS
    is_active: bool = True
    auto_renew: bool = True
    last_reminder_sent: date | None = None
    payment_history: list[PaymentRecord] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    id: int | None = None
    version: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def create(
        cls,
        user_id: int,
        service_name: str,
        cost: Decimal,
        start_date: date,
        billing_cycle: str = BILLING_CYCLE_MONTHLY,
        currency: str = CURRENCY_VND,
        description: str = "",
        reminder_days: int = DEFAULT_REMINDER_DAYS,
        auto_renew: bool = True,
        tags: list[str] | None = None,
    ) -> "Subscription":
        assert reminder_days >= MIN_REMINDER_DAYS, "reminder_days must be validated before create"
        return cls(
            user_id=user_id,
            service_name=service_name.strip(),
            description=(description or "").strip(),
            cost=Decimal(cost),
            currency=currency,
            billing_cycle=billing_cycle,
            start_date=start_date,
            next_payment_date=_next_date(start_date, billing_cycle),
            reminder_days=reminder_days,
            auto_renew=auto_renew,
            tags=_clean_tags(tags),
        )

    def renew(self, today: date | None = None) -> PaymentRecord:
        """
        Advance next_payment_date by one cycle and record the payment.

        Raises:
            InactiveSubscriptionError: subscription is deactivated
        """
        if not self.is_active:
            raise InactiveSubscriptionError("Cannot renew an inactive subscription")

        self.next_payment_date = _next_date(self.next_payment_date, self.billing_cycle)
        return self.add_payment(
            amount=self.cost,
            paid_on=today or date.today(),
            status=PAYMENT_STATUS_PAID,
            notes=MANUAL_RENEWAL_NOTE,
        )

    def add_payment(
        self,
        amount: Decimal,
        paid_on: date | None = None,
        status: str = PAYMENT_STATUS_PENDING,
        notes: str | None = None,
    ) -> PaymentRecord:
        assert status in VALID_PAYMENT_STATUSES, f"unknown payment status {status!r}"
        record = PaymentRecord(
            paid_on=paid_on or date.today(),
            amount=Decimal(amount),
            status=status,
            notes=notes,
        )
        self.payment_history.append(record)
        return record

    def mark_reminder_sent(self, today: date | None = None) -> None:
        self.last_reminder_sent = today or date.today()

    def activate(self) -> None:
        self.is_active = True

    def deactivate(self) -> None:
        self.is_active = False

    def edit(self, **changes: Any) -> None:
        """Sparse update. Only keys present in changes are touched."""
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"not editable: {sorted(unknown)}")

        schedule_changed = (
            ("start_date" in changes and changes["start_date"] != self.start_date)
            or ("billing_cycle" in changes and changes["billing_cycle"] != self.billing_cycle)
        )

        for key, value in changes.items():
            if key == "service_name":
                value = value.strip()
            elif key == "description":
                value = (value or "").strip()
            elif key == "cost":
                value = Decimal(value)
            elif key == "tags":
                value = _clean_tags(value)
            setattr(self, key, value)

        if schedule_changed:
            self.next_payment_date = _next_date(self.start_date, self.billing_cycle)

    def days_until_payment(self, today: date | None = None) -> int:
        return days_until_payment(self.next_payment_date, today or date.today())

    def is_reminder_due(self, today: date | None = None) -> bool:
        return is_due(self, today or date.today())


def _clean_tags(tags: list[str] | None) -> list[str]:
    return [t.strip() for t in (tags or []) if t and t.strip()]
