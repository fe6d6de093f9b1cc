"""
Subscription use cases - CRUD, manual renewal, payment history, dashboard stats.

All mutations of an existing subscription run under its record lock
(application/record_locks.py) and are saved through the repository, which
also enforces the optimistic version check.
"""
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from subtracker.application.ports import SubscriptionNotFoundError
from subtracker.application.record_locks import RecordLockRegistry, subscription_locks
from subtracker.domain.subscription import (
    Subscription, PaymentRecord, SubscriptionValidationError, validate_subscription_fields,
    EDITABLE_FIELDS, VALID_PAYMENT_STATUSES, DEFAULT_REMINDER_DAYS, CURRENCY_VND,
)
from subtracker.infrastructure.db.models import SubscriptionModel
from subtracker.infrastructure.db.subscription_repository import SqlAlchemySubscriptionRepository


UPCOMING_WINDOW_DAYS = 7
UPCOMING_LIST_LIMIT = 5
MAX_PAGE_SIZE = 100

__all__ = [
    "SubscriptionValidationError", "SubscriptionNotFoundError",
    "CreateSubscriptionUseCase", "UpdateSubscriptionUseCase", "DeleteSubscriptionUseCase",
    "RenewSubscriptionUseCase", "ActivateSubscriptionUseCase", "DeactivateSubscriptionUseCase",
    "AddPaymentUseCase", "list_subscriptions", "compute_dashboard_stats", "compute_user_stats",
]


class _SubscriptionUseCase:
    def __init__(self, db: Session, locks: RecordLockRegistry | None = None):
        self.db = db
        self.repo = SqlAlchemySubscriptionRepository(db)
        self.locks = locks or subscription_locks


# ============================================================================
# CRUD
# ============================================================================


class CreateSubscriptionUseCase(_SubscriptionUseCase):

    def execute(
        self,
        user_id: int,
        service_name: str,
        cost: Decimal,
        billing_cycle: str,
        start_date: date,
        currency: str = CURRENCY_VND,
        description: str = "",
        reminder_days: int = DEFAULT_REMINDER_DAYS,
        auto_renew: bool = True,
        tags: list[str] | None = None,
    ) -> Subscription:
        validate_subscription_fields(
            service_name=service_name,
            description=description,
            cost=cost,
            currency=currency,
            billing_cycle=billing_cycle,
            reminder_days=reminder_days,
        )
        sub = Subscription.create(
            user_id=user_id,
            service_name=service_name,
            cost=cost,
            start_date=start_date,
            billing_cycle=billing_cycle,
            currency=currency,
            description=description,
            reminder_days=reminder_days,
            auto_renew=auto_renew,
            tags=tags,
        )
        return self.repo.save(sub)


class UpdateSubscriptionUseCase(_SubscriptionUseCase):

    def execute(self, sub_id: int, user_id: int, **changes: Any) -> Subscription:
        """Sparse update; next_payment_date is recomputed when the schedule changes."""
        changes = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
        validate_subscription_fields(
            service_name=changes.get("service_name"),
            description=changes.get("description"),
            cost=changes.get("cost"),
            currency=changes.get("currency"),
            billing_cycle=changes.get("billing_cycle"),
            reminder_days=changes.get("reminder_days"),
        )
        with self.locks.hold(sub_id):
            sub = self.repo.get_for_user(sub_id, user_id)
            sub.edit(**changes)
            return self.repo.save(sub)


class DeleteSubscriptionUseCase(_SubscriptionUseCase):

    def execute(self, sub_id: int, user_id: int) -> None:
        with self.locks.hold(sub_id):
            self.repo.delete_for_user(sub_id, user_id)


class ActivateSubscriptionUseCase(_SubscriptionUseCase):

    def execute(self, sub_id: int, user_id: int) -> Subscription:
        with self.locks.hold(sub_id):
            sub = self.repo.get_for_user(sub_id, user_id)
            if sub.is_active:
                raise SubscriptionValidationError("Subscription is already active")
            sub.activate()
            return self.repo.save(sub)


class DeactivateSubscriptionUseCase(_SubscriptionUseCase):

    def execute(self, sub_id: int, user_id: int) -> Subscription:
        with self.locks.hold(sub_id):
            sub = self.repo.get_for_user(sub_id, user_id)
            if not sub.is_active:
                raise SubscriptionValidationError("Subscription is already inactive")
            sub.deactivate()
            return self.repo.save(sub)


# ============================================================================
# Renewal & payment history
# ============================================================================


class RenewSubscriptionUseCase(_SubscriptionUseCase):
    """
    Manual renewal: next_payment_date += 1 cycle, "paid" entry appended.

    Raises:
        InactiveSubscriptionError: subscription is deactivated
        SubscriptionNotFoundError
        ConcurrentModificationError: lost a race with another writer
    """

    def execute(self, sub_id: int, user_id: int, today: date | None = None) -> Subscription:
        with self.locks.hold(sub_id):
            sub = self.repo.get_for_user(sub_id, user_id)
            sub.renew(today)
            return self.repo.save(sub)


class AddPaymentUseCase(_SubscriptionUseCase):
    """Manual payment history entry. Does not move next_payment_date."""

    def execute(
        self,
        sub_id: int,
        user_id: int,
        amount: Decimal,
        paid_on: date | None = None,
        status: str = "pending",
        notes: str | None = None,
    ) -> PaymentRecord:
        if Decimal(amount) < 0:
            raise SubscriptionValidationError("Amount must not be negative")
        if status not in VALID_PAYMENT_STATUSES:
            raise SubscriptionValidationError(
                f"Invalid payment status: {status}. Use paid, pending or failed"
            )
        with self.locks.hold(sub_id):
            sub = self.repo.get_for_user(sub_id, user_id)
            record = sub.add_payment(amount=amount, paid_on=paid_on, status=status, notes=notes)
            self.repo.save(sub)
            return record


# ============================================================================
# Queries
# ============================================================================


def list_subscriptions(
    db: Session,
    user_id: int,
    page: int = 1,
    limit: int = 10,
    is_active: bool | None = None,
    search: str | None = None,
) -> dict:
    """Paginated list sorted by next payment date."""
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    items, total = SqlAlchemySubscriptionRepository(db).list_for_user(
        user_id,
        is_active=is_active,
        search=search,
        offset=(page - 1) * limit,
        limit=limit,
    )
    return {
        "items": items,
        "pagination": {
            "current_page": page,
            "total_pages": (total + limit - 1) // limit,
            "total_items": total,
            "items_per_page": limit,
        },
    }


def compute_user_stats(db: Session, user_id: int) -> dict:
    """Profile stats: total / active counts and sum of active costs."""
    base = db.query(SubscriptionModel).filter(SubscriptionModel.user_id == user_id)
    total = base.count()
    active = base.filter(SubscriptionModel.is_active == True).count()  # noqa: E712
    spend = db.query(func.coalesce(func.sum(SubscriptionModel.cost), 0)).filter(
        SubscriptionModel.user_id == user_id,
        SubscriptionModel.is_active == True,  # noqa: E712
    ).scalar()
    return {
        "total_subscriptions": total,
        "active_subscriptions": active,
        "total_monthly_spend": Decimal(spend),
    }


def compute_dashboard_stats(db: Session, user_id: int, today: date | None = None) -> dict:
    """
    Dashboard numbers for one user.

    Returns dict with:
        total_active, total_inactive: int
        upcoming_payments: active subscriptions due within 7 days (overdue included)
        monthly_total: Decimal, sum of active costs (no per-cycle normalization)
        upcoming_subscriptions: up to 5 soonest, with days_until_payment
    """
    if today is None:
        today = date.today()
    horizon = today + timedelta(days=UPCOMING_WINDOW_DAYS)

    def _count(**filters) -> int:
        q = db.query(SubscriptionModel).filter(SubscriptionModel.user_id == user_id)
        for name, value in filters.items():
            q = q.filter(getattr(SubscriptionModel, name) == value)
        return q.count()

    upcoming_q = db.query(SubscriptionModel).filter(
        SubscriptionModel.user_id == user_id,
        SubscriptionModel.is_active == True,  # noqa: E712
        SubscriptionModel.next_payment_date <= horizon,
    )
    upcoming_rows = (
        upcoming_q.order_by(SubscriptionModel.next_payment_date, SubscriptionModel.id)
        .limit(UPCOMING_LIST_LIMIT)
        .all()
    )

    return {
        "total_active": _count(is_active=True),
        "total_inactive": _count(is_active=False),
        "upcoming_payments": upcoming_q.count(),
        "monthly_total": compute_user_stats(db, user_id)["total_monthly_spend"],
        "upcoming_subscriptions": [
            {
                "id": r.id,
                "service_name": r.service_name,
                "cost": r.cost,
                "currency": r.currency,
                "billing_cycle": r.billing_cycle,
                "next_payment_date": r.next_payment_date,
                "days_until_payment": (r.next_payment_date - today).days,
            }
            for r in upcoming_rows
        ],
    }
