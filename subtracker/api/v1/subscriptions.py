"""
Subscription API endpoints
"""
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from subtracker.api.deps import get_db, get_current_user, get_notifier
from subtracker.application.ports import (
    Notifier, SubscriptionNotFoundError, ConcurrentModificationError,
)
from subtracker.application.reminder_batch import send_single_reminder
from subtracker.application.subscriptions import (
    CreateSubscriptionUseCase, UpdateSubscriptionUseCase, DeleteSubscriptionUseCase,
    RenewSubscriptionUseCase, ActivateSubscriptionUseCase, DeactivateSubscriptionUseCase,
    AddPaymentUseCase, list_subscriptions, compute_dashboard_stats,
)
from subtracker.domain.subscription import (
    Subscription, PaymentRecord, SubscriptionValidationError,
    DEFAULT_REMINDER_DAYS, CURRENCY_VND, PAYMENT_STATUS_PENDING,
)
from subtracker.infrastructure.db.models import User
from subtracker.infrastructure.db.subscription_repository import (
    SqlAlchemySubscriptionRepository, owner_from_user,
)


router = APIRouter(prefix="/api/v1/subscriptions", tags=["subscriptions"])


# === Request/Response models ===

class CreateSubscriptionRequest(BaseModel):
    service_name: str
    description: str = ""
    cost: Decimal
    currency: str = CURRENCY_VND          # VND, USD, EUR
    billing_cycle: str                    # monthly, quarterly, yearly
    start_date: date
    reminder_days: int = DEFAULT_REMINDER_DAYS
    auto_renew: bool = True
    tags: list[str] = Field(default_factory=list)


class UpdateSubscriptionRequest(BaseModel):
    service_name: str | None = None
    description: str | None = None
    cost: Decimal | None = None
    currency: str | None = None
    billing_cycle: str | None = None
    start_date: date | None = None
    reminder_days: int | None = None
    auto_renew: bool | None = None
    is_active: bool | None = None
    tags: list[str] | None = None


class AddPaymentRequest(BaseModel):
    amount: Decimal
    paid_on: date | None = None
    status: str = PAYMENT_STATUS_PENDING  # paid, pending, failed
    notes: str | None = None


class PaymentResponse(BaseModel):
    id: int | None
    paid_on: date
    amount: Decimal
    status: str
    notes: str | None


class SubscriptionResponse(BaseModel):
    id: int
    service_name: str
    description: str
    cost: Decimal
    currency: str
    billing_cycle: str
    start_date: date
    next_payment_date: date
    days_until_payment: int
    reminder_days: int
    is_active: bool
    auto_renew: bool
    last_reminder_sent: date | None
    tags: list[str]
    payment_history: list[PaymentResponse]
    created_at: datetime | None
    updated_at: datetime | None


# === Helpers ===

_CLEARABLE_FIELDS = ("description", "tags")


def _payment_response(p: PaymentRecord) -> PaymentResponse:
    return PaymentResponse(id=p.id, paid_on=p.paid_on, amount=p.amount, status=p.status, notes=p.notes)


def _to_response(sub: Subscription) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=sub.id,
        service_name=sub.service_name,
        description=sub.description,
        cost=sub.cost,
        currency=sub.currency,
        billing_cycle=sub.billing_cycle,
        start_date=sub.start_date,
        next_payment_date=sub.next_payment_date,
        days_until_payment=sub.days_until_payment(),
        reminder_days=sub.reminder_days,
        is_active=sub.is_active,
        auto_renew=sub.auto_renew,
        last_reminder_sent=sub.last_reminder_sent,
        tags=list(sub.tags),
        payment_history=[_payment_response(p) for p in sub.payment_history],
        created_at=sub.created_at,
        updated_at=sub.updated_at,
    )


@contextmanager
def _domain_errors():
    """Map use case errors to HTTP status codes"""
    try:
        yield
    except SubscriptionNotFoundError:
        raise HTTPException(status_code=404, detail="Subscription not found")
    except SubscriptionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConcurrentModificationError as e:
        raise HTTPException(status_code=409, detail=str(e))


# === Endpoints ===

@router.get("/")
def list_user_subscriptions(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    is_active: bool | None = None,
    search: str | None = None,
):
    """Paginated list, soonest payment first"""
    result = list_subscriptions(db, user.id, page=page, limit=limit, is_active=is_active, search=search)
    return {
        "items": [_to_response(s) for s in result["items"]],
        "pagination": result["pagination"],
    }


@router.get("/stats/dashboard")
def dashboard_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return compute_dashboard_stats(db, user.id)


@router.post("/", response_model=SubscriptionResponse, status_code=201)
def create_subscription(
    req: CreateSubscriptionRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with _domain_errors():
        sub = CreateSubscriptionUseCase(db).execute(
            user_id=user.id,
            service_name=req.service_name,
            description=req.description,
            cost=req.cost,
            currency=req.currency,
            billing_cycle=req.billing_cycle,
            start_date=req.start_date,
            reminder_days=req.reminder_days,
            auto_renew=req.auto_renew,
            tags=req.tags,
        )
    return _to_response(sub)


@router.get("/{sub_id}", response_model=SubscriptionResponse)
def get_subscription(sub_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    with _domain_errors():
        sub = SqlAlchemySubscriptionRepository(db).get_for_user(sub_id, user.id)
    return _to_response(sub)


@router.put("/{sub_id}", response_model=SubscriptionResponse)
def update_subscription(
    sub_id: int,
    req: UpdateSubscriptionRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Sparse update; only the fields present in the body are changed.
    An explicit null clears description and tags and is ignored elsewhere.
    """
    changes = {
        k: v for k, v in req.model_dump(exclude_unset=True).items()
        if v is not None or k in _CLEARABLE_FIELDS
    }
    with _domain_errors():
        sub = UpdateSubscriptionUseCase(db).execute(sub_id, user.id, **changes)
    return _to_response(sub)


@router.delete("/{sub_id}")
def delete_subscription(sub_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    with _domain_errors():
        DeleteSubscriptionUseCase(db).execute(sub_id, user.id)
    return {"status": "deleted"}


@router.post("/{sub_id}/renew", response_model=SubscriptionResponse)
def renew_subscription(sub_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Mark the current period as paid and advance next_payment_date by one cycle"""
    with _domain_errors():
        sub = RenewSubscriptionUseCase(db).execute(sub_id, user.id)
    return _to_response(sub)


@router.post("/{sub_id}/activate", response_model=SubscriptionResponse)
def activate_subscription(sub_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    with _domain_errors():
        sub = ActivateSubscriptionUseCase(db).execute(sub_id, user.id)
    return _to_response(sub)


@router.post("/{sub_id}/deactivate", response_model=SubscriptionResponse)
def deactivate_subscription(sub_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    with _domain_errors():
        sub = DeactivateSubscriptionUseCase(db).execute(sub_id, user.id)
    return _to_response(sub)


@router.post("/{sub_id}/payments", response_model=PaymentResponse, status_code=201)
def add_payment(
    sub_id: int,
    req: AddPaymentRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with _domain_errors():
        record = AddPaymentUseCase(db).execute(
            sub_id, user.id,
            amount=req.amount,
            paid_on=req.paid_on,
            status=req.status,
            notes=req.notes,
        )
    return _payment_response(record)


@router.post("/{sub_id}/send-reminder")
def send_reminder(
    sub_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Send the reminder email right now, regardless of the reminder window"""
    with _domain_errors():
        sub = SqlAlchemySubscriptionRepository(db).get_for_user(sub_id, user.id)
    if not sub.is_active:
        raise HTTPException(status_code=400, detail="Subscription is inactive")

    outcome = send_single_reminder(notifier, owner_from_user(user), sub)
    if not outcome.success:
        raise HTTPException(status_code=502, detail=f"Reminder was not sent: {outcome.error}")
    return {"status": "sent", "message_id": outcome.message_id}
