"""
SQLAlchemy repository for the Subscription aggregate.

Maps SubscriptionModel + SubscriptionPaymentModel rows to domain
Subscription/PaymentRecord objects and back. Every write commits on its own,
so save() is atomic per record.
"""
import logging
from collections import defaultdict

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from subtracker.application.ports import (
    SubscriptionRepository, SubscriptionOwner,
    RepositoryError, ConcurrentModificationError, SubscriptionNotFoundError,
)
from subtracker.domain.subscription import Subscription, PaymentRecord
from subtracker.infrastructure.db.models import (
    SubscriptionModel, SubscriptionPaymentModel, User,
)

logger = logging.getLogger(__name__)

_COPIED_FIELDS = (
    "user_id", "service_name", "description", "cost", "currency", "billing_cycle",
    "start_date", "next_payment_date", "reminder_days", "is_active", "auto_renew",
    "last_reminder_sent",
)


def owner_from_user(user: User | None) -> SubscriptionOwner | None:
    if user is None:
        return None
    return SubscriptionOwner(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        is_active=user.is_active,
    )


class SqlAlchemySubscriptionRepository(SubscriptionRepository):

    def __init__(self, db: Session):
        self.db = db

    # ── READ ──────────────────────────────────────────────

    def find_active_subscriptions(self) -> list[tuple[Subscription, SubscriptionOwner | None]]:
        try:
            rows = (
                self.db.query(SubscriptionModel, User)
                .outerjoin(User, User.id == SubscriptionModel.user_id)
                .filter(SubscriptionModel.is_active == True)  # noqa: E712
                .order_by(SubscriptionModel.next_payment_date, SubscriptionModel.id)
                .all()
            )
            history = self._load_history([sub.id for sub, _ in rows])
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Failed to load active subscriptions: {exc}") from exc

        return [
            (self._to_domain(sub, history.get(sub.id, [])), owner_from_user(user))
            for sub, user in rows
        ]

    def get(self, subscription_id: int) -> Subscription | None:
        """
        Re-reads the row even if it is already in the session, so changes
        committed by other sessions since the last load are visible.
        """
        try:
            row = self.db.get(SubscriptionModel, subscription_id, populate_existing=True)
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Failed to load subscription {subscription_id}: {exc}") from exc
        if row is None:
            return None
        return self._to_domain(row, self._load_history([row.id]).get(row.id, []))

    def get_for_user(self, subscription_id: int, user_id: int) -> Subscription:
        """
        Raises:
            SubscriptionNotFoundError: missing, or owned by another user
        """
        row = self.db.query(SubscriptionModel).filter(
            SubscriptionModel.id == subscription_id,
            SubscriptionModel.user_id == user_id,
        ).first()
        if row is None:
            raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")
        return self._to_domain(row, self._load_history([row.id]).get(row.id, []))

    def list_for_user(
        self,
        user_id: int,
        is_active: bool | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int | None = 10,
    ) -> tuple[list[Subscription], int]:
        """Page of a user's subscriptions ordered by next payment date, plus the total count. limit=None: all."""
        q = self.db.query(SubscriptionModel).filter(SubscriptionModel.user_id == user_id)
        if is_active is not None:
            q = q.filter(SubscriptionModel.is_active == is_active)
        if search:
            pattern = f"%{search.strip()}%"
            q = q.filter(or_(
                SubscriptionModel.service_name.ilike(pattern),
                SubscriptionModel.description.ilike(pattern),
            ))

        total = q.count()
        rows = (
            q.order_by(SubscriptionModel.next_payment_date, SubscriptionModel.id)
            .offset(offset)
            .limit(limit)
            .all()
        )
        history = self._load_history([r.id for r in rows])
        return [self._to_domain(r, history.get(r.id, [])) for r in rows], total

    # ── WRITE ─────────────────────────────────────────────

    def save(self, subscription: Subscription) -> Subscription:
        try:
            if subscription.id is None:
                row = SubscriptionModel()
                self._apply(row, subscription)
                self.db.add(row)
            else:
                row = self.db.get(SubscriptionModel, subscription.id)
                if row is None:
                    raise SubscriptionNotFoundError(f"Subscription {subscription.id} not found")
                if subscription.version is not None and row.version != subscription.version:
                    raise ConcurrentModificationError(
                        f"Subscription {subscription.id} was modified concurrently"
                    )
                self._apply(row, subscription)
            self.db.flush()

            new_records = [p for p in subscription.payment_history if p.id is None]
            payment_rows = [
                SubscriptionPaymentModel(
                    subscription_id=row.id,
                    paid_on=p.paid_on,
                    amount=p.amount,
                    status=p.status,
                    notes=p.notes,
                )
                for p in new_records
            ]
            self.db.add_all(payment_rows)
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            raise ConcurrentModificationError(
                f"Subscription {subscription.id} was modified concurrently"
            ) from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise RepositoryError(f"Failed to save subscription {subscription.id}: {exc}") from exc
        except (ConcurrentModificationError, SubscriptionNotFoundError):
            self.db.rollback()
            raise

        subscription.id = row.id
        subscription.version = row.version
        subscription.created_at = row.created_at
        subscription.updated_at = row.updated_at
        for record, payment_row in zip(new_records, payment_rows):
            record.id = payment_row.id
        return subscription

    def delete_for_user(self, subscription_id: int, user_id: int) -> None:
        row = self.db.query(SubscriptionModel).filter(
            SubscriptionModel.id == subscription_id,
            SubscriptionModel.user_id == user_id,
        ).first()
        if row is None:
            raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")

        self.db.query(SubscriptionPaymentModel).filter(
            SubscriptionPaymentModel.subscription_id == subscription_id,
        ).delete(synchronize_session=False)
        self.db.delete(row)
        self.db.commit()

    def deactivate_all_for_user(self, user_id: int) -> int:
        """Soft-delete cascade for account deactivation. Returns rows changed."""
        changed = (
            self.db.query(SubscriptionModel)
            .filter(
                SubscriptionModel.user_id == user_id,
                SubscriptionModel.is_active == True,  # noqa: E712
            )
            # bulk UPDATE bypasses version_id_col, bump it by hand
            .update(
                {
                    SubscriptionModel.is_active: False,
                    SubscriptionModel.version: SubscriptionModel.version + 1,
                },
                synchronize_session="fetch",
            )
        )
        self.db.commit()
        return changed

    # ── MAPPING ───────────────────────────────────────────

    def _load_history(self, subscription_ids: list[int]) -> dict[int, list[PaymentRecord]]:
        if not subscription_ids:
            return {}
        rows = (
            self.db.query(SubscriptionPaymentModel)
            .filter(SubscriptionPaymentModel.subscription_id.in_(subscription_ids))
            .order_by(SubscriptionPaymentModel.paid_on, SubscriptionPaymentModel.id)
            .all()
        )
        out: dict[int, list[PaymentRecord]] = defaultdict(list)
        for r in rows:
            out[r.subscription_id].append(PaymentRecord(
                id=r.id,
                paid_on=r.paid_on,
                amount=r.amount,
                status=r.status,
                notes=r.notes,
            ))
        return out

    @staticmethod
    def _to_domain(row: SubscriptionModel, history: list[PaymentRecord]) -> Subscription:
        return Subscription(
            id=row.id,
            version=row.version,
            tags=list(row.tags or []),
            payment_history=list(history),
            created_at=row.created_at,
            updated_at=row.updated_at,
            **{name: getattr(row, name) for name in _COPIED_FIELDS},
        )

    @staticmethod
    def _apply(row: SubscriptionModel, subscription: Subscription) -> None:
        for name in _COPIED_FIELDS:
            setattr(row, name, getattr(subscription, name))
        row.tags = list(subscription.tags)
