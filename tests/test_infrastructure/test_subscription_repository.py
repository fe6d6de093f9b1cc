"""
Tests for the SQLAlchemy subscription repository
"""
import pytest
from datetime import date, timedelta
from decimal import Decimal

from subtracker.application.ports import ConcurrentModificationError
from subtracker.domain.subscription import Subscription
from subtracker.infrastructure.db.models import SubscriptionModel
from subtracker.infrastructure.db.subscription_repository import SqlAlchemySubscriptionRepository


def _new(user_id, **overrides) -> Subscription:
    kwargs = dict(
        user_id=user_id, service_name="Netflix", cost=Decimal("10"),
        start_date=date(2024, 5, 15), billing_cycle="monthly",
    )
    kwargs.update(overrides)
    return Subscription.create(**kwargs)


def test_stale_write_rejected(db_session, user):
    repo = SqlAlchemySubscriptionRepository(db_session)
    sub = repo.save(_new(user.id))

    first = repo.get(sub.id)
    second = repo.get(sub.id)

    first.renew(today=date(2024, 6, 1))
    repo.save(first)

    second.mark_reminder_sent(date(2024, 6, 1))
    with pytest.raises(ConcurrentModificationError):
        repo.save(second)

    # the renewal survived, the stale mark did not
    current = repo.get(sub.id)
    assert current.next_payment_date == date(2024, 7, 15)
    assert current.last_reminder_sent is None
    assert current.version == 2


def test_find_active_subscriptions_includes_owner(db_session, user, make_user):
    repo = SqlAlchemySubscriptionRepository(db_session)
    ghost = make_user(username="ghost", email="ghost@example.com", is_active=False)

    later = repo.save(_new(user.id, start_date=date(2024, 6, 1)))
    sooner = repo.save(_new(ghost.id, start_date=date(2024, 5, 1)))
    off = _new(user.id)
    off.deactivate()
    repo.save(off)

    rows = repo.find_active_subscriptions()

    assert [s.id for s, _ in rows] == [sooner.id, later.id]
    owners = {s.id: o for s, o in rows}
    assert owners[later.id].email == "alice@example.com"
    assert owners[sooner.id].is_active is False


def test_reminder_mark_roundtrip(db_session, user):
    repo = SqlAlchemySubscriptionRepository(db_session)
    sub = repo.save(_new(user.id))
    today = sub.next_payment_date - timedelta(days=3)

    sub.mark_reminder_sent(today)
    repo.save(sub)

    assert repo.get(sub.id).last_reminder_sent == today
    assert repo.get(sub.id).is_reminder_due(today) is False


def test_get_rereads_row_changed_behind_the_session(db_session, user):
    """get() must not serve the stale copy cached by an earlier load."""
    repo = SqlAlchemySubscriptionRepository(db_session)
    sub = repo.save(_new(user.id))
    [(loaded, _)] = repo.find_active_subscriptions()
    assert loaded.next_payment_date == date(2024, 6, 15)

    # bypasses the identity map, like a write from another session
    db_session.query(SubscriptionModel).filter(SubscriptionModel.id == sub.id).update(
        {SubscriptionModel.next_payment_date: date(2024, 7, 15)},
        synchronize_session=False,
    )

    fresh = repo.get(sub.id)
    assert fresh.next_payment_date == date(2024, 7, 15)
    assert fresh.is_reminder_due(date(2024, 6, 12)) is False


def test_get_missing_returns_none(db_session):
    assert SqlAlchemySubscriptionRepository(db_session).get(12345) is None
