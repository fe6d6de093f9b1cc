"""
Tests for the payment reminder batch.

Covers:
  - One failing send does not abort the batch (3 subs, 2nd throws → 2 sent, 1 failed)
  - Only successful sends mark last_reminder_sent
  - Missing / inactive owners are skipped but counted as processed
  - Not-due subscriptions are processed, not sent
  - Failure to mark after a successful send counts as failed
  - A renew or delete that lands after the fetch suppresses the reminder
  - Overlapping runs are refused
  - Load failure propagates
  - Delay between sends goes through the injected sleep
"""
import copy
import importlib
import threading
import pytest
from datetime import date, timedelta
from decimal import Decimal

from subtracker.application.ports import (
    SubscriptionRepository, Notifier, SubscriptionOwner, NotificationResult,
    NotifierError, RepositoryError,
)
from subtracker.application.record_locks import RecordLockRegistry
from subtracker.application.reminder_batch import (
    ReminderBatchProcessor, ReminderBatchAlreadyRunning, send_single_reminder,
)
from subtracker.domain.subscription import Subscription


TODAY = date(2024, 6, 10)
OWNER = SubscriptionOwner(id=1, email="alice@example.com", full_name="Alice")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeRepository(SubscriptionRepository):
    def __init__(self, rows, fail_save_for=()):
        self.rows = rows
        self.saved = []
        self.fail_save_for = set(fail_save_for)

    def find_active_subscriptions(self):
        return [(s, o) for s, o in self.rows if s.is_active]

    def get(self, subscription_id):
        for s, _ in self.rows:
            if s.id == subscription_id:
                return s
        return None

    def save(self, subscription):
        if subscription.id in self.fail_save_for:
            raise RepositoryError("disk full")
        self.saved.append(subscription.id)
        return subscription


class FakeNotifier(Notifier):
    def __init__(self, raise_for=(), reject_for=()):
        self.calls = []
        self.raise_for = set(raise_for)
        self.reject_for = set(reject_for)

    def send(self, owner, subscription):
        self.calls.append(subscription.id)
        if subscription.id in self.raise_for:
            raise NotifierError("SMTP timeout")
        if subscription.id in self.reject_for:
            return NotificationResult(success=False, error="mailbox unavailable")
        return NotificationResult(success=True, message_id=f"<{subscription.id}@test>")


def _sub(sub_id, *, days_ahead=3, is_active=True, last_reminder_sent=None) -> Subscription:
    return Subscription(
        id=sub_id,
        user_id=OWNER.id,
        service_name=f"service-{sub_id}",
        cost=Decimal("10"),
        billing_cycle="monthly",
        start_date=TODAY - timedelta(days=30),
        next_payment_date=TODAY + timedelta(days=days_ahead),
        is_active=is_active,
        last_reminder_sent=last_reminder_sent,
        version=1,
    )


def _processor(repo, notifier, **kwargs) -> ReminderBatchProcessor:
    kwargs.setdefault("send_delay_seconds", 0)
    kwargs.setdefault("locks", RecordLockRegistry())
    return ReminderBatchProcessor(repo, notifier, **kwargs)


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

def test_failure_isolation():
    """The 2nd send throws: the other two are still sent and marked."""
    subs = [_sub(1), _sub(2), _sub(3)]
    repo = FakeRepository([(s, OWNER) for s in subs])
    notifier = FakeNotifier(raise_for={2})

    result = _processor(repo, notifier).run(TODAY)

    assert (result.processed, result.sent, result.failed) == (3, 2, 1)
    assert notifier.calls == [1, 2, 3]
    assert subs[0].last_reminder_sent == TODAY
    assert subs[1].last_reminder_sent is None
    assert subs[2].last_reminder_sent == TODAY
    assert repo.saved == [1, 3]


def test_unsuccessful_result_counts_as_failed():
    sub = _sub(1)
    repo = FakeRepository([(sub, OWNER)])

    result = _processor(repo, FakeNotifier(reject_for={1})).run(TODAY)

    assert result.failed == 1
    assert result.sent == 0
    assert sub.last_reminder_sent is None


def test_missing_or_inactive_owner_skipped():
    inactive_owner = SubscriptionOwner(id=2, email="bob@example.com", full_name="Bob", is_active=False)
    repo = FakeRepository([(_sub(1), None), (_sub(2), inactive_owner), (_sub(3), OWNER)])
    notifier = FakeNotifier()

    result = _processor(repo, notifier).run(TODAY)

    assert result.as_dict() == {"processed": 3, "sent": 1, "failed": 0, "skipped": 2}
    assert notifier.calls == [3]


def test_not_due_processed_but_not_sent():
    repo = FakeRepository([
        (_sub(1, days_ahead=30), OWNER),
        (_sub(2, last_reminder_sent=TODAY), OWNER),
        (_sub(3, days_ahead=-5, last_reminder_sent=TODAY - timedelta(days=1)), OWNER),
    ])
    notifier = FakeNotifier()

    result = _processor(repo, notifier).run(TODAY)

    assert result.processed == 3
    assert result.sent == 1
    assert notifier.calls == [3]


def test_inactive_subscriptions_not_loaded():
    repo = FakeRepository([(_sub(1, is_active=False), OWNER)])
    result = _processor(repo, FakeNotifier()).run(TODAY)
    assert result.processed == 0


def test_second_run_same_day_sends_nothing():
    subs = [_sub(1), _sub(2)]
    repo = FakeRepository([(s, OWNER) for s in subs])
    notifier = FakeNotifier()
    processor = _processor(repo, notifier)

    processor.run(TODAY)
    result = processor.run(TODAY)

    assert result.sent == 0
    assert notifier.calls == [1, 2]


def test_failed_send_retried_next_run():
    sub = _sub(1)
    repo = FakeRepository([(sub, OWNER)])

    _processor(repo, FakeNotifier(raise_for={1})).run(TODAY)
    result = _processor(repo, FakeNotifier()).run(TODAY)

    assert result.sent == 1
    assert sub.last_reminder_sent == TODAY


def test_mark_failure_counts_as_failed():
    subs = [_sub(1), _sub(2)]
    repo = FakeRepository([(s, OWNER) for s in subs], fail_save_for={1})

    result = _processor(repo, FakeNotifier()).run(TODAY)

    assert result.sent == 1
    assert result.failed == 1


def test_load_failure_propagates():
    class BrokenRepository(FakeRepository):
        def find_active_subscriptions(self):
            raise RepositoryError("database is down")

    with pytest.raises(RepositoryError):
        _processor(BrokenRepository([]), FakeNotifier()).run(TODAY)


def test_delay_between_sends():
    sleeps = []
    repo = FakeRepository([(_sub(1), OWNER), (_sub(2), OWNER), (_sub(3, days_ahead=30), OWNER)])

    _processor(repo, FakeNotifier(raise_for={2}), send_delay_seconds=1.5, sleep=sleeps.append).run(TODAY)

    # one pause per send attempt, none for the not-due one
    assert sleeps == [1.5, 1.5]


def test_overlapping_run_refused():
    run_lock = threading.Lock()
    processor = _processor(FakeRepository([]), FakeNotifier(), run_lock=run_lock)

    with run_lock:
        with pytest.raises(ReminderBatchAlreadyRunning):
            processor.run(TODAY)

    # released again afterwards
    assert processor.run(TODAY).processed == 0


def test_run_waits_for_record_lock():
    """A batch send blocks while a manual mutation holds the same record."""
    locks = RecordLockRegistry()
    sub = _sub(1)
    repo = FakeRepository([(sub, OWNER)])
    processor = _processor(repo, FakeNotifier(), locks=locks)

    done = threading.Event()

    def _run():
        processor.run(TODAY)
        done.set()

    with locks.hold(1):
        worker = threading.Thread(target=_run)
        worker.start()
        assert not done.wait(0.2)
        assert sub.last_reminder_sent is None

    worker.join(timeout=5)
    assert done.is_set()
    assert sub.last_reminder_sent == TODAY


# ---------------------------------------------------------------------------
# Manual single reminder
# ---------------------------------------------------------------------------

def test_send_single_reminder_does_not_mark():
    sub = _sub(1, days_ahead=25)
    outcome = send_single_reminder(FakeNotifier(), OWNER, sub)
    assert outcome.success is True
    assert sub.last_reminder_sent is None


def test_send_single_reminder_wraps_exception():
    outcome = send_single_reminder(FakeNotifier(raise_for={1}), OWNER, _sub(1))
    assert outcome.success is False
    assert "SMTP timeout" in outcome.error


# ---------------------------------------------------------------------------
# Changes between fetch and send
# ---------------------------------------------------------------------------

class SnapshotRepository(FakeRepository):
    """Hands the batch copies, then lets `after_fetch` change the stored records."""

    def __init__(self, rows, after_fetch):
        super().__init__(rows)
        self.after_fetch = after_fetch

    def find_active_subscriptions(self):
        snapshot = [(copy.deepcopy(s), o) for s, o in self.rows if s.is_active]
        self.after_fetch(self)
        return snapshot


def test_renew_after_fetch_suppresses_reminder():
    stored = _sub(1, days_ahead=3)
    old_next = stored.next_payment_date

    def _renew(repo):
        repo.get(1).renew(today=TODAY)

    repo = SnapshotRepository([(stored, OWNER)], after_fetch=_renew)
    notifier = FakeNotifier()

    result = _processor(repo, notifier).run(TODAY)

    assert result.as_dict() == {"processed": 1, "sent": 0, "failed": 0, "skipped": 0}
    assert notifier.calls == []
    assert stored.next_payment_date > old_next
    assert stored.last_reminder_sent is None
    assert repo.saved == []


def test_delete_after_fetch_suppresses_reminder():
    def _delete(repo):
        repo.rows.clear()

    repo = SnapshotRepository([(_sub(1), OWNER)], after_fetch=_delete)
    notifier = FakeNotifier()

    result = _processor(repo, notifier).run(TODAY)

    assert (result.processed, result.sent, result.failed) == (1, 0, 0)
    assert notifier.calls == []


def test_reminded_elsewhere_after_fetch_not_sent_twice():
    def _mark(repo):
        repo.get(1).mark_reminder_sent(TODAY)

    repo = SnapshotRepository([(_sub(1), OWNER)], after_fetch=_mark)
    notifier = FakeNotifier()

    _processor(repo, notifier).run(TODAY)

    assert notifier.calls == []


def test_reload_failure_counts_as_failed():
    class FlakyRepository(FakeRepository):
        def get(self, subscription_id):
            raise RepositoryError("connection reset")

    notifier = FakeNotifier()
    result = _processor(FlakyRepository([(_sub(1), OWNER)]), notifier).run(TODAY)

    assert result.failed == 1
    assert notifier.calls == []


def test_sends_the_reloaded_copy():
    """Edits committed after the fetch (e.g. a new name) reach the email."""
    def _rename(repo):
        repo.get(1).service_name = "Netflix Premium"

    class NameRecordingNotifier(FakeNotifier):
        def send(self, owner, subscription):
            self.calls.append(subscription.service_name)
            return NotificationResult(success=True)

    repo = SnapshotRepository([(_sub(1), OWNER)], after_fetch=_rename)
    notifier = NameRecordingNotifier()

    _processor(repo, notifier).run(TODAY)

    assert notifier.calls == ["Netflix Premium"]


# ---------------------------------------------------------------------------
# Module import
# ---------------------------------------------------------------------------

def test_module_imports_and_accepts_real_lock():
    module = importlib.import_module("subtracker.application.reminder_batch")
    processor = module.ReminderBatchProcessor(
        FakeRepository([]), FakeNotifier(), send_delay_seconds=0, run_lock=threading.Lock(),
    )
    assert processor.run(TODAY).processed == 0
