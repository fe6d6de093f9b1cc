"""
Payment reminder batch - runs daily, emails every subscription whose reminder is due.

For each active subscription:
  - skip if the owner is missing or deactivated
  - skip unless reminder_policy.is_due(subscription, today)
  - under the record lock, re-read it and check the policy again, so a
    renew that landed after the fetch suppresses the reminder
  - send via the injected Notifier
  - on success mark last_reminder_sent = today and save
  - on failure count it and move on; last_reminder_sent stays untouched,
    so the next run retries

A single failing item never aborts the batch. Only a failure to load the
subscriptions in the first place propagates.
"""
import logging
import threading
import time
from dataclasses import dataclass, asdict
from datetime import date
from typing import Callable

from subtracker.application.ports import (
    SubscriptionRepository, Notifier, SubscriptionOwner, NotificationResult,
)
from subtracker.application.record_locks import RecordLockRegistry, subscription_locks
from subtracker.domain.reminder_policy import is_due
from subtracker.domain.subscription import Subscription

logger = logging.getLogger(__name__)


class ReminderBatchAlreadyRunning(RuntimeError):
    """Another run sharing the same run lock has not finished yet"""
    pass


@dataclass
class ReminderBatchResult:
    processed: int = 0  # active subscriptions examined, skipped ones included
    sent: int = 0
    failed: int = 0
    skipped: int = 0    # owner missing or inactive

    def as_dict(self) -> dict:
        return asdict(self)


class ReminderBatchProcessor:
    """
    Args:
        repository: source of active subscriptions and sink for reminder marks
        notifier: delivers one reminder
        send_delay_seconds: pause after every send attempt (mail server courtesy)
        locks: per-subscription locks shared with the API
        run_lock: prevents overlapping runs; share one between processors
            that work on the same subscriptions
        sleep: injectable for tests
    """

    def __init__(
        self,
        repository: SubscriptionRepository,
        notifier: Notifier,
        send_delay_seconds: float = 1.0,
        locks: RecordLockRegistry | None = None,
        run_lock: "threading.Lock | None" = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repository = repository
        self.notifier = notifier
        self.send_delay_seconds = send_delay_seconds
        self.locks = locks or subscription_locks
        self._sleep = sleep
        self._run_lock = run_lock or threading.Lock()

    def run(self, today: date | None = None) -> ReminderBatchResult:
        """
        Raises:
            ReminderBatchAlreadyRunning: overlapping call
            RepositoryError: active subscriptions could not be loaded
        """
        if not self._run_lock.acquire(blocking=False):
            raise ReminderBatchAlreadyRunning("Reminder batch is already running")
        try:
            return self._run(today or date.today())
        finally:
            self._run_lock.release()

    def _run(self, today: date) -> ReminderBatchResult:
        logger.info("Checking subscriptions for payment reminders (today=%s)", today)
        result = ReminderBatchResult()

        candidates = self.repository.find_active_subscriptions()
        if not candidates:
            logger.info("No active subscriptions found")
            return result

        for subscription, owner in candidates:
            result.processed += 1

            if owner is None or not owner.is_active:
                logger.info("Skipping subscription id=%s: owner missing or inactive", subscription.id)
                result.skipped += 1
                continue

            if not is_due(subscription, today):
                continue

            outcome = self._process_one(subscription, owner, today)
            if outcome is None:
                continue
            if outcome:
                result.sent += 1
            else:
                result.failed += 1

            if self.send_delay_seconds > 0:
                self._sleep(self.send_delay_seconds)

        logger.info(
            "Reminder summary: processed=%d sent=%d failed=%d skipped=%d",
            result.processed, result.sent, result.failed, result.skipped,
        )
        return result

    def _process_one(self, subscription: Subscription, owner: SubscriptionOwner, today: date) -> bool | None:
        """
        Send and mark one reminder. Never raises.

        Returns True when sent, False when the send or the mark failed, None when
        the fresh copy read under the record lock is no longer due (renewed,
        deactivated, deleted or already reminded since the batch loaded it).
        """
        with self.locks.hold(subscription.id):
            try:
                current = self.repository.get(subscription.id)
            except Exception:
                logger.exception("Reminder reload failed for subscription id=%s", subscription.id)
                return False

            if current is None or not is_due(current, today):
                logger.info("Subscription id=%s changed since it was loaded, not due anymore", subscription.id)
                return None

            logger.info(
                "Sending reminder for subscription id=%s (%s) to %s",
                current.id, current.service_name, owner.email,
            )
            try:
                outcome = self.notifier.send(owner, current)
            except Exception:
                logger.exception("Reminder send failed for subscription id=%s", current.id)
                return False

            if not outcome.success:
                logger.error(
                    "Reminder send failed for subscription id=%s: %s",
                    current.id, outcome.error,
                )
                return False

            current.mark_reminder_sent(today)
            try:
                self.repository.save(current)
            except Exception:
                logger.exception(
                    "Reminder sent but marking failed for subscription id=%s", current.id,
                )
                return False

        logger.info(
            "Reminder sent for subscription id=%s (message_id=%s)",
            current.id, outcome.message_id,
        )
        return True


def send_single_reminder(
    notifier: Notifier, owner: SubscriptionOwner, subscription: Subscription,
) -> NotificationResult:
    """
    On-demand reminder for one subscription (user action).

    Bypasses the policy and does not touch last_reminder_sent, so the daily
    batch still sends its own reminder.
    """
    try:
        return notifier.send(owner, subscription)
    except Exception as exc:
        logger.exception("Manual reminder failed for subscription id=%s", subscription.id)
        return NotificationResult(success=False, error=str(exc))
