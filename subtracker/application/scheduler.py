"""
Background scheduler - runs periodic jobs inside the FastAPI process.

Jobs:
  - Payment reminders (daily, REMINDER_CRON_HOUR:REMINDER_CRON_MINUTE, default 09:00)
"""
import logging
import threading
from datetime import date

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from subtracker.application.ports import Notifier
from subtracker.application.reminder_batch import (
    ReminderBatchProcessor, ReminderBatchAlreadyRunning, ReminderBatchResult,
)
from subtracker.config import get_settings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True)

# Shared by the cron job and the manual API trigger: one batch at a time per process
_reminder_run_lock = threading.Lock()


def build_reminder_processor(db: Session, notifier: Notifier | None = None) -> ReminderBatchProcessor:
    from subtracker.infrastructure.db.subscription_repository import SqlAlchemySubscriptionRepository
    from subtracker.infrastructure.email.notifier import SmtpReminderNotifier

    settings = get_settings()
    return ReminderBatchProcessor(
        repository=SqlAlchemySubscriptionRepository(db),
        notifier=notifier or SmtpReminderNotifier(settings),
        send_delay_seconds=settings.REMINDER_SEND_DELAY_SECONDS,
        run_lock=_reminder_run_lock,
    )


def run_payment_reminders(db: Session, today: date | None = None) -> ReminderBatchResult:
    """
    Raises:
        ReminderBatchAlreadyRunning
        RepositoryError: subscriptions could not be loaded
    """
    return build_reminder_processor(db).run(today)


def _run_payment_reminders():
    from subtracker.infrastructure.db.session import session_scope

    try:
        with session_scope() as db:
            run_payment_reminders(db)
    except ReminderBatchAlreadyRunning:
        logger.warning("Payment reminders job skipped: previous run still in progress")
    except Exception:
        logger.exception("Payment reminders job failed")


def start_scheduler():
    """Start the background scheduler with all periodic jobs."""
    settings = get_settings()

    scheduler.add_job(
        _run_payment_reminders,
        CronTrigger(hour=settings.REMINDER_CRON_HOUR, minute=settings.REMINDER_CRON_MINUTE),
        id="payment_reminders",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info(
        "Scheduler started: payment_reminders (daily %02d:%02d)",
        settings.REMINDER_CRON_HOUR, settings.REMINDER_CRON_MINUTE,
    )


def shutdown_scheduler():
    """Gracefully stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
