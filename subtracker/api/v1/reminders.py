"""
Reminder API endpoints (manual batch trigger, SMTP self-test)
"""
import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException

from subtracker.api.deps import get_current_user, get_notifier, get_reminder_processor
from subtracker.application.ports import RepositoryError
from subtracker.application.reminder_batch import ReminderBatchProcessor, ReminderBatchAlreadyRunning
from subtracker.infrastructure.db.models import User
from subtracker.infrastructure.email.notifier import SmtpReminderNotifier


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/reminders", tags=["reminders"])


@router.post("/run")
def run_reminders(
    today: date | None = None,
    user: User = Depends(get_current_user),
    processor: ReminderBatchProcessor = Depends(get_reminder_processor),
):
    """Run the daily reminder batch now and return its counters"""
    logger.info("Manual reminder run requested by user id=%s", user.id)
    try:
        result = processor.run(today)
    except ReminderBatchAlreadyRunning as e:
        raise HTTPException(status_code=409, detail=str(e))
    except RepositoryError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return result.as_dict()


@router.post("/test-email")
def test_email(
    user: User = Depends(get_current_user),
    notifier: SmtpReminderNotifier = Depends(get_notifier),
):
    """Send a test message to the configured SMTP account"""
    outcome = notifier.send_test_email()
    if not outcome.success:
        raise HTTPException(status_code=502, detail=f"Test email failed: {outcome.error}")
    return {"status": "sent", "message_id": outcome.message_id}
