"""
FastAPI dependencies (DB session, authentication, notifier, reminder batch)
"""
from fastapi import Depends, Request, HTTPException, status
from sqlalchemy.orm import Session

from subtracker.application.ports import Notifier
from subtracker.application.reminder_batch import ReminderBatchProcessor
from subtracker.application.scheduler import build_reminder_processor
from subtracker.config import get_settings
from subtracker.infrastructure.db.session import get_db as _get_db
from subtracker.infrastructure.db.models import User
from subtracker.infrastructure.email.notifier import SmtpReminderNotifier


# Re-export get_db for convenience
get_db = _get_db


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """
    Current user from the session cookie (API endpoints)

    Raises:
        HTTPException(401): not logged in, unknown user, or deactivated account

    Usage:
        @router.get("/profile")
        def get_profile(user: User = Depends(get_current_user)):
            ...
    """
    user_id = request.session.get("user_id")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )
    if not user.is_active:
        request.session.clear()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is deactivated"
        )

    return user


def get_notifier() -> SmtpReminderNotifier:
    return SmtpReminderNotifier(get_settings())


def get_reminder_processor(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> ReminderBatchProcessor:
    return build_reminder_processor(db, notifier=notifier)
