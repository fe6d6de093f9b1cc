"""
User profile API endpoints
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from subtracker.api.deps import get_db, get_current_user
from subtracker.api.v1.subscriptions import _to_response
from subtracker.application.accounts import (
    UpdateProfileUseCase, ChangePasswordUseCase, DeactivateAccountUseCase, AccountValidationError,
)
from subtracker.application.subscriptions import compute_user_stats
from subtracker.infrastructure.db.models import User
from subtracker.infrastructure.db.subscription_repository import SqlAlchemySubscriptionRepository


router = APIRouter(prefix="/api/v1/users", tags=["users"])


class UpdateProfileRequest(BaseModel):
    full_name: str | None = None
    email: str | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class DeleteAccountRequest(BaseModel):
    password: str


def _profile(user: User) -> dict:
    return {
        "id": user.id,
        "full_name": user.full_name,
        "username": user.username,
        "email": user.email,
        "last_login_at": user.last_login_at,
        "created_at": user.created_at,
    }


@router.get("/profile")
def get_profile(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Profile with subscription counters"""
    return {"user": _profile(user), "stats": compute_user_stats(db, user.id)}


@router.get("/export-data")
def export_data(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """JSON dump of the profile and every subscription, served as a file download"""
    subs, total = SqlAlchemySubscriptionRepository(db).list_for_user(user.id, limit=None)
    now = datetime.now(timezone.utc)
    data = {
        "user": _profile(user),
        "subscriptions": [_to_response(s) for s in subs],
        "export_date": now,
        "total_subscriptions": total,
        "active_subscriptions": sum(1 for s in subs if s.is_active),
    }
    filename = f"user_data_{user.username}_{now:%Y%m%d%H%M%S}.json"
    return JSONResponse(
        content=jsonable_encoder(data),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.put("/profile")
def update_profile(
    req: UpdateProfileRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        user = UpdateProfileUseCase(db).execute(user, full_name=req.full_name, email=req.email)
    except AccountValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"user": _profile(user)}


@router.put("/change-password")
def change_password(
    req: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        ChangePasswordUseCase(db).execute(user, req.current_password, req.new_password)
    except AccountValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "password_changed"}


@router.delete("/account")
def delete_account(
    request: Request,
    req: DeleteAccountRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Deactivate the account; every subscription of the user is deactivated too"""
    try:
        changed = DeactivateAccountUseCase(db).execute(user, req.password)
    except AccountValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    request.session.clear()
    return {"status": "deactivated", "subscriptions_deactivated": changed}
