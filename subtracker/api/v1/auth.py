"""
Authentication routes (register, login, logout)
"""
from fastapi import APIRouter, Request, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from subtracker.api.deps import get_db
from subtracker.application.accounts import (
    RegisterUserUseCase, AuthenticateUserUseCase, AccountValidationError, AuthenticationError,
)


router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    full_name: str
    username: str
    email: str
    password: str


class LoginRequest(BaseModel):
    login: str  # email or username
    password: str


class UserResponse(BaseModel):
    id: int
    full_name: str
    username: str
    email: str


@router.post("/register", response_model=UserResponse, status_code=201)
def register(request: Request, req: RegisterRequest, db: Session = Depends(get_db)):
    """Create an account and log it in"""
    try:
        user = RegisterUserUseCase(db).execute(
            full_name=req.full_name,
            username=req.username,
            email=req.email,
            password=req.password,
        )
    except AccountValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    request.session["user_id"] = user.id
    return UserResponse(id=user.id, full_name=user.full_name, username=user.username, email=user.email)


@router.post("/login", response_model=UserResponse)
def login(request: Request, req: LoginRequest, db: Session = Depends(get_db)):
    try:
        user = AuthenticateUserUseCase(db).execute(login=req.login, password=req.password)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))

    request.session["user_id"] = user.id
    return UserResponse(id=user.id, full_name=user.full_name, username=user.username, email=user.email)


@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return {"status": "logged_out"}
