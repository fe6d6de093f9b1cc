"""
Account use cases - registration, login, profile, password, deactivation.
"""
import logging
import re
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from subtracker.auth import hash_password, verify_password, get_user_by_email, get_user_by_login
from subtracker.infrastructure.db.models import User
from subtracker.infrastructure.db.subscription_repository import SqlAlchemySubscriptionRepository

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")
_USERNAME_RE = re.compile(r"^[a-z0-9_.]{3,30}$")
MIN_PASSWORD_LENGTH = 6


class AccountValidationError(ValueError):
    pass


class AuthenticationError(Exception):
    pass


def _normalize_email(email: str) -> str:
    email = email.strip().lower()
    if not _EMAIL_RE.match(email):
        raise AccountValidationError("Invalid email address")
    return email


def _normalize_full_name(full_name: str) -> str:
    full_name = full_name.strip()
    if not (2 <= len(full_name) <= 100):
        raise AccountValidationError("Full name must be 2-100 characters")
    return full_name


class RegisterUserUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, full_name: str, username: str, email: str, password: str) -> User:
        full_name = _normalize_full_name(full_name)
        username = username.strip().lower()
        if not _USERNAME_RE.match(username):
            raise AccountValidationError(
                "Username must be 3-30 characters: letters, digits, '_' or '.'"
            )
        email = _normalize_email(email)
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AccountValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        if get_user_by_email(self.db, email):
            raise AccountValidationError("Email is already registered")
        if self.db.query(User).filter(User.username == username).first():
            raise AccountValidationError("Username is already taken")

        user = User(
            full_name=full_name,
            username=username,
            email=email,
            password_hash=hash_password(password),
            is_active=True,
        )
        self.db.add(user)
        self.db.commit()
        logger.info("Registered user id=%s", user.id)
        return user


class AuthenticateUserUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, login: str, password: str) -> User:
        """
        Raises:
            AuthenticationError: unknown login, wrong password, or deactivated account
        """
        user = get_user_by_login(self.db, login)
        if not user or not verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid login or password")
        if not user.is_active:
            raise AuthenticationError("Account is deactivated")

        user.last_login_at = datetime.now(timezone.utc)
        self.db.commit()
        return user


class UpdateProfileUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, user: User, full_name: str | None = None, email: str | None = None) -> User:
        if full_name is not None:
            user.full_name = _normalize_full_name(full_name)
        if email is not None:
            email = _normalize_email(email)
            if email != user.email:
                other = get_user_by_email(self.db, email)
                if other and other.id != user.id:
                    raise AccountValidationError("Email is already used by another account")
                user.email = email
        self.db.commit()
        return user


class ChangePasswordUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, user: User, current_password: str, new_password: str) -> None:
        if not verify_password(current_password, user.password_hash):
            raise AccountValidationError("Current password is incorrect")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise AccountValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        user.password_hash = hash_password(new_password)
        self.db.commit()


class DeactivateAccountUseCase:
    """Deactivate the user and soft-delete (is_active = False) all their subscriptions."""

    def __init__(self, db: Session):
        self.db = db

    def execute(self, user: User, password: str) -> int:
        if not verify_password(password, user.password_hash):
            raise AccountValidationError("Password is incorrect")
        user.is_active = False
        self.db.flush()
        changed = SqlAlchemySubscriptionRepository(self.db).deactivate_all_for_user(user.id)
        logger.info("Deactivated user id=%s and %d subscription(s)", user.id, changed)
        return changed
