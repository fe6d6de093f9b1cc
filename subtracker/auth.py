from passlib.context import CryptContext
from sqlalchemy.orm import Session

from subtracker.infrastructure.db.models import User

# pbkdf2_sha256 - primary (no native deps)
# bcrypt - accepted for imported hashes, rehashed on next login
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated=["bcrypt"])


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == email.strip().lower()).first()


def get_user_by_login(db: Session, login: str) -> User | None:
    """Login accepts either the email or the username."""
    login = login.strip().lower()
    return db.query(User).filter(
        (User.email == login) | (User.username == login)
    ).first()
