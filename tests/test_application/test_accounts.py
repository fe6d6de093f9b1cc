"""
Tests for account use cases (register, login, profile, password, deactivation)
"""
import pytest
from datetime import date
from decimal import Decimal

from subtracker.application.accounts import (
    RegisterUserUseCase, AuthenticateUserUseCase, UpdateProfileUseCase,
    ChangePasswordUseCase, DeactivateAccountUseCase,
    AccountValidationError, AuthenticationError,
)
from subtracker.application.subscriptions import CreateSubscriptionUseCase
from subtracker.auth import verify_password
from subtracker.infrastructure.db.models import SubscriptionModel


class TestRegister:
    def test_register_normalizes(self, db_session):
        user = RegisterUserUseCase(db_session).execute(
            full_name="  Alice Liddell ", username="Alice", email="ALICE@Example.com", password="secret123",
        )
        assert user.id is not None
        assert user.username == "alice"
        assert user.email == "alice@example.com"
        assert user.full_name == "Alice Liddell"
        assert verify_password("secret123", user.password_hash)

    def test_duplicate_email(self, db_session, user):
        with pytest.raises(AccountValidationError, match="Email"):
            RegisterUserUseCase(db_session).execute(
                full_name="Other", username="other", email="alice@example.com", password="secret123",
            )

    def test_duplicate_username(self, db_session, user):
        with pytest.raises(AccountValidationError, match="Username"):
            RegisterUserUseCase(db_session).execute(
                full_name="Other", username="alice", email="other@example.com", password="secret123",
            )

    @pytest.mark.parametrize("kwargs", [
        {"email": "not-an-email"},
        {"username": "a"},
        {"password": "123"},
        {"full_name": "A"},
    ])
    def test_invalid_input(self, db_session, kwargs):
        data = dict(full_name="Bob Smith", username="bob", email="bob@example.com", password="secret123")
        data.update(kwargs)
        with pytest.raises(AccountValidationError):
            RegisterUserUseCase(db_session).execute(**data)


class TestAuthenticate:
    def test_login_by_email_or_username(self, db_session, user, user_password):
        assert AuthenticateUserUseCase(db_session).execute("alice@example.com", user_password).id == user.id
        logged = AuthenticateUserUseCase(db_session).execute("ALICE", user_password)
        assert logged.id == user.id
        assert logged.last_login_at is not None

    def test_wrong_password(self, db_session, user):
        with pytest.raises(AuthenticationError):
            AuthenticateUserUseCase(db_session).execute("alice", "wrong-password")

    def test_inactive_account(self, db_session, make_user, user_password):
        make_user(username="ghost", email="ghost@example.com", is_active=False)
        with pytest.raises(AuthenticationError, match="deactivated"):
            AuthenticateUserUseCase(db_session).execute("ghost", user_password)


def test_update_profile(db_session, user, make_user):
    make_user(username="bob", email="bob@example.com")

    UpdateProfileUseCase(db_session).execute(user, full_name="Alice L.", email="alice2@example.com")
    assert user.full_name == "Alice L."
    assert user.email == "alice2@example.com"

    with pytest.raises(AccountValidationError):
        UpdateProfileUseCase(db_session).execute(user, email="bob@example.com")


def test_change_password(db_session, user, user_password):
    with pytest.raises(AccountValidationError):
        ChangePasswordUseCase(db_session).execute(user, "wrong", "newsecret")

    ChangePasswordUseCase(db_session).execute(user, user_password, "newsecret")
    assert verify_password("newsecret", user.password_hash)


def test_deactivate_account_cascades(db_session, user, make_user, user_password):
    other = make_user(username="bob", email="bob@example.com")
    for owner in (user, user, other):
        CreateSubscriptionUseCase(db_session).execute(
            user_id=owner.id, service_name="svc", cost=Decimal("1"),
            billing_cycle="monthly", start_date=date(2024, 1, 1),
        )

    changed = DeactivateAccountUseCase(db_session).execute(user, user_password)

    assert changed == 2
    assert user.is_active is False
    rows = db_session.query(SubscriptionModel).filter_by(user_id=user.id).all()
    assert all(not r.is_active for r in rows)
    assert all(r.version == 2 for r in rows)
    assert db_session.query(SubscriptionModel).filter_by(user_id=other.id).one().is_active is True


def test_deactivate_account_wrong_password(db_session, user):
    with pytest.raises(AccountValidationError):
        DeactivateAccountUseCase(db_session).execute(user, "wrong")
    assert user.is_active is True
