"""
Pytest fixtures for testing
"""
import pytest
from sqlalchemy import create_engine, event, JSON
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from sqlalchemy.dialects.postgresql import JSONB

from subtracker.auth import hash_password
from subtracker.infrastructure.db.session import Base
from subtracker.infrastructure.db.models import User  # registers all tables on Base.metadata

TEST_PASSWORD = "secret123"


@pytest.fixture
def db_engine():
    """Create in-memory SQLite engine for tests, with JSONB→JSON mapping."""
    # StaticPool: one shared connection, so TestClient threads see the same database
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    # SQLite has no JSONB: remap to JSON
    for table in Base.metadata.tables.values():
        for col in table.columns:
            if isinstance(col.type, JSONB):
                col.type = JSON()
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Session:
    """Create database session for tests"""
    SessionLocal = sessionmaker(bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def _make_user(db, *, username="alice", email="alice@example.com", is_active=True) -> User:
    user = User(
        full_name=username.capitalize(),
        username=username,
        email=email,
        password_hash=hash_password(TEST_PASSWORD),
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def make_user(db_session):
    """Factory: make_user(username="bob", email="bob@example.com")"""
    def _factory(**kwargs) -> User:
        return _make_user(db_session, **kwargs)
    return _factory


@pytest.fixture
def user(make_user) -> User:
    return make_user()


@pytest.fixture
def user_password() -> str:
    return TEST_PASSWORD
