"""
SQLAlchemy ORM models
"""
from decimal import Decimal
from datetime import date as date_type
from sqlalchemy import (
    String, DateTime, Integer, SmallInteger, Text, TIMESTAMP, Date, func, Boolean, Numeric,
    ForeignKey, CheckConstraint, Index,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB

from subtracker.infrastructure.db.session import Base


class User(Base):
    """
    Account owner. Subscriptions are isolated per user.
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    full_name: Mapped[str] = mapped_column(String(100), nullable=False)
    username: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    last_login_at: Mapped[DateTime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )


class SubscriptionModel(Base):
    """
    Recurring subscription. Dates are pure calendar dates (no time of day).

    `version` is the optimistic lock: SQLAlchemy adds "WHERE version = :old"
    to every UPDATE and raises StaleDataError when no row matched.
    """
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    service_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="VND", server_default="VND")
    billing_cycle: Mapped[str] = mapped_column(String(16), nullable=False, default="monthly")

    start_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    next_payment_date: Mapped[date_type] = mapped_column(Date, nullable=False, index=True)
    reminder_days: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=7, server_default="7")

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true", index=True)
    auto_renew: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    last_reminder_sent: Mapped[date_type | None] = mapped_column(Date, nullable=True)

    tags: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("billing_cycle IN ('monthly', 'quarterly', 'yearly')", name="ck_subscription_billing_cycle"),
        CheckConstraint("currency IN ('VND', 'USD', 'EUR')", name="ck_subscription_currency"),
        CheckConstraint("cost >= 0", name="ck_subscription_cost_non_negative"),
        CheckConstraint("reminder_days BETWEEN 1 AND 30", name="ck_subscription_reminder_days"),
        Index("ix_subscriptions_user_next_payment", "user_id", "next_payment_date"),
    )


class SubscriptionPaymentModel(Base):
    """Append-only payment history of a subscription"""
    __tablename__ = "subscription_payments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    subscription_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True
    )

    paid_on: Mapped[date_type] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[DateTime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint("status IN ('paid', 'pending', 'failed')", name="ck_subscription_payment_status"),
    )
