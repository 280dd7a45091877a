from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class Frequency(str, Enum):
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    yearly = "yearly"


class DebtKind(str, Enum):
    revolving = "revolving"
    installment = "installment"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    notifications_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )


class Transaction(Base, TimestampMixin):
    """A recorded income or expense.

    Three shapes share this table: one-off entries, series masters
    (``is_recurring`` set, carrying the rule fields) and instances materialized
    from a master (``recurring_series_id`` pointing at it).
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    frequency: Mapped[Optional[Frequency]] = mapped_column(SAEnum(Frequency))
    recurring_series_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id")
    )
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_generated: Mapped[Optional[date]] = mapped_column(Date)
    day_of_month: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        UniqueConstraint(
            "recurring_series_id", "date", name="uq_txn_series_occurrence"
        ),
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_recurring", "user_id", "is_recurring"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "day_of_month IS NULL OR day_of_month BETWEEN 1 AND 31",
            name="ck_transactions_day_of_month",
        ),
    )

    @property
    def is_master(self) -> bool:
        return bool(self.is_recurring) and (
            self.recurring_series_id is None or self.recurring_series_id == self.id
        )


class DebtAccount(Base, TimestampMixin):
    __tablename__ = "debt_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    kind: Mapped[DebtKind] = mapped_column(SAEnum(DebtKind), nullable=False)
    limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    interest_rate: Mapped[Decimal] = mapped_column(
        Numeric(7, 3), nullable=False, default=Decimal("0")
    )
    min_payment_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    due_day: Mapped[Optional[int]] = mapped_column(Integer)
    autopay: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    payments: Mapped[list["DebtPayment"]] = relationship(
        "DebtPayment",
        back_populates="account",
        order_by="DebtPayment.date, DebtPayment.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("balance_cents >= 0", name="ck_debt_balance_positive"),
        CheckConstraint("limit_cents >= 0", name="ck_debt_limit_positive"),
        CheckConstraint("min_payment_cents >= 0", name="ck_debt_min_payment_positive"),
    )


class DebtPayment(Base, TimestampMixin):
    __tablename__ = "debt_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("debt_accounts.id"), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    interest_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    note: Mapped[Optional[str]] = mapped_column(String(120))

    account: Mapped["DebtAccount"] = relationship(
        "DebtAccount", back_populates="payments"
    )

    __table_args__ = (Index("ix_debt_payments_account_date", "account_id", "date"),)


class UserSettings(Base, TimestampMixin):
    __tablename__ = "user_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    bill_reminders: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    loan_reminders: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    autopay_alerts: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    loan_notify_days: Mapped[int] = mapped_column(Integer, default=3, nullable=False)

    __table_args__ = (UniqueConstraint("user_id", name="uq_user_settings_user"),)
