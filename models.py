import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"


class AccountType(str, Enum):
    cash = "cash"
    savings = "savings"
    investments = "investments"
    payroll = "payroll"
    other = "other"


class Frequency(str, Enum):
    once = "once"
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    yearly = "yearly"


class BudgetType(str, Enum):
    monthly = "monthly"
    annually = "annually"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Group(Base, TimestampMixin):
    __tablename__ = "groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    users: Mapped[list["User"]] = relationship("User", back_populates="group")
    accounts: Mapped[list["Account"]] = relationship("Account", back_populates="group")


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    group_id: Mapped[Optional[str]] = mapped_column(ForeignKey("groups.id"))
    default_account_id: Mapped[Optional[str]] = mapped_column(String(36))

    group: Mapped[Optional["Group"]] = relationship("Group", back_populates="users")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="user"
    )
    budgets: Mapped[list["Budget"]] = relationship("Budget", back_populates="user")
    budget_periods: Mapped[list["BudgetPeriod"]] = relationship(
        "BudgetPeriod", back_populates="user"
    )

    __table_args__ = (Index("ix_users_group", "group_id"),)


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    # Free text; normalised on read by classifier.normalize_account_type.
    type: Mapped[Optional[str]] = mapped_column(String(30), default="other")
    user_ids: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    balance_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    group_id: Mapped[Optional[str]] = mapped_column(ForeignKey("groups.id"))

    group: Mapped[Optional["Group"]] = relationship("Group", back_populates="accounts")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account", foreign_keys="Transaction.account_id"
    )
    recurring_series: Mapped[list["RecurringTransactionSeries"]] = relationship(
        "RecurringTransactionSeries", back_populates="account"
    )

    __table_args__ = (Index("ix_accounts_group", "group_id"),)


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    key: Mapped[str] = mapped_column(String(60), nullable=False)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(40))
    color: Mapped[Optional[str]] = mapped_column(String(9))
    group_id: Mapped[Optional[str]] = mapped_column(ForeignKey("groups.id"))

    __table_args__ = (UniqueConstraint("group_id", "key", name="uq_category_group_key"),)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    description: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category: Mapped[str] = mapped_column(String(60), nullable=False, default="")
    date: Mapped[date] = mapped_column(Date, nullable=False)
    account_id: Mapped[str] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    to_account_id: Mapped[Optional[str]] = mapped_column(ForeignKey("accounts.id"))
    user_id: Mapped[Optional[str]] = mapped_column(ForeignKey("users.id"))
    group_id: Mapped[Optional[str]] = mapped_column(ForeignKey("groups.id"))
    recurring_series_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("recurring_series.id")
    )

    account: Mapped["Account"] = relationship(
        "Account", back_populates="transactions", foreign_keys=[account_id]
    )
    to_account: Mapped[Optional["Account"]] = relationship(
        "Account", foreign_keys=[to_account_id]
    )
    user: Mapped[Optional["User"]] = relationship("User", back_populates="transactions")
    recurring_series: Mapped[Optional["RecurringTransactionSeries"]] = relationship(
        "RecurringTransactionSeries", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_group_date", "group_id", "date"),
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_series", "recurring_series_id"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "(type = 'transfer') = (to_account_id IS NOT NULL)",
            name="ck_transactions_transfer_target",
        ),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    description: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[BudgetType] = mapped_column(
        SAEnum(BudgetType), nullable=False, default=BudgetType.monthly
    )
    categories: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    group_id: Mapped[Optional[str]] = mapped_column(ForeignKey("groups.id"))

    user: Mapped["User"] = relationship("User", back_populates="budgets")

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
        Index("ix_budgets_user", "user_id"),
    )


class BudgetPeriod(Base, TimestampMixin):
    __tablename__ = "budget_periods"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)

    user: Mapped["User"] = relationship("User", back_populates="budget_periods")

    __table_args__ = (Index("ix_budget_periods_user_start", "user_id", "start_date"),)

    @property
    def is_open(self) -> bool:
        return self.end_date is None


class RecurringTransactionSeries(Base, TimestampMixin):
    __tablename__ = "recurring_series"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category: Mapped[str] = mapped_column(String(60), nullable=False, default="")
    account_id: Mapped[str] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    frequency: Mapped[Frequency] = mapped_column(SAEnum(Frequency), nullable=False)
    due_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    total_executions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_executions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    user_ids: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    group_id: Mapped[Optional[str]] = mapped_column(ForeignKey("groups.id"))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    account: Mapped["Account"] = relationship("Account", back_populates="recurring_series")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="recurring_series"
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_series_amount_positive"),
        CheckConstraint("type != 'transfer'", name="ck_series_not_transfer"),
        CheckConstraint("due_day >= 1 AND due_day <= 31", name="ck_series_due_day"),
    )

    @property
    def transaction_ids(self) -> list[str]:
        return [txn.id for txn in self.transactions]
