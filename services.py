from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from budgets import PeriodTotals, calculate_period_totals
from config import get_settings
from database import SessionLocal, session_scope
from dates import local_today
from metrics import (
    AccountBasedMetrics,
    CategoryStats,
    MonthlySummary,
    OverviewMetrics,
    UserFlowSummary,
    calculate_account_based_metrics,
    calculate_category_stats,
    calculate_monthly_trend,
    calculate_overview_metrics,
    calculate_user_flow_summary,
)
from models import (
    Account,
    Budget,
    BudgetPeriod,
    Category,
    RecurringTransactionSeries,
    Transaction,
    TransactionType,
    User,
)
from periods import (
    ReportPeriodSummary,
    calculate_period_summaries,
    filter_periods_by_range,
    filter_transactions_by_period,
)
from recurrence import (
    ExecutionResult,
    RecurringEngine,
    RecurringTotals,
    SeriesStatus,
    calculate_totals,
    series_status,
)
from schemas import RecurringSeriesIn, TransactionIn

logger = logging.getLogger(__name__)


class ReportDataError(RuntimeError):
    """A report input could not be fetched; no partial report is produced."""


class FinanceRepository:
    """Read side used by the report fan-out. One instance per session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def fetch_transactions(
        self,
        group_id: Optional[str] = None,
        user_id: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[Transaction]:
        stmt = select(Transaction).order_by(Transaction.date, Transaction.id)
        if group_id:
            stmt = stmt.where(Transaction.group_id == group_id)
        if user_id:
            stmt = stmt.where(Transaction.user_id == user_id)
        if start:
            stmt = stmt.where(Transaction.date >= start)
        if end:
            stmt = stmt.where(Transaction.date <= end)
        return list(self.session.scalars(stmt).all())

    def fetch_accounts(
        self, group_id: Optional[str] = None, user_id: Optional[str] = None
    ) -> list[Account]:
        stmt = select(Account).order_by(Account.name)
        if group_id:
            stmt = stmt.where(Account.group_id == group_id)
        accounts = list(self.session.scalars(stmt).all())
        if user_id:
            # user_ids is a JSON list; filtering here keeps SQLite and Postgres alike.
            accounts = [a for a in accounts if user_id in (a.user_ids or [])]
        return accounts

    def fetch_budget_periods(
        self,
        user_id: Optional[str] = None,
        group_id: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[BudgetPeriod]:
        stmt = select(BudgetPeriod).order_by(BudgetPeriod.start_date.desc())
        if user_id:
            stmt = stmt.where(BudgetPeriod.user_id == user_id)
        if group_id:
            stmt = stmt.where(
                BudgetPeriod.user_id.in_(select(User.id).where(User.group_id == group_id))
            )
        periods = list(self.session.scalars(stmt).all())
        if start or end:
            periods = filter_periods_by_range(periods, start, end)
        return periods

    def fetch_recurring_series(
        self, group_id: Optional[str] = None, user_id: Optional[str] = None
    ) -> list[RecurringTransactionSeries]:
        stmt = select(RecurringTransactionSeries).order_by(
            RecurringTransactionSeries.description
        )
        if group_id:
            stmt = stmt.where(RecurringTransactionSeries.group_id == group_id)
        series = list(self.session.scalars(stmt).all())
        if user_id:
            series = [s for s in series if user_id in (s.user_ids or [])]
        return series

    def fetch_categories(self, group_id: Optional[str] = None) -> list[Category]:
        stmt = select(Category).order_by(Category.label)
        if group_id:
            stmt = stmt.where(
                (Category.group_id == group_id) | Category.group_id.is_(None)
            )
        return list(self.session.scalars(stmt).all())

    def fetch_budgets(
        self, group_id: Optional[str] = None, user_id: Optional[str] = None
    ) -> list[Budget]:
        stmt = select(Budget).order_by(Budget.description)
        if group_id:
            stmt = stmt.where(Budget.group_id == group_id)
        if user_id:
            stmt = stmt.where(Budget.user_id == user_id)
        return list(self.session.scalars(stmt).all())

    def fetch_users(self, group_id: Optional[str] = None) -> list[User]:
        stmt = select(User).order_by(User.name)
        if group_id:
            stmt = stmt.where(User.group_id == group_id)
        return list(self.session.scalars(stmt).all())


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, transaction_id: str) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def _account(self, account_id: str) -> Account:
        account = self.session.get(Account, account_id)
        if not account:
            raise ValueError("Account not found")
        return account

    def _apply_balances(self, txn: Transaction, sign: int) -> None:
        amount = txn.amount_cents * sign
        source = self._account(txn.account_id)
        if txn.type == TransactionType.income:
            source.balance_cents = (source.balance_cents or 0) + amount
        elif txn.type == TransactionType.expense:
            source.balance_cents = (source.balance_cents or 0) - amount
        else:
            destination = self._account(txn.to_account_id)
            source.balance_cents = (source.balance_cents or 0) - amount
            destination.balance_cents = (destination.balance_cents or 0) + amount

    def add(self, data: TransactionIn) -> Transaction:
        """Stage a transaction and its balance effect; the caller commits."""
        self._account(data.account_id)
        if data.to_account_id:
            self._account(data.to_account_id)
        txn = Transaction(
            description=data.description,
            amount_cents=data.amount_cents,
            type=data.type,
            category=data.category,
            date=data.date,
            account_id=data.account_id,
            to_account_id=data.to_account_id,
            user_id=data.user_id,
            group_id=data.group_id,
            recurring_series_id=data.recurring_series_id,
        )
        self.session.add(txn)
        self._apply_balances(txn, 1)
        self.session.flush()
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        txn = self.add(data)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: str) -> None:
        txn = self.get(transaction_id)
        self._apply_balances(txn, -1)
        self.session.delete(txn)
        self.session.commit()


@dataclass(frozen=True)
class ClosedPeriod:
    period: BudgetPeriod
    totals: PeriodTotals
    next_period: Optional[BudgetPeriod]


class BudgetPeriodService:
    """Budget periods of a user. At most one period per user is open."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def list(self, user_id: str) -> list[BudgetPeriod]:
        stmt = (
            select(BudgetPeriod)
            .where(BudgetPeriod.user_id == user_id)
            .order_by(BudgetPeriod.start_date.desc())
        )
        return list(self.session.scalars(stmt).all())

    def active(self, user_id: str) -> Optional[BudgetPeriod]:
        stmt = select(BudgetPeriod).where(
            BudgetPeriod.user_id == user_id, BudgetPeriod.end_date.is_(None)
        )
        return self.session.scalars(stmt).first()

    def start_period(self, user_id: str, start: date) -> BudgetPeriod:
        if not self.session.get(User, user_id):
            raise ValueError("User not found")
        current = self.active(user_id)
        if current is not None:
            if start <= current.start_date:
                raise ValueError("New period must start after the open period")
            current.end_date = start - timedelta(days=1)
            logger.info(
                f"budget_period_closed: id={current.id} user={user_id} end={current.end_date}"
            )
        period = BudgetPeriod(user_id=user_id, start_date=start)
        self.session.add(period)
        self.session.commit()
        self.session.refresh(period)
        logger.info(f"budget_period_started: id={period.id} user={user_id} start={start}")
        return period

    def close_period(
        self, user_id: str, period_id: str, end: date, start_next: bool = True
    ) -> ClosedPeriod:
        period = self.session.get(BudgetPeriod, period_id)
        if not period or period.user_id != user_id:
            raise ValueError("Budget period not found")
        if period.end_date is not None:
            raise ValueError("Budget period is already closed")
        if end < period.start_date:
            raise ValueError("End date must be on or after the period start")

        period.end_date = end
        repo = FinanceRepository(self.session)
        totals = calculate_period_totals(
            repo.fetch_transactions(user_id=user_id, start=period.start_date, end=end),
            period,
            repo.fetch_budgets(user_id=user_id),
        )
        next_period = None
        if start_next:
            next_period = BudgetPeriod(user_id=user_id, start_date=end + timedelta(days=1))
            self.session.add(next_period)
        self.session.commit()
        logger.info(
            f"budget_period_closed: id={period.id} user={user_id} end={end} "
            f"spent={totals.total_spent} saved={totals.total_saved}"
        )
        return ClosedPeriod(period=period, totals=totals, next_period=next_period)


class RecurringSeriesService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, series_id: str) -> RecurringTransactionSeries:
        series = self.session.get(RecurringTransactionSeries, series_id)
        if not series:
            raise ValueError("Recurring series not found")
        return series

    def list(
        self, group_id: Optional[str] = None, user_id: Optional[str] = None
    ) -> list[RecurringTransactionSeries]:
        return FinanceRepository(self.session).fetch_recurring_series(group_id, user_id)

    def create(self, data: RecurringSeriesIn) -> RecurringTransactionSeries:
        if not self.session.get(Account, data.account_id):
            raise ValueError("Account not found")
        series = RecurringTransactionSeries(**data.model_dump())
        self.session.add(series)
        self.session.commit()
        self.session.refresh(series)
        return series

    def set_active(self, series_id: str, is_active: bool) -> RecurringTransactionSeries:
        series = self.get(series_id)
        series.is_active = is_active
        self.session.commit()
        return series

    def delete(self, series_id: str) -> None:
        series = self.get(series_id)
        history = self.session.execute(
            select(Transaction.id)
            .where(Transaction.recurring_series_id == series.id)
            .limit(1)
        ).scalar_one_or_none()
        if history is not None:
            raise ValueError("Series has executed transactions; pause it instead")
        self.session.delete(series)
        self.session.commit()

    def execute_due(
        self,
        today: Optional[date] = None,
        dry_run: bool = False,
        max_days_overdue: Optional[int] = None,
    ) -> ExecutionResult:
        result = RecurringEngine(self.session).execute_all_due(
            today, dry_run=dry_run, max_days_overdue=max_days_overdue
        )
        if dry_run:
            self.session.rollback()
        else:
            self.session.commit()
        return result


@dataclass(frozen=True)
class ReportData:
    transactions: list[Transaction]
    accounts: list[Account]
    categories: list[Category]
    budget_periods: list[BudgetPeriod]
    recurring_series: list[RecurringTransactionSeries]
    users: list[User]


@dataclass(frozen=True)
class ReportsBundle:
    overview: OverviewMetrics
    account_metrics: AccountBasedMetrics
    flows: list[UserFlowSummary]
    periods: list[ReportPeriodSummary]
    categories: CategoryStats
    trend: list[MonthlySummary]
    recurring: list[SeriesStatus]
    recurring_totals: RecurringTotals


class ReportService:
    """Fetches report inputs concurrently, then runs the pure calculators.

    Every fetch runs in its own thread with its own session. Any failing
    fetch fails the whole report with ``ReportDataError``.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        self.session_factory = session_factory or SessionLocal

    def _fetch(self, name: str, fetch: Callable[[FinanceRepository], list]) -> list:
        try:
            with session_scope(self.session_factory) as session:
                return fetch(FinanceRepository(session))
        except Exception as exc:
            logger.exception(f"report_fetch_failed: source={name}")
            raise ReportDataError(f"Could not load {name}") from exc

    async def gather(
        self, group_id: Optional[str] = None, user_id: Optional[str] = None
    ) -> ReportData:
        fetches: dict[str, Callable[[FinanceRepository], list]] = {
            "transactions": lambda repo: repo.fetch_transactions(group_id, user_id),
            "accounts": lambda repo: repo.fetch_accounts(group_id, user_id),
            "categories": lambda repo: repo.fetch_categories(group_id),
            "budget_periods": lambda repo: repo.fetch_budget_periods(
                user_id, None if user_id else group_id
            ),
            "recurring_series": lambda repo: repo.fetch_recurring_series(group_id, user_id),
            "users": lambda repo: repo.fetch_users(group_id),
        }
        timeout = get_settings().fetch_timeout_secs
        try:
            results = await asyncio.wait_for(
                asyncio.gather(
                    *(
                        asyncio.to_thread(self._fetch, name, fetch)
                        for name, fetch in fetches.items()
                    )
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error(f"report_fetch_timeout: timeout_secs={timeout}")
            raise ReportDataError("Report data fetch timed out") from exc
        return ReportData(**dict(zip(fetches, results)))

    async def build_reports(
        self,
        group_id: Optional[str] = None,
        user_id: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        today: Optional[date] = None,
    ) -> ReportsBundle:
        """All report views for a group, or for one user when ``user_id`` is set.

        ``start``/``end`` narrow the flow views. The period roll-forward always
        runs over the full history so its chain starts from today's balances.
        """
        data = await self.gather(group_id, user_id)
        today = today or local_today()

        in_range = data.transactions
        if start is not None:
            in_range = filter_transactions_by_period(
                data.transactions, start, end, today=today
            )
        if user_id:
            user_ids = [user_id]
            owned = [a.id for a in data.accounts if user_id in (a.user_ids or [])]
        else:
            user_ids = [u.id for u in data.users]
            owned = [a.id for a in data.accounts]

        summaries = calculate_period_summaries(
            data.budget_periods, data.transactions, data.accounts, today=today
        )
        if start is not None or end is not None:
            kept = {
                p.id
                for p in filter_periods_by_range(
                    data.budget_periods, start, end, today=today
                )
            }
            summaries = [s for s in summaries if s.id in kept]

        return ReportsBundle(
            overview=calculate_overview_metrics(in_range, owned, user_id),
            account_metrics=calculate_account_based_metrics(in_range, owned, user_id),
            flows=calculate_user_flow_summary(in_range, data.accounts, user_ids),
            periods=summaries,
            categories=calculate_category_stats(in_range, data.categories),
            trend=calculate_monthly_trend(data.transactions, end or today),
            recurring=[series_status(s, today) for s in data.recurring_series],
            recurring_totals=calculate_totals(data.recurring_series),
        )
