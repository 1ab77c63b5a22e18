"""Recurring series: next due dates, monthly projections, execution, reconciliation.

Weekly and biweekly series store the weekday in ``due_day`` (1=Monday ..
7=Sunday); monthly and yearly series store the day of the month, clamped to
the month's length. Yearly series take their month from ``start_date``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from classifier import ReportContractError
from config import get_settings
from dates import (
    add_months,
    clamp_day,
    format_date_short,
    format_days_until,
    local_today,
    to_date,
)
from models import Frequency, RecurringTransactionSeries, Transaction, TransactionType

logger = logging.getLogger(__name__)

_MONTHLY_FACTORS = {
    Frequency.weekly: Decimal("4.33"),
    Frequency.biweekly: Decimal("2.17"),
    Frequency.monthly: Decimal("1"),
    Frequency.yearly: Decimal("1") / Decimal("12"),
    Frequency.once: Decimal("1"),
}


@dataclass(frozen=True)
class SeriesStatus:
    series_id: str
    next_due_date: date
    days_until_due: int
    is_due: bool
    is_overdue: bool
    due_label: str


@dataclass(frozen=True)
class RecurringTotals:
    total_income: int
    total_expenses: int
    net_monthly: int


@dataclass(frozen=True)
class ExecutionFailure:
    series_id: str
    description: str
    error: str


@dataclass
class ExecutionResult:
    executed: list[Transaction] = field(default_factory=list)
    failed: list[ExecutionFailure] = field(default_factory=list)
    total_processed: int = 0
    successful: int = 0
    total_amount: int = 0

    @property
    def failed_count(self) -> int:
        return len(self.failed)


@dataclass(frozen=True)
class SeriesReconciliation:
    series_id: str
    expected_executions: int
    actual_executions: int
    missed_payments: int
    total_paid: int
    expected_total: int
    difference: int
    success_rate: float


@dataclass(frozen=True)
class MissedExecution:
    series_id: str
    description: str
    missed_count: int


def _weekday_next(today: date, due_day: int, cadence: int) -> date:
    days = due_day - today.isoweekday()
    if days <= 0:
        days += cadence
    return today + timedelta(days=days)


def _monthly_next(today: date, due_day: int) -> date:
    if today.day < due_day:
        return clamp_day(today.year, today.month, due_day)
    following = add_months(today.replace(day=1), 1)
    return clamp_day(following.year, following.month, due_day)


def _yearly_next(today: date, series: RecurringTransactionSeries) -> date:
    start = to_date(series.start_date)
    if start is None:
        return today
    this_year = clamp_day(today.year, start.month, series.due_day)
    if this_year > today:
        return this_year
    return clamp_day(today.year + 1, start.month, series.due_day)


def calculate_next_execution_date(
    series: RecurringTransactionSeries, today: Optional[date] = None
) -> date:
    """Next execution date computed from today.

    Weekly and biweekly results are always strictly after today. A one-off
    series whose start date has passed is due today.
    """
    today = today or local_today()
    frequency = series.frequency
    if frequency == Frequency.weekly:
        return _weekday_next(today, series.due_day, 7)
    if frequency == Frequency.biweekly:
        return _weekday_next(today, series.due_day, 14)
    if frequency == Frequency.monthly:
        return _monthly_next(today, series.due_day)
    if frequency == Frequency.yearly:
        return _yearly_next(today, series)
    start = to_date(series.start_date)
    if start is not None and start > today:
        return start
    return today


def calculate_days_until_due(
    series: RecurringTransactionSeries, today: Optional[date] = None
) -> int:
    today = today or local_today()
    return (calculate_next_execution_date(series, today) - today).days


def is_series_due(
    series: RecurringTransactionSeries, today: Optional[date] = None
) -> bool:
    if not series.is_active:
        return False
    today = today or local_today()
    return calculate_next_execution_date(series, today) <= today


def format_due_date(
    series: RecurringTransactionSeries, today: Optional[date] = None
) -> str:
    today = today or local_today()
    next_date = calculate_next_execution_date(series, today)
    if (next_date - today).days <= 7:
        return format_days_until(next_date, today)
    return format_date_short(next_date)


def series_status(
    series: RecurringTransactionSeries, today: Optional[date] = None
) -> SeriesStatus:
    today = today or local_today()
    next_date = calculate_next_execution_date(series, today)
    days = (next_date - today).days
    due = bool(series.is_active) and next_date <= today
    return SeriesStatus(
        series_id=series.id,
        next_due_date=next_date,
        days_until_due=days,
        is_due=due,
        is_overdue=due and days < 0,
        due_label=format_due_date(series, today),
    )


def calculate_monthly_amount(series: RecurringTransactionSeries) -> int:
    """Monthly equivalent of one series, rounded half-up to whole cents."""
    factor = _MONTHLY_FACTORS.get(Frequency(series.frequency), Decimal("1"))
    amount = Decimal(series.amount_cents) * factor
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_totals(series_list: Iterable[RecurringTransactionSeries]) -> RecurringTotals:
    total_income = 0
    total_expenses = 0
    for series in series_list:
        if not series.is_active:
            continue
        monthly = calculate_monthly_amount(series)
        if series.type == TransactionType.income:
            total_income += monthly
        elif series.type == TransactionType.expense:
            total_expenses += monthly
    return RecurringTotals(
        total_income=total_income,
        total_expenses=total_expenses,
        net_monthly=total_income - total_expenses,
    )


def group_series_by_user(
    series_list: Iterable[RecurringTransactionSeries], user_ids: Sequence[str]
) -> dict[str, list[RecurringTransactionSeries]]:
    """Series per associated user; users without series are left out."""
    series_list = list(series_list)
    grouped: dict[str, list[RecurringTransactionSeries]] = {}
    for uid in user_ids:
        owned = [s for s in series_list if uid in (s.user_ids or [])]
        if owned:
            grouped[uid] = owned
    return grouped


def last_occurrence(
    series: RecurringTransactionSeries, today: Optional[date] = None
) -> Optional[date]:
    """Most recent scheduled occurrence on or before today, if any.

    Occurrences before ``start_date`` or after ``end_date`` do not count.
    Biweekly occurrences are anchored on the first matching weekday on or
    after ``start_date``.
    """
    today = today or local_today()
    start = to_date(series.start_date)
    if start is None:
        return None
    frequency = series.frequency

    if frequency == Frequency.weekly:
        occurrence = today - timedelta(days=(today.isoweekday() - series.due_day) % 7)
    elif frequency == Frequency.biweekly:
        anchor = start + timedelta(days=(series.due_day - start.isoweekday()) % 7)
        if anchor > today:
            return None
        occurrence = anchor + timedelta(days=14 * ((today - anchor).days // 14))
    elif frequency == Frequency.monthly:
        occurrence = clamp_day(today.year, today.month, series.due_day)
        if occurrence > today:
            previous = add_months(today.replace(day=1), -1)
            occurrence = clamp_day(previous.year, previous.month, series.due_day)
    elif frequency == Frequency.yearly:
        occurrence = clamp_day(today.year, start.month, series.due_day)
        if occurrence > today:
            occurrence = clamp_day(today.year - 1, start.month, series.due_day)
    else:
        occurrence = start

    if occurrence < start or occurrence > today:
        return None
    end = to_date(series.end_date)
    if end is not None and occurrence > end:
        return None
    return occurrence


def reconcile_series(
    series: RecurringTransactionSeries, transactions: Iterable[Transaction]
) -> SeriesReconciliation:
    """Compare the recorded execution count with the transactions actually linked."""
    linked = [t for t in transactions if t.recurring_series_id == series.id]
    expected = series.total_executions or 0
    actual = len(linked)
    total_paid = sum(t.amount_cents for t in linked)
    expected_total = series.amount_cents * expected
    success_rate = 0.0
    if expected > 0:
        success_rate = float(
            (Decimal(actual) * 100 / Decimal(expected)).quantize(
                Decimal("0.01"), rounding=ROUND_HALF_UP
            )
        )
    return SeriesReconciliation(
        series_id=series.id,
        expected_executions=expected,
        actual_executions=actual,
        missed_payments=expected - actual,
        total_paid=total_paid,
        expected_total=expected_total,
        difference=total_paid - expected_total,
        success_rate=success_rate,
    )


def find_missed_executions(
    series_list: Iterable[RecurringTransactionSeries],
    transactions: Iterable[Transaction],
) -> list[MissedExecution]:
    transactions = list(transactions)
    missed = []
    for series in series_list:
        if not series.is_active:
            continue
        reconciliation = reconcile_series(series, transactions)
        if reconciliation.missed_payments > 0:
            missed.append(
                MissedExecution(
                    series_id=series.id,
                    description=series.description,
                    missed_count=reconciliation.missed_payments,
                )
            )
    return missed


class RecurringEngine:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _already_posted(self, series: RecurringTransactionSeries, occurrence: date) -> bool:
        stmt = (
            select(Transaction.id)
            .where(
                Transaction.recurring_series_id == series.id,
                Transaction.date >= occurrence,
            )
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def pending_occurrence(
        self,
        series: RecurringTransactionSeries,
        today: Optional[date] = None,
        max_days_overdue: Optional[int] = None,
    ) -> Optional[date]:
        """The occurrence ``series`` still has to post, or ``None``."""
        today = today or local_today()
        if max_days_overdue is None:
            max_days_overdue = get_settings().max_days_overdue
        if not series.is_active:
            return None
        occurrence = last_occurrence(series, today)
        if occurrence is None:
            return None
        if (today - occurrence).days > max_days_overdue:
            return None
        if self._already_posted(series, occurrence):
            return None
        return occurrence

    def execute_series(
        self,
        series: RecurringTransactionSeries,
        today: Optional[date] = None,
        occurrence: Optional[date] = None,
    ) -> Transaction:
        """Post one execution of ``series`` and update the account balance.

        The transaction is dated on ``occurrence`` (default: today). Changes
        are flushed, not committed.
        """
        from schemas import TransactionIn
        from services import TransactionService

        if not series.is_active:
            raise ReportContractError(f"Series {series.description} is not active")
        today = today or local_today()
        user_ids = series.user_ids or []
        data = TransactionIn(
            description=series.description,
            amount_cents=series.amount_cents,
            type=series.type,
            category=series.category or "",
            date=occurrence or today,
            account_id=series.account_id,
            user_id=user_ids[0] if user_ids else None,
            group_id=series.group_id,
            recurring_series_id=series.id,
        )
        txn = TransactionService(self.session).add(data)
        series.total_executions = (series.total_executions or 0) + 1
        self.session.flush()
        return txn

    def execute_all_due(
        self,
        today: Optional[date] = None,
        dry_run: bool = False,
        max_days_overdue: Optional[int] = None,
    ) -> ExecutionResult:
        today = today or local_today()
        if max_days_overdue is None:
            max_days_overdue = get_settings().max_days_overdue
        stmt = (
            select(RecurringTransactionSeries)
            .where(RecurringTransactionSeries.is_active.is_(True))
            .order_by(RecurringTransactionSeries.start_date)
        )
        result = ExecutionResult()
        for series in self.session.scalars(stmt).all():
            occurrence = self.pending_occurrence(series, today, max_days_overdue)
            if occurrence is None:
                continue
            result.total_processed += 1
            if dry_run:
                logger.info(
                    f"recurring_dry_run: series={series.id} occurrence={occurrence} "
                    f"amount_cents={series.amount_cents}"
                )
                result.successful += 1
                result.total_amount += series.amount_cents
                continue
            # One savepoint per series keeps a rejected insert from undoing the others.
            try:
                with self.session.begin_nested():
                    txn = self.execute_series(series, today, occurrence)
            except (ValueError, SQLAlchemyError) as exc:
                series.failed_executions = (series.failed_executions or 0) + 1
                logger.warning(
                    f"recurring_failed: series={series.id} occurrence={occurrence} error={exc}"
                )
                result.failed.append(
                    ExecutionFailure(
                        series_id=series.id,
                        description=series.description,
                        error=str(exc),
                    )
                )
                continue
            result.executed.append(txn)
            result.successful += 1
            result.total_amount += series.amount_cents
        logger.info(
            f"recurring_run: today={today} dry_run={dry_run} processed={result.total_processed} "
            f"executed={result.successful} failed={result.failed_count}"
        )
        return result
