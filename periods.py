"""Reporting ranges and the budget-period roll-forward.

Account balances are stored as a single current snapshot. To know what a
balance was at the boundaries of a past budget period, the roll-forward walks
periods from newest to oldest and subtracts each period's net flow from the
running per-user, per-account-type balance:

    end_balance(P_newest)   = current snapshot
    start_balance(P)        = end_balance(P) - (earned(P) - spent(P))
    end_balance(P_older)    = start_balance(P_newer)

All arithmetic is in integer cents, so the chain is exact however many
periods it spans.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from dates import format_date_short, local_today, month_end, to_date
from metrics import TypeBucket, apply_type_flow, seed_type_balances
from models import Account, BudgetPeriod, Transaction, TransactionType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


@dataclass(frozen=True)
class AccountMetrics:
    earned: int
    spent: int
    start_balance: int
    end_balance: int


@dataclass(frozen=True)
class ReportPeriodSummary:
    id: str
    name: str
    user_id: str
    start_date: date
    end_date: date
    is_open: bool
    start_balance: int
    end_balance: int
    total_earned: int
    total_spent: int
    metrics_by_account_type: dict[str, AccountMetrics] = field(default_factory=dict)


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or local_today()
    if not period or period == "all":
        return Period("all", date(1970, 1, 1), today)
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        last_month_start = last_month_end.replace(day=1)
        return Period("last_month", last_month_start, last_month_end)
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if period != "this_month":
        raise ValueError(f"Unknown period: {period}")

    first = today.replace(day=1)
    return Period("this_month", first, month_end(today))


def period_bounds(
    budget_period: BudgetPeriod, today: Optional[date] = None
) -> Optional[tuple[date, date]]:
    """Inclusive ``(start, end)`` of a budget period; an open period ends today.

    ``None`` when either stored boundary cannot be parsed.
    """
    start = to_date(budget_period.start_date)
    if start is None:
        return None
    if budget_period.end_date is None:
        return start, today or local_today()
    end = to_date(budget_period.end_date)
    if end is None:
        return None
    return start, end


def filter_transactions_by_period(
    transactions: Iterable[Transaction],
    start: object,
    end: object = None,
    *,
    today: Optional[date] = None,
) -> list[Transaction]:
    start_date = to_date(start)
    if start_date is None:
        return []
    end_date = to_date(end) if end is not None else today or local_today()
    if end_date is None:
        return []
    selected = []
    for txn in transactions:
        txn_date = to_date(txn.date)
        if txn_date is not None and start_date <= txn_date <= end_date:
            selected.append(txn)
    return selected


def filter_periods_by_range(
    periods: Iterable[BudgetPeriod],
    start: Optional[date] = None,
    end: Optional[date] = None,
    *,
    today: Optional[date] = None,
) -> list[BudgetPeriod]:
    """Periods overlapping ``[start, end]``; either bound may be omitted."""
    kept = []
    for budget_period in periods:
        bounds = period_bounds(budget_period, today)
        if bounds is None:
            continue
        period_start, period_end = bounds
        if start is not None and period_end < start:
            continue
        if end is not None and period_start > end:
            continue
        kept.append(budget_period)
    return kept


def active_period(
    periods: Iterable[BudgetPeriod], user_id: str
) -> Optional[BudgetPeriod]:
    for budget_period in periods:
        if budget_period.user_id == user_id and budget_period.end_date is None:
            return budget_period
    return None


def period_label(start: date, end: Optional[date]) -> str:
    end_label = format_date_short(end) if end is not None else "Present"
    return f"{format_date_short(start)} - {end_label}"


def calculate_period_summaries(
    periods: Sequence[BudgetPeriod],
    transactions: Sequence[Transaction],
    accounts: Sequence[Account],
    *,
    today: Optional[date] = None,
) -> list[ReportPeriodSummary]:
    """Roll current balances backwards through the periods, newest first.

    Each period only consumes transactions of its own user, even on shared
    accounts. Periods whose dates cannot be parsed are left out of the result.
    """
    today = today or local_today()

    dated: list[tuple[date, date, BudgetPeriod]] = []
    for budget_period in periods:
        bounds = period_bounds(budget_period, today)
        if bounds is None:
            logger.warning(
                f"period_skip: id={budget_period.id} reason=unparseable_dates "
                f"start={budget_period.start_date!r} end={budget_period.end_date!r}"
            )
            continue
        dated.append((bounds[0], bounds[1], budget_period))
    dated.sort(key=lambda item: item[0], reverse=True)

    accounts_by_id = {account.id: account for account in accounts}
    running = seed_type_balances(accounts)

    transactions_by_user: dict[str, list[tuple[date, Transaction]]] = {}
    for txn in transactions:
        if txn.user_id is None:
            continue
        txn_date = to_date(txn.date)
        if txn_date is None:
            logger.warning(f"transaction_skip: id={txn.id} reason=unparseable_date")
            continue
        transactions_by_user.setdefault(txn.user_id, []).append((txn_date, txn))

    summaries = []
    for start, end, budget_period in dated:
        selected = [
            txn
            for txn_date, txn in transactions_by_user.get(budget_period.user_id, [])
            if start <= txn_date <= end
        ]

        buckets: dict[str, TypeBucket] = {}
        for txn in selected:
            apply_type_flow(buckets, txn, accounts_by_id)

        user_balances = running.setdefault(budget_period.user_id, {})
        account_types = list(user_balances)
        account_types.extend(t for t in buckets if t not in user_balances)

        metrics: dict[str, AccountMetrics] = {}
        for account_type in account_types:
            bucket = buckets.get(account_type, TypeBucket())
            end_balance = user_balances.get(account_type, 0)
            start_balance = end_balance - (bucket.earned - bucket.spent)
            metrics[account_type] = AccountMetrics(
                earned=bucket.earned,
                spent=bucket.spent,
                start_balance=start_balance,
                end_balance=end_balance,
            )
            user_balances[account_type] = start_balance

        total_earned = sum(
            txn.amount_cents for txn in selected if txn.type == TransactionType.income
        )
        total_spent = sum(
            txn.amount_cents for txn in selected if txn.type == TransactionType.expense
        )
        is_open = budget_period.end_date is None
        summaries.append(
            ReportPeriodSummary(
                id=budget_period.id,
                name=period_label(start, None if is_open else end),
                user_id=budget_period.user_id,
                start_date=start,
                end_date=end,
                is_open=is_open,
                start_balance=sum(m.start_balance for m in metrics.values()),
                end_balance=sum(m.end_balance for m in metrics.values()),
                total_earned=total_earned,
                total_spent=total_spent,
                metrics_by_account_type=metrics,
            )
        )
    return summaries
