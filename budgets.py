from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from classifier import ReportContractError
from dates import local_today, to_date
from models import Budget, BudgetPeriod, Transaction, TransactionType
from periods import filter_transactions_by_period, period_bounds

WARNING_THRESHOLD = 75
EXCEEDED_THRESHOLD = 100


@dataclass(frozen=True)
class BudgetProgress:
    id: str
    description: str
    amount: int
    spent: int
    remaining: int
    percentage: float
    categories: list[str]
    transaction_count: int


@dataclass(frozen=True)
class UserBudgetSummary:
    user_id: str
    budgets: list[BudgetProgress]
    period_id: Optional[str]
    period_start: Optional[date]
    period_end: Optional[date]
    total_budget: int
    total_spent: int
    total_remaining: int
    overall_percentage: float


@dataclass(frozen=True)
class PeriodTotals:
    total_spent: int
    total_saved: int
    category_spending: dict[str, int] = field(default_factory=dict)


def _percent(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return float(
        (Decimal(part) * 100 / Decimal(whole)).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )
    )


def budget_status(percentage: float) -> str:
    if percentage > EXCEEDED_THRESHOLD:
        return "exceeded"
    if percentage > WARNING_THRESHOLD:
        return "warning"
    return "safe"


def _net_consumption(transactions: Iterable[Transaction]) -> int:
    # Income refills a budget; expenses and transfers consume it.
    net = 0
    for txn in transactions:
        if txn.type == TransactionType.income:
            net -= txn.amount_cents
        else:
            net += txn.amount_cents
    return net


def filter_transactions_for_budget(
    transactions: Iterable[Transaction],
    budget: Budget,
    start: object,
    end: object = None,
    *,
    today: Optional[date] = None,
) -> list[Transaction]:
    if start is None:
        return []
    categories = set(budget.categories or [])
    return [
        txn
        for txn in filter_transactions_by_period(transactions, start, end, today=today)
        if txn.category in categories
    ]


def calculate_budget_progress(
    budget: Budget, transactions: Sequence[Transaction]
) -> BudgetProgress:
    """Progress of ``budget`` given transactions already scoped to it.

    ``budget.type`` does not scale the amount: an ``annually`` budget is
    compared with whatever spending the caller passes, so callers scope its
    transactions to the year rather than to a single budget period.
    """
    spent = max(0, _net_consumption(transactions))
    return BudgetProgress(
        id=budget.id,
        description=budget.description,
        amount=budget.amount_cents,
        spent=spent,
        remaining=budget.amount_cents - spent,
        percentage=_percent(spent, budget.amount_cents),
        categories=list(budget.categories or []),
        transaction_count=len(transactions),
    )


def calculate_budgets_with_progress(
    budgets: Iterable[Budget],
    transactions: Sequence[Transaction],
    start: object,
    end: object = None,
    *,
    today: Optional[date] = None,
) -> list[BudgetProgress]:
    return [
        calculate_budget_progress(
            budget,
            filter_transactions_for_budget(
                transactions, budget, start, end, today=today
            ),
        )
        for budget in budgets
        if budget.amount_cents > 0
    ]


def calculate_user_budget_summary(
    user_id: Optional[str],
    budgets: Iterable[Budget],
    transactions: Iterable[Transaction],
    period: Optional[BudgetPeriod],
    *,
    today: Optional[date] = None,
) -> UserBudgetSummary:
    """Budget progress of one user inside their active period.

    Without a period nothing is in scope, so every budget reports zero spent.
    """
    if not user_id:
        raise ReportContractError("calculate_user_budget_summary requires a user id")
    today = today or local_today()

    user_budgets = [b for b in budgets if b.user_id == user_id]
    user_transactions = [t for t in transactions if t.user_id == user_id]

    start = end = None
    if period is not None:
        bounds = period_bounds(period, today)
        if bounds is not None:
            start, end = bounds

    progress = calculate_budgets_with_progress(
        user_budgets, user_transactions, start, end, today=today
    )
    total_budget = sum(p.amount for p in progress)
    total_spent = sum(p.spent for p in progress)
    return UserBudgetSummary(
        user_id=user_id,
        budgets=progress,
        period_id=period.id if period is not None else None,
        period_start=start,
        period_end=end if period is not None and period.end_date is not None else None,
        total_budget=total_budget,
        total_spent=total_spent,
        total_remaining=total_budget - total_spent,
        overall_percentage=_percent(total_spent, total_budget),
    )


def calculate_period_totals(
    transactions: Iterable[Transaction],
    period: BudgetPeriod,
    budgets: Iterable[Budget],
) -> PeriodTotals:
    """Spent and saved amounts of a period, as stored when the period closes.

    ``total_spent`` sums each budget's non-negative consumption separately, so
    a refund in one budget never offsets spending in another.
    """
    start = to_date(period.start_date)
    if start is None:
        return PeriodTotals(total_spent=0, total_saved=0)
    end = to_date(period.end_date) if period.end_date is not None else None

    in_period = []
    for txn in transactions:
        if txn.user_id != period.user_id:
            continue
        txn_date = to_date(txn.date)
        if txn_date is None or txn_date < start:
            continue
        if end is not None and txn_date > end:
            continue
        in_period.append(txn)

    total_spent = 0
    total_budget = 0
    category_spending: dict[str, int] = {}
    for budget in budgets:
        if budget.user_id != period.user_id or budget.amount_cents <= 0:
            continue
        total_budget += budget.amount_cents
        categories = set(budget.categories or [])
        scoped = [txn for txn in in_period if txn.category in categories]
        total_spent += max(0, _net_consumption(scoped))
        for txn in scoped:
            if txn.type != TransactionType.income:
                category_spending[txn.category] = (
                    category_spending.get(txn.category, 0) + txn.amount_cents
                )

    return PeriodTotals(
        total_spent=total_spent,
        total_saved=max(0, total_budget - total_spent),
        category_spending=category_spending,
    )
