from __future__ import annotations

import logging
from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from classifier import (
    TransactionClass,
    classify,
    normalize_account_type,
    transfer_buckets,
)
from dates import add_months, local_today, month_end, month_start, to_date
from models import Account, Category, Transaction, TransactionType

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY_COLOR = "#cbd5e1"


@dataclass(frozen=True)
class OverviewMetrics:
    total_earned: int
    total_spent: int
    total_transferred: int
    total_balance: int


@dataclass(frozen=True)
class AccountBasedMetrics:
    money_in: int
    money_out: int
    internal_transfers: int
    balance: int


@dataclass(frozen=True)
class AccountTypeFlow:
    type: str
    earned: int
    spent: int
    net: int
    balance: int


@dataclass(frozen=True)
class UserFlowSummary:
    user_id: str
    total_earned: int
    total_spent: int
    net_flow: int
    total_balance: int
    accounts: list[AccountTypeFlow] = field(default_factory=list)


@dataclass(frozen=True)
class CategoryStat:
    id: str
    name: str
    type: TransactionType
    total: int
    color: str


@dataclass(frozen=True)
class CategoryStats:
    income: list[CategoryStat]
    expense: list[CategoryStat]


@dataclass(frozen=True)
class MonthlySummary:
    month: str
    income: int
    expenses: int
    net_savings: int
    savings_rate: float


@dataclass
class TypeBucket:
    earned: int = 0
    spent: int = 0
    balance: int = 0


def calculate_overview_metrics(
    transactions: Iterable[Transaction],
    owned_account_ids: Collection[str],
    user_id: Optional[str] = None,
) -> OverviewMetrics:
    """Earned/spent/transferred totals for an owner set, in one pass.

    Internal transfers count toward ``total_transferred`` (whenever the source
    is owned) but never toward earned or spent.
    """
    owned = set(owned_account_ids)
    earned = spent = transferred = 0
    for txn in transactions:
        if user_id is not None and txn.user_id != user_id:
            continue
        if txn.type == TransactionType.transfer and txn.account_id in owned:
            transferred += txn.amount_cents
        kind = classify(txn, owned)
        if kind is None:
            continue
        if kind.is_earned:
            earned += txn.amount_cents
        elif kind.is_spent:
            spent += txn.amount_cents
    return OverviewMetrics(
        total_earned=earned,
        total_spent=spent,
        total_transferred=transferred,
        total_balance=earned - spent,
    )


def calculate_account_based_metrics(
    transactions: Iterable[Transaction],
    owned_account_ids: Collection[str],
    user_id: Optional[str] = None,
) -> AccountBasedMetrics:
    owned = set(owned_account_ids)
    money_in = money_out = internal = 0
    for txn in transactions:
        if user_id is not None and txn.user_id != user_id:
            continue
        kind = classify(txn, owned)
        if kind is None:
            continue
        if kind == TransactionClass.internal_transfer:
            internal += txn.amount_cents
        elif kind.is_earned:
            money_in += txn.amount_cents
        else:
            money_out += txn.amount_cents
    return AccountBasedMetrics(
        money_in=money_in,
        money_out=money_out,
        internal_transfers=internal,
        balance=money_in - money_out,
    )


def seed_type_balances(accounts: Iterable[Account]) -> dict[str, dict[str, int]]:
    """Per-user, per-type balances from the current account snapshots.

    A shared account credits its full balance to every owner; balances are
    not split between owners.
    """
    balances: dict[str, dict[str, int]] = {}
    for account in accounts:
        account_type = normalize_account_type(account.type)
        for uid in account.user_ids or []:
            user_balances = balances.setdefault(uid, {})
            user_balances[account_type] = user_balances.get(account_type, 0) + (
                account.balance_cents or 0
            )
    return balances


def apply_type_flow(
    buckets: dict[str, TypeBucket],
    txn: Transaction,
    accounts_by_id: dict[str, Account],
) -> None:
    """Add ``txn`` to the earned/spent figures of its account-type buckets."""
    if txn.type == TransactionType.transfer:
        pair = transfer_buckets(txn, accounts_by_id)
        if pair is None:
            return
        source_type, destination_type = pair
        buckets.setdefault(source_type, TypeBucket()).spent += txn.amount_cents
        if destination_type is not None:
            buckets.setdefault(destination_type, TypeBucket()).earned += txn.amount_cents
        return

    account = accounts_by_id.get(txn.account_id)
    if account is None:
        logger.debug(f"type_flow_skip: txn={txn.id} reason=unknown_account")
        return
    bucket = buckets.setdefault(normalize_account_type(account.type), TypeBucket())
    if txn.type == TransactionType.income:
        bucket.earned += txn.amount_cents
    elif txn.type == TransactionType.expense:
        bucket.spent += txn.amount_cents


def calculate_user_flow_summary(
    transactions: Iterable[Transaction],
    accounts: Sequence[Account],
    user_ids: Sequence[str],
) -> list[UserFlowSummary]:
    accounts_by_id = {account.id: account for account in accounts}
    tracked = set(user_ids)

    buckets_by_user: dict[str, dict[str, TypeBucket]] = {uid: {} for uid in user_ids}
    for uid, type_balances in seed_type_balances(accounts).items():
        if uid not in tracked:
            continue
        for account_type, balance in type_balances.items():
            buckets_by_user[uid].setdefault(account_type, TypeBucket()).balance = balance

    for txn in transactions:
        if txn.user_id is None or txn.user_id not in tracked:
            continue
        apply_type_flow(buckets_by_user[txn.user_id], txn, accounts_by_id)

    summaries = []
    for uid in user_ids:
        rows = [
            AccountTypeFlow(
                type=account_type,
                earned=bucket.earned,
                spent=bucket.spent,
                net=bucket.earned - bucket.spent,
                balance=bucket.balance,
            )
            for account_type, bucket in buckets_by_user[uid].items()
        ]
        rows.sort(key=lambda row: row.balance, reverse=True)
        earned = sum(row.earned for row in rows)
        spent = sum(row.spent for row in rows)
        summaries.append(
            UserFlowSummary(
                user_id=uid,
                total_earned=earned,
                total_spent=spent,
                net_flow=earned - spent,
                total_balance=sum(row.balance for row in rows),
                accounts=rows,
            )
        )
    return summaries


def calculate_account_type_summary(
    transactions: Iterable[Transaction], accounts: Sequence[Account]
) -> list[AccountTypeFlow]:
    """Group-wide variant of the flow aggregator: one row per account type."""
    accounts_by_id = {account.id: account for account in accounts}
    buckets: dict[str, TypeBucket] = {}
    for account in accounts:
        bucket = buckets.setdefault(normalize_account_type(account.type), TypeBucket())
        bucket.balance += account.balance_cents or 0
    for txn in transactions:
        apply_type_flow(buckets, txn, accounts_by_id)
    rows = [
        AccountTypeFlow(
            type=account_type,
            earned=bucket.earned,
            spent=bucket.spent,
            net=bucket.earned - bucket.spent,
            balance=bucket.balance,
        )
        for account_type, bucket in buckets.items()
    ]
    rows.sort(key=lambda row: row.balance, reverse=True)
    return rows


@dataclass(frozen=True)
class ResolvedCategory:
    category: Category

    @property
    def id(self) -> str:
        return self.category.id

    @property
    def name(self) -> str:
        return self.category.label

    @property
    def color(self) -> str:
        return self.category.color or DEFAULT_CATEGORY_COLOR


@dataclass(frozen=True)
class RawCategoryFallback:
    raw: str

    @property
    def id(self) -> str:
        return self.raw

    @property
    def name(self) -> str:
        return self.raw

    @property
    def color(self) -> str:
        return DEFAULT_CATEGORY_COLOR


CategoryResolution = Union[ResolvedCategory, RawCategoryFallback]


class CategoryResolver:
    """Resolves raw category strings: id match, then case-insensitive key, then raw."""

    def __init__(self, categories: Iterable[Category]) -> None:
        self._by_id: dict[str, Category] = {}
        self._by_key: dict[str, Category] = {}
        for category in categories:
            self._by_id.setdefault(category.id, category)
            if category.key:
                self._by_key.setdefault(category.key.lower(), category)

    def resolve(self, raw: Optional[str]) -> CategoryResolution:
        raw = raw or ""
        category = self._by_id.get(raw) or self._by_key.get(raw.lower())
        if category is not None:
            return ResolvedCategory(category)
        return RawCategoryFallback(raw)


def resolve_category(
    raw: Optional[str], categories: Iterable[Category]
) -> CategoryResolution:
    return CategoryResolver(categories).resolve(raw)


def calculate_category_stats(
    transactions: Iterable[Transaction], categories: Iterable[Category]
) -> CategoryStats:
    resolver = CategoryResolver(categories)
    totals: dict[tuple[TransactionType, str], int] = {}
    resolved: dict[tuple[TransactionType, str], CategoryResolution] = {}

    for txn in transactions:
        if txn.type == TransactionType.transfer:
            continue
        resolution = resolver.resolve(txn.category)
        key = (TransactionType(txn.type), resolution.id)
        resolved.setdefault(key, resolution)
        totals[key] = totals.get(key, 0) + txn.amount_cents

    stats = [
        CategoryStat(
            id=resolution.id,
            name=resolution.name,
            type=key[0],
            total=totals[key],
            color=resolution.color,
        )
        for key, resolution in resolved.items()
    ]
    income = sorted(
        (s for s in stats if s.type == TransactionType.income),
        key=lambda s: s.total,
        reverse=True,
    )
    expense = sorted(
        (s for s in stats if s.type == TransactionType.expense),
        key=lambda s: s.total,
        reverse=True,
    )
    return CategoryStats(income=income, expense=expense)


def calculate_monthly_trend(
    transactions: Iterable[Transaction],
    end: Optional[date] = None,
    months: int = 12,
) -> list[MonthlySummary]:
    """Income/expense per calendar month for the ``months`` months up to ``end``."""
    end = end or local_today()
    first = add_months(month_start(end), -(months - 1))
    last = month_end(end)

    by_month: dict[tuple[int, int], list[int]] = {}
    for txn in transactions:
        txn_date = to_date(txn.date)
        if txn_date is None or not first <= txn_date <= last:
            continue
        totals = by_month.setdefault((txn_date.year, txn_date.month), [0, 0])
        if txn.type == TransactionType.income:
            totals[0] += txn.amount_cents
        elif txn.type == TransactionType.expense:
            totals[1] += txn.amount_cents

    trend = []
    for offset in range(months):
        current = add_months(first, offset)
        income, expenses = by_month.get((current.year, current.month), [0, 0])
        net = income - expenses
        rate = 0.0
        if income > 0:
            rate = float(
                (Decimal(net) * 100 / Decimal(income)).quantize(
                    Decimal("0.01"), rounding=ROUND_HALF_UP
                )
            )
        trend.append(
            MonthlySummary(
                month=current.strftime("%Y-%m"),
                income=income,
                expenses=expenses,
                net_savings=net,
                savings_rate=rate,
            )
        )
    return trend
