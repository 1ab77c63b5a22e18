from datetime import date

from metrics import (
    DEFAULT_CATEGORY_COLOR,
    RawCategoryFallback,
    ResolvedCategory,
    calculate_account_based_metrics,
    calculate_account_type_summary,
    calculate_category_stats,
    calculate_monthly_trend,
    calculate_overview_metrics,
    calculate_user_flow_summary,
    resolve_category,
)
from models import Account, Category, Transaction, TransactionType


def _account(account_id: str, account_type: str, user_ids: list[str], balance: int) -> Account:
    return Account(
        id=account_id,
        name=account_id,
        type=account_type,
        user_ids=user_ids,
        balance_cents=balance,
    )


def _txn(
    txn_id: str,
    txn_type: TransactionType,
    amount: int,
    account_id: str,
    to_account_id: str | None = None,
    user_id: str = "u1",
    category: str = "misc",
    on: date = date(2024, 1, 15),
) -> Transaction:
    return Transaction(
        id=txn_id,
        description=txn_id,
        amount_cents=amount,
        type=txn_type,
        category=category,
        date=on,
        account_id=account_id,
        to_account_id=to_account_id,
        user_id=user_id,
    )


def _household() -> tuple[list[Account], list[Transaction]]:
    accounts = [
        _account("cash", "cash", ["u1"], 500),
        _account("joint", "savings", ["u1", "u2"], 1000),
        _account("inv", "Investment", ["u2"], 300),
    ]
    transactions = [
        _txn("t1", TransactionType.income, 200, "cash"),
        _txn("t2", TransactionType.expense, 50, "cash"),
        _txn("t3", TransactionType.transfer, 100, "cash", "joint"),
        _txn("t4", TransactionType.expense, 40, "joint", user_id="u2"),
        _txn("t5", TransactionType.income, 70, "ghost"),
        _txn("t6", TransactionType.transfer, 30, "inv", "ghost", user_id="u2"),
    ]
    return accounts, transactions


def test_internal_transfer_moves_between_type_buckets_only() -> None:
    accounts = [
        _account("cash", "cash", ["u1"], 0),
        _account("savings", "savings", ["u1"], 0),
    ]
    transfer = [_txn("t1", TransactionType.transfer, 100, "cash", "savings")]

    overview = calculate_overview_metrics(transfer, {"cash", "savings"})
    assert overview.total_earned == 0
    assert overview.total_spent == 0
    assert overview.total_transferred == 100

    [summary] = calculate_user_flow_summary(transfer, accounts, ["u1"])
    rows = {row.type: row for row in summary.accounts}
    assert rows["cash"].spent == 100
    assert rows["savings"].earned == 100


def test_overview_for_user_and_group() -> None:
    accounts, transactions = _household()

    user = calculate_overview_metrics(transactions, {"cash", "joint"}, user_id="u1")
    assert (user.total_earned, user.total_spent, user.total_transferred) == (200, 50, 100)
    assert user.total_balance == user.total_earned - user.total_spent

    group = calculate_overview_metrics(transactions, [a.id for a in accounts])
    assert (group.total_earned, group.total_spent, group.total_transferred) == (200, 120, 130)
    assert group.total_balance == 80


def test_account_based_metrics_agree_with_overview() -> None:
    accounts, transactions = _household()
    owned = [a.id for a in accounts]

    overview = calculate_overview_metrics(transactions, owned)
    based = calculate_account_based_metrics(transactions, owned)
    assert based.money_in == overview.total_earned
    assert based.money_out == overview.total_spent
    assert based.internal_transfers == 100
    assert based.balance == based.money_in - based.money_out


def test_overview_of_empty_input_is_zero() -> None:
    overview = calculate_overview_metrics([], set())
    assert (overview.total_earned, overview.total_spent, overview.total_balance) == (0, 0, 0)


def test_user_flow_summary_per_user_in_request_order() -> None:
    accounts, transactions = _household()

    u2, u1, u3 = calculate_user_flow_summary(transactions, accounts, ["u2", "u1", "u3"])

    assert u1.user_id == "u1"
    assert [row.type for row in u1.accounts] == ["savings", "cash"]
    cash = u1.accounts[1]
    assert (cash.earned, cash.spent, cash.net, cash.balance) == (200, 150, 50, 500)
    savings = u1.accounts[0]
    assert (savings.earned, savings.spent, savings.balance) == (100, 0, 1000)
    assert (u1.total_earned, u1.total_spent, u1.net_flow) == (300, 150, 150)
    assert u1.total_balance == 1500

    # The shared account credits its full balance to both owners.
    assert [row.type for row in u2.accounts] == ["savings", "investments"]
    assert u2.accounts[0].balance == 1000
    assert u2.accounts[0].spent == 40
    assert u2.accounts[1].spent == 30
    assert (u2.total_earned, u2.total_spent, u2.net_flow) == (0, 70, -70)
    assert u2.total_balance == 1300

    assert u3.accounts == []
    assert (u3.total_earned, u3.total_spent, u3.total_balance) == (0, 0, 0)


def test_account_type_summary_is_group_wide() -> None:
    accounts, transactions = _household()

    rows = calculate_account_type_summary(transactions, accounts)

    assert [row.type for row in rows] == ["savings", "cash", "investments"]
    by_type = {row.type: row for row in rows}
    assert (by_type["cash"].earned, by_type["cash"].spent) == (200, 150)
    assert (by_type["savings"].earned, by_type["savings"].spent) == (100, 40)
    assert by_type["investments"].spent == 30
    assert by_type["investments"].net == -30


def test_category_stats_resolution_chain() -> None:
    categories = [
        Category(id="c-food", key="food", label="Food", color="#ff0000"),
        Category(id="c-salary", key="Salary", label="Salary", color=None),
    ]
    transactions = [
        _txn("t1", TransactionType.expense, 50, "cash", category="c-food"),
        _txn("t2", TransactionType.expense, 30, "cash", category="FOOD"),
        _txn("t3", TransactionType.income, 1000, "cash", category="salary"),
        _txn("t4", TransactionType.expense, 20, "cash", category="mystery"),
        _txn("t5", TransactionType.transfer, 500, "cash", "joint", category="food"),
        _txn("t6", TransactionType.income, 10, "cash", category="gift"),
    ]

    stats = calculate_category_stats(transactions, categories)

    assert [(s.id, s.name, s.total) for s in stats.expense] == [
        ("c-food", "Food", 80),
        ("mystery", "mystery", 20),
    ]
    assert stats.expense[0].color == "#ff0000"
    assert stats.expense[1].color == DEFAULT_CATEGORY_COLOR
    assert [(s.id, s.total) for s in stats.income] == [("c-salary", 1000), ("gift", 10)]
    assert stats.income[0].color == DEFAULT_CATEGORY_COLOR


def test_resolve_category_variants() -> None:
    categories = [Category(id="c-food", key="food", label="Food", color="#ff0000")]

    assert isinstance(resolve_category("c-food", categories), ResolvedCategory)
    assert isinstance(resolve_category("Food", categories), ResolvedCategory)
    fallback = resolve_category("rent", categories)
    assert isinstance(fallback, RawCategoryFallback)
    assert (fallback.id, fallback.name) == ("rent", "rent")


def test_monthly_trend() -> None:
    transactions = [
        _txn("dec", TransactionType.income, 999, "cash", on=date(2023, 12, 31)),
        _txn("j1", TransactionType.income, 1000, "cash", on=date(2024, 1, 5)),
        _txn("j2", TransactionType.expense, 250, "cash", on=date(2024, 1, 20)),
        _txn("f1", TransactionType.expense, 100, "cash", on=date(2024, 2, 10)),
        _txn("f2", TransactionType.transfer, 500, "cash", "joint", on=date(2024, 2, 11)),
        _txn("m1", TransactionType.income, 300, "cash", on=date(2024, 3, 1)),
        _txn("m2", TransactionType.expense, 400, "cash", on=date(2024, 3, 2)),
    ]

    trend = calculate_monthly_trend(transactions, end=date(2024, 3, 20), months=3)

    assert [m.month for m in trend] == ["2024-01", "2024-02", "2024-03"]
    assert (trend[0].income, trend[0].expenses, trend[0].net_savings) == (1000, 250, 750)
    assert trend[0].savings_rate == 75.0
    assert (trend[1].income, trend[1].net_savings, trend[1].savings_rate) == (0, -100, 0.0)
    assert trend[2].savings_rate == -33.33
