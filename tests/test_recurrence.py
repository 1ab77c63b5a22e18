from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from classifier import ReportContractError
from database import Base
from models import (
    Account,
    Frequency,
    RecurringTransactionSeries,
    Transaction,
    TransactionType,
    User,
)
from recurrence import (
    RecurringEngine,
    calculate_days_until_due,
    calculate_monthly_amount,
    calculate_next_execution_date,
    calculate_totals,
    find_missed_executions,
    group_series_by_user,
    is_series_due,
    last_occurrence,
    reconcile_series,
    series_status,
)
from services import TransactionService

WEDNESDAY = date(2024, 1, 17)


def _series(
    frequency: Frequency,
    due_day: int = 1,
    start: date = date(2024, 1, 1),
    amount: int = 1000,
    series_type: TransactionType = TransactionType.expense,
    is_active: bool = True,
    **extra,
) -> RecurringTransactionSeries:
    fields = dict(
        id="s1",
        description="Rent",
        amount_cents=amount,
        type=series_type,
        category="rent",
        account_id="cash",
        frequency=frequency,
        due_day=due_day,
        start_date=start,
        is_active=is_active,
        total_executions=0,
        failed_executions=0,
        user_ids=["u1"],
    )
    fields.update(extra)
    return RecurringTransactionSeries(**fields)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _seed(session, **series_fields) -> RecurringTransactionSeries:
    session.add(User(id="u1", name="Ada"))
    session.add(
        Account(id="cash", name="Cash", type="cash", user_ids=["u1"], balance_cents=10_000)
    )
    series = _series(Frequency.monthly, due_day=5, amount=2_500, **series_fields)
    session.add(series)
    session.commit()
    return series


def test_weekly_never_returns_today() -> None:
    series = _series(Frequency.weekly, due_day=3)
    assert calculate_next_execution_date(series, WEDNESDAY) == date(2024, 1, 24)
    assert calculate_days_until_due(series, WEDNESDAY) == 7

    friday = _series(Frequency.weekly, due_day=5)
    assert calculate_next_execution_date(friday, WEDNESDAY) == date(2024, 1, 19)


def test_biweekly_uses_fourteen_day_cadence() -> None:
    assert calculate_next_execution_date(
        _series(Frequency.biweekly, due_day=3), WEDNESDAY
    ) == date(2024, 1, 31)
    assert calculate_next_execution_date(
        _series(Frequency.biweekly, due_day=1), WEDNESDAY
    ) == date(2024, 1, 29)


def test_monthly_clamps_to_short_months() -> None:
    end_of_month = _series(Frequency.monthly, due_day=31)
    assert calculate_next_execution_date(end_of_month, date(2024, 1, 31)) == date(2024, 2, 29)
    assert calculate_next_execution_date(end_of_month, date(2023, 1, 31)) == date(2023, 2, 28)

    mid_month = _series(Frequency.monthly, due_day=15)
    assert calculate_next_execution_date(mid_month, date(2024, 1, 10)) == date(2024, 1, 15)
    on_due_day = _series(Frequency.monthly, due_day=10)
    assert calculate_next_execution_date(on_due_day, date(2024, 1, 10)) == date(2024, 2, 10)


def test_yearly_anchors_on_start_month() -> None:
    series = _series(Frequency.yearly, due_day=10, start=date(2020, 3, 10))
    assert calculate_next_execution_date(series, date(2024, 1, 1)) == date(2024, 3, 10)
    assert calculate_next_execution_date(series, date(2024, 3, 10)) == date(2025, 3, 10)

    leap = _series(Frequency.yearly, due_day=29, start=date(2020, 2, 29))
    assert calculate_next_execution_date(leap, date(2024, 3, 1)) == date(2025, 2, 28)


def test_once_is_start_date_or_today() -> None:
    future = _series(Frequency.once, start=date(2024, 2, 1))
    assert calculate_next_execution_date(future, WEDNESDAY) == date(2024, 2, 1)
    assert not is_series_due(future, WEDNESDAY)

    past = _series(Frequency.once, start=date(2024, 1, 2))
    assert calculate_next_execution_date(past, WEDNESDAY) == WEDNESDAY
    assert is_series_due(past, WEDNESDAY)
    assert calculate_days_until_due(past, WEDNESDAY) == 0


def test_paused_series_is_never_due() -> None:
    paused = _series(Frequency.once, start=date(2024, 1, 2), is_active=False)
    assert not is_series_due(paused, WEDNESDAY)
    status = series_status(paused, WEDNESDAY)
    assert status.next_due_date == WEDNESDAY
    assert not status.is_due
    assert not status.is_overdue


def test_series_status_labels() -> None:
    weekly = series_status(_series(Frequency.weekly, due_day=5), WEDNESDAY)
    assert weekly.days_until_due == 2
    assert weekly.due_label == "In 2 days"
    yearly = series_status(
        _series(Frequency.yearly, due_day=10, start=date(2020, 3, 10)), WEDNESDAY
    )
    assert yearly.due_label == "10/03/2024"


def test_monthly_amounts_round_half_up() -> None:
    assert calculate_monthly_amount(_series(Frequency.weekly, amount=1000)) == 4330
    assert calculate_monthly_amount(_series(Frequency.weekly, amount=999)) == 4326
    assert calculate_monthly_amount(_series(Frequency.biweekly, amount=1000)) == 2170
    assert calculate_monthly_amount(_series(Frequency.monthly, amount=1000)) == 1000
    assert calculate_monthly_amount(_series(Frequency.yearly, amount=1200)) == 100
    assert calculate_monthly_amount(_series(Frequency.yearly, amount=1000)) == 83
    assert calculate_monthly_amount(_series(Frequency.once, amount=700)) == 700


def test_totals_equal_sum_of_monthly_amounts() -> None:
    series_list = [
        _series(Frequency.weekly, amount=999, series_type=TransactionType.income),
        _series(Frequency.yearly, amount=1000, series_type=TransactionType.income),
        _series(Frequency.biweekly, amount=1234),
        _series(Frequency.monthly, amount=5000),
        _series(Frequency.monthly, amount=7777, is_active=False),
    ]

    totals = calculate_totals(series_list)

    active = [s for s in series_list if s.is_active]
    income = sum(
        calculate_monthly_amount(s) for s in active if s.type == TransactionType.income
    )
    expenses = sum(
        calculate_monthly_amount(s) for s in active if s.type == TransactionType.expense
    )
    assert (totals.total_income, totals.total_expenses) == (income, expenses)
    assert totals.net_monthly == income - expenses
    assert totals.total_income == 4326 + 83


def test_group_series_by_user() -> None:
    shared = _series(Frequency.monthly, id="shared", user_ids=["u1", "u2"])
    mine = _series(Frequency.monthly, id="mine", user_ids=["u1"])

    grouped = group_series_by_user([shared, mine], ["u1", "u2", "u3"])

    assert [s.id for s in grouped["u1"]] == ["shared", "mine"]
    assert [s.id for s in grouped["u2"]] == ["shared"]
    assert "u3" not in grouped


def test_last_occurrence() -> None:
    monthly = _series(Frequency.monthly, due_day=5, start=date(2024, 1, 20))
    assert last_occurrence(monthly, date(2024, 1, 25)) is None
    assert last_occurrence(monthly, date(2024, 2, 7)) == date(2024, 2, 5)
    assert last_occurrence(monthly, date(2024, 3, 4)) == date(2024, 2, 5)

    weekly = _series(Frequency.weekly, due_day=1)
    assert last_occurrence(weekly, WEDNESDAY) == date(2024, 1, 15)

    biweekly = _series(Frequency.biweekly, due_day=1, start=date(2024, 1, 1))
    assert last_occurrence(biweekly, WEDNESDAY) == date(2024, 1, 15)
    assert last_occurrence(biweekly, date(2024, 1, 28)) == date(2024, 1, 15)
    assert last_occurrence(biweekly, date(2024, 1, 29)) == date(2024, 1, 29)

    ended = _series(Frequency.monthly, due_day=5, end_date=date(2024, 2, 1))
    assert last_occurrence(ended, date(2024, 2, 7)) is None

    once = _series(Frequency.once, start=date(2024, 1, 2))
    assert last_occurrence(once, WEDNESDAY) == date(2024, 1, 2)


def test_reconcile_series_reports_missed_payments() -> None:
    series = _series(Frequency.monthly, total_executions=3)
    transactions = [
        Transaction(id="a", amount_cents=1000, recurring_series_id="s1"),
        Transaction(id="b", amount_cents=1000, recurring_series_id="s1"),
        Transaction(id="c", amount_cents=1000, recurring_series_id="other"),
    ]

    reconciliation = reconcile_series(series, transactions)

    assert reconciliation.expected_executions == 3
    assert reconciliation.actual_executions == 2
    assert reconciliation.missed_payments == 1
    assert reconciliation.total_paid == 2000
    assert reconciliation.expected_total == 3000
    assert reconciliation.difference == -1000
    assert reconciliation.success_rate == 66.67

    [missed] = find_missed_executions([series], transactions)
    assert (missed.series_id, missed.missed_count) == ("s1", 1)


def test_engine_executes_due_series_once_per_occurrence() -> None:
    session = make_session()
    series = _seed(session)
    engine = RecurringEngine(session)

    result = engine.execute_all_due(today=date(2024, 2, 6), max_days_overdue=7)
    session.commit()

    assert (result.total_processed, result.successful, result.failed_count) == (1, 1, 0)
    assert result.total_amount == 2_500
    [txn] = result.executed
    assert txn.date == date(2024, 2, 5)
    assert txn.recurring_series_id == series.id
    assert txn.user_id == "u1"
    assert session.get(Account, "cash").balance_cents == 7_500
    assert series.total_executions == 1

    again = engine.execute_all_due(today=date(2024, 2, 6), max_days_overdue=7)
    assert again.total_processed == 0
    count = len(session.scalars(select(Transaction)).all())
    assert count == 1


def test_engine_skips_occurrences_beyond_overdue_window() -> None:
    session = make_session()
    _seed(session)

    result = RecurringEngine(session).execute_all_due(
        today=date(2024, 2, 20), max_days_overdue=7
    )

    assert result.total_processed == 0


def test_engine_never_executes_paused_series() -> None:
    session = make_session()
    series = _seed(session, is_active=False)
    engine = RecurringEngine(session)

    result = engine.execute_all_due(today=date(2024, 2, 6), max_days_overdue=7)
    assert result.total_processed == 0

    with pytest.raises(ReportContractError):
        engine.execute_series(series, date(2024, 2, 6))


def test_engine_dry_run_creates_nothing() -> None:
    session = make_session()
    _seed(session)

    result = RecurringEngine(session).execute_all_due(
        today=date(2024, 2, 6), dry_run=True, max_days_overdue=7
    )

    assert (result.total_processed, result.successful, result.total_amount) == (1, 1, 2_500)
    assert result.executed == []
    assert session.scalars(select(Transaction)).all() == []
    assert session.get(Account, "cash").balance_cents == 10_000


def test_engine_records_failures() -> None:
    session = make_session()
    series = _seed(session, account_id="missing")

    result = RecurringEngine(session).execute_all_due(
        today=date(2024, 2, 6), max_days_overdue=7
    )

    assert result.failed_count == 1
    assert result.failed[0].series_id == series.id
    assert "Account not found" in result.failed[0].error
    assert series.failed_executions == 1
    assert series.total_executions == 0


def test_deleted_execution_shows_up_in_reconciliation() -> None:
    session = make_session()
    series = _seed(session)
    result = RecurringEngine(session).execute_all_due(
        today=date(2024, 2, 6), max_days_overdue=7
    )
    session.commit()

    TransactionService(session).delete(result.executed[0].id)

    remaining = session.scalars(select(Transaction)).all()
    reconciliation = reconcile_series(series, remaining)
    assert reconciliation.missed_payments == 1
    assert session.get(Account, "cash").balance_cents == 10_000
