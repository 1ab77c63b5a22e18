from datetime import timedelta

from sqlalchemy import select

import scheduler
from database import Base, build_engine, build_session_factory, session_scope
from dates import local_today
from models import Account, Frequency, RecurringTransactionSeries, Transaction, TransactionType
from scheduler import SchedulerManager


def test_recurring_job_posts_pending_series(tmp_path, monkeypatch) -> None:
    engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'finance.db'}")
    Base.metadata.create_all(engine)
    factory = build_session_factory(engine)
    today = local_today()
    with factory() as session:
        session.add(Account(id="cash", name="Cash", type="cash", user_ids=[], balance_cents=0))
        session.add(
            RecurringTransactionSeries(
                id="salary",
                description="Salary",
                amount_cents=250_000,
                type=TransactionType.income,
                account_id="cash",
                frequency=Frequency.monthly,
                due_day=today.day,
                start_date=today - timedelta(days=60),
            )
        )
        session.commit()
    monkeypatch.setattr(scheduler, "session_scope", lambda: session_scope(factory))

    manager = SchedulerManager()
    first = manager.run_recurring("test")
    second = manager.run_recurring("test")

    assert (first.successful, second.total_processed) == (1, 0)
    with factory() as session:
        [txn] = session.scalars(select(Transaction)).all()
        assert txn.date == today
        assert session.get(Account, "cash").balance_cents == 250_000


def test_start_registers_daily_and_interval_jobs(monkeypatch) -> None:
    manager = SchedulerManager()
    calls = []
    monkeypatch.setattr(manager, "run_recurring", lambda source="manual": calls.append(source))

    manager.start()
    try:
        job_ids = sorted(job.id for job in manager.scheduler.get_jobs())
    finally:
        manager.stop()

    assert calls == ["startup"]
    assert job_ids == ["recurring_series_daily", "recurring_series_interval"]
    assert not manager.scheduler.running
