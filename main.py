import logging
from dataclasses import asdict
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from sqlalchemy.orm import Session

from budgets import budget_status, calculate_user_budget_summary
from classifier import ReportContractError
from database import SessionLocal
from models import RecurringTransactionSeries, Transaction
from periods import Period, resolve_period
from recurrence import (
    calculate_totals,
    find_missed_executions,
    reconcile_series,
    series_status,
)
from scheduler import SchedulerManager
from schemas import (
    BudgetPeriodCloseIn,
    BudgetPeriodStartIn,
    RecurringSeriesIn,
    TransactionIn,
)
from services import (
    BudgetPeriodService,
    FinanceRepository,
    RecurringSeriesService,
    ReportDataError,
    ReportService,
    ReportsBundle,
    TransactionService,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Family Finance Reports")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_report_service() -> ReportService:
    return ReportService()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def period_from_request(request: Request) -> Optional[Period]:
    period_slug = request.query_params.get("period")
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    if not period_slug and not start and not end:
        return None
    try:
        return resolve_period(period_slug or "custom", start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _status_for(exc: ValueError) -> int:
    return 404 if "not found" in str(exc).lower() else 400


async def _bundle(
    request: Request, service: ReportService
) -> ReportsBundle:
    period = period_from_request(request)
    try:
        return await service.build_reports(
            group_id=request.query_params.get("group_id"),
            user_id=request.query_params.get("user_id"),
            start=period.start if period else None,
            end=period.end if period else None,
        )
    except ReportDataError as exc:
        logger.warning(f"report_unavailable: path={request.url.path} error={exc}")
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def _transaction_json(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "description": txn.description,
        "date": txn.date.isoformat(),
        "type": txn.type.value,
        "amount_cents": txn.amount_cents,
        "category": txn.category,
        "account_id": txn.account_id,
        "to_account_id": txn.to_account_id,
        "user_id": txn.user_id,
        "recurring_series_id": txn.recurring_series_id,
    }


def _series_json(series: RecurringTransactionSeries) -> dict[str, object]:
    return {
        "id": series.id,
        "description": series.description,
        "type": series.type.value,
        "amount_cents": series.amount_cents,
        "frequency": series.frequency.value,
        "due_day": series.due_day,
        "is_active": series.is_active,
        "total_executions": series.total_executions,
        "failed_executions": series.failed_executions,
        "status": asdict(series_status(series)),
    }


@app.get("/api/reports")
async def api_reports(
    request: Request, service: ReportService = Depends(get_report_service)
):
    return asdict(await _bundle(request, service))


@app.get("/api/reports/overview")
async def api_overview(
    request: Request, service: ReportService = Depends(get_report_service)
):
    bundle = await _bundle(request, service)
    return {
        "overview": asdict(bundle.overview),
        "account_metrics": asdict(bundle.account_metrics),
        "trend": [asdict(month) for month in bundle.trend],
    }


@app.get("/api/reports/flows")
async def api_flows(
    request: Request, service: ReportService = Depends(get_report_service)
):
    bundle = await _bundle(request, service)
    return {"users": [asdict(summary) for summary in bundle.flows]}


@app.get("/api/reports/periods")
async def api_periods(
    request: Request, service: ReportService = Depends(get_report_service)
):
    bundle = await _bundle(request, service)
    return {"periods": [asdict(summary) for summary in bundle.periods]}


@app.get("/api/reports/categories")
async def api_categories(
    request: Request, service: ReportService = Depends(get_report_service)
):
    bundle = await _bundle(request, service)
    return asdict(bundle.categories)


@app.get("/api/budgets/summary")
def api_budget_summary(user_id: Optional[str] = None, db: Session = Depends(get_db)):
    repo = FinanceRepository(db)
    period = BudgetPeriodService(db).active(user_id) if user_id else None
    try:
        summary = calculate_user_budget_summary(
            user_id,
            repo.fetch_budgets(user_id=user_id),
            repo.fetch_transactions(user_id=user_id),
            period,
        )
    except ReportContractError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    data = asdict(summary)
    for row, progress in zip(data["budgets"], summary.budgets):
        row["status"] = budget_status(progress.percentage)
    return data


@app.post("/api/transactions")
def api_create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc
    return _transaction_json(txn)


@app.delete("/api/transactions/{transaction_id}")
def api_delete_transaction(transaction_id: str, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"deleted": transaction_id}


@app.get("/api/recurring")
def api_recurring(
    group_id: Optional[str] = None,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    series = RecurringSeriesService(db).list(group_id, user_id)
    return {
        "series": [_series_json(s) for s in series],
        "totals": asdict(calculate_totals(series)),
    }


@app.post("/api/recurring")
def api_create_recurring(data: RecurringSeriesIn, db: Session = Depends(get_db)):
    try:
        series = RecurringSeriesService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc
    return _series_json(series)


@app.post("/api/recurring/execute")
def api_execute_recurring(
    dry_run: bool = False,
    today: Optional[date] = None,
    db: Session = Depends(get_db),
):
    result = RecurringSeriesService(db).execute_due(today, dry_run=dry_run)
    return {
        "executed": [_transaction_json(txn) for txn in result.executed],
        "failed": [asdict(failure) for failure in result.failed],
        "summary": {
            "total_processed": result.total_processed,
            "successful": result.successful,
            "failed": result.failed_count,
            "total_amount": result.total_amount,
        },
    }


@app.get("/api/recurring/missed")
def api_missed_recurring(group_id: Optional[str] = None, db: Session = Depends(get_db)):
    repo = FinanceRepository(db)
    missed = find_missed_executions(
        repo.fetch_recurring_series(group_id),
        repo.fetch_transactions(group_id=group_id),
    )
    return {"missed": [asdict(item) for item in missed]}


@app.get("/api/recurring/{series_id}/reconciliation")
def api_reconcile_recurring(series_id: str, db: Session = Depends(get_db)):
    service = RecurringSeriesService(db)
    try:
        series = service.get(series_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(reconcile_series(series, series.transactions))


@app.post("/api/recurring/{series_id}/toggle")
def api_toggle_recurring(series_id: str, is_active: bool, db: Session = Depends(get_db)):
    try:
        series = RecurringSeriesService(db).set_active(series_id, is_active)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _series_json(series)


@app.delete("/api/recurring/{series_id}")
def api_delete_recurring(series_id: str, db: Session = Depends(get_db)):
    try:
        RecurringSeriesService(db).delete(series_id)
    except ValueError as exc:
        raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc
    return {"deleted": series_id}


@app.post("/api/budget-periods/start")
def api_start_period(data: BudgetPeriodStartIn, db: Session = Depends(get_db)):
    try:
        period = BudgetPeriodService(db).start_period(data.user_id, data.start_date)
    except ValueError as exc:
        raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc
    return {
        "id": period.id,
        "user_id": period.user_id,
        "start_date": period.start_date.isoformat(),
        "end_date": None,
    }


@app.post("/api/budget-periods/{period_id}/close")
def api_close_period(
    period_id: str, data: BudgetPeriodCloseIn, db: Session = Depends(get_db)
):
    try:
        closed = BudgetPeriodService(db).close_period(
            data.user_id, period_id, data.end_date, start_next=data.start_next
        )
    except ValueError as exc:
        raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc
    next_period = closed.next_period
    return {
        "id": closed.period.id,
        "start_date": closed.period.start_date.isoformat(),
        "end_date": closed.period.end_date.isoformat(),
        "totals": asdict(closed.totals),
        "next_period_id": next_period.id if next_period else None,
    }
