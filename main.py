import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from database import SessionLocal, commit_or_fail
from dates import add_days, local_today, month_end, month_start
from errors import NotFoundError, PersistenceFailure
from forecast import Forecast
from models import DebtAccount, DebtPayment, Transaction
from notifications import LogNotificationHost, Reminder
from periods import resolve_month, resolve_year
from recurrence import Occurrence
from scheduler import SchedulerManager
from schemas import (
    DebtAccountIn,
    LegacySnapshot,
    OccurrenceEditIn,
    PaymentIn,
    ReminderOut,
    Snapshot,
    SplitIn,
    TransactionIn,
    UserSettingsIn,
)
from services import (
    CategoryService,
    DebtService,
    ForecastService,
    RecurringService,
    ReminderService,
    SettingsService,
    TransactionService,
)
from snapshot import SnapshotService

logger = logging.getLogger(__name__)

app = FastAPI(title="Budget Forecast")

notification_host = LogNotificationHost()
scheduler_manager = SchedulerManager(notification_host)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(PersistenceFailure)
def persistence_failure_handler(request: Request, exc: PersistenceFailure):
    logger.error(f"persistence_failure: path={request.url.path} reason={exc}")
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


def http_error(exc: ValueError) -> HTTPException:
    status = 404 if isinstance(exc, NotFoundError) else 400
    return HTTPException(status_code=status, detail=str(exc))


def parse_date(value: Optional[str], name: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value!r}") from exc


def transaction_dict(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "type": txn.type.value,
        "amount_cents": txn.amount_cents,
        "category": txn.category,
        "note": txn.note,
        "is_recurring": txn.is_recurring,
        "frequency": txn.frequency.value if txn.frequency else None,
        "recurring_series_id": txn.recurring_series_id,
        "end_date": txn.end_date.isoformat() if txn.end_date else None,
        "paused": txn.paused,
        "ghost": False,
    }


def occurrence_dict(occurrence: Occurrence) -> dict[str, object]:
    return {
        "id": None,
        "date": occurrence.date.isoformat(),
        "type": occurrence.type.value,
        "amount_cents": occurrence.amount_cents,
        "category": occurrence.category,
        "note": occurrence.note,
        "is_recurring": False,
        "frequency": occurrence.frequency.value,
        "recurring_series_id": occurrence.series_id,
        "end_date": None,
        "paused": False,
        "ghost": True,
    }


def forecast_dict(forecast: Forecast) -> dict[str, object]:
    return {
        "month": forecast.month.strftime("%Y-%m"),
        "total_income_cents": forecast.total_income_cents,
        "total_expense_cents": forecast.total_expense_cents,
        "net_cents": forecast.net_cents,
        "category_totals": forecast.category_totals,
    }


def payment_dict(payment: DebtPayment) -> dict[str, object]:
    return {
        "date": payment.date.isoformat(),
        "amount_cents": payment.amount_cents,
        "interest_cents": payment.interest_cents,
        "note": payment.note,
    }


def account_dict(account: DebtAccount) -> dict[str, object]:
    return {
        "id": account.id,
        "name": account.name,
        "kind": account.kind.value,
        "limit_cents": account.limit_cents,
        "balance_cents": account.balance_cents,
        "interest_rate": str(account.interest_rate),
        "min_payment_cents": account.min_payment_cents,
        "due_date": account.due_date.isoformat() if account.due_date else None,
        "autopay": account.autopay,
        "payments": [payment_dict(p) for p in account.payments],
    }


def reminder_dict(reminder: Reminder) -> dict[str, object]:
    return ReminderOut(
        id=reminder.id,
        kind=reminder.kind.value,
        title=reminder.title,
        body=reminder.body,
        fire_at=reminder.fire_at,
        source_id=reminder.source_id,
    ).model_dump(mode="json")


@app.get("/api/forecast")
def api_forecast(request: Request, db: Session = Depends(get_db)):
    try:
        period = resolve_month(request.query_params.get("month"))
    except ValueError as exc:
        raise http_error(exc) from exc
    service = ForecastService(db)
    forecast = service.month(period)
    data = forecast_dict(forecast)
    data["net_forecast_cents"] = service.net(forecast)
    return data


@app.get("/api/forecast/year")
def api_forecast_year(request: Request, db: Session = Depends(get_db)):
    try:
        period = resolve_year(request.query_params.get("year"))
    except ValueError as exc:
        raise http_error(exc) from exc
    year = ForecastService(db).year(period.start.year)
    return {
        "year": year.year,
        "total_income_cents": year.total_income_cents,
        "total_expense_cents": year.total_expense_cents,
        "category_totals": year.category_totals,
        "months": [forecast_dict(m) for m in year.months],
    }


@app.get("/api/summary")
def api_summary(db: Session = Depends(get_db)):
    service = ForecastService(db)
    summary = service.summary()
    return {
        "monthly_income_cents": summary.monthly_income_cents,
        "recurring_expense_cents": summary.recurring_expense_cents,
        "debt_minimum_cents": summary.debt_minimum_cents,
        "total_obligation_cents": summary.total_obligation_cents,
        "net_forecast_cents": summary.net_forecast_cents,
        "savings_rate": summary.savings_rate,
        "total_debt_cents": summary.total_debt_cents,
        "utilization": [
            {"account_id": u.account_id, "name": u.name, "percent": u.percent}
            for u in summary.utilization
        ],
        "upcoming": [
            {
                "kind": item.kind,
                "title": item.title,
                "date": item.date.isoformat(),
                "amount_cents": item.amount_cents,
                "source_id": item.source_id,
            }
            for item in service.upcoming()
        ],
    }


@app.get("/api/transactions")
def api_transactions(request: Request, db: Session = Depends(get_db)):
    """Recorded transactions plus projected occurrences not yet recorded."""
    today = local_today()
    start = parse_date(request.query_params.get("start"), "start") or month_start(today)
    end = parse_date(request.query_params.get("end"), "end") or month_end(today)
    if end < start:
        raise HTTPException(status_code=400, detail="End date is before start date")
    items = [transaction_dict(t) for t in TransactionService(db).between(start, end)]
    if request.query_params.get("ghosts", "1") != "0":
        items.extend(
            occurrence_dict(o) for o in RecurringService(db).ghosts_between(start, end)
        )
    items.sort(key=lambda item: (item["date"], item["ghost"]), reverse=True)
    return {"start": start.isoformat(), "end": end.isoformat(), "items": items}


@app.post("/api/transactions", status_code=201)
def create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_dict(txn)


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int, data: TransactionIn, db: Session = Depends(get_db)
):
    try:
        txn = TransactionService(db).update(transaction_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_dict(txn)


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/series")
def list_series(db: Session = Depends(get_db)):
    return {"items": [transaction_dict(m) for m in RecurringService(db).masters()]}


@app.post("/api/series/{series_id}/pause")
def pause_series(series_id: int, db: Session = Depends(get_db)):
    try:
        master = RecurringService(db).set_paused(series_id, True)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_dict(master)


@app.post("/api/series/{series_id}/resume")
def resume_series(series_id: int, db: Session = Depends(get_db)):
    try:
        master = RecurringService(db).set_paused(series_id, False)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_dict(master)


@app.post("/api/series/{series_id}/split")
def split_series(series_id: int, data: SplitIn, db: Session = Depends(get_db)):
    try:
        result = RecurringService(db).split(series_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "closed": transaction_dict(result.closed_master),
        "created": transaction_dict(result.new_master),
    }


@app.put("/api/series/{series_id}/occurrences/{occurrence_date}")
def edit_occurrence(
    series_id: int,
    occurrence_date: str,
    data: OccurrenceEditIn,
    db: Session = Depends(get_db),
):
    on = parse_date(occurrence_date, "occurrence date")
    try:
        txn = RecurringService(db).edit_occurrence(series_id, on, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_dict(txn)


@app.post("/api/series/catch-up")
def catch_up_series(db: Session = Depends(get_db)):
    return {"posted": RecurringService(db).catch_up_all()}


@app.get("/api/debts")
def list_debts(db: Session = Depends(get_db)):
    return {"items": [account_dict(a) for a in DebtService(db).list_all()]}


@app.post("/api/debts", status_code=201)
def create_debt(data: DebtAccountIn, db: Session = Depends(get_db)):
    try:
        account = DebtService(db).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return account_dict(account)


@app.put("/api/debts/{account_id}")
def update_debt(account_id: int, data: DebtAccountIn, db: Session = Depends(get_db)):
    try:
        account = DebtService(db).update(account_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return account_dict(account)


@app.delete("/api/debts/{account_id}")
def delete_debt(account_id: int, db: Session = Depends(get_db)):
    try:
        DebtService(db).delete(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/debts/{account_id}/payments", status_code=201)
def record_debt_payment(
    account_id: int, data: PaymentIn, db: Session = Depends(get_db)
):
    service = DebtService(db)
    try:
        service.record_payment(account_id, data)
        account = service.get(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return account_dict(account)


@app.post("/api/debts/autopay")
def run_autopay(db: Session = Depends(get_db)):
    return {"applied": DebtService(db).run_autopay()}


@app.get("/api/reminders")
def list_reminders(db: Session = Depends(get_db)):
    return {"items": [reminder_dict(r) for r in ReminderService(db).compute()]}


@app.post("/api/reminders/reconcile")
def reconcile_reminders(db: Session = Depends(get_db)):
    scheduled = ReminderService(db).reconcile(notification_host)
    return {"scheduled": scheduled, "pending": len(notification_host.pending)}


@app.get("/api/categories")
def list_categories(db: Session = Depends(get_db)):
    return {
        "items": [
            {
                "id": c.id,
                "name": c.name,
                "type": c.type.value,
                "notifications_enabled": c.notifications_enabled,
            }
            for c in CategoryService(db).list_all()
        ]
    }


@app.get("/api/settings")
def get_user_settings(db: Session = Depends(get_db)):
    settings = SettingsService(db).get()
    commit_or_fail(db)
    return UserSettingsIn.model_validate(settings, from_attributes=True).model_dump()


@app.put("/api/settings")
def update_user_settings(data: UserSettingsIn, db: Session = Depends(get_db)):
    settings = SettingsService(db).update(data)
    return UserSettingsIn.model_validate(settings, from_attributes=True).model_dump()


@app.get("/api/snapshot")
def export_snapshot(db: Session = Depends(get_db)):
    return SnapshotService(db).load().model_dump(mode="json")


@app.put("/api/snapshot")
def replace_snapshot(snapshot: Snapshot, db: Session = Depends(get_db)):
    try:
        SnapshotService(db).save(snapshot)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"transactions": len(snapshot.transactions)}


@app.post("/api/snapshot/legacy")
def import_legacy_snapshot(payload: LegacySnapshot, db: Session = Depends(get_db)):
    try:
        result = SnapshotService(db).import_legacy(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "transactions": len(result.snapshot.transactions),
        "debt_accounts": len(result.snapshot.debt_accounts),
        "categories": len(result.snapshot.categories),
        "warnings": result.warnings,
    }


@app.get("/api/upcoming")
def api_upcoming(request: Request, db: Session = Depends(get_db)):
    try:
        days = int(request.query_params.get("days", "14"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid days") from exc
    days = min(max(days, 0), 90)
    today = local_today()
    return {
        "until": add_days(today, days).isoformat(),
        "items": [
            {
                "kind": item.kind,
                "title": item.title,
                "date": item.date.isoformat(),
                "amount_cents": item.amount_cents,
                "source_id": item.source_id,
            }
            for item in ForecastService(db).upcoming(today, days)
        ],
    }
