import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from catalog import CATEGORY_CATALOG
from config import get_settings
from database import SessionLocal, init_db
from models import TransactionType
from periods import Period, resolve_period
from schemas import BudgetIn, CurrencyIn, GoalIn, RecurringPaymentIn, TransactionIn
from services import (
    BudgetService,
    DashboardService,
    GoalService,
    NotFoundError,
    RecurringPaymentService,
    SettingsService,
    TransactionService,
)
from storage import BlobStore
from store import FinanceStore

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tracker")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_store(db: Session = Depends(get_db)) -> FinanceStore:
    return FinanceStore.load(BlobStore(db))


def _http_error(exc: ValueError) -> HTTPException:
    status = 404 if isinstance(exc, NotFoundError) else 400
    return HTTPException(status_code=status, detail=str(exc))


def period_from_request(request: Request) -> Period:
    period_slug = request.query_params.get("period")
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    try:
        return resolve_period(period_slug, start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.on_event("startup")
def startup_event():
    init_db()
    logger.info("Finance tracker started")


@app.get("/api/categories")
def list_categories():
    return {kind.value: list(labels) for kind, labels in CATEGORY_CATALOG.items()}


@app.get("/api/transactions")
def list_transactions(
    month: Optional[str] = None, store: FinanceStore = Depends(get_store)
):
    service = DashboardService(store)
    try:
        if month:
            service.select_period(month)
        return TransactionService(store).list(month)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/api/transactions", status_code=201)
def create_transaction(data: TransactionIn, store: FinanceStore = Depends(get_store)):
    try:
        return TransactionService(store).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: str, data: TransactionIn, store: FinanceStore = Depends(get_store)
):
    try:
        return TransactionService(store).update(transaction_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: str,
    confirm: bool = False,
    store: FinanceStore = Depends(get_store),
):
    try:
        TransactionService(store).delete(transaction_id, confirm=confirm)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/recurring")
def list_recurring(store: FinanceStore = Depends(get_store)):
    service = RecurringPaymentService(store)
    return {"items": service.list(), "statistics": service.monthly_commitments()}


@app.post("/api/recurring", status_code=201)
def create_recurring(
    data: RecurringPaymentIn, store: FinanceStore = Depends(get_store)
):
    try:
        return RecurringPaymentService(store).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.put("/api/recurring/{title}")
def update_recurring(
    title: str, data: RecurringPaymentIn, store: FinanceStore = Depends(get_store)
):
    try:
        return RecurringPaymentService(store).update(title, data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/api/recurring/{title}/active")
def toggle_recurring(
    title: str, active: bool, store: FinanceStore = Depends(get_store)
):
    try:
        return RecurringPaymentService(store).set_active(title, active)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/recurring/{title}", status_code=204)
def delete_recurring(
    title: str, confirm: bool = False, store: FinanceStore = Depends(get_store)
):
    try:
        RecurringPaymentService(store).delete(title, confirm=confirm)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/goals")
def list_goals(month: Optional[str] = None, store: FinanceStore = Depends(get_store)):
    try:
        if month:
            DashboardService(store).select_period(month)
        return GoalService(store).overview(month)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/api/goals", status_code=201)
def create_goal(data: GoalIn, store: FinanceStore = Depends(get_store)):
    try:
        return GoalService(store).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.put("/api/goals/{title}")
def update_goal(title: str, data: GoalIn, store: FinanceStore = Depends(get_store)):
    try:
        return GoalService(store).update(title, data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/api/goals/{title}/achieve")
def achieve_goal(title: str, store: FinanceStore = Depends(get_store)):
    try:
        return GoalService(store).mark_achieved(title)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/goals/{title}", status_code=204)
def delete_goal(
    title: str, confirm: bool = False, store: FinanceStore = Depends(get_store)
):
    try:
        GoalService(store).delete(title, confirm=confirm)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/budgets")
def list_budgets(month: Optional[str] = None, store: FinanceStore = Depends(get_store)):
    try:
        if month:
            DashboardService(store).select_period(month)
        return BudgetService(store).progress(month)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.put("/api/budgets")
def upsert_budget(data: BudgetIn, store: FinanceStore = Depends(get_store)):
    try:
        return BudgetService(store).upsert(data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/budgets/{transaction_type}/{category}", status_code=204)
def delete_budget(
    transaction_type: TransactionType,
    category: str,
    confirm: bool = False,
    store: FinanceStore = Depends(get_store),
):
    try:
        BudgetService(store).delete(transaction_type, category, confirm=confirm)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/summary")
def summary(month: Optional[str] = None, store: FinanceStore = Depends(get_store)):
    service = DashboardService(store)
    try:
        service.select_period(month)
        return service.summary()
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/reports")
def report(request: Request, store: FinanceStore = Depends(get_store)):
    period = period_from_request(request)
    return DashboardService(store).report(period)


@app.get("/api/settings/currency")
def get_currency(store: FinanceStore = Depends(get_store)):
    return {"currency": SettingsService(store).currency()}


@app.put("/api/settings/currency")
def set_currency(data: CurrencyIn, store: FinanceStore = Depends(get_store)):
    return {"currency": SettingsService(store).set_currency(data)}


@app.get("/api/export")
def export_json(store: FinanceStore = Depends(get_store)):
    content = SettingsService(store).export_json()
    return Response(
        content=content,
        media_type="application/json",
        headers={"Content-Disposition": 'attachment; filename="finance-data-backup.json"'},
    )


@app.get("/api/export.csv")
def export_csv(store: FinanceStore = Depends(get_store)):
    content = SettingsService(store).export_csv()
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="transactions.csv"'},
    )


@app.post("/api/clear", status_code=204)
def clear_data(confirm: bool = False, store: FinanceStore = Depends(get_store)):
    try:
        SettingsService(store).clear_all(confirm=confirm)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)
