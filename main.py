import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy.orm import Session

from database import SessionLocal
from models import EntryKind
from scheduler import SchedulerManager
from schemas import (
    DailyBalanceOut,
    EntryIn,
    EntryOut,
    MonthlyBalanceOut,
    PropagateIn,
    ReceiptItemIn,
    StartingBalanceIn,
)
from services import (
    BalancePropagator,
    EntryService,
    MonthlyBalanceService,
    PropagationResult,
    ReceiptService,
    get_current_user_id,
)
from store import MissingAnchorBalance, PersistenceFailure

logger = logging.getLogger(__name__)

app = FastAPI(title="Balance Ledger")


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _persistence_error(exc: PersistenceFailure) -> HTTPException:
    logger.error(f"api_persistence_failure: user_id={exc.user_id} month={exc.period}")
    return HTTPException(status_code=500, detail="Failed to update balances")


def _propagation_summary(result: PropagationResult) -> dict[str, object]:
    return {
        "state": result.state.value,
        "first_month": str(result.first) if result.first else None,
        "last_month": str(result.last) if result.last else None,
        "months": [
            MonthlyBalanceOut(
                year=step.period.year,
                month=step.period.month,
                starting_cents=step.starting_cents,
                remaining_cents=step.remaining_cents,
            ).model_dump()
            for step in result.months
        ],
    }


@app.get("/api/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


@app.get("/api/entries", response_model=list[EntryOut])
def list_entries(kind: Optional[EntryKind] = None, db: Session = Depends(get_db)):
    return EntryService(db).list(kind)


@app.post("/api/entries", response_model=EntryOut, status_code=201)
def create_entry(data: EntryIn, db: Session = Depends(get_db)):
    try:
        return EntryService(db).create(data)
    except PersistenceFailure as exc:
        raise _persistence_error(exc) from exc


@app.put("/api/entries/{entry_id}", response_model=EntryOut)
def update_entry(entry_id: int, data: EntryIn, db: Session = Depends(get_db)):
    try:
        return EntryService(db).update(entry_id, data)
    except PersistenceFailure as exc:
        raise _persistence_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.delete("/api/entries/{entry_id}", status_code=204)
def delete_entry(entry_id: int, db: Session = Depends(get_db)):
    try:
        EntryService(db).delete(entry_id)
    except PersistenceFailure as exc:
        raise _persistence_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/receipt-items", status_code=201)
def add_receipt_items(items: list[ReceiptItemIn], db: Session = Depends(get_db)):
    try:
        rows = ReceiptService(db).add_items(items)
    except PersistenceFailure as exc:
        raise _persistence_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"ids": [row.id for row in rows]}


@app.delete("/api/receipt-items/{item_id}", status_code=204)
def delete_receipt_item(item_id: int, db: Session = Depends(get_db)):
    try:
        ReceiptService(db).delete(item_id)
    except PersistenceFailure as exc:
        raise _persistence_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/balances", response_model=list[MonthlyBalanceOut])
def list_balances(
    year: Optional[int] = None,
    month: Optional[int] = None,
    db: Session = Depends(get_db),
):
    try:
        return MonthlyBalanceService(db).list(year, month)
    except PersistenceFailure as exc:
        raise _persistence_error(exc) from exc


@app.post("/api/balances", status_code=201)
def set_starting_balance(data: StartingBalanceIn, db: Session = Depends(get_db)):
    try:
        result = MonthlyBalanceService(db).set_starting_balance(data)
    except PersistenceFailure as exc:
        raise _persistence_error(exc) from exc
    return _propagation_summary(result)


@app.get("/api/balances/daily", response_model=list[DailyBalanceOut])
def daily_balances(year: int, month: int, db: Session = Depends(get_db)):
    try:
        days = MonthlyBalanceService(db).daily(year, month)
    except MissingAnchorBalance as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PersistenceFailure as exc:
        raise _persistence_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [
        DailyBalanceOut(
            date=day.day,
            starting_cents=day.starting_cents,
            income_cents=day.income_cents,
            expense_cents=day.expense_cents,
            remaining_cents=day.remaining_cents,
        )
        for day in days
    ]


@app.post("/api/balances/initialize")
def initialize_balances(db: Session = Depends(get_db)):
    try:
        result = MonthlyBalanceService(db).initialize()
    except PersistenceFailure as exc:
        raise _persistence_error(exc) from exc
    return _propagation_summary(result)


@app.post("/api/balances/propagate")
def propagate_balances(data: PropagateIn, db: Session = Depends(get_db)):
    try:
        result = BalancePropagator(db).propagate(
            get_current_user_id(), data.anchor, data.horizon_months
        )
    except PersistenceFailure as exc:
        raise _persistence_error(exc) from exc
    return _propagation_summary(result)
