"""FastAPI backend exposing the financial store to the web and desktop shells."""
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from finance_tracker.api.financial_store import FinancialStore
from finance_tracker.core.exceptions import LocalWriteFailure, MalformedImport, NotFound
from finance_tracker.core.models import (
    CategoryCreate,
    CategoryEdit,
    InvestmentCreate,
    InvestmentEdit,
    TransactionCreate,
    TransactionEdit,
    TransactionType,
)
from finance_tracker.intelligence.investments import current_value

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build and load the store for the app's lifetime."""
    store = FinancialStore.from_config()
    await store.load()
    app.state.store = store
    yield
    store.close()


app = FastAPI(
    title="Finance Tracker API",
    description="Offline-first personal finance tracking with optional cloud sync",
    version="1.0.0",
    lifespan=lifespan
)


def get_store(request: Request) -> FinancialStore:
    """Dependency to get the financial store."""
    return request.app.state.store


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(LocalWriteFailure)
async def local_write_failure_handler(request: Request, exc: LocalWriteFailure):
    logger.error(f"Local write failed: {exc}")
    return JSONResponse(
        status_code=507,
        content={"detail": f"{exc}. The change is kept in memory; retry to persist it."}
    )


@app.exception_handler(MalformedImport)
async def malformed_import_handler(request: Request, exc: MalformedImport):
    return JSONResponse(status_code=400, content={"detail": f"Malformed import: {exc}"})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    # Edits that produce an invalid record (e.g. maturity before start)
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# === Request Models ===

class BudgetRequest(BaseModel):
    amount: float = Field(ge=0)


# === Summary ===

@app.get("/api/summary")
async def get_summary(
    year: Optional[int] = None,
    month: Optional[str] = None,
    store: FinancialStore = Depends(get_store)
):
    """Dashboard totals, category breakdown and cash flow for a period."""
    try:
        return store.get_summary(year, month)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# === Transactions ===

@app.get("/api/transactions")
async def get_transactions(
    year: Optional[int] = None,
    month: Optional[str] = None,
    type: Optional[TransactionType] = None,
    category_id: Optional[int] = None,
    store: FinancialStore = Depends(get_store)
):
    """List transactions, newest first, with optional filters."""
    transactions = store.list_transactions(year, month, type, category_id)
    return {
        "transactions": [
            {**t.to_record(), "categoryName": store.category_name(t.category_id)}
            for t in transactions
        ],
        "total": len(transactions),
    }


@app.post("/api/transactions")
async def create_transaction(
    transaction: TransactionCreate,
    store: FinancialStore = Depends(get_store)
):
    """Add a transaction; recurring rules create their occurrences too."""
    created = await store.add_transaction(transaction)
    return {"created": [t.to_record() for t in created], "count": len(created)}


@app.get("/api/transactions/{txn_id}")
async def get_transaction(txn_id: int, store: FinancialStore = Depends(get_store)):
    return store.get_transaction(txn_id).to_record()


@app.get("/api/transactions/{txn_id}/group")
async def get_transaction_group(txn_id: int, store: FinancialStore = Depends(get_store)):
    """Members a group edit or delete would touch (for the confirmation prompt)."""
    members = store.group_members(txn_id)
    return {"transactions": [t.to_record() for t in members], "count": len(members)}


@app.put("/api/transactions/{txn_id}")
async def update_transaction(
    txn_id: int,
    edit: TransactionEdit,
    apply_to_group: bool = False,
    store: FinancialStore = Depends(get_store)
):
    """Edit one transaction, or its whole recurring group."""
    updated = await store.edit_transaction(txn_id, edit, apply_to_group=apply_to_group)
    return {"updated": [t.to_record() for t in updated], "count": len(updated)}


@app.delete("/api/transactions/{txn_id}")
async def delete_transaction(
    txn_id: int,
    apply_to_group: bool = False,
    store: FinancialStore = Depends(get_store)
):
    removed = await store.delete_transaction(txn_id, apply_to_group=apply_to_group)
    return {"removed": removed}


# === Categories ===

@app.get("/api/categories")
async def get_categories(
    type: Optional[TransactionType] = None,
    store: FinancialStore = Depends(get_store)
):
    return [c.to_record() for c in store.list_categories(type)]


@app.post("/api/categories")
async def create_category(category: CategoryCreate, store: FinancialStore = Depends(get_store)):
    return (await store.add_category(category)).to_record()


@app.put("/api/categories/{category_id}")
async def update_category(
    category_id: int,
    edit: CategoryEdit,
    store: FinancialStore = Depends(get_store)
):
    return (await store.edit_category(category_id, edit)).to_record()


@app.delete("/api/categories/{category_id}")
async def delete_category(category_id: int, store: FinancialStore = Depends(get_store)):
    """Delete a category. Its transactions become uncategorized."""
    await store.delete_category(category_id)
    return {"success": True}


# === Budgets ===

@app.get("/api/budgets")
async def get_budgets(store: FinancialStore = Depends(get_store)):
    return store.budgets


@app.put("/api/budgets/{month}")
async def set_budget(
    month: str,
    request: BudgetRequest,
    store: FinancialStore = Depends(get_store)
):
    try:
        return await store.set_budget(month, request.amount)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete("/api/budgets/{month}")
async def delete_budget(month: str, store: FinancialStore = Depends(get_store)):
    if not await store.delete_budget(month):
        raise HTTPException(status_code=404, detail="Budget not found")
    return {"success": True}


@app.get("/api/budgets/{month}/status")
async def get_budget_status(month: str, store: FinancialStore = Depends(get_store)):
    try:
        return store.budget_status(month)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# === Investments ===

@app.get("/api/investments")
async def get_investments(
    as_of: Optional[date] = None,
    store: FinancialStore = Depends(get_store)
):
    """Investments with their derived current values."""
    return store.investment_summary(as_of)


@app.post("/api/investments")
async def create_investment(
    investment: InvestmentCreate,
    store: FinancialStore = Depends(get_store)
):
    return (await store.add_investment(investment)).to_record()


@app.get("/api/investments/{investment_id}")
async def get_investment(
    investment_id: int,
    as_of: Optional[date] = None,
    store: FinancialStore = Depends(get_store)
):
    investment = store.get_investment(investment_id)
    return {
        **investment.to_record(),
        "currentValue": round(current_value(investment, as_of), 2),
    }


@app.put("/api/investments/{investment_id}")
async def update_investment(
    investment_id: int,
    edit: InvestmentEdit,
    store: FinancialStore = Depends(get_store)
):
    return (await store.edit_investment(investment_id, edit)).to_record()


@app.delete("/api/investments/{investment_id}")
async def delete_investment(investment_id: int, store: FinancialStore = Depends(get_store)):
    await store.delete_investment(investment_id)
    return {"success": True}


# === Backup ===

@app.get("/api/export")
async def export_data(store: FinancialStore = Depends(get_store)):
    """Download all datasets as one JSON backup."""
    filename = f"finance-tracker-backup-{date.today().isoformat()}.json"
    return JSONResponse(
        content=store.export_snapshot(),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@app.post("/api/import")
async def import_data(
    file: UploadFile = File(...),
    store: FinancialStore = Depends(get_store)
):
    """Restore datasets from a JSON backup file."""
    content = await file.read()
    imported = await store.import_snapshot(content)
    return {"imported": imported}


# === Sync ===

@app.get("/api/sync/status")
async def get_sync_status(store: FinancialStore = Depends(get_store)):
    return store.sync_status()


@app.post("/api/sync/online")
async def signal_online(store: FinancialStore = Depends(get_store)):
    """Connectivity restored; pushes local datasets once per transition."""
    pushed = await store.go_online()
    return {"status": store.sync_status(), "pushed": pushed}


@app.post("/api/sync/offline")
async def signal_offline(store: FinancialStore = Depends(get_store)):
    store.go_offline()
    return {"status": store.sync_status()}


@app.post("/api/sync/resync")
async def resync(store: FinancialStore = Depends(get_store)):
    pushed = await store.resync()
    return {"status": store.sync_status(), "pushed": pushed}
