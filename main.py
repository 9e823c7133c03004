import logging
import math
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError as SchemaError

from backends import StorageBackend
from config import get_settings
from database import get_backend
from errors import ConflictError, NotFoundError, ValidationError
from models import BudgetPeriod
from periods import current_period_spending, spending_by_period
from schemas import (
    BudgetIn,
    BudgetOut,
    BudgetUpdate,
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
)
from services import BudgetService, CategoryService, TransactionService, UserService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BUDGET_AMOUNT_ERROR = "Budget amount must be greater than zero."
BUDGET_PERIOD_ERROR = "Budget period must be weekly or monthly."
EXPENSE_AMOUNT_ERROR = "Expense amount must be greater than zero."
EXPENSE_CATEGORY_ERROR = "Expense category is required."
UNKNOWN_CATEGORY_ERROR = (
    "Category does not exist. Create it first before logging expenses."
)

app = FastAPI(title="WalletAlert API")


@app.on_event("startup")
def startup_event():
    backend = get_backend()
    logger.info(f"startup: storage backend={backend.name}")


@app.exception_handler(ValidationError)
def _validation_error(_request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
def _not_found(_request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConflictError)
def _conflict(_request: Request, exc: ConflictError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


def get_owner_id(x_dev_sub: Optional[str] = Header(default=None)) -> str:
    # Token verification happens upstream; this only reads the subject.
    return (x_dev_sub or "").strip() or get_settings().dev_owner_id


def _positive_amount(value: Any, message: str) -> float:
    if isinstance(value, bool):
        raise HTTPException(status_code=400, detail=message)
    try:
        amount = float(value)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=message) from exc
    if not math.isfinite(amount) or amount <= 0:
        raise HTTPException(status_code=400, detail=message)
    return amount


def _build(schema, data: dict[str, Any]):
    try:
        return schema.model_validate(data)
    except SchemaError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _budget_period(value: Any) -> str:
    try:
        return BudgetPeriod(value).value
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=BUDGET_PERIOD_ERROR) from exc


def _require_known_category(
    backend: StorageBackend, owner_id: str, value: Any
) -> str:
    if not value or not isinstance(value, str):
        raise HTTPException(status_code=400, detail=EXPENSE_CATEGORY_ERROR)
    name = value.strip()
    if not CategoryService(backend, owner_id).exists(name):
        raise HTTPException(status_code=400, detail=UNKNOWN_CATEGORY_ERROR)
    return name


@app.get("/api/health")
def health():
    return {"ok": True}


@app.post("/api/bootstrap")
def bootstrap(
    response: Response,
    owner_id: str = Depends(get_owner_id),
    x_dev_email: Optional[str] = Header(default=None),
    backend: StorageBackend = Depends(get_backend),
):
    user, created = UserService(backend, owner_id).upsert(x_dev_email)
    response.status_code = 201 if created else 200
    return {"user": user, "created": created}


@app.get("/api/budgets", response_model=list[BudgetOut])
def list_budgets(
    owner_id: str = Depends(get_owner_id),
    backend: StorageBackend = Depends(get_backend),
):
    return BudgetService(backend, owner_id).list_all()


@app.post("/api/budgets", response_model=BudgetOut, status_code=201)
def create_budget(
    payload: dict[str, Any] = Body(...),
    owner_id: str = Depends(get_owner_id),
    backend: StorageBackend = Depends(get_backend),
):
    amount = _positive_amount(payload.get("amount"), BUDGET_AMOUNT_ERROR)
    period = payload.get("period") or BudgetPeriod.weekly.value
    data = _build(
        BudgetIn,
        {
            "period": _budget_period(period),
            "amount": amount,
            "categories": payload.get("categories"),
        },
    )
    return BudgetService(backend, owner_id).create(data)


@app.put("/api/budgets/{budget_id}", response_model=BudgetOut)
def update_budget(
    budget_id: str,
    payload: dict[str, Any] = Body(...),
    owner_id: str = Depends(get_owner_id),
    backend: StorageBackend = Depends(get_backend),
):
    changes = {k: payload[k] for k in ("period", "amount", "categories") if k in payload}
    if "amount" in changes:
        changes["amount"] = _positive_amount(changes["amount"], BUDGET_AMOUNT_ERROR)
    if changes.get("period"):
        changes["period"] = _budget_period(changes["period"])
    return BudgetService(backend, owner_id).update(
        budget_id, _build(BudgetUpdate, changes)
    )


@app.delete("/api/budgets/{budget_id}")
def delete_budget(
    budget_id: str,
    owner_id: str = Depends(get_owner_id),
    backend: StorageBackend = Depends(get_backend),
):
    return {"removed": BudgetService(backend, owner_id).delete(budget_id)}


@app.get("/api/transactions", response_model=list[TransactionOut])
def list_transactions(
    owner_id: str = Depends(get_owner_id),
    backend: StorageBackend = Depends(get_backend),
):
    return TransactionService(backend, owner_id).list_all()


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    payload: dict[str, Any] = Body(...),
    owner_id: str = Depends(get_owner_id),
    backend: StorageBackend = Depends(get_backend),
):
    amount = _positive_amount(payload.get("amount"), EXPENSE_AMOUNT_ERROR)
    category = _require_known_category(backend, owner_id, payload.get("category"))
    data = _build(
        TransactionIn,
        {
            "amount": amount,
            "category": category,
            "date": payload.get("date"),
            "description": payload.get("description"),
        },
    )
    return TransactionService(backend, owner_id).create(data)


@app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: str,
    payload: dict[str, Any] = Body(...),
    owner_id: str = Depends(get_owner_id),
    backend: StorageBackend = Depends(get_backend),
):
    changes = {
        k: payload[k]
        for k in ("amount", "category", "date", "description")
        if k in payload
    }
    if "amount" in changes:
        changes["amount"] = _positive_amount(changes["amount"], EXPENSE_AMOUNT_ERROR)
    if "category" in changes:
        changes["category"] = _require_known_category(
            backend, owner_id, changes["category"]
        )
    return TransactionService(backend, owner_id).update(
        transaction_id, _build(TransactionUpdate, changes)
    )


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: str,
    owner_id: str = Depends(get_owner_id),
    backend: StorageBackend = Depends(get_backend),
):
    return {"removed": TransactionService(backend, owner_id).delete(transaction_id)}


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(
    owner_id: str = Depends(get_owner_id),
    backend: StorageBackend = Depends(get_backend),
):
    return CategoryService(backend, owner_id).list_all()


@app.post("/api/categories", response_model=CategoryOut, status_code=201)
def create_category(
    payload: dict[str, Any] = Body(...),
    owner_id: str = Depends(get_owner_id),
    backend: StorageBackend = Depends(get_backend),
):
    data = _build(CategoryIn, payload)
    return CategoryService(backend, owner_id).create(data.name, data.emoji)


@app.put("/api/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: str,
    payload: dict[str, Any] = Body(...),
    owner_id: str = Depends(get_owner_id),
    backend: StorageBackend = Depends(get_backend),
):
    return CategoryService(backend, owner_id).update(
        category_id, _build(CategoryUpdate, payload)
    )


@app.delete("/api/categories/{category_id}")
def delete_category(
    category_id: str,
    owner_id: str = Depends(get_owner_id),
    backend: StorageBackend = Depends(get_backend),
):
    return {"removed": CategoryService(backend, owner_id).delete(category_id)}


@app.get("/api/spending")
def spending(
    owner_id: str = Depends(get_owner_id),
    backend: StorageBackend = Depends(get_backend),
):
    budgets = BudgetService(backend, owner_id).list_all()
    transactions = TransactionService(backend, owner_id).list_all()
    return {
        "current": current_period_spending(transactions, budgets),
        "by_period": spending_by_period(transactions, budgets),
    }
