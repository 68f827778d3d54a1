"""API Routes for the friend ledger"""
from fastapi import APIRouter, HTTPException, Body, Depends, Request
from typing import Annotated, Optional, Set, Tuple
from services import expenses_service
from services.balances import summarize
from services.errors import (
    AuthContextMissing,
    ExpenseValidationError,
    LedgerError,
    NotFoundError,
    RetrievalError,
)
from models.expense import ExpenseIn, ExpenseUpdate, SettlementIn
from models.ledger import LedgerChange, LedgerSummary
from motor.motor_asyncio import AsyncIOMotorCollection
from config import get_settings
from utils.rate_limit import limiter, DEFAULT_RATE_LIMIT
import logging

router = APIRouter()
logger = logging.getLogger(__name__)

# --- Dependency Functions ---
def get_expenses_collection(request: Request) -> AsyncIOMotorCollection:
    """Dependency to get the MongoDB expenses collection from the request state."""
    collection = request.state.expenses_collection
    if collection is None:
        logger.error("Expenses collection not found in application state. Check MongoDB connection.")
        raise HTTPException(status_code=503, detail="Database service not available.")
    return collection

def get_owner_id(request: Request) -> Optional[str]:
    """The signed-in user's id, as forwarded by the identity provider."""
    owner_id = request.headers.get(get_settings().user_id_header, "").strip()
    return owner_id or None

def get_settlements_in_flight(request: Request) -> Set[Tuple[str, str]]:
    return request.state.settlements_in_flight

# Type hints for the dependencies
ExpensesCollectionDep = Annotated[AsyncIOMotorCollection, Depends(get_expenses_collection)]
OwnerDep = Annotated[Optional[str], Depends(get_owner_id)]
InFlightDep = Annotated[Set[Tuple[str, str]], Depends(get_settlements_in_flight)]

def _http_error(exc: LedgerError, action: str) -> HTTPException:
    """Map a ledger failure to the response shown to the user."""
    if isinstance(exc, AuthContextMissing):
        logger.warning(f"{action} rejected: no active session.")
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, ExpenseValidationError):
        logger.warning(f"{action} rejected: {exc}")
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFoundError):
        logger.warning(f"{action} failed: {exc}")
        return HTTPException(status_code=404, detail=str(exc))
    logger.error(f"{action} failed: {exc}")
    return HTTPException(status_code=503, detail=str(exc))

async def _ledger(collection: AsyncIOMotorCollection, owner_id: Optional[str]) -> LedgerSummary:
    expenses = await expenses_service.list_expenses(collection, owner_id)
    return summarize(expenses)

async def _after_write(collection: AsyncIOMotorCollection, owner_id: Optional[str], expense_id: Optional[str] = None) -> LedgerChange:
    """Re-fetches the ledger once a write has gone through. A failed refresh
    never turns the saved write into an error response."""
    try:
        ledger = await _ledger(collection, owner_id)
    except RetrievalError as e:
        logger.warning(f"Write saved but ledger refresh failed: {e}")
        return LedgerChange(id=expense_id, ledger=None)
    except Exception as e:
        logger.exception(f"Write saved but ledger refresh failed unexpectedly: {e}")
        return LedgerChange(id=expense_id, ledger=None)
    return LedgerChange(id=expense_id, ledger=ledger)

# --- API Routes ---

@router.get("/health", summary="Health Check")
async def health(request: Request):
    """Reports whether the document store answers a ping."""
    client = request.state.db_client
    if client is None:
        return {"status": "degraded", "database": False}
    try:
        await client.admin.command('ping')
    except Exception as e:
        logger.error(f"MongoDB ping failed: {e}")
        return {"status": "degraded", "database": False}
    return {"status": "ok", "database": True}

@router.get("/expenses", response_model=LedgerSummary, summary="Get Ledger", description="Retrieves the user's expenses, newest first, with total and per-friend balances.")
async def get_expenses(collection: ExpensesCollectionDep, owner_id: OwnerDep) -> LedgerSummary:
    logger.info("GET /expenses endpoint called.")
    try:
        return await _ledger(collection, owner_id)
    except LedgerError as e:
        raise _http_error(e, "Fetching expenses")
    except Exception as e:
        logger.exception(f"Unexpected error fetching expenses: {e}")
        raise HTTPException(status_code=500, detail="An unexpected server error occurred while fetching expenses.")

@router.post("/expenses", response_model=LedgerChange, status_code=201, summary="Add Expense")
@limiter.limit(DEFAULT_RATE_LIMIT)
async def add_expense(
    request: Request,
    collection: ExpensesCollectionDep,
    owner_id: OwnerDep,
    expense: Annotated[ExpenseIn, Body(...)],
) -> LedgerChange:
    """Validates and stores a new expense, then returns the refreshed ledger."""
    logger.info(f"POST /expenses endpoint called for friend '{expense.friend_name}'.")
    try:
        expense_id = await expenses_service.create_expense(
            collection, owner_id, expense.model_dump(), min_amount=get_settings().min_amount
        )
    except LedgerError as e:
        raise _http_error(e, "Adding expense")
    except Exception as e:
        logger.exception(f"Unexpected error adding expense: {e}")
        raise HTTPException(status_code=500, detail="An unexpected server error occurred while adding the expense.")
    return await _after_write(collection, owner_id, expense_id)

@router.patch("/expenses/{expense_id}", response_model=LedgerChange, summary="Edit Expense")
@limiter.limit(DEFAULT_RATE_LIMIT)
async def edit_expense(
    request: Request,
    expense_id: str,
    collection: ExpensesCollectionDep,
    owner_id: OwnerDep,
    changes: Annotated[ExpenseUpdate, Body(...)],
) -> LedgerChange:
    logger.info(f"PATCH /expenses/{expense_id} endpoint called.")
    try:
        await expenses_service.update_expense(
            collection, owner_id, expense_id,
            changes.model_dump(exclude_unset=True),
            min_amount=get_settings().min_amount,
        )
    except LedgerError as e:
        raise _http_error(e, f"Updating expense {expense_id}")
    except Exception as e:
        logger.exception(f"Unexpected error updating expense {expense_id}: {e}")
        raise HTTPException(status_code=500, detail="An unexpected server error occurred while updating the expense.")
    return await _after_write(collection, owner_id, expense_id)

@router.delete("/expenses/{expense_id}", response_model=LedgerChange, summary="Delete Expense")
@limiter.limit(DEFAULT_RATE_LIMIT)
async def remove_expense(
    request: Request,
    expense_id: str,
    collection: ExpensesCollectionDep,
    owner_id: OwnerDep,
) -> LedgerChange:
    logger.info(f"DELETE /expenses/{expense_id} endpoint called.")
    try:
        await expenses_service.delete_expense(collection, owner_id, expense_id)
    except LedgerError as e:
        raise _http_error(e, f"Deleting expense {expense_id}")
    except Exception as e:
        logger.exception(f"Unexpected error deleting expense {expense_id}: {e}")
        raise HTTPException(status_code=500, detail="An unexpected server error occurred while deleting the expense.")
    return await _after_write(collection, owner_id, expense_id)

@router.post("/settlements", response_model=LedgerChange, status_code=201, summary="Settle Friend Balance", description="Records a transaction that brings the friend's balance back to zero.")
@limiter.limit(DEFAULT_RATE_LIMIT)
async def settle(
    request: Request,
    collection: ExpensesCollectionDep,
    owner_id: OwnerDep,
    in_flight: InFlightDep,
    settlement: Annotated[SettlementIn, Body(...)],
) -> LedgerChange:
    logger.info(f"POST /settlements endpoint called for friend '{settlement.friend_name}'.")
    try:
        expense_id = await expenses_service.settle_friend(
            collection, owner_id, settlement.friend_name, in_flight
        )
    except LedgerError as e:
        raise _http_error(e, f"Settling with '{settlement.friend_name}'")
    except Exception as e:
        logger.exception(f"Unexpected error settling with '{settlement.friend_name}': {e}")
        raise HTTPException(status_code=500, detail="An unexpected server error occurred while settling the balance.")
    return await _after_write(collection, owner_id, expense_id)
