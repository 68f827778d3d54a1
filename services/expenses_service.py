"""Service layer for reading and writing the owner's expense records."""
import logging
import json # Import json for pretty printing
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Set, Tuple

from bson import ObjectId
from bson.decimal128 import Decimal128
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorCollection # Type hint for collection
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from models.expense import Direction, Expense
from services.balances import per_friend_balance, round2, settlement_for
from services.errors import (
    AuthContextMissing,
    ExpenseValidationError,
    NotFoundError,
    RetrievalError,
    WriteError,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("friend_name", "amount", "description", "type", "date")
# Keeps every amount and every sum of amounts exact in Decimal128
MAX_AMOUNT = Decimal("1e15")

# --- Input Parsing ---

def _require_owner(owner_id: Optional[str]) -> str:
    if not owner_id:
        raise AuthContextMissing()
    return owner_id

def _parse_friend_name(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ExpenseValidationError("Please fill in all required fields: friend name is missing.")
    # Stored as typed; grouping relies on the literal string
    return value

def _parse_amount(value: Any, min_amount: Optional[Decimal] = None) -> Decimal:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ExpenseValidationError("Please fill in all required fields: amount is missing.")
    if isinstance(value, bool):
        raise ExpenseValidationError("Please enter a valid amount.")
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite():
            raise ExpenseValidationError("Please enter a valid amount.")
        amount = round2(amount)
    except InvalidOperation:
        raise ExpenseValidationError(f"Please enter a valid amount: {value!r} is not a number.")
    if abs(amount) >= MAX_AMOUNT:
        raise ExpenseValidationError(f"Amount must be less than {MAX_AMOUNT:,.0f}.")
    if min_amount is not None and amount < min_amount:
        raise ExpenseValidationError(f"Amount must be at least {min_amount}.")
    return amount

def _parse_direction(value: Any) -> Direction:
    if isinstance(value, Direction):
        return value
    try:
        return Direction(str(value).strip().upper())
    except ValueError:
        raise ExpenseValidationError(f"Invalid type {value!r}. Use GIVEN or RECEIVED.")

def _parse_date(value: Any) -> datetime:
    """Dates are stored as full UTC timestamps; a bare day becomes midnight UTC."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return datetime.combine(datetime.now(timezone.utc).date(), time.min, tzinfo=timezone.utc)
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            raise ExpenseValidationError(f"Invalid date format: {value!r}. Use YYYY-MM-DD.")
    else:
        raise ExpenseValidationError(f"Invalid date type: {type(value).__name__}.")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)

def prepare_fields(data: Dict[str, Any], partial: bool = False, min_amount: Optional[Decimal] = None) -> Dict[str, Any]:
    """
    Validate user input and return clean field values.
    With partial=True only the keys present in data are checked and returned.
    """
    parsers = {
        "friend_name": _parse_friend_name,
        "amount": lambda v: _parse_amount(v, min_amount),
        "description": lambda v: "" if v is None else str(v),
        "type": _parse_direction,
        "date": _parse_date,
    }
    fields = {}
    for name, parse in parsers.items():
        if partial and name not in data:
            continue
        fields[name] = parse(data.get(name))
    return fields

# --- Document Conversion ---

def _to_document(fields: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(fields)
    if "amount" in doc:
        doc["amount"] = Decimal128(doc["amount"])
    if "type" in doc:
        doc["type"] = doc["type"].value
    return doc

def _from_document(doc: Dict[str, Any]) -> Expense:
    doc = dict(doc)
    if '_id' in doc: doc['id'] = str(doc.pop('_id'))
    if isinstance(doc.get('amount'), Decimal128):
        doc['amount'] = doc['amount'].to_decimal()
    # Motor returns naive datetimes that are already UTC
    if isinstance(doc.get('date'), datetime) and doc['date'].tzinfo is None:
        doc['date'] = doc['date'].replace(tzinfo=timezone.utc)
    return Expense(**doc)

def _object_id(expense_id: str) -> ObjectId:
    try:
        return ObjectId(expense_id)
    except (InvalidId, TypeError):
        raise NotFoundError(f"Expense {expense_id} not found.")

# --- Database Interaction Functions (Depend on collection passed from route) ---

async def list_expenses(collection: AsyncIOMotorCollection, owner_id: Optional[str]) -> List[Expense]:
    """Fetches the owner's expenses, newest first."""
    owner_id = _require_owner(owner_id)
    logger.info(f"Fetching expenses for user '{owner_id}' from collection '{collection.name}'...")
    expenses = []
    try:
        cursor = collection.find({"user_id": owner_id}).sort("date", -1)
        async for doc in cursor:
            try:
                expenses.append(_from_document(doc))
            except ValidationError as e:
                logger.error(f"Data validation error for document ID {doc.get('_id', 'N/A')}: {e}")
                # Skip invalid documents
                continue
    except PyMongoError as e:
        logger.error(f"Database error fetching expenses: {e}")
        raise RetrievalError(f"Database error fetching expenses: {e}")
    logger.info(f"Fetched {len(expenses)} expenses successfully.")
    return expenses

async def create_expense(
    collection: AsyncIOMotorCollection,
    owner_id: Optional[str],
    data: Dict[str, Any],
    min_amount: Optional[Decimal] = None,
) -> str:
    """Validates and inserts one expense. Returns the id assigned by the store."""
    owner_id = _require_owner(owner_id)
    fields = prepare_fields(data, min_amount=min_amount)
    doc = _to_document(fields)
    doc["user_id"] = owner_id
    logger.debug(f"Inserting expense:\n{json.dumps(doc, indent=2, default=str)}")
    try:
        result = await collection.insert_one(doc)
    except PyMongoError as e:
        logger.error(f"Database error adding expense: {e}")
        raise WriteError(f"Database error adding expense: {e}")
    expense_id = str(result.inserted_id)
    logger.info(f"Added expense {expense_id} with '{fields['friend_name']}' for user '{owner_id}'.")
    return expense_id

async def update_expense(
    collection: AsyncIOMotorCollection,
    owner_id: Optional[str],
    expense_id: str,
    data: Dict[str, Any],
    min_amount: Optional[Decimal] = None,
) -> None:
    """Replaces the given fields of one of the owner's expenses."""
    owner_id = _require_owner(owner_id)
    data = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
    if not data:
        raise ExpenseValidationError("Nothing to update.")
    # Only the description may be cleared; a null date must not become today
    cleared = [k for k, v in data.items() if v is None and k != "description"]
    if cleared:
        raise ExpenseValidationError(f"Required fields cannot be empty: {', '.join(cleared)}.")
    fields = prepare_fields(data, partial=True, min_amount=min_amount)
    object_id = _object_id(expense_id)
    try:
        result = await collection.update_one(
            {"_id": object_id, "user_id": owner_id},
            {"$set": _to_document(fields)},
        )
    except PyMongoError as e:
        logger.error(f"Database error updating expense {expense_id}: {e}")
        raise WriteError(f"Database error updating expense: {e}")
    if result.matched_count == 0:
        logger.warning(f"Update rejected: expense {expense_id} not found for user '{owner_id}'.")
        raise NotFoundError(f"Expense {expense_id} not found.")
    logger.info(f"Updated expense {expense_id} fields: {', '.join(fields)}")

async def delete_expense(collection: AsyncIOMotorCollection, owner_id: Optional[str], expense_id: str) -> None:
    owner_id = _require_owner(owner_id)
    object_id = _object_id(expense_id)
    try:
        result = await collection.delete_one({"_id": object_id, "user_id": owner_id})
    except PyMongoError as e:
        logger.error(f"Database error deleting expense {expense_id}: {e}")
        raise WriteError(f"Database error deleting expense: {e}")
    if result.deleted_count == 0:
        logger.warning(f"Delete rejected: expense {expense_id} not found for user '{owner_id}'.")
        raise NotFoundError(f"Expense {expense_id} not found.")
    logger.info(f"Deleted expense {expense_id} for user '{owner_id}'.")

async def settle_friend(
    collection: AsyncIOMotorCollection,
    owner_id: Optional[str],
    friend_name: str,
    in_flight: Set[Tuple[str, str]],
) -> str:
    """
    Records a settlement transaction that zeroes the friend's current balance.
    - Refuses a second settlement for the same friend while one is pending.
    - Derives amount and direction from freshly fetched balances.
    - Writes through create_expense like any other record.
    """
    owner_id = _require_owner(owner_id)
    key = (owner_id, friend_name)
    if key in in_flight:
        logger.warning(f"Settlement with '{friend_name}' already in progress for user '{owner_id}'.")
        raise WriteError("A settlement with this friend is already in progress.")
    in_flight.add(key)
    try:
        try:
            expenses = await list_expenses(collection, owner_id)
        except RetrievalError as e:
            raise WriteError(f"Could not load balances for settlement: {e}") from e
        record = settlement_for(friend_name, per_friend_balance(expenses))
        logger.info(f"Settling {record['amount']} ({record['type'].value}) with '{friend_name}' for user '{owner_id}'.")
        return await create_expense(collection, owner_id, record)
    finally:
        in_flight.discard(key)
