"""Pydantic models for derived balances"""
from pydantic import BaseModel
from decimal import Decimal
from typing import List, Literal, Optional

from models.expense import Expense


class FriendBalance(BaseModel):
    friend_name: str
    balance: Decimal
    # Positive (or zero) balances are owed to the owner
    status: Literal["to receive", "to pay"]


class LedgerSummary(BaseModel):
    """The full record list and the balances recomputed from it."""
    expenses: List[Expense]
    total_balance: Decimal
    friend_balances: List[FriendBalance]


class LedgerChange(BaseModel):
    """
    Result of a successful write. ledger is None when the write went through
    but the ledger could not be re-fetched afterwards.
    """
    id: Optional[str] = None
    ledger: Optional[LedgerSummary] = None
