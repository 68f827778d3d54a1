"""Pydantic models for expense records"""
from pydantic import BaseModel, ConfigDict
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union


class Direction(str, Enum):
    """GIVEN: the owner paid the friend. RECEIVED: the friend paid the owner."""
    GIVEN = "GIVEN"
    RECEIVED = "RECEIVED"


class Expense(BaseModel):
    """
    A single transaction between the owner and one friend, as stored.
    """
    id: Optional[str] = None
    user_id: str
    friend_name: str
    amount: Decimal
    description: str = ""
    type: Direction
    date: datetime

    model_config = ConfigDict(from_attributes=True)


class ExpenseIn(BaseModel):
    """
    Raw form input for a new expense. Values are checked by the service
    layer so that bad input is reported the same way for every caller.
    """
    friend_name: str = ""
    amount: Optional[Union[str, float]] = None
    description: Optional[str] = ""
    type: str = Direction.GIVEN.value
    date: Optional[str] = None  # YYYY-MM-DD, today when omitted


class ExpenseUpdate(BaseModel):
    """Fields to replace on an existing expense; unset fields are left alone."""
    friend_name: Optional[str] = None
    amount: Optional[Union[str, float]] = None
    description: Optional[str] = None
    type: Optional[str] = None
    date: Optional[str] = None


class SettlementIn(BaseModel):
    friend_name: str
