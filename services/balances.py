"""Balance aggregation over an in-memory list of expenses.

Everything here is pure: no I/O, no cached state. Balances are recomputed
from the full record list on every call.
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Dict, Iterable, Optional

from models.expense import Direction, Expense
from models.ledger import FriendBalance, LedgerSummary
from services.errors import ExpenseValidationError, NotFoundError

ZERO = Decimal("0.00")
# Working precision for sums; well above what any stored amount needs
SUM_PRECISION = 80


def round2(d: Decimal) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = SUM_PRECISION
        return d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def signed_amount(expense: Expense) -> Decimal:
    """Positive when the friend owes the owner, negative otherwise."""
    if expense.type == Direction.GIVEN:
        return expense.amount
    return -expense.amount


def total_balance(expenses: Iterable[Expense]) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = SUM_PRECISION
        return round2(sum((signed_amount(e) for e in expenses), ZERO))


def per_friend_balance(expenses: Iterable[Expense]) -> Dict[str, Decimal]:
    """
    Sum signed amounts per friend name. Names are grouped literally, so
    "Sam" and "sam" are two different friends.
    """
    balances: Dict[str, Decimal] = {}
    with localcontext() as ctx:
        ctx.prec = SUM_PRECISION
        for expense in expenses:
            name = expense.friend_name
            balances[name] = balances.get(name, ZERO) + signed_amount(expense)
    return {name: round2(amount) for name, amount in balances.items()}


def summarize(expenses: Iterable[Expense]) -> LedgerSummary:
    expenses = list(expenses)
    friend_balances = [
        FriendBalance(
            friend_name=name,
            balance=amount,
            status="to receive" if amount >= 0 else "to pay",
        )
        for name, amount in per_friend_balance(expenses).items()
    ]
    return LedgerSummary(
        expenses=expenses,
        total_balance=total_balance(expenses),
        friend_balances=friend_balances,
    )


def settlement_for(
    friend_name: str, balances: Dict[str, Decimal], when: Optional[datetime] = None
) -> dict:
    """
    Build the synthetic record that brings a friend's balance back to zero.
    The record is written through the normal create path, so history keeps
    every transaction including the settlement itself.
    """
    if friend_name not in balances:
        raise NotFoundError(f"No expenses recorded with '{friend_name}'.")
    balance = balances[friend_name]
    if balance == 0:
        raise ExpenseValidationError(f"Balance with '{friend_name}' is already settled.")
    return {
        "friend_name": friend_name,
        "amount": abs(balance),
        "type": Direction.RECEIVED if balance > 0 else Direction.GIVEN,
        "description": f"Settlement with {friend_name}",
        "date": when or datetime.now(timezone.utc),
    }
