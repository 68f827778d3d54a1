from datetime import datetime, timezone
from decimal import Decimal

import pytest
from bson.decimal128 import Decimal128

from models.expense import Direction
from services import expenses_service
from services.balances import per_friend_balance
from services.errors import (
    AuthContextMissing,
    ExpenseValidationError,
    NotFoundError,
    RetrievalError,
    WriteError,
)

OWNER = "user_1"


def new_expense(**overrides):
    data = {
        "friend_name": "Sam",
        "amount": "25.50",
        "description": "Dinner",
        "type": "GIVEN",
        "date": "2024-03-05",
    }
    data.update(overrides)
    return data


async def test_list_is_scoped_to_owner_and_newest_first(collection):
    collection.seed(OWNER, "Sam", "10.00", "GIVEN", day=1)
    collection.seed(OWNER, "Alex", "5.00", "RECEIVED", day=9)
    collection.seed("someone_else", "Sam", "99.00", "GIVEN", day=5)

    expenses = await expenses_service.list_expenses(collection, OWNER)

    assert [e.friend_name for e in expenses] == ["Alex", "Sam"]
    assert all(e.user_id == OWNER for e in expenses)
    assert expenses[0].amount == Decimal("5.00")
    assert expenses[0].type == Direction.RECEIVED


async def test_list_skips_invalid_documents(collection):
    collection.seed(OWNER, "Sam", "10.00", "GIVEN", day=1)
    collection.seed(OWNER, "Broken", "1.00", "LENT", day=2)

    expenses = await expenses_service.list_expenses(collection, OWNER)

    assert [e.friend_name for e in expenses] == ["Sam"]


async def test_list_failure_raises_retrieval_error(collection):
    collection.fail.add("find")
    with pytest.raises(RetrievalError):
        await expenses_service.list_expenses(collection, OWNER)


async def test_list_without_session(collection):
    with pytest.raises(AuthContextMissing):
        await expenses_service.list_expenses(collection, None)


async def test_create_stores_owner_and_decimal(collection):
    expense_id = await expenses_service.create_expense(collection, OWNER, new_expense())

    doc = collection.docs[0]
    assert str(doc["_id"]) == expense_id
    assert doc["user_id"] == OWNER
    assert doc["amount"] == Decimal128("25.50")
    assert doc["type"] == "GIVEN"
    assert doc["date"] == datetime(2024, 3, 5, tzinfo=timezone.utc)


async def test_create_defaults(collection):
    await expenses_service.create_expense(
        collection, OWNER, {"friend_name": "Sam", "amount": 3, "type": "received"}
    )
    doc = collection.docs[0]
    assert doc["description"] == ""
    assert doc["type"] == "RECEIVED"
    assert doc["date"].date() == datetime.now(timezone.utc).date()


@pytest.mark.parametrize(
    "overrides",
    [
        {"amount": "abc"},
        {"amount": ""},
        {"amount": None},
        {"amount": "NaN"},
        {"amount": "Infinity"},
        {"amount": "1e30"},
        {"amount": "1e15"},
        {"amount": "-1e15"},
        {"friend_name": ""},
        {"friend_name": "   "},
        {"type": "LENT"},
        {"date": "05/03/2024"},
    ],
)
async def test_create_rejects_bad_input_before_writing(collection, overrides):
    with pytest.raises(ExpenseValidationError):
        await expenses_service.create_expense(collection, OWNER, new_expense(**overrides))
    assert collection.writes == []
    assert collection.docs == []


async def test_create_without_session_writes_nothing(collection):
    with pytest.raises(AuthContextMissing):
        await expenses_service.create_expense(collection, "", new_expense())
    assert collection.writes == []


async def test_create_accepts_zero_unless_minimum_configured(collection):
    await expenses_service.create_expense(collection, OWNER, new_expense(amount="0"))
    with pytest.raises(ExpenseValidationError):
        await expenses_service.create_expense(
            collection, OWNER, new_expense(amount="0"), min_amount=Decimal("0.01")
        )
    assert len(collection.docs) == 1


async def test_create_store_failure(collection):
    collection.fail.add("insert_one")
    with pytest.raises(WriteError):
        await expenses_service.create_expense(collection, OWNER, new_expense())


async def test_update_replaces_only_given_fields(collection):
    expense_id = collection.seed(OWNER, "Sam", "10.00", "GIVEN", day=1, description="Lunch")

    await expenses_service.update_expense(
        collection, OWNER, expense_id, {"amount": "12.345", "type": "RECEIVED"}
    )

    [expense] = await expenses_service.list_expenses(collection, OWNER)
    assert expense.amount == Decimal("12.35")
    assert expense.type == Direction.RECEIVED
    assert expense.description == "Lunch"
    assert expense.friend_name == "Sam"


async def test_update_other_owners_record_is_not_found(collection):
    expense_id = collection.seed("someone_else", "Sam", "10.00", "GIVEN", day=1)
    with pytest.raises(NotFoundError):
        await expenses_service.update_expense(collection, OWNER, expense_id, {"amount": "1"})
    assert collection.docs[0]["amount"] == Decimal128("10.00")


async def test_update_validation(collection):
    expense_id = collection.seed(OWNER, "Sam", "10.00", "GIVEN", day=1)
    with pytest.raises(ExpenseValidationError):
        await expenses_service.update_expense(collection, OWNER, expense_id, {})
    with pytest.raises(ExpenseValidationError):
        await expenses_service.update_expense(collection, OWNER, expense_id, {"amount": "abc"})
    assert collection.writes == []


async def test_create_accepts_largest_amount(collection):
    await expenses_service.create_expense(collection, OWNER, new_expense(amount="999999999999999.99"))
    assert collection.docs[0]["amount"] == Decimal128("999999999999999.99")


async def test_update_refuses_to_clear_required_fields(collection):
    expense_id = collection.seed(OWNER, "Sam", "10.00", "GIVEN", day=3)
    for field in ("date", "amount", "friend_name", "type"):
        with pytest.raises(ExpenseValidationError, match=field):
            await expenses_service.update_expense(collection, OWNER, expense_id, {field: None})
    assert collection.writes == []
    assert collection.docs[0]["date"] == datetime(2024, 1, 3, tzinfo=timezone.utc)


async def test_update_clears_description(collection):
    expense_id = collection.seed(OWNER, "Sam", "10.00", "GIVEN", day=1, description="Lunch")
    await expenses_service.update_expense(collection, OWNER, expense_id, {"description": None})
    assert collection.docs[0]["description"] == ""


async def test_delete(collection):
    expense_id = collection.seed(OWNER, "Sam", "10.00", "GIVEN", day=1)
    await expenses_service.delete_expense(collection, OWNER, expense_id)
    assert collection.docs == []


@pytest.mark.parametrize("expense_id", ["not-an-object-id", "65f0c0ffee0000000000abcd"])
async def test_delete_unknown_id(collection, expense_id):
    with pytest.raises(NotFoundError):
        await expenses_service.delete_expense(collection, OWNER, expense_id)


async def test_delete_store_failure(collection):
    expense_id = collection.seed(OWNER, "Sam", "10.00", "GIVEN", day=1)
    collection.fail.add("delete_one")
    with pytest.raises(WriteError):
        await expenses_service.delete_expense(collection, OWNER, expense_id)


async def test_settle_friend_zeroes_balance_and_keeps_history(collection):
    collection.seed(OWNER, "Sam", "80.00", "GIVEN", day=1)
    collection.seed(OWNER, "Sam", "30.00", "RECEIVED", day=2)
    collection.seed(OWNER, "Alex", "5.00", "GIVEN", day=3)
    in_flight = set()

    await expenses_service.settle_friend(collection, OWNER, "Sam", in_flight)

    expenses = await expenses_service.list_expenses(collection, OWNER)
    settlement = collection.writes[-1][1]
    assert settlement["amount"] == Decimal128("50.00")
    assert settlement["type"] == "RECEIVED"
    assert len(expenses) == 4
    balances = per_friend_balance(expenses)
    assert balances["Sam"] == Decimal("0.00")
    assert balances["Alex"] == Decimal("5.00")
    assert in_flight == set()


async def test_settle_friend_owed_by_owner(collection):
    collection.seed(OWNER, "Alex", "12.00", "RECEIVED", day=1)
    await expenses_service.settle_friend(collection, OWNER, "Alex", set())
    assert collection.docs[-1]["type"] == "GIVEN"
    assert collection.docs[-1]["amount"] == Decimal128("12.00")


async def test_settle_refuses_duplicate_in_flight(collection):
    collection.seed(OWNER, "Sam", "10.00", "GIVEN", day=1)
    in_flight = {(OWNER, "Sam")}
    with pytest.raises(WriteError):
        await expenses_service.settle_friend(collection, OWNER, "Sam", in_flight)
    assert collection.writes == []
    assert in_flight == {(OWNER, "Sam")}


async def test_settle_already_settled_friend(collection):
    collection.seed(OWNER, "Sam", "10.00", "GIVEN", day=1)
    collection.seed(OWNER, "Sam", "10.00", "RECEIVED", day=2)
    in_flight = set()
    with pytest.raises(ExpenseValidationError):
        await expenses_service.settle_friend(collection, OWNER, "Sam", in_flight)
    assert in_flight == set()


async def test_settle_fetch_failure_is_write_error(collection):
    collection.fail.add("find")
    with pytest.raises(WriteError):
        await expenses_service.settle_friend(collection, OWNER, "Sam", set())
