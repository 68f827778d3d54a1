import os

# Must be set before config.get_settings() is first called
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("USER_ID_HEADER", "X-User-Id")

from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
from bson import ObjectId
from bson.decimal128 import Decimal128
from pymongo.errors import PyMongoError

from models.expense import Direction, Expense


class FakeCursor:
    def __init__(self, docs):
        self._docs = list(docs)

    def sort(self, key, direction):
        self._docs.sort(key=lambda d: d[key], reverse=direction == -1)
        return self

    def __aiter__(self):
        self._iter = iter(self._docs)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    """In-memory stand-in for an AsyncIOMotorCollection."""

    name = "expenses"

    def __init__(self):
        self.docs = []
        self.writes = []
        self.fail = set()

    def _check(self, op):
        if op in self.fail:
            raise PyMongoError(f"{op} failed")

    @staticmethod
    def _matches(doc, query):
        return all(doc.get(k) == v for k, v in query.items())

    def find(self, query=None):
        self._check("find")
        return FakeCursor(dict(d) for d in self.docs if self._matches(d, query or {}))

    async def insert_one(self, doc):
        self._check("insert_one")
        stored = dict(doc, _id=ObjectId())
        self.docs.append(stored)
        self.writes.append(("insert_one", stored))
        return SimpleNamespace(inserted_id=stored["_id"])

    async def update_one(self, query, update):
        self._check("update_one")
        self.writes.append(("update_one", query))
        for doc in self.docs:
            if self._matches(doc, query):
                doc.update(update["$set"])
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def delete_one(self, query):
        self._check("delete_one")
        self.writes.append(("delete_one", query))
        for i, doc in enumerate(self.docs):
            if self._matches(doc, query):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    def seed(self, user_id, friend_name, amount, type, day, description=""):
        doc = {
            "_id": ObjectId(),
            "user_id": user_id,
            "friend_name": friend_name,
            "amount": Decimal128(amount),
            "type": type,
            "description": description,
            "date": datetime(2024, 1, day, tzinfo=timezone.utc),
        }
        self.docs.append(doc)
        return str(doc["_id"])


@pytest.fixture
def collection():
    return FakeCollection()


@pytest.fixture
def make_expense():
    def _make(friend_name="Sam", amount="10.00", type=Direction.GIVEN, day=1):
        return Expense(
            user_id="user_1",
            friend_name=friend_name,
            amount=Decimal(amount),
            type=type,
            date=datetime(2024, 1, day, tzinfo=timezone.utc),
        )
    return _make
