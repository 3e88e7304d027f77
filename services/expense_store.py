"""Expense persistence: the store interface and its MongoDB and in-memory adapters."""
import asyncio
import datetime as dt
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import ValidationError
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from models.expense import Expense, ExpenseCreate, ExpenseFilters, ExpenseUpdate, format_amount
from services.errors import ExpenseNotFoundError
from services.filter_resolver import resolve_mongo_query, resolve_predicate

logger = logging.getLogger(__name__)


class ExpenseStore(ABC):
    """
    Async CRUD over expense records.

    Every operation takes a `user_id` scope. When it is set, records owned by
    other users are invisible: they are left out of lists and behave as
    missing for single-record operations. `user_id=None` disables scoping.

    Lists are ordered by date, most recent first. The relative order of
    records sharing a date is undefined. Snapshots are ordered by insertion
    (ascending id) and feed the statistics.
    """

    @abstractmethod
    async def list_expenses(self, filters: Optional[ExpenseFilters] = None, user_id: Optional[str] = None) -> List[Expense]:
        ...

    @abstractmethod
    async def snapshot_expenses(self, user_id: Optional[str] = None) -> List[Expense]:
        ...

    @abstractmethod
    async def get_expense(self, expense_id: int, user_id: Optional[str] = None) -> Expense:
        ...

    @abstractmethod
    async def create_expense(self, data: ExpenseCreate, user_id: str) -> Expense:
        ...

    @abstractmethod
    async def update_expense(self, expense_id: int, changes: ExpenseUpdate, user_id: Optional[str] = None) -> Expense:
        ...

    @abstractmethod
    async def delete_expense(self, expense_id: int, user_id: Optional[str] = None) -> None:
        ...


class InMemoryExpenseStore(ExpenseStore):
    """Process-local store used for development (EXPENSE_STORE=memory) and tests."""

    def __init__(self):
        self._expenses: List[Expense] = []
        self._next_id = 1
        self._lock = asyncio.Lock()

    def _find_index(self, expense_id: int, user_id: Optional[str]) -> int:
        for index, expense in enumerate(self._expenses):
            if expense.id == expense_id and (user_id is None or expense.user_id == user_id):
                return index
        raise ExpenseNotFoundError(expense_id)

    async def list_expenses(self, filters: Optional[ExpenseFilters] = None, user_id: Optional[str] = None) -> List[Expense]:
        predicate = resolve_predicate(filters, user_id)
        matches = [expense.model_copy() for expense in self._expenses if predicate(expense)]
        return sorted(matches, key=lambda expense: expense.date, reverse=True)

    async def snapshot_expenses(self, user_id: Optional[str] = None) -> List[Expense]:
        predicate = resolve_predicate(None, user_id)
        return [expense.model_copy() for expense in self._expenses if predicate(expense)]

    async def get_expense(self, expense_id: int, user_id: Optional[str] = None) -> Expense:
        return self._expenses[self._find_index(expense_id, user_id)].model_copy()

    async def create_expense(self, data: ExpenseCreate, user_id: str) -> Expense:
        async with self._lock:
            expense = Expense(
                id=self._next_id,
                user_id=user_id,
                created_at=dt.datetime.now(dt.timezone.utc),
                title=data.title,
                amount=data.amount,
                category=data.category,
                date=data.date,
            )
            self._next_id += 1
            self._expenses.append(expense)
        return expense.model_copy()

    async def update_expense(self, expense_id: int, changes: ExpenseUpdate, user_id: Optional[str] = None) -> Expense:
        async with self._lock:
            index = self._find_index(expense_id, user_id)
            updated = self._expenses[index].model_copy(update=changes.changes())
            self._expenses[index] = updated
        return updated.model_copy()

    async def delete_expense(self, expense_id: int, user_id: Optional[str] = None) -> None:
        async with self._lock:
            del self._expenses[self._find_index(expense_id, user_id)]


def _serialize_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Converts model values to their stored form: amount and date as strings."""
    document = dict(fields)
    if isinstance(document.get("amount"), Decimal):
        document["amount"] = format_amount(document["amount"])
    if isinstance(document.get("date"), dt.date):
        document["date"] = document["date"].isoformat()
    return document


class MongoExpenseStore(ExpenseStore):
    """
    Stores expenses in a MongoDB collection via motor.

    Integer ids come from a sequence document in `counters`, keyed by the
    expenses collection name. ISO date strings sort chronologically, so the
    date-descending order is a plain string sort.
    """

    def __init__(self, collection: AsyncIOMotorCollection, counters: AsyncIOMotorCollection):
        self.collection = collection
        self.counters = counters

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("id", ASCENDING)], unique=True)
        await self.collection.create_index([("user_id", ASCENDING), ("date", DESCENDING)])
        logger.info(f"Indexes ensured on collection '{self.collection.name}'.")

    async def _next_id(self) -> int:
        counter = await self.counters.find_one_and_update(
            {"_id": self.collection.name},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return counter["seq"]

    @staticmethod
    def _scope(expense_id: int, user_id: Optional[str]) -> Dict[str, Any]:
        query: Dict[str, Any] = {"id": expense_id}
        if user_id is not None:
            query["user_id"] = user_id
        return query

    @staticmethod
    def _to_model(doc: Dict[str, Any]) -> Optional[Expense]:
        try:
            return Expense.model_validate(doc)
        except ValidationError as e:
            logger.error(f"Data validation error for document ID {doc.get('id', 'N/A')}: {e}")
            return None

    async def list_expenses(self, filters: Optional[ExpenseFilters] = None, user_id: Optional[str] = None) -> List[Expense]:
        return await self._fetch(resolve_mongo_query(filters, user_id), "date", DESCENDING)

    async def snapshot_expenses(self, user_id: Optional[str] = None) -> List[Expense]:
        return await self._fetch(resolve_mongo_query(None, user_id), "id", ASCENDING)

    async def _fetch(self, query: Dict[str, Any], sort_key: str, direction: int) -> List[Expense]:
        logger.info(f"Fetching expenses from collection '{self.collection.name}' with query {query}...")
        expenses = []
        try:
            cursor = self.collection.find(query, {"_id": 0}).sort(sort_key, direction)
            async for doc in cursor:
                expense = self._to_model(doc)
                # Skip invalid documents
                if expense is not None:
                    expenses.append(expense)
        except PyMongoError as e:
            logger.error(f"Database error fetching expenses: {e}")
            raise ConnectionError(f"Database error fetching expenses: {e}")
        logger.info(f"Fetched {len(expenses)} expenses successfully.")
        return expenses

    async def get_expense(self, expense_id: int, user_id: Optional[str] = None) -> Expense:
        try:
            doc = await self.collection.find_one(self._scope(expense_id, user_id), {"_id": 0})
        except PyMongoError as e:
            logger.error(f"Database error fetching expense {expense_id}: {e}")
            raise ConnectionError(f"Database error fetching expense: {e}")
        expense = self._to_model(doc) if doc else None
        if expense is None:
            raise ExpenseNotFoundError(expense_id)
        return expense

    async def create_expense(self, data: ExpenseCreate, user_id: str) -> Expense:
        try:
            expense = Expense(
                id=await self._next_id(),
                user_id=user_id,
                created_at=dt.datetime.now(dt.timezone.utc),
                title=data.title,
                amount=data.amount,
                category=data.category,
                date=data.date,
            )
            await self.collection.insert_one(_serialize_fields(expense.model_dump()))
        except PyMongoError as e:
            logger.error(f"Database error inserting expense: {e}")
            raise ConnectionError(f"Database error inserting expense: {e}")
        logger.info(f"Inserted expense {expense.id} for user {user_id}.")
        return expense

    async def update_expense(self, expense_id: int, changes: ExpenseUpdate, user_id: Optional[str] = None) -> Expense:
        fields = changes.changes()
        if not fields:
            return await self.get_expense(expense_id, user_id)
        try:
            doc = await self.collection.find_one_and_update(
                self._scope(expense_id, user_id),
                {"$set": _serialize_fields(fields)},
                projection={"_id": 0},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.error(f"Database error updating expense {expense_id}: {e}")
            raise ConnectionError(f"Database error updating expense: {e}")
        expense = self._to_model(doc) if doc else None
        if expense is None:
            raise ExpenseNotFoundError(expense_id)
        return expense

    async def delete_expense(self, expense_id: int, user_id: Optional[str] = None) -> None:
        try:
            result = await self.collection.delete_one(self._scope(expense_id, user_id))
        except PyMongoError as e:
            logger.error(f"Database error deleting expense {expense_id}: {e}")
            raise ConnectionError(f"Database error deleting expense: {e}")
        if result.deleted_count == 0:
            raise ExpenseNotFoundError(expense_id)
