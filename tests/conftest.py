"""Shared test fixtures for the expense tracker tests."""

import os

# Must be set before main is imported
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["EXPENSE_STORE"] = "memory"

import datetime as dt
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from main import app
from models.expense import AuthenticatedUser, Expense
from routes import get_current_user, get_expense_store
from services.expense_store import InMemoryExpenseStore

ALICE = AuthenticatedUser(id="user-alice", email="alice@example.com")
BOB = AuthenticatedUser(id="user-bob", email="bob@example.com")


def make_expense(expense_id: int, title: str, amount: str, category: str, date: str, user_id: str = ALICE.id) -> Expense:
    return Expense(
        id=expense_id,
        user_id=user_id,
        title=title,
        amount=Decimal(amount),
        category=category,
        date=dt.date.fromisoformat(date),
        created_at=dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc),
    )


@pytest.fixture
def store() -> InMemoryExpenseStore:
    return InMemoryExpenseStore()


@pytest.fixture
def caller() -> dict:
    """Mutable holder for the identity the overridden auth dependency returns."""
    return {"user": ALICE}


@pytest.fixture
def client(store, caller):
    """TestClient with the store and the authenticated user injected."""
    app.dependency_overrides[get_expense_store] = lambda: store
    app.dependency_overrides[get_current_user] = lambda: caller["user"]
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": "Bearer test-token"}
