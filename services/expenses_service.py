"""Service layer for handling expense-related logic."""
import datetime as dt
import logging
from typing import List, Optional

from models.expense import (DEFAULT_CATEGORY, SUGGESTED_CATEGORIES, AuthenticatedUser, CategoryOptions, Expense,
                            ExpenseCreate, ExpenseFilters, ExpenseStats, ExpenseUpdate)
from services.expense_store import ExpenseStore
from services.stats_service import compute_expense_stats

logger = logging.getLogger(__name__)


def current_utc_date() -> dt.date:
    """The date that decides which calendar month counts as 'this month'."""
    return dt.datetime.now(dt.timezone.utc).date()


async def get_all_expenses(store: ExpenseStore, user: AuthenticatedUser, filters: Optional[ExpenseFilters] = None) -> List[Expense]:
    """Lists the caller's expenses matching `filters`, most recent first."""
    logger.info(f"Listing expenses for user {user.id} (search={filters.search if filters else None!r}, category={filters.category if filters else None!r})")
    expenses = await store.list_expenses(filters, user_id=user.id)
    logger.info(f"Returning {len(expenses)} expenses for user {user.id}.")
    return expenses


async def get_expense(store: ExpenseStore, user: AuthenticatedUser, expense_id: int) -> Expense:
    return await store.get_expense(expense_id, user_id=user.id)


async def create_expense(store: ExpenseStore, user: AuthenticatedUser, data: ExpenseCreate) -> Expense:
    """Stores a new expense owned by the caller."""
    expense = await store.create_expense(data, user_id=user.id)
    logger.info(f"Created expense {expense.id} ({expense.category}, {expense.amount}) for user {user.id}.")
    return expense


async def update_expense(store: ExpenseStore, user: AuthenticatedUser, expense_id: int, changes: ExpenseUpdate) -> Expense:
    """Applies the supplied fields only; everything else keeps its stored value."""
    logger.info(f"Updating expense {expense_id} for user {user.id}: fields {sorted(changes.model_fields_set)}")
    return await store.update_expense(expense_id, changes, user_id=user.id)


async def delete_expense(store: ExpenseStore, user: AuthenticatedUser, expense_id: int) -> None:
    logger.info(f"Deleting expense {expense_id} for user {user.id}.")
    await store.delete_expense(expense_id, user_id=user.id)


async def get_expense_stats(store: ExpenseStore, user: AuthenticatedUser, today: Optional[dt.date] = None) -> ExpenseStats:
    """
    Fetches a snapshot of the caller's expenses in insertion order and
    aggregates it. Writes landing after the fetch are not reflected.
    """
    today = today or current_utc_date()
    expenses = await store.snapshot_expenses(user_id=user.id)
    stats = compute_expense_stats(expenses, today)
    logger.info(f"Computed stats over {len(expenses)} expenses for user {user.id} as of {today.isoformat()}.")
    return stats


def get_category_options() -> CategoryOptions:
    return CategoryOptions(categories=list(SUGGESTED_CATEGORIES), default=DEFAULT_CATEGORY)
