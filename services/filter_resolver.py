"""Translates list criteria into a record predicate or a MongoDB query."""
import re
from typing import Any, Callable, Dict, Optional

from models.expense import ALL_CATEGORIES, Expense, ExpenseFilters


def _active_search(filters: Optional[ExpenseFilters]) -> Optional[str]:
    # An empty search string means "no search"
    if filters is None or not filters.search:
        return None
    return filters.search


def _active_category(filters: Optional[ExpenseFilters]) -> Optional[str]:
    if filters is None or filters.category is None or filters.category == ALL_CATEGORIES:
        return None
    return filters.category


def resolve_predicate(filters: Optional[ExpenseFilters], user_id: Optional[str] = None) -> Callable[[Expense], bool]:
    """
    Builds an in-process predicate selecting the same rows as
    resolve_mongo_query.

    Search uses Unicode case folding. MongoDB's case-insensitive regex folds
    character by character, so titles whose folding changes length (such as
    "ß" against "ss") can match here but not in MongoDB.
    """
    search = _active_search(filters)
    needle = search.casefold() if search is not None else None
    category = _active_category(filters)

    def predicate(expense: Expense) -> bool:
        if user_id is not None and expense.user_id != user_id:
            return False
        if needle is not None and needle not in expense.title.casefold():
            return False
        if category is not None and expense.category != category:
            return False
        return True

    return predicate


def resolve_mongo_query(filters: Optional[ExpenseFilters], user_id: Optional[str] = None) -> Dict[str, Any]:
    """Builds the MongoDB filter document for the expenses collection."""
    query: Dict[str, Any] = {}
    if user_id is not None:
        query["user_id"] = user_id
    search = _active_search(filters)
    if search is not None:
        query["title"] = {"$regex": re.escape(search), "$options": "i"}
    category = _active_category(filters)
    if category is not None:
        query["category"] = category
    return query
