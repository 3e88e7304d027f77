"""API Routes for expenses"""
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response
from typing import List, Annotated, Optional
import httpx
import logging

from models.expense import (AuthenticatedUser, CategoryOptions, Expense, ExpenseCreate, ExpenseFilters, ExpenseStats,
                            ExpenseUpdate)
from services import expenses_service
from services.errors import AuthenticationError, ConfigurationError, ExpenseNotFoundError
from services.expense_store import ExpenseStore
from utils.supabase_auth import SupabaseAuthClient, extract_bearer_token, get_identity_settings

router = APIRouter()
logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Expense not found"

# --- Dependency Functions ---
def get_expense_store(request: Request) -> ExpenseStore:
    """Dependency to get the expense store from the request state."""
    store = getattr(request.state, "expense_store", None)
    if store is None:
        logger.error("Expense store not found in application state. Check the database connection.")
        raise HTTPException(status_code=500, detail="Database service not available.")
    return store


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Dependency to get the shared HTTP client used for identity lookups."""
    client = getattr(request.state, "http_client", None)
    if client is None:
        logger.error("HTTP client not found in application state.")
        raise HTTPException(status_code=500, detail="Identity service client not available.")
    return client


async def get_current_user(
    request: Request,
    authorization: Annotated[Optional[str], Header()] = None,
) -> AuthenticatedUser:
    """Resolves the caller from the bearer token, or answers 401."""
    try:
        token = extract_bearer_token(authorization)
    except AuthenticationError as e:
        logger.warning(f"Rejected request without usable credentials: {e}")
        raise HTTPException(status_code=401, detail="Unauthorized: Missing credentials")

    try:
        settings = get_identity_settings()
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))

    http_client = get_http_client(request)
    try:
        return await SupabaseAuthClient(settings, http_client).get_user(token)
    except AuthenticationError as e:
        logger.warning(f"Authentication failed: {e}")
        raise HTTPException(status_code=401, detail="Unauthorized")


# Type hints for the dependencies
ExpenseStoreDep = Annotated[ExpenseStore, Depends(get_expense_store)]
CurrentUserDep = Annotated[AuthenticatedUser, Depends(get_current_user)]


def _server_error(action: str, error: Exception) -> HTTPException:
    """Logs a store or unexpected failure and returns a redacted 500."""
    if isinstance(error, ConnectionError):
        logger.error(f"Database error while {action}: {error}")
        return HTTPException(status_code=500, detail=f"A database error occurred while {action}.")
    logger.exception(f"Unexpected error while {action}: {error}")
    return HTTPException(status_code=500, detail=f"An unexpected server error occurred while {action}.")


# --- API Routes ---

@router.get("/expenses", response_model=List[Expense], summary="List Expenses", description="Retrieves the caller's expenses, most recent first, optionally filtered by title search and category.")
async def list_expenses(
    user: CurrentUserDep,
    store: ExpenseStoreDep,
    search: Optional[str] = Query(None, description="Case-insensitive substring of the title."),
    category: Optional[str] = Query(None, description="Exact category; 'all' disables the filter."),
) -> List[Expense]:
    logger.info("GET /expenses endpoint called.")
    filters = ExpenseFilters(search=search, category=category)
    try:
        return await expenses_service.get_all_expenses(store, user, filters)
    except Exception as e:
        raise _server_error("fetching expenses", e)


@router.get("/expenses/{expense_id}", response_model=Expense, summary="Get Expense")
async def get_expense(expense_id: int, user: CurrentUserDep, store: ExpenseStoreDep) -> Expense:
    logger.info(f"GET /expenses/{expense_id} endpoint called.")
    try:
        return await expenses_service.get_expense(store, user, expense_id)
    except ExpenseNotFoundError:
        logger.warning(f"Expense {expense_id} not found for user {user.id}.")
        raise HTTPException(status_code=404, detail=NOT_FOUND_MESSAGE)
    except Exception as e:
        raise _server_error(f"fetching expense {expense_id}", e)


@router.post("/expenses", response_model=Expense, status_code=201, summary="Create Expense")
async def create_expense(data: ExpenseCreate, user: CurrentUserDep, store: ExpenseStoreDep) -> Expense:
    """Records a new expense. id, userId and createdAt are assigned server-side."""
    logger.info(f"POST /expenses endpoint called: {data.title[:50]}")
    try:
        return await expenses_service.create_expense(store, user, data)
    except Exception as e:
        raise _server_error("creating the expense", e)


@router.put("/expenses/{expense_id}", response_model=Expense, summary="Update Expense")
async def update_expense(expense_id: int, changes: ExpenseUpdate, user: CurrentUserDep, store: ExpenseStoreDep) -> Expense:
    """Partially updates an expense; omitted fields keep their stored values."""
    logger.info(f"PUT /expenses/{expense_id} endpoint called.")
    try:
        return await expenses_service.update_expense(store, user, expense_id, changes)
    except ExpenseNotFoundError:
        logger.warning(f"Expense {expense_id} not found for user {user.id}.")
        raise HTTPException(status_code=404, detail=NOT_FOUND_MESSAGE)
    except Exception as e:
        raise _server_error(f"updating expense {expense_id}", e)


@router.delete("/expenses/{expense_id}", status_code=204, response_class=Response, summary="Delete Expense")
async def delete_expense(expense_id: int, user: CurrentUserDep, store: ExpenseStoreDep) -> Response:
    logger.info(f"DELETE /expenses/{expense_id} endpoint called.")
    try:
        await expenses_service.delete_expense(store, user, expense_id)
    except ExpenseNotFoundError:
        logger.warning(f"Expense {expense_id} not found for user {user.id}.")
        raise HTTPException(status_code=404, detail=NOT_FOUND_MESSAGE)
    except Exception as e:
        raise _server_error(f"deleting expense {expense_id}", e)
    return Response(status_code=204)


@router.get("/stats", response_model=ExpenseStats, summary="Expense Statistics", description="Lifetime total, current UTC month spend, per-category totals and top category.")
async def get_stats(user: CurrentUserDep, store: ExpenseStoreDep) -> ExpenseStats:
    logger.info("GET /stats endpoint called.")
    try:
        return await expenses_service.get_expense_stats(store, user)
    except Exception as e:
        raise _server_error("computing statistics", e)


@router.get("/categories", response_model=CategoryOptions, summary="Suggested Categories")
async def list_categories(user: CurrentUserDep) -> CategoryOptions:
    return expenses_service.get_category_options()
