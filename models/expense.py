"""Pydantic models for Expense data"""
import datetime as dt
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Dict, List, Optional

from pydantic import (BaseModel, BeforeValidator, ConfigDict, PlainSerializer,
                      StringConstraints, field_validator)
from pydantic.alias_generators import to_camel

# Category value meaning "no category restriction" in list filters
ALL_CATEGORIES = "all"

# Labels offered by the client forms. Not enforced: category is open vocabulary.
SUGGESTED_CATEGORIES = [
    "Food",
    "Transport",
    "Utilities",
    "Entertainment",
    "Health",
    "Shopping",
    "Business",
    "Other",
]
DEFAULT_CATEGORY = "Other"

AMOUNT_ERROR = "Amount must be a positive number"

# Bounds on a single amount: at most 15 digits before the point and 8 after
MAX_AMOUNT_INTEGER_DIGITS = 15
MAX_AMOUNT_DECIMAL_PLACES = 8
AMOUNT_RANGE_ERROR = (
    f"Amount must have at most {MAX_AMOUNT_INTEGER_DIGITS} integer digits "
    f"and {MAX_AMOUNT_DECIMAL_PLACES} decimal places"
)


def parse_amount(value: Any) -> Decimal:
    """Converts wire input into a strictly positive, finite, bounded Decimal.

    Strings are parsed directly; ints and floats go through their decimal
    string form so that 0.1 becomes Decimal("0.1") rather than the binary
    approximation.
    """
    if isinstance(value, bool):
        raise ValueError(AMOUNT_ERROR)
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (str, int, float)):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(AMOUNT_ERROR)
    else:
        raise ValueError(AMOUNT_ERROR)
    if not amount.is_finite() or amount <= 0:
        raise ValueError(AMOUNT_ERROR)
    if amount.adjusted() >= MAX_AMOUNT_INTEGER_DIGITS or -amount.as_tuple().exponent > MAX_AMOUNT_DECIMAL_PLACES:
        raise ValueError(AMOUNT_RANGE_ERROR)
    return amount


def format_amount(value: Decimal) -> str:
    """Fixed-point string form, keeping the scale ("5.00" stays "5.00")."""
    return format(value, "f")


Amount = Annotated[Decimal, BeforeValidator(parse_amount), PlainSerializer(format_amount, return_type=str)]
MoneyTotal = Annotated[Decimal, PlainSerializer(format_amount, return_type=str)]
# Per-category totals travel as plain JSON numbers, unlike the two headline sums.
NumericTotal = Annotated[Decimal, PlainSerializer(float, return_type=float)]
NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class CamelModel(BaseModel):
    """Base model exchanging camelCase keys on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ExpenseCreate(CamelModel):
    """Fields a client supplies when recording an expense."""
    title: NonEmptyStr
    amount: Amount
    category: NonEmptyStr
    date: dt.date


class ExpenseUpdate(CamelModel):
    """Partial update: only the fields present in the request are applied."""
    title: Optional[NonEmptyStr] = None
    amount: Optional[Amount] = None
    category: Optional[NonEmptyStr] = None
    date: Optional[dt.date] = None

    @field_validator("title", "amount", "category", "date", mode="before")
    @classmethod
    def reject_null(cls, value: Any, info) -> Any:
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value

    def changes(self) -> Dict[str, Any]:
        """Returns the supplied fields only, keyed by their Python names."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class Expense(ExpenseCreate):
    """
    Represents a single stored expense.
    id, user_id and created_at are assigned by the store and never taken from clients.
    """
    id: int
    user_id: str
    created_at: Optional[dt.datetime] = None


class ExpenseFilters(CamelModel):
    """Optional list criteria: title substring search and exact category."""
    search: Optional[str] = None
    category: Optional[str] = None


class CategoryTotal(CamelModel):
    name: str
    value: NumericTotal


class ExpenseStats(CamelModel):
    total_balance: MoneyTotal
    monthly_spend: MoneyTotal
    top_category: Optional[str] = None
    category_breakdown: List[CategoryTotal]


class CategoryOptions(CamelModel):
    categories: List[str]
    default: str


class AuthenticatedUser(BaseModel):
    """Identity returned by the hosted auth service for a bearer token."""
    id: str
    email: Optional[str] = None
