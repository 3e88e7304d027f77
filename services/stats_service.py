"""Aggregate spending statistics over a snapshot of expenses."""
import datetime as dt
from decimal import Decimal, localcontext
from typing import Dict, Iterable, List, Optional

from models.expense import MAX_AMOUNT_DECIMAL_PLACES, MAX_AMOUNT_INTEGER_DIGITS, CategoryTotal, Expense, ExpenseStats

# Digits a sum may need: one bounded amount plus room for up to 10**20 terms
SUM_PRECISION = MAX_AMOUNT_INTEGER_DIGITS + MAX_AMOUNT_DECIMAL_PLACES + 20


def compute_expense_stats(expenses: Iterable[Expense], today: dt.date) -> ExpenseStats:
    """
    Computes lifetime total, spend for the calendar month containing `today`,
    per-category totals and the top category.

    Category totals keep the order in which each category is first seen in
    `expenses`. The top category is the strictly largest total, so on a tie
    the earlier category wins. Empty input yields zero sums and no top category.
    Sums are exact regardless of the caller's decimal context.
    """
    total_balance = Decimal(0)
    monthly_spend = Decimal(0)
    by_category: Dict[str, Decimal] = {}

    with localcontext() as ctx:
        ctx.prec = SUM_PRECISION
        for expense in expenses:
            total_balance += expense.amount
            if expense.date.year == today.year and expense.date.month == today.month:
                monthly_spend += expense.amount
            by_category[expense.category] = by_category.get(expense.category, Decimal(0)) + expense.amount

    breakdown: List[CategoryTotal] = [
        CategoryTotal(name=name, value=value) for name, value in by_category.items()
    ]

    top_category: Optional[str] = None
    max_value = Decimal(0)
    for entry in breakdown:
        if entry.value > max_value:
            max_value = entry.value
            top_category = entry.name

    return ExpenseStats(
        total_balance=total_balance,
        monthly_spend=monthly_spend,
        top_category=top_category,
        category_breakdown=breakdown,
    )
