"""Domain errors raised below the route layer."""


class ExpenseNotFoundError(LookupError):
    """The referenced expense does not exist (or is not visible to the caller)."""

    def __init__(self, expense_id: int):
        super().__init__(f"Expense {expense_id} not found")
        self.expense_id = expense_id


class AuthenticationError(Exception):
    """Bearer token missing, malformed, or rejected by the identity service."""


class ConfigurationError(RuntimeError):
    """Required environment configuration is absent."""
