"""
Budget core error taxonomy

- BudgetValidationError: bad input to create/update (rejected, not retried)
- BudgetNotFoundError: operating on a missing budget
- StorageUnavailableError: transient storage failure (retried by the caller)
- NotifyFailure: notification dispatch failed (logged, non-fatal)
"""


class BudgetError(Exception):
    """Base class for budget core errors"""
    pass


class BudgetValidationError(BudgetError, ValueError):
    pass


class BudgetNotFoundError(BudgetError, LookupError):

    def __init__(self, budget_id: str):
        super().__init__(f"Budget {budget_id} not found")
        self.budget_id = budget_id


class StorageUnavailableError(BudgetError):
    pass


class NotifyFailure(BudgetError):
    pass
