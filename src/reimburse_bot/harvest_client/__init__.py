"""
Harvest API Client (the ledger).

Provides:
- Create expenses (POST /v2/expenses) with optional receipt upload
- List expenses in a date range (GET /v2/expenses)
- Classification of submission failures

Submission failures are returned as SubmissionResult values, never raised.
"""

from .client import (
    CATEGORY_LABELS,
    ExpenseCategory,
    HarvestAPIError,
    HarvestClient,
    HarvestConnectionError,
    HarvestError,
    SubmissionFailure,
    SubmissionResult,
    classify_status,
)

__all__ = [
    "HarvestClient",
    "HarvestError",
    "HarvestAPIError",
    "HarvestConnectionError",
    "ExpenseCategory",
    "CATEGORY_LABELS",
    "SubmissionFailure",
    "SubmissionResult",
    "classify_status",
]
