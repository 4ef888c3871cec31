"""
Workflow error taxonomy.
"""

from enum import Enum

from ..harvest_client import SubmissionFailure


class ErrorKind(str, Enum):
    """Why a workflow step did not succeed."""

    USER_INPUT_INVALID = "user_input_invalid"  # Re-prompt, no state change
    SESSION_EXPIRED = "session_expired"  # Request no longer pending
    CREDENTIALS_MISSING = "credentials_missing"
    EXTRACTION_FAILED = "extraction_failed"
    UPSTREAM_REJECTED = "upstream_rejected"  # Ledger refused the expense
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"  # Ledger unreachable
    INTERNAL = "internal"


def error_kind_for(failure: SubmissionFailure | None) -> ErrorKind:
    """Map a ledger submission failure onto the workflow taxonomy."""
    if failure == SubmissionFailure.NETWORK:
        return ErrorKind.UPSTREAM_UNAVAILABLE
    if failure == SubmissionFailure.FILE_MISSING or failure is None:
        return ErrorKind.INTERNAL
    return ErrorKind.UPSTREAM_REJECTED


class WorkflowError(Exception):
    """A workflow step failed in a way the user must be told about."""

    def __init__(self, kind: ErrorKind, message: str):
        self.kind = kind
        self.message = message
        super().__init__(f"{kind.value}: {message}")
