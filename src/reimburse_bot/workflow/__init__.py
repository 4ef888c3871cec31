"""
Pending-request workflow.

Provides:
- Workflow states, events and per-family transition tables
- In-memory correlation store (one request per user and family)
- The event-driven engine for the manual and AI-assisted flows
"""

from .engine import ReimbursementWorkflow
from .errors import ErrorKind, WorkflowError, error_kind_for
from .files import TempFileStore
from .models import ExpenseFields, MessageRef, PendingRequest, ReceiptData
from .states import (
    InvalidTransitionError,
    RequestKind,
    RequestState,
    Stage,
    WorkflowEvent,
    WorkflowFamily,
    is_terminal,
    transition,
)
from .store import CorrelationStore, SlotBusyError

__all__ = [
    "ReimbursementWorkflow",
    "CorrelationStore",
    "SlotBusyError",
    "TempFileStore",
    "PendingRequest",
    "ExpenseFields",
    "ReceiptData",
    "MessageRef",
    "RequestState",
    "RequestKind",
    "WorkflowEvent",
    "WorkflowFamily",
    "Stage",
    "InvalidTransitionError",
    "transition",
    "is_terminal",
    "ErrorKind",
    "WorkflowError",
    "error_kind_for",
]
