"""
Pending-request data model.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal

from ..harvest_client import ExpenseCategory
from .states import RequestKind, RequestState, Stage, WorkflowFamily, stage_for

TODAY = "today"


def new_request_id() -> str:
    """Opaque, unique request token."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class MessageRef:
    """Location of the status message updated in place."""

    channel_id: str
    ts: str


@dataclass(frozen=True)
class ExpenseFields:
    """User-entered (or confirmed) expense fields.

    ``spent_date`` is an ISO date string or the sentinel ``today``, resolved
    at submission time.
    """

    spent_date: str = TODAY
    amount: Decimal | None = None
    category: ExpenseCategory | None = None
    notes: str = ""

    def resolved_date(self, today: date | None = None) -> date:
        """Concrete date to book the expense on."""
        if not self.spent_date or self.spent_date == TODAY:
            return today or date.today()
        return date.fromisoformat(self.spent_date)


@dataclass(frozen=True)
class ReceiptData:
    """Values read from a receipt and their base-currency conversion."""

    original_amount: Decimal
    original_currency: str
    normalized_amount: Decimal
    conversion_rate: Decimal
    was_converted: bool
    receipt_date: date | None = None
    description: str | None = None


@dataclass(frozen=True)
class PendingRequest:
    """One in-flight reimbursement.

    Snapshots are immutable; the store replaces them on every transition.
    """

    user_id: str
    channel_id: str
    family: WorkflowFamily
    kind: RequestKind
    state: RequestState
    request_id: str = field(default_factory=new_request_id)
    fields: ExpenseFields = field(default_factory=ExpenseFields)
    receipt: ReceiptData | None = None
    receipt_path: str | None = None
    anchor: MessageRef | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def stage(self) -> Stage:
        return stage_for(self.state)

    @property
    def slot(self) -> tuple[str, WorkflowFamily]:
        return (self.user_id, self.family)
