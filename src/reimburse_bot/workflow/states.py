"""
Workflow states, events and the per-family transition tables.
"""

from enum import Enum


class WorkflowFamily(str, Enum):
    """Slot category: a user holds at most one request per family."""

    MANUAL = "manual"
    AI_ASSISTED = "ai_assisted"


class RequestKind(str, Enum):
    """Concrete workflow variant."""

    MANUAL = "manual"  # File choice not made yet
    MANUAL_WITH_FILE = "manual_with_file"
    MANUAL_WITHOUT_FILE = "manual_without_file"
    AI_ASSISTED = "ai_assisted"


class RequestState(str, Enum):
    """Lifecycle state of a pending request."""

    AWAITING_FORM = "awaiting_form"
    AWAITING_FILE_CHOICE = "awaiting_file_choice"
    AWAITING_FILE = "awaiting_file"
    SUBMITTING_NO_FILE = "submitting_no_file"
    PARSING_RECEIPT = "parsing_receipt"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    FAILED = "failed"
    CANCELLED = "cancelled"


class WorkflowEvent(str, Enum):
    """Inputs that drive a request between states."""

    FORM_COMPLETED = "form_completed"
    CHOSE_NO_FILE = "chose_no_file"
    CHOSE_FILE = "chose_file"
    FILE_ARRIVED = "file_arrived"
    RECEIPT_PARSED = "receipt_parsed"
    CONFIRMED = "confirmed"
    SUBMIT_SUCCEEDED = "submit_succeeded"
    FAIL = "fail"
    CANCEL = "cancel"


class Stage(str, Enum):
    """Which kind of input a request is waiting for."""

    FORM = "form"
    FILE = "file"
    CONFIRMATION = "confirmation"
    IN_FLIGHT = "in_flight"
    DONE = "done"


class InvalidTransitionError(Exception):
    """Event is not legal in the request's current state."""

    def __init__(self, family: WorkflowFamily | str, state: RequestState, event: WorkflowEvent):
        self.family = family
        self.state = state
        self.event = event
        super().__init__(f"Illegal event {event.value!r} in state {state.value!r} ({family})")


TERMINAL_STATES = frozenset(
    {RequestState.SUBMITTED, RequestState.FAILED, RequestState.CANCELLED}
)

MANUAL_TRANSITIONS: dict[tuple[RequestState, WorkflowEvent], RequestState] = {
    (RequestState.AWAITING_FORM, WorkflowEvent.FORM_COMPLETED): RequestState.AWAITING_FILE_CHOICE,
    (RequestState.AWAITING_FILE_CHOICE, WorkflowEvent.CHOSE_NO_FILE): RequestState.SUBMITTING_NO_FILE,
    (RequestState.AWAITING_FILE_CHOICE, WorkflowEvent.CHOSE_FILE): RequestState.AWAITING_FILE,
    (RequestState.SUBMITTING_NO_FILE, WorkflowEvent.SUBMIT_SUCCEEDED): RequestState.SUBMITTED,
    (RequestState.AWAITING_FILE, WorkflowEvent.FILE_ARRIVED): RequestState.SUBMITTING,
    (RequestState.SUBMITTING, WorkflowEvent.SUBMIT_SUCCEEDED): RequestState.SUBMITTED,
}

AI_ASSISTED_TRANSITIONS: dict[tuple[RequestState, WorkflowEvent], RequestState] = {
    (RequestState.AWAITING_FILE, WorkflowEvent.FILE_ARRIVED): RequestState.PARSING_RECEIPT,
    (RequestState.PARSING_RECEIPT, WorkflowEvent.RECEIPT_PARSED): RequestState.AWAITING_CONFIRMATION,
    (RequestState.AWAITING_CONFIRMATION, WorkflowEvent.CONFIRMED): RequestState.SUBMITTING,
    (RequestState.SUBMITTING, WorkflowEvent.SUBMIT_SUCCEEDED): RequestState.SUBMITTED,
}

TRANSITIONS = {
    WorkflowFamily.MANUAL: MANUAL_TRANSITIONS,
    WorkflowFamily.AI_ASSISTED: AI_ASSISTED_TRANSITIONS,
}

STAGES = {
    RequestState.AWAITING_FORM: Stage.FORM,
    RequestState.AWAITING_FILE_CHOICE: Stage.FORM,
    RequestState.AWAITING_FILE: Stage.FILE,
    RequestState.AWAITING_CONFIRMATION: Stage.CONFIRMATION,
    RequestState.SUBMITTING_NO_FILE: Stage.IN_FLIGHT,
    RequestState.PARSING_RECEIPT: Stage.IN_FLIGHT,
    RequestState.SUBMITTING: Stage.IN_FLIGHT,
    RequestState.SUBMITTED: Stage.DONE,
    RequestState.FAILED: Stage.DONE,
    RequestState.CANCELLED: Stage.DONE,
}


def is_terminal(state: RequestState) -> bool:
    """Check whether a state ends the workflow."""
    return state in TERMINAL_STATES


def stage_for(state: RequestState) -> Stage:
    """Stage a state belongs to."""
    return STAGES[state]


def transition(family: WorkflowFamily, state: RequestState, event: WorkflowEvent) -> RequestState:
    """
    Compute the next state.

    fail and cancel are legal from every non-terminal state of either family.

    Raises:
        InvalidTransitionError: For an unknown family, a terminal state or an
            event the family's table does not allow in this state. States
            outside the family (including terminal ones) accept nothing.
    """
    table = TRANSITIONS.get(family)
    if table is None or not any(source == state for source, _ in table):
        raise InvalidTransitionError(family, state, event)

    if event == WorkflowEvent.FAIL:
        return RequestState.FAILED
    if event == WorkflowEvent.CANCEL:
        return RequestState.CANCELLED

    next_state = table.get((state, event))
    if next_state is None:
        raise InvalidTransitionError(family, state, event)
    return next_state
