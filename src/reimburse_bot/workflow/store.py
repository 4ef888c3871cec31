"""
In-memory correlation store for pending requests.

Requests are keyed by request id with a secondary index from
(user id, workflow family) to the active request id. Contents are lost on
restart.
"""

import dataclasses
import logging
import threading

from .models import PendingRequest, new_request_id
from .states import (
    InvalidTransitionError,
    Stage,
    WorkflowEvent,
    WorkflowFamily,
    is_terminal,
    transition,
)

logger = logging.getLogger(__name__)

# Stages whose request a new command for the same slot may replace
REPLACEABLE_STAGES = frozenset({Stage.FORM, Stage.FILE, Stage.CONFIRMATION})


class SlotBusyError(Exception):
    """The slot's request is being processed and cannot be replaced."""

    def __init__(self, request: PendingRequest):
        self.request = request
        super().__init__(
            f"Request {request.request_id} of user {request.user_id} is {request.state.value}"
        )


class CorrelationStore:
    """
    Thread-safe store of pending requests.

    Responsibilities:
    - Enforce one active request per (user, family)
    - Atomic compare-and-transition of request state
    - Key migration when a request changes its correlation key
    - Drop requests as soon as they reach a terminal state

    All reads return immutable snapshots.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._requests: dict[str, PendingRequest] = {}
        self._slots: dict[tuple[str, WorkflowFamily], str] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)

    def _remove(self, request_id: str) -> PendingRequest | None:
        request = self._requests.pop(request_id, None)
        if request is not None and self._slots.get(request.slot) == request_id:
            del self._slots[request.slot]
        return request

    def open(self, request: PendingRequest) -> PendingRequest | None:
        """
        Insert a new request.

        A request waiting for user input is displaced. A request with a
        ledger or extraction call in flight is never replaced.

        Returns:
            The request previously holding the same (user, family) slot,
            already removed, or None if the slot was free.

        Raises:
            SlotBusyError: If the slot's request is in flight. Nothing is changed.
        """
        with self._lock:
            displaced = None
            previous_id = self._slots.get(request.slot)
            if previous_id is not None:
                previous = self._requests[previous_id]
                if previous.stage not in REPLACEABLE_STAGES:
                    raise SlotBusyError(previous)
                displaced = self._remove(previous_id)
                logger.info(
                    "Request %s replaced by %s for user %s (%s)",
                    previous_id,
                    request.request_id,
                    request.user_id,
                    request.family.value,
                )
            self._requests[request.request_id] = request
            self._slots[request.slot] = request.request_id
        return displaced

    def get(self, request_id: str, stage: Stage | None = None) -> PendingRequest | None:
        """Look up a request, optionally requiring a stage. A miss is normal."""
        with self._lock:
            request = self._requests.get(request_id)
        if request is None or (stage is not None and request.stage != stage):
            return None
        return request

    def get_slot(self, user_id: str, family: WorkflowFamily) -> PendingRequest | None:
        """Active request in a user's slot."""
        with self._lock:
            request_id = self._slots.get((user_id, family))
            return self._requests.get(request_id) if request_id else None

    def find_awaiting_file(self, user_id: str, channel_id: str) -> PendingRequest | None:
        """
        Find the request a shared file belongs to.

        Only requests of the user waiting for a file in exactly this channel
        match. With both families waiting, the newest request wins.
        """
        with self._lock:
            candidates = [
                self._requests[request_id]
                for (slot_user, _), request_id in self._slots.items()
                if slot_user == user_id
            ]
        matches = [
            request
            for request in candidates
            if request.stage == Stage.FILE and request.channel_id == channel_id
        ]
        if not matches:
            return None
        return max(matches, key=lambda request: request.created_at)

    def advance(
        self,
        request_id: str,
        event: WorkflowEvent,
        allowed_stages: frozenset[Stage] | None = None,
        **changes,
    ) -> PendingRequest | None:
        """
        Apply an event to a request, together with field changes.

        A request that reaches a terminal state is removed in the same step.
        With ``allowed_stages``, a request in any other stage is left alone.

        Returns:
            The updated snapshot, or None if the request is gone.

        Raises:
            InvalidTransitionError: If the event is illegal in the current
                state (e.g. a duplicate delivery) or outside ``allowed_stages``.
                Nothing is changed.
        """
        with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                return None
            if allowed_stages is not None and request.stage not in allowed_stages:
                raise InvalidTransitionError(request.family, request.state, event)

            new_state = transition(request.family, request.state, event)
            updated = dataclasses.replace(request, state=new_state, **changes)

            if is_terminal(new_state):
                self._remove(request_id)
            else:
                self._requests[request_id] = updated

        logger.debug(
            "Request %s: %s -[%s]-> %s",
            request_id,
            request.state.value,
            event.value,
            new_state.value,
        )
        return updated

    def migrate(self, request_id: str, event: WorkflowEvent, **changes) -> PendingRequest | None:
        """
        Apply an event and move the request to a fresh request id.

        The old key and the new key are never both live.

        Returns:
            The snapshot under its new id, or None if the request is gone.

        Raises:
            InvalidTransitionError: If the event is illegal in the current state.
        """
        with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                return None

            new_state = transition(request.family, request.state, event)
            migrated = dataclasses.replace(
                request, state=new_state, request_id=new_request_id(), **changes
            )

            self._remove(request_id)
            if not is_terminal(new_state):
                self._requests[migrated.request_id] = migrated
                self._slots[migrated.slot] = migrated.request_id

        logger.debug(
            "Request %s migrated to %s (%s)", request_id, migrated.request_id, new_state.value
        )
        return migrated

    def close(self, request_id: str) -> PendingRequest | None:
        """Remove a request without a transition. Returns it, or None."""
        with self._lock:
            return self._remove(request_id)
