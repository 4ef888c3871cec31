"""
Reimbursement workflow engine.

Correlates slash commands, modal submissions, button clicks and file-shared
events into one "submit an expense" transaction per pending request. Every
public method is a Slack entry point: it never raises, and an unexpected
error closes the request, deletes its receipt file and tells the user.
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal

from ..currency import CurrencyNormalizer
from ..extraction import ReceiptExtractionError, ReceiptExtractor, is_supported_receipt
from ..harvest_client import ExpenseCategory, HarvestClient, HarvestError
from ..vault import CredentialVault, Credentials
from . import messages
from .allowance import DEFAULT_LIMITS, AllowanceUsage, cutoff_period
from .errors import ErrorKind, WorkflowError, error_kind_for
from .files import TempFileStore
from .forms import API_TOKEN_BLOCK, DATE_BLOCK, parse_credentials_form, parse_expense_form
from .models import TODAY, ExpenseFields, PendingRequest, ReceiptData
from .states import (
    InvalidTransitionError,
    RequestKind,
    RequestState,
    Stage,
    WorkflowEvent,
    WorkflowFamily,
)
from .store import REPLACEABLE_STAGES, CorrelationStore, SlotBusyError

logger = logging.getLogger(__name__)

DEFAULT_NOTES = "Reimbursement submitted via Slack"


@dataclass
class _Scope:
    """What the boundary guard needs to clean up after an unexpected error."""

    operation: str
    user_id: str | None = None
    channel_id: str | None = None
    request_id: str | None = None
    receipt_path: str | None = None
    ack: Callable | None = None
    acked: bool = False
    error_block: str = DATE_BLOCK

    def respond(self, **kwargs) -> None:
        if self.ack is not None and not self.acked:
            self.acked = True
            self.ack(**kwargs)


class ReimbursementWorkflow:
    """
    Drives pending requests through their states.

    Responsibilities:
    - Manual flow: form, file choice, optional receipt, submission
    - AI-assisted flow: receipt upload, extraction, normalization, review,
      confirmation, submission
    - Credential configuration and allowance status
    - Exactly one final user-visible message and full cleanup per request
    """

    def __init__(
        self,
        gateway,
        vault: CredentialVault,
        harvest: HarvestClient,
        extractor: ReceiptExtractor,
        normalizer: CurrencyNormalizer,
        store: CorrelationStore | None = None,
        files: TempFileStore | None = None,
        allowance_limits: dict | None = None,
        today: Callable[[], date] = date.today,
    ):
        """
        Initialize the engine.

        Args:
            gateway: Slack gateway (messages, views, files)
            vault: Per-user credential vault
            harvest: Ledger client
            extractor: Receipt reader for the AI-assisted flow
            normalizer: Converts receipt amounts into the base currency
            store: Correlation store (a fresh one by default)
            files: Transient receipt storage
            allowance_limits: Cap per ExpenseCategory for status reports
            today: Date source, injectable for tests
        """
        self.gateway = gateway
        self.vault = vault
        self.harvest = harvest
        self.extractor = extractor
        self.normalizer = normalizer
        self.store = store or CorrelationStore()
        self.files = files or TempFileStore()
        self.allowance_limits = allowance_limits or DEFAULT_LIMITS
        self._today = today

    @property
    def currency(self) -> str:
        return self.normalizer.base_currency

    # Boundary and cleanup

    @contextmanager
    def _guard(self, operation: str, **scope_fields) -> Iterator[_Scope]:
        scope = _Scope(operation=operation, **scope_fields)
        try:
            yield scope
        except Exception as e:
            logger.exception("Unexpected error in %s: %s", operation, e)
            self._abort(scope)

    def _abort(self, scope: _Scope) -> None:
        request = self.store.close(scope.request_id) if scope.request_id else None
        if request is not None:
            logger.warning(
                "Request %s failed (%s) in %s", request.request_id, ErrorKind.INTERNAL.value, scope.operation
            )
            self.files.discard(request.receipt_path)
        self.files.discard(scope.receipt_path)

        try:
            if scope.ack is not None and not scope.acked:
                scope.respond(response_action="errors", errors={scope.error_block: messages.GENERIC_ERROR})
            elif request is not None:
                self._deliver(request, messages.failed(request.user_id, messages.GENERIC_ERROR))
            elif scope.channel_id and scope.user_id:
                self.gateway.post_ephemeral(scope.channel_id, scope.user_id, **messages.generic_error())
        except Exception as e:
            logger.error("Could not report failure of %s to the user: %s", scope.operation, e)

    def _deliver(self, request: PendingRequest, message: dict) -> None:
        """Update the request's status message in place, or post a new one."""
        if request.anchor is not None:
            self.gateway.update_message(request.anchor, **message)
        else:
            self.gateway.post_message(request.channel_id, **message)

    def _fail(
        self,
        request: PendingRequest,
        kind: ErrorKind,
        message: str,
        receipt_path: str | None = None,
    ) -> None:
        """Move a request to failed, clean up and send the one failure message."""
        try:
            self.store.advance(request.request_id, WorkflowEvent.FAIL)
        except InvalidTransitionError:
            self.store.close(request.request_id)
        self.files.discard(receipt_path or request.receipt_path)

        logger.warning(
            "Request %s for user %s failed (%s): %s",
            request.request_id,
            request.user_id,
            kind.value,
            message,
        )
        self._deliver(request, messages.failed(request.user_id, message))

    def _open(self, request: PendingRequest) -> bool:
        """
        Open a request in its user's slot, replacing a request that waits for input.

        Returns:
            False if the slot is busy with an in-flight request. The user is
            told so and nothing is stored.
        """
        try:
            displaced = self.store.open(request)
        except SlotBusyError as e:
            logger.info("Request %s not opened: %s", request.request_id, e)
            self.gateway.post_ephemeral(request.channel_id, request.user_id, **messages.still_processing())
            return False
        if displaced is None:
            return True
        logger.info(
            "Request %s cancelled: superseded by %s", displaced.request_id, request.request_id
        )
        self.files.discard(displaced.receipt_path)
        if displaced.anchor is not None:
            try:
                self.gateway.update_message(displaced.anchor, **messages.superseded(displaced.user_id))
            except Exception as e:
                logger.warning("Could not mark request %s as superseded: %s", displaced.request_id, e)
        return True

    def _credentials(self, user_id: str) -> Credentials | None:
        return self.vault.get(user_id)

    def _require_credentials(self, user_id: str) -> Credentials:
        credentials = self._credentials(user_id)
        if credentials is None:
            raise WorkflowError(
                ErrorKind.CREDENTIALS_MISSING,
                "Your Harvest credentials were not found. Please run `/configure` and try again.",
            )
        return credentials

    def _complete(self, request: PendingRequest, receipt_path: str | None = None) -> None:
        """Submit a request in a submitting state and send its final message.

        The receipt file is deleted as soon as the ledger call resolves.
        """
        try:
            credentials = self._require_credentials(request.user_id)
        except WorkflowError as e:
            self._fail(request, e.kind, e.message, receipt_path=receipt_path)
            return

        fields = request.fields
        result = self.harvest.add_expense(
            credentials,
            category=fields.category,
            spent_date=fields.resolved_date(self._today()),
            total_cost=fields.amount,
            notes=fields.notes or DEFAULT_NOTES,
            receipt_path=receipt_path,
        )
        self.files.discard(receipt_path)

        if not result.success:
            self._fail(request, error_kind_for(result.failure), result.message)
            return

        self.store.advance(request.request_id, WorkflowEvent.SUBMIT_SUCCEEDED)
        logger.info(
            "Request %s submitted for user %s (expense %s)",
            request.request_id,
            request.user_id,
            result.expense_id,
        )
        self._deliver(
            request,
            messages.submitted(request, self.currency, with_receipt=receipt_path is not None),
        )

    # Manual flow

    def start_manual(self, user_id: str, channel_id: str, trigger_id: str) -> None:
        """/reimburse: open the expense form."""
        with self._guard("start_manual", user_id=user_id, channel_id=channel_id) as scope:
            if self._credentials(user_id) is None:
                self.gateway.post_ephemeral(channel_id, user_id, **messages.credentials_missing())
                return

            request = PendingRequest(
                user_id=user_id,
                channel_id=channel_id,
                family=WorkflowFamily.MANUAL,
                kind=RequestKind.MANUAL,
                state=RequestState.AWAITING_FORM,
            )
            if not self._open(request):
                return
            scope.request_id = request.request_id
            self.gateway.open_view(trigger_id, messages.expense_modal(request.request_id))
            logger.info("Request %s opened for user %s (manual)", request.request_id, user_id)

    def submit_form(self, request_id: str, values: dict, ack: Callable) -> None:
        """Expense form submitted: validate, store fields, offer the file choice."""
        with self._guard("submit_form", request_id=request_id, ack=ack) as scope:
            request = self.store.get(request_id, Stage.FORM)
            if request is None or request.state != RequestState.AWAITING_FORM:
                scope.respond(response_action="errors", errors={DATE_BLOCK: messages.SESSION_EXPIRED})
                return

            fields, errors = parse_expense_form(values, self.currency)
            if errors:
                logger.debug("Request %s form invalid: %s", request_id, sorted(errors))
                scope.respond(response_action="errors", errors=errors)
                return

            try:
                request = self.store.advance(request_id, WorkflowEvent.FORM_COMPLETED, fields=fields)
            except InvalidTransitionError:
                request = None
            if request is None:
                scope.respond(response_action="errors", errors={DATE_BLOCK: messages.SESSION_EXPIRED})
                return

            scope.respond(response_action="update", view=messages.file_choice_view(request, self.currency))

    def _expired_view(self, view_id: str | None) -> None:
        if view_id:
            self.gateway.update_view(view_id, messages.notice_view("Session Expired", messages.SESSION_EXPIRED))

    def choose_without_file(self, request_id: str, view_id: str | None = None) -> None:
        """Submit the manual request right away, without a receipt."""
        with self._guard("choose_without_file", request_id=request_id) as scope:
            try:
                request = self.store.advance(
                    request_id, WorkflowEvent.CHOSE_NO_FILE, kind=RequestKind.MANUAL_WITHOUT_FILE
                )
            except InvalidTransitionError as e:
                logger.info("Ignoring file choice for request %s: %s", request_id, e)
                return
            if request is None:
                self._expired_view(view_id)
                return

            scope.channel_id, scope.user_id = request.channel_id, request.user_id
            if view_id:
                self.gateway.update_view(view_id, messages.processing_view())

            self._complete(request)

    def choose_with_file(self, request_id: str, view_id: str | None = None) -> None:
        """Ask for the receipt in the channel and wait for the file."""
        with self._guard("choose_with_file", request_id=request_id) as scope:
            request = self.store.get(request_id, Stage.FORM)
            if request is None or request.state != RequestState.AWAITING_FILE_CHOICE:
                self._expired_view(view_id)
                return

            scope.channel_id, scope.user_id = request.channel_id, request.user_id
            if view_id:
                self.gateway.update_view(view_id, messages.upload_prompt_view())

            anchor = self.gateway.post_message(
                request.channel_id, **messages.waiting_for_file(request, self.currency)
            )
            try:
                updated = self.store.advance(
                    request_id,
                    WorkflowEvent.CHOSE_FILE,
                    kind=RequestKind.MANUAL_WITH_FILE,
                    anchor=anchor,
                )
            except InvalidTransitionError as e:
                logger.info("Ignoring duplicate file choice for request %s: %s", request_id, e)
                updated = None
            if updated is None:
                self.gateway.delete_message(anchor)

    # AI-assisted flow

    def start_quick(
        self,
        user_id: str,
        channel_id: str,
        category: ExpenseCategory,
        notes: str = "",
    ) -> None:
        """/reimburse-transpo, /reimburse-wellness: wait for a receipt to read."""
        with self._guard("start_quick", user_id=user_id, channel_id=channel_id) as scope:
            if self._credentials(user_id) is None:
                self.gateway.post_ephemeral(channel_id, user_id, **messages.credentials_missing())
                return

            notes = (notes or "").strip()
            request = PendingRequest(
                user_id=user_id,
                channel_id=channel_id,
                family=WorkflowFamily.AI_ASSISTED,
                kind=RequestKind.AI_ASSISTED,
                state=RequestState.AWAITING_FILE,
                fields=ExpenseFields(category=category, notes=notes),
            )
            anchor = self.gateway.post_message(channel_id, **messages.quick_prompt(request))
            request = replace(request, anchor=anchor)
            if not self._open(request):
                self.gateway.delete_message(anchor)
                return
            scope.request_id = request.request_id
            logger.info(
                "Request %s opened for user %s (%s receipt)", request.request_id, user_id, category.value
            )

    def file_shared(self, user_id: str, channel_id: str, file_id: str) -> None:
        """A user shared a file: route it to the request waiting for it, if any."""
        with self._guard("file_shared", user_id=user_id, channel_id=channel_id) as scope:
            request = self.store.find_awaiting_file(user_id, channel_id)
            if request is None:
                logger.debug("No request waiting for a file from %s in %s", user_id, channel_id)
                return

            scope.request_id = request.request_id
            if request.family == WorkflowFamily.MANUAL:
                self._submit_with_file(request, file_id, scope)
            else:
                self._read_receipt(request, file_id, scope)

    def _submit_with_file(self, request: PendingRequest, file_id: str, scope: _Scope) -> None:
        try:
            request = self.store.advance(request.request_id, WorkflowEvent.FILE_ARRIVED)
        except InvalidTransitionError as e:
            logger.info("Ignoring file %s for request %s: %s", file_id, request.request_id, e)
            return
        if request is None:
            return

        self._deliver(request, messages.submitting(request.user_id))

        shared_file = self.gateway.file_info(file_id)
        data = self.gateway.download(shared_file)
        path = self.files.write(shared_file.name, data)
        scope.receipt_path = path

        self._complete(request, receipt_path=path)

    def _interpret(
        self, request: PendingRequest, data: bytes, mimetype: str
    ) -> tuple[ReceiptData, ExpenseFields]:
        """
        Read a receipt and convert its total into the base currency.

        Raises:
            WorkflowError: If no positive amount can be obtained
        """
        try:
            extraction = self.extractor.extract(data, mimetype)
        except ReceiptExtractionError as e:
            raise WorkflowError(
                ErrorKind.EXTRACTION_FAILED,
                f"{e.message}. Please try with a clearer image or use `/reimburse` "
                "to enter details manually.",
            ) from e

        conversion = self.normalizer.convert(extraction.amount, extraction.currency)
        if conversion.amount <= 0:
            raise WorkflowError(
                ErrorKind.EXTRACTION_FAILED,
                f"The receipt total ({extraction.currency} {extraction.amount}) "
                "is too small to reimburse.",
            )

        receipt = ReceiptData(
            original_amount=extraction.amount,
            original_currency=conversion.from_currency,
            normalized_amount=conversion.amount,
            conversion_rate=conversion.rate,
            was_converted=conversion.was_converted,
            receipt_date=extraction.date,
            description=extraction.description,
        )
        fields = ExpenseFields(
            spent_date=extraction.date.isoformat() if extraction.date else TODAY,
            amount=conversion.amount,
            category=request.fields.category,
            notes=request.fields.notes or extraction.description or "",
        )
        return receipt, fields

    def _read_receipt(self, request: PendingRequest, file_id: str, scope: _Scope) -> None:
        shared_file = self.gateway.file_info(file_id)
        if not is_supported_receipt(shared_file.mimetype):
            logger.info(
                "Request %s: unsupported file type %r, waiting for another file",
                request.request_id,
                shared_file.mimetype,
            )
            self.gateway.post_message(request.channel_id, **messages.unsupported_file())
            return

        try:
            request = self.store.advance(request.request_id, WorkflowEvent.FILE_ARRIVED)
        except InvalidTransitionError as e:
            logger.info("Ignoring file %s for request %s: %s", file_id, request.request_id, e)
            return
        if request is None:
            return

        self._deliver(request, messages.analyzing_receipt())

        data = self.gateway.download(shared_file)
        path = self.files.write(shared_file.name, data)
        scope.receipt_path = path

        try:
            receipt, fields = self._interpret(request, data, shared_file.mimetype)
        except WorkflowError as e:
            self._fail(request, e.kind, e.message, receipt_path=path)
            return

        migrated = self.store.migrate(
            request.request_id,
            WorkflowEvent.RECEIPT_PARSED,
            fields=fields,
            receipt=receipt,
            receipt_path=path,
        )
        if migrated is None:
            # Closed while the receipt was being read
            logger.info("Request %s is gone; dropping parsed receipt", request.request_id)
            self.files.discard(path)
            return

        scope.request_id = migrated.request_id
        logger.info(
            "Request %s parsed receipt: %s %s -> %s %s",
            migrated.request_id,
            receipt.original_currency,
            receipt.original_amount,
            self.currency,
            receipt.normalized_amount,
        )
        self._deliver(migrated, messages.receipt_review(migrated, self.currency))

    def open_review(
        self,
        request_id: str,
        trigger_id: str,
        user_id: str | None = None,
        channel_id: str | None = None,
    ) -> None:
        """Review & Submit clicked: open the editable confirmation modal."""
        with self._guard("open_review", request_id=request_id, user_id=user_id, channel_id=channel_id):
            request = self.store.get(request_id, Stage.CONFIRMATION)
            if request is None:
                logger.info("Review requested for unknown request %s", request_id)
                if user_id and channel_id:
                    self.gateway.post_ephemeral(channel_id, user_id, **messages.session_expired())
                return
            if user_id and user_id != request.user_id:
                self.gateway.post_ephemeral(request.channel_id, user_id, **messages.not_owner())
                return

            view = messages.confirm_modal(request, self.currency, today=self._today())
            self.gateway.open_view(trigger_id, view)

    def submit_confirmation(self, request_id: str, values: dict, ack: Callable) -> None:
        """Confirmation modal submitted: submit the expense with its receipt."""
        with self._guard("submit_confirmation", request_id=request_id, ack=ack) as scope:
            request = self.store.get(request_id, Stage.CONFIRMATION)
            if request is None:
                scope.respond(response_action="errors", errors={DATE_BLOCK: messages.SESSION_EXPIRED})
                return

            fields, errors = parse_expense_form(values, self.currency)
            if errors:
                scope.respond(response_action="errors", errors=errors)
                return

            try:
                request = self.store.advance(request_id, WorkflowEvent.CONFIRMED, fields=fields)
            except InvalidTransitionError:
                request = None
            if request is None:
                scope.respond(response_action="errors", errors={DATE_BLOCK: messages.SESSION_EXPIRED})
                return

            scope.respond()
            scope.receipt_path = request.receipt_path
            self._deliver(request, messages.submitting(request.user_id))

            self._complete(request, receipt_path=request.receipt_path)

    def cancel(self, request_id: str, user_id: str | None = None) -> None:
        """
        Cancel clicked or modal closed: drop the request without contacting the ledger.

        A request with a call in flight runs to completion. A request without a
        status message gets its confirmation as an ephemeral message.
        """
        with self._guard("cancel", request_id=request_id):
            request = self.store.get(request_id)
            if request is None:
                logger.info("Cancel requested for unknown request %s", request_id)
                return
            if user_id and user_id != request.user_id:
                self.gateway.post_ephemeral(request.channel_id, user_id, **messages.not_owner())
                return
            if request.stage == Stage.IN_FLIGHT:
                logger.info("Ignoring cancel for request %s: %s", request_id, request.state.value)
                self.gateway.post_ephemeral(request.channel_id, request.user_id, **messages.still_processing())
                return

            try:
                request = self.store.advance(
                    request_id, WorkflowEvent.CANCEL, allowed_stages=REPLACEABLE_STAGES
                )
            except InvalidTransitionError as e:
                logger.info("Ignoring cancel for request %s: %s", request_id, e)
                return
            if request is None:
                return

            self.files.discard(request.receipt_path)
            logger.info("Request %s cancelled by user %s", request_id, request.user_id)
            if request.anchor is None:
                self.gateway.post_ephemeral(request.channel_id, request.user_id, **messages.cancelled(request.user_id))
            else:
                self._deliver(request, messages.cancelled(request.user_id))

    # Credentials

    def open_configure(self, user_id: str, channel_id: str, trigger_id: str) -> None:
        """/configure: open the credential modal."""
        with self._guard("open_configure", user_id=user_id, channel_id=channel_id):
            existing = self._credentials(user_id)
            account_id = existing.account_id if existing else None
            self.gateway.open_view(trigger_id, messages.configure_modal(channel_id, account_id))

    def save_configure(self, user_id: str, values: dict, ack: Callable) -> None:
        """Credential modal submitted: validate and store encrypted."""
        with self._guard(
            "save_configure", user_id=user_id, ack=ack, error_block=API_TOKEN_BLOCK
        ) as scope:
            parsed, errors = parse_credentials_form(values)
            if errors:
                scope.respond(response_action="errors", errors=errors)
                return

            api_token, account_id = parsed
            self.vault.put(user_id, api_token, account_id)
            scope.respond(response_action="update", view=messages.configure_saved_view())

    # Status

    def show_status(self, user_id: str, channel_id: str) -> None:
        """/reimbursement-status: period-to-date usage against the caps."""
        with self._guard("show_status", user_id=user_id, channel_id=channel_id):
            credentials = self._credentials(user_id)
            if credentials is None:
                self.gateway.post_ephemeral(channel_id, user_id, **messages.credentials_missing())
                return

            self.gateway.post_ephemeral(channel_id, user_id, **messages.status_loading())

            period = cutoff_period(self._today())
            try:
                used = self.harvest.usage_by_category(credentials, period.start, period.end)
            except HarvestError as e:
                logger.error("Could not load expenses for user %s: %s", user_id, e)
                self.gateway.post_ephemeral(channel_id, user_id, **messages.status_error(str(e)))
                return

            usage = [
                AllowanceUsage(category=category, used=used.get(category, Decimal("0")), limit=limit)
                for category, limit in self.allowance_limits.items()
            ]
            self.gateway.post_ephemeral(
                channel_id, user_id, **messages.status_report(period, usage, self.currency)
            )
