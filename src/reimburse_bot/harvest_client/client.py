"""
Harvest v2 API client implementation.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from pathlib import Path

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..vault import Credentials

logger = logging.getLogger(__name__)

USER_AGENT = "reimburse-bot"


class ExpenseCategory(str, Enum):
    """Reimbursable expense categories offered to users."""

    TRANSPORTATION = "transportation"
    HEALTH_WELLNESS = "health_wellness"

    @property
    def label(self) -> str:
        """Human-readable category name."""
        return CATEGORY_LABELS[self]

    @classmethod
    def parse(cls, value: str | None) -> "ExpenseCategory | None":
        """Parse a form value, returning None for anything unknown."""
        try:
            return cls(value)
        except ValueError:
            return None


CATEGORY_LABELS = {
    ExpenseCategory.TRANSPORTATION: "Transportation",
    ExpenseCategory.HEALTH_WELLNESS: "Health and Wellness",
}


class SubmissionFailure(str, Enum):
    """Why an expense submission failed."""

    UNAUTHORIZED = "unauthorized"  # Bad or expired token, user must reconfigure
    FORBIDDEN = "forbidden"  # Token lacks permission
    VALIDATION = "validation"  # Harvest rejected a field
    RATE_LIMITED = "rate_limited"  # Retry later (never auto-retried)
    FILE_MISSING = "file_missing"  # Receipt vanished before upload
    NETWORK = "network"  # Transport failure or Harvest unavailable


@dataclass
class SubmissionResult:
    """Outcome of an expense submission. Never raised, always returned."""

    success: bool
    message: str
    failure: SubmissionFailure | None = None
    status_code: int | None = None
    expense_id: int | None = None
    data: dict = field(default_factory=dict)


FAILURE_MESSAGES = {
    SubmissionFailure.UNAUTHORIZED: (
        "Invalid or expired Harvest credentials. "
        "Please run `/configure` to update your credentials."
    ),
    SubmissionFailure.FORBIDDEN: (
        "You do not have permission to add expenses. "
        "Please check your Harvest account permissions."
    ),
    SubmissionFailure.RATE_LIMITED: "Too many requests. Please try again later.",
    SubmissionFailure.FILE_MISSING: "Receipt file not found.",
    SubmissionFailure.NETWORK: "Network error. Please check your connection and try again.",
}


class HarvestError(Exception):
    """Base exception for Harvest client errors."""

    pass


class HarvestAPIError(HarvestError):
    """API returned an error response."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Harvest API error {status_code}: {message}")


class HarvestConnectionError(HarvestError):
    """Failed to connect to Harvest."""

    pass


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason or "Unknown error"
    if isinstance(body, dict):
        return body.get("message") or body.get("error_description") or body.get("error") or "Unknown error"
    return "Unknown error"


def classify_status(status_code: int) -> SubmissionFailure:
    """Map an HTTP error status onto the submission failure taxonomy."""
    if status_code == 401:
        return SubmissionFailure.UNAUTHORIZED
    if status_code == 403:
        return SubmissionFailure.FORBIDDEN
    if status_code == 429:
        return SubmissionFailure.RATE_LIMITED
    if status_code >= 500:
        return SubmissionFailure.NETWORK
    return SubmissionFailure.VALIDATION


class HarvestClient:
    """
    Client for the Harvest v2 expenses API.

    Features:
    - Create expenses with an optional receipt (multipart upload)
    - List expenses in a date range for period-to-date usage
    - Failure classification into SubmissionFailure
    """

    DEFAULT_BASE_URL = "https://api.harvestapp.com/v2"
    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        project_id: int,
        category_ids: dict[ExpenseCategory, int],
        base_url: str = DEFAULT_BASE_URL,
        client_id: int | None = None,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize Harvest client.

        Args:
            project_id: Project every reimbursement is booked against
            category_ids: Harvest expense-category id per ExpenseCategory
            base_url: Harvest API URL
            client_id: Harvest client id used to filter expense listings
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for read requests
            backoff_factor: Backoff factor for retries
        """
        self.project_id = project_id
        self.category_ids = category_ids
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/json",
                "User-Agent": USER_AGENT,
            }
        )

        # Reads only: an expense POST is attempted at most once
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    @staticmethod
    def _auth_headers(credentials: Credentials) -> dict:
        return {
            "Authorization": f"Bearer {credentials.api_token}",
            "Harvest-Account-ID": credentials.account_id,
        }

    def category_id(self, category: ExpenseCategory) -> int:
        """Harvest expense-category id for a category."""
        return self.category_ids[category]

    def add_expense(
        self,
        credentials: Credentials,
        category: ExpenseCategory,
        spent_date: date,
        total_cost: Decimal,
        notes: str = "",
        receipt_path: Path | str | None = None,
    ) -> SubmissionResult:
        """
        Create an expense in Harvest.

        Args:
            credentials: The submitting user's Harvest credentials
            category: Expense category
            spent_date: Date the expense was incurred
            total_cost: Amount in the account's currency
            notes: Free-text notes
            receipt_path: Optional receipt file to attach

        Returns:
            SubmissionResult (errors are classified, never raised)
        """
        url = f"{self.base_url}/expenses"
        form = {
            "project_id": str(self.project_id),
            "expense_category_id": str(self.category_id(category)),
            "spent_date": spent_date.isoformat(),
            "units": "1",
            "total_cost": f"{total_cost:.2f}",
            "notes": notes or "",
            "billable": "false",
        }

        logger.debug(
            "API Request: POST %s (category=%s, date=%s, receipt=%s)",
            url,
            category.value,
            form["spent_date"],
            bool(receipt_path),
        )

        try:
            if receipt_path:
                receipt_path = Path(receipt_path)
                with open(receipt_path, "rb") as receipt:
                    response = self.session.post(
                        url,
                        data=form,
                        files={"receipt": (receipt_path.name, receipt)},
                        headers=self._auth_headers(credentials),
                        timeout=self.timeout,
                    )
            else:
                response = self.session.post(
                    url,
                    data=form,
                    headers=self._auth_headers(credentials),
                    timeout=self.timeout,
                )
        except requests.exceptions.RequestException as e:
            logger.error("Network error submitting expense to Harvest: %s", e)
            return SubmissionResult(
                success=False,
                failure=SubmissionFailure.NETWORK,
                message=FAILURE_MESSAGES[SubmissionFailure.NETWORK],
            )
        except OSError as e:
            # Unreadable receipt (RequestException subclasses OSError)
            logger.error("Could not read receipt file %s: %s", receipt_path, e)
            return SubmissionResult(
                success=False,
                failure=SubmissionFailure.FILE_MISSING,
                message=FAILURE_MESSAGES[SubmissionFailure.FILE_MISSING],
            )

        if not response.ok:
            failure = classify_status(response.status_code)
            detail = _error_message(response)
            logger.error("Harvest API Error %s: %s", response.status_code, detail)

            if failure == SubmissionFailure.VALIDATION:
                message = f"Validation error: {detail}"
            elif failure == SubmissionFailure.NETWORK:
                message = f"Harvest API error ({response.status_code}): {detail}. Please try again later."
            else:
                message = FAILURE_MESSAGES[failure]

            return SubmissionResult(
                success=False,
                failure=failure,
                message=message,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            data = {}

        expense_id = data.get("id") if isinstance(data, dict) else None
        logger.info("Created Harvest expense id=%s", expense_id)

        return SubmissionResult(
            success=True,
            message="Expense added successfully",
            status_code=response.status_code,
            expense_id=expense_id,
            data=data if isinstance(data, dict) else {},
        )

    def list_expenses(self, credentials: Credentials, start: date, end: date) -> list[dict]:
        """
        List the user's expenses in a date range (inclusive).

        Follows Harvest pagination. Filters by the configured project and,
        when set, client.

        Raises:
            HarvestAPIError: If the API returns an error or a malformed body
            HarvestConnectionError: On transport failure
        """
        url = f"{self.base_url}/expenses"
        params = {
            "from": start.isoformat(),
            "to": end.isoformat(),
            "project_id": self.project_id,
            "per_page": 100,
            "page": 1,
        }
        if self.client_id:
            params["client_id"] = self.client_id

        expenses: list[dict] = []
        while True:
            try:
                response = self.session.get(
                    url,
                    params=params,
                    headers=self._auth_headers(credentials),
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as e:
                logger.error("Connection error to %s: %s", url, e)
                raise HarvestConnectionError(f"Failed to reach Harvest: {e}") from e

            if not response.ok:
                raise HarvestAPIError(response.status_code, _error_message(response))

            try:
                data = response.json()
            except ValueError as e:
                raise HarvestAPIError(response.status_code, f"Invalid JSON response: {e}") from e
            if not isinstance(data, dict):
                raise HarvestAPIError(response.status_code, "Unexpected response body")
            expenses.extend(data.get("expenses", []))

            next_page = data.get("next_page")
            if not next_page:
                break
            params["page"] = next_page

        return expenses

    def usage_by_category(
        self, credentials: Credentials, start: date, end: date
    ) -> dict[ExpenseCategory, Decimal]:
        """
        Sum expense totals per category for a period.

        Expenses in other categories are ignored.
        """
        usage = {category: Decimal("0") for category in ExpenseCategory}
        by_id = {category_id: category for category, category_id in self.category_ids.items()}

        for expense in self.list_expenses(credentials, start, end):
            category_id = (expense.get("expense_category") or {}).get("id")
            category = by_id.get(category_id)
            if category is None:
                continue
            usage[category] += Decimal(str(expense.get("total_cost") or 0))

        return usage
