"""
Tests for the Harvest expenses client.

These tests use responses library to mock HTTP requests,
validating client behavior without making real API calls.
"""

from datetime import date
from decimal import Decimal
from urllib.parse import parse_qs

import pytest
import requests
import responses
from responses import matchers

from reimburse_bot.harvest_client import (
    ExpenseCategory,
    HarvestAPIError,
    HarvestClient,
    HarvestConnectionError,
    SubmissionFailure,
    classify_status,
)
from reimburse_bot.vault import Credentials

BASE_URL = "https://harvest.test/v2"
CATEGORY_IDS = {
    ExpenseCategory.TRANSPORTATION: 4264709,
    ExpenseCategory.HEALTH_WELLNESS: 4264710,
}


@pytest.fixture
def client() -> HarvestClient:
    return HarvestClient(project_id=45414040, category_ids=CATEGORY_IDS, base_url=BASE_URL)


@pytest.fixture
def creds() -> Credentials:
    return Credentials(api_token="pat-xyz", account_id="123456")


class TestExpenseCategory:
    def test_labels(self):
        assert ExpenseCategory.TRANSPORTATION.label == "Transportation"
        assert ExpenseCategory.HEALTH_WELLNESS.label == "Health and Wellness"

    def test_parse(self):
        assert ExpenseCategory.parse("transportation") is ExpenseCategory.TRANSPORTATION
        assert ExpenseCategory.parse("meals") is None
        assert ExpenseCategory.parse(None) is None


class TestClassifyStatus:
    @pytest.mark.parametrize(
        "status,failure",
        [
            (401, SubmissionFailure.UNAUTHORIZED),
            (403, SubmissionFailure.FORBIDDEN),
            (422, SubmissionFailure.VALIDATION),
            (400, SubmissionFailure.VALIDATION),
            (429, SubmissionFailure.RATE_LIMITED),
            (500, SubmissionFailure.NETWORK),
            (503, SubmissionFailure.NETWORK),
        ],
    )
    def test_mapping(self, status, failure):
        assert classify_status(status) == failure


class TestAddExpense:
    """Tests for expense creation."""

    @responses.activate
    def test_submit_without_receipt(self, client, creds):
        responses.add(responses.POST, f"{BASE_URL}/expenses", json={"id": 991, "total_cost": 10.0}, status=201)

        result = client.add_expense(
            creds,
            ExpenseCategory.TRANSPORTATION,
            date(2024, 5, 3),
            Decimal("10.00"),
            notes="Taxi to client",
        )

        assert result.success is True
        assert result.expense_id == 991
        assert result.status_code == 201

        request = responses.calls[0].request
        assert request.headers["Authorization"] == "Bearer pat-xyz"
        assert request.headers["Harvest-Account-ID"] == "123456"
        assert request.headers["User-Agent"] == "reimburse-bot"

        form = {key: values[0] for key, values in parse_qs(request.body).items()}
        assert form == {
            "project_id": "45414040",
            "expense_category_id": "4264709",
            "spent_date": "2024-05-03",
            "units": "1",
            "total_cost": "10.00",
            "notes": "Taxi to client",
            "billable": "false",
        }

    @responses.activate
    @pytest.mark.parametrize(
        "amount,sent",
        [
            (Decimal("1E+3"), "1000.00"),
            (Decimal("10.5"), "10.50"),
            (Decimal("26.79"), "26.79"),
        ],
    )
    def test_total_cost_sent_in_fixed_point(self, client, creds, amount, sent):
        responses.add(responses.POST, f"{BASE_URL}/expenses", json={"id": 993}, status=201)

        client.add_expense(creds, ExpenseCategory.TRANSPORTATION, date(2024, 5, 3), amount)

        form = parse_qs(responses.calls[0].request.body)
        assert form["total_cost"] == [sent]

    @responses.activate
    def test_submit_with_receipt_is_multipart(self, client, creds, tmp_path):
        receipt = tmp_path / "receipt.png"
        receipt.write_bytes(b"\x89PNG fake image")
        responses.add(responses.POST, f"{BASE_URL}/expenses", json={"id": 992}, status=201)

        result = client.add_expense(
            creds, ExpenseCategory.HEALTH_WELLNESS, date(2024, 5, 3), Decimal("16.67"), receipt_path=receipt
        )

        assert result.success is True
        request = responses.calls[0].request
        assert request.headers["Content-Type"].startswith("multipart/form-data")
        assert b'name="receipt"; filename="receipt.png"' in request.body
        assert b"\x89PNG fake image" in request.body
        assert b"4264710" in request.body

    @responses.activate
    @pytest.mark.parametrize(
        "status,failure,fragment",
        [
            (401, SubmissionFailure.UNAUTHORIZED, "/configure"),
            (403, SubmissionFailure.FORBIDDEN, "permission"),
            (429, SubmissionFailure.RATE_LIMITED, "Too many requests"),
        ],
    )
    def test_classified_failures(self, client, creds, status, failure, fragment):
        responses.add(responses.POST, f"{BASE_URL}/expenses", json={"message": "nope"}, status=status)

        result = client.add_expense(creds, ExpenseCategory.TRANSPORTATION, date(2024, 5, 3), Decimal("1"))

        assert result.success is False
        assert result.failure == failure
        assert result.status_code == status
        assert fragment in result.message

    @responses.activate
    def test_validation_error_carries_detail(self, client, creds):
        responses.add(
            responses.POST,
            f"{BASE_URL}/expenses",
            json={"message": "Spent date can't be in the future"},
            status=422,
        )

        result = client.add_expense(creds, ExpenseCategory.TRANSPORTATION, date(2024, 5, 3), Decimal("1"))

        assert result.failure == SubmissionFailure.VALIDATION
        assert result.message == "Validation error: Spent date can't be in the future"

    @responses.activate
    def test_server_error_not_retried(self, client, creds):
        """Expense creation is not idempotent and is attempted once."""
        responses.add(responses.POST, f"{BASE_URL}/expenses", body="oops", status=502)

        result = client.add_expense(creds, ExpenseCategory.TRANSPORTATION, date(2024, 5, 3), Decimal("1"))

        assert result.failure == SubmissionFailure.NETWORK
        assert "502" in result.message
        assert len(responses.calls) == 1

    @responses.activate
    def test_connection_error(self, client, creds):
        responses.add(
            responses.POST,
            f"{BASE_URL}/expenses",
            body=requests.exceptions.ConnectionError("refused"),
        )

        result = client.add_expense(creds, ExpenseCategory.TRANSPORTATION, date(2024, 5, 3), Decimal("1"))

        assert result.success is False
        assert result.failure == SubmissionFailure.NETWORK

    @responses.activate
    def test_missing_receipt_file(self, client, creds, tmp_path):
        result = client.add_expense(
            creds,
            ExpenseCategory.TRANSPORTATION,
            date(2024, 5, 3),
            Decimal("1"),
            receipt_path=tmp_path / "gone.png",
        )

        assert result.failure == SubmissionFailure.FILE_MISSING
        assert len(responses.calls) == 0

    @responses.activate
    def test_unreadable_receipt_path(self, client, creds, tmp_path):
        result = client.add_expense(
            creds,
            ExpenseCategory.TRANSPORTATION,
            date(2024, 5, 3),
            Decimal("1"),
            receipt_path=tmp_path,
        )

        assert result.success is False
        assert result.failure == SubmissionFailure.FILE_MISSING
        assert len(responses.calls) == 0


class TestUsage:
    """Tests for expense listing and per-category totals."""

    @responses.activate
    def test_list_expenses_follows_pages(self, client, creds):
        responses.add(
            responses.GET,
            f"{BASE_URL}/expenses",
            json={"expenses": [{"id": 1}], "next_page": 2},
            match=[matchers.query_param_matcher(
                {"from": "2024-05-01", "to": "2024-05-15", "project_id": "45414040", "per_page": "100", "page": "1"}
            )],
        )
        responses.add(
            responses.GET,
            f"{BASE_URL}/expenses",
            json={"expenses": [{"id": 2}], "next_page": None},
            match=[matchers.query_param_matcher(
                {"from": "2024-05-01", "to": "2024-05-15", "project_id": "45414040", "per_page": "100", "page": "2"}
            )],
        )

        expenses = client.list_expenses(creds, date(2024, 5, 1), date(2024, 5, 15))

        assert [e["id"] for e in expenses] == [1, 2]

    @responses.activate
    def test_client_filter(self, creds):
        client = HarvestClient(45414040, CATEGORY_IDS, base_url=BASE_URL, client_id=777)
        responses.add(responses.GET, f"{BASE_URL}/expenses", json={"expenses": []})

        client.list_expenses(creds, date(2024, 5, 1), date(2024, 5, 15))

        assert "client_id=777" in responses.calls[0].request.url

    @responses.activate
    def test_usage_by_category(self, client, creds):
        responses.add(
            responses.GET,
            f"{BASE_URL}/expenses",
            json={
                "expenses": [
                    {"total_cost": 10.5, "expense_category": {"id": 4264709}},
                    {"total_cost": 4.25, "expense_category": {"id": 4264709}},
                    {"total_cost": 16.67, "expense_category": {"id": 4264710}},
                    {"total_cost": 99.0, "expense_category": {"id": 1}},
                ],
                "next_page": None,
            },
        )

        usage = client.usage_by_category(creds, date(2024, 5, 1), date(2024, 5, 15))

        assert usage[ExpenseCategory.TRANSPORTATION] == Decimal("14.75")
        assert usage[ExpenseCategory.HEALTH_WELLNESS] == Decimal("16.67")

    @responses.activate
    def test_list_error(self, client, creds):
        responses.add(responses.GET, f"{BASE_URL}/expenses", json={"error": "invalid_token"}, status=401)

        with pytest.raises(HarvestAPIError) as exc_info:
            client.list_expenses(creds, date(2024, 5, 1), date(2024, 5, 15))

        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "invalid_token"

    @responses.activate
    def test_list_connection_error(self, client, creds):
        responses.add(
            responses.GET,
            f"{BASE_URL}/expenses",
            body=requests.exceptions.ConnectionError("refused"),
        )

        with pytest.raises(HarvestConnectionError):
            client.list_expenses(creds, date(2024, 5, 1), date(2024, 5, 15))

    @responses.activate
    def test_list_non_json_body(self, client, creds):
        responses.add(responses.GET, f"{BASE_URL}/expenses", body="<html>maintenance</html>", status=200)

        with pytest.raises(HarvestAPIError) as exc_info:
            client.list_expenses(creds, date(2024, 5, 1), date(2024, 5, 15))

        assert exc_info.value.status_code == 200
        assert "Invalid JSON" in exc_info.value.message
