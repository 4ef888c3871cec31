"""
Tests for modal form parsing, cutoff periods and Block Kit builders.
"""

from datetime import date
from decimal import Decimal

import pytest

from reimburse_bot.harvest_client import ExpenseCategory
from reimburse_bot.workflow import (
    ExpenseFields,
    PendingRequest,
    ReceiptData,
    RequestKind,
    RequestState,
    WorkflowFamily,
    messages,
)
from reimburse_bot.workflow.allowance import AllowanceUsage, cutoff_period, progress_bar
from reimburse_bot.workflow.forms import (
    ACCOUNT_ID_BLOCK,
    AMOUNT_BLOCK,
    API_TOKEN_BLOCK,
    CATEGORY_BLOCK,
    DATE_BLOCK,
    parse_amount,
    parse_credentials_form,
    parse_expense_form,
)
from reimburse_bot.workflow.models import TODAY


def expense_values(spent_date="2024-05-03", amount="42.50", category="transportation", notes=None) -> dict:
    """Build a view state payload as Slack delivers it."""
    return {
        "date_block": {"date_input": {"type": "datepicker", "selected_date": spent_date}},
        "amount_block": {"amount_input": {"type": "plain_text_input", "value": amount}},
        "category_block": {
            "category_input": {
                "type": "static_select",
                "selected_option": {"value": category} if category else None,
            }
        },
        "notes_block": {"notes_input": {"type": "plain_text_input", "value": notes}},
    }


class TestParseAmount:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("42.50", Decimal("42.50")),
            (" 1,250.75 ", Decimal("1250.75")),
            ("7", Decimal("7")),
            ("0", None),
            ("-5", None),
            ("abc", None),
            ("", None),
            (None, None),
            ("NaN", None),
            ("Infinity", None),
            ("1e3", None),
            ("2E-1", None),
            ("+5", None),
            ("10.999", Decimal("11.00")),
            ("0.004", None),
            (".5", Decimal("0.50")),
        ],
    )
    def test_parse_amount(self, raw, expected):
        assert parse_amount(raw) == expected

    def test_rounded_to_minor_units(self):
        assert str(parse_amount("10.5")) == "10.50"
        assert str(parse_amount("10.999")) == "11.00"
        assert str(parse_amount("1500.6", "JPY")) == "1501"


class TestParseExpenseForm:
    def test_valid_form(self):
        fields, errors = parse_expense_form(expense_values(notes="  Taxi  "))

        assert errors == {}
        assert fields == ExpenseFields(
            spent_date="2024-05-03",
            amount=Decimal("42.50"),
            category=ExpenseCategory.TRANSPORTATION,
            notes="Taxi",
        )

    def test_missing_date_means_today(self):
        fields, errors = parse_expense_form(expense_values(spent_date=None))

        assert errors == {}
        assert fields.spent_date == TODAY
        assert fields.resolved_date(date(2024, 5, 10)) == date(2024, 5, 10)

    def test_errors_keyed_by_block(self):
        fields, errors = parse_expense_form(expense_values(spent_date="2024-13-45", amount="-1", category=None))

        assert fields is None
        assert errors == {
            DATE_BLOCK: "Please select a valid date.",
            AMOUNT_BLOCK: "Please enter a valid amount.",
            CATEGORY_BLOCK: "Please select a category.",
        }

    def test_exponent_amount_rejected(self):
        fields, errors = parse_expense_form(expense_values(amount="1e3"))

        assert fields is None
        assert errors == {AMOUNT_BLOCK: "Please enter a valid amount."}

    def test_amount_rounded_for_currency(self):
        fields, _ = parse_expense_form(expense_values(amount="1234.567"), "USD")
        assert str(fields.amount) == "1234.57"

    def test_unknown_category(self):
        _, errors = parse_expense_form(expense_values(category="meals"))
        assert CATEGORY_BLOCK in errors

    def test_empty_payload(self):
        fields, errors = parse_expense_form({})

        assert fields is None
        assert set(errors) == {AMOUNT_BLOCK, CATEGORY_BLOCK}


class TestParseCredentialsForm:
    def _values(self, token, account):
        return {
            "api_token_block": {"api_token_input": {"value": token}},
            "account_id_block": {"account_id_input": {"value": account}},
        }

    def test_valid(self):
        parsed, errors = parse_credentials_form(self._values(" pat-1 ", "123456"))

        assert errors == {}
        assert parsed == ("pat-1", "123456")

    def test_required_fields(self):
        parsed, errors = parse_credentials_form(self._values("", None))

        assert parsed is None
        assert set(errors) == {API_TOKEN_BLOCK, ACCOUNT_ID_BLOCK}

    def test_account_id_must_be_numeric(self):
        _, errors = parse_credentials_form(self._values("pat-1", "acme"))
        assert errors == {ACCOUNT_ID_BLOCK: "The account ID is a number."}


class TestAllowance:
    @pytest.mark.parametrize(
        "today,start,end,first_half",
        [
            (date(2024, 5, 1), date(2024, 5, 1), date(2024, 5, 15), True),
            (date(2024, 5, 15), date(2024, 5, 1), date(2024, 5, 15), True),
            (date(2024, 5, 16), date(2024, 5, 16), date(2024, 5, 31), False),
            (date(2024, 2, 20), date(2024, 2, 16), date(2024, 2, 29), False),
            (date(2023, 2, 28), date(2023, 2, 16), date(2023, 2, 28), False),
        ],
    )
    def test_cutoff_period(self, today, start, end, first_half):
        period = cutoff_period(today)

        assert (period.start, period.end, period.first_half) == (start, end, first_half)

    def test_labels(self):
        assert cutoff_period(date(2024, 5, 2)).label == "1st Cutoff (1st - 15th)"
        assert cutoff_period(date(2024, 5, 20)).label == "2nd Cutoff (16th - End)"

    def test_usage_math(self):
        usage = AllowanceUsage(ExpenseCategory.TRANSPORTATION, used=Decimal("12.50"), limit=Decimal("50.00"))

        assert usage.remaining == Decimal("37.50")
        assert usage.percent == 25

    def test_overspent_usage_is_capped(self):
        usage = AllowanceUsage(ExpenseCategory.HEALTH_WELLNESS, used=Decimal("20"), limit=Decimal("16.67"))

        assert usage.remaining == Decimal("0")
        assert usage.percent == 100

    def test_progress_bar(self):
        assert progress_bar(0) == "░" * 10
        assert progress_bar(30) == "███░░░░░░░"
        assert progress_bar(100) == "█" * 10
        assert progress_bar(150) == "█" * 10


class TestMessages:
    """Spot checks of the Block Kit payloads Slack depends on."""

    def _request(self, **kwargs) -> PendingRequest:
        defaults = dict(
            user_id="U1",
            channel_id="C1",
            family=WorkflowFamily.AI_ASSISTED,
            kind=RequestKind.AI_ASSISTED,
            state=RequestState.AWAITING_CONFIRMATION,
            fields=ExpenseFields(
                spent_date="2024-05-03",
                amount=Decimal("10.00"),
                category=ExpenseCategory.TRANSPORTATION,
                notes="Grab ride",
            ),
            receipt=ReceiptData(
                original_amount=Decimal("560.00"),
                original_currency="PHP",
                normalized_amount=Decimal("10.00"),
                conversion_rate=Decimal("56.00"),
                was_converted=True,
            ),
        )
        defaults.update(kwargs)
        return PendingRequest(**defaults)

    def test_expense_modal_carries_request_id(self):
        view = messages.expense_modal("req-1")

        assert view["callback_id"] == messages.REIMBURSE_MODAL
        assert view["private_metadata"] == "req-1"
        assert [block["block_id"] for block in view["blocks"]] == [
            DATE_BLOCK,
            AMOUNT_BLOCK,
            CATEGORY_BLOCK,
            "notes_block",
        ]

    def test_receipt_review_buttons_carry_request_id(self):
        request = self._request()
        message = messages.receipt_review(request, "USD")

        buttons = message["blocks"][-1]["elements"]
        assert [b["action_id"] for b in buttons] == [messages.REVIEW_ACTION, messages.CANCEL_ACTION]
        assert all(b["value"] == request.request_id for b in buttons)
        assert "converted from PHP 560.00" in message["blocks"][0]["text"]["text"]

    def test_confirm_modal_prefilled(self):
        request = self._request()
        view = messages.confirm_modal(request, "USD")

        inputs = {block.get("block_id"): block for block in view["blocks"] if block["type"] == "input"}
        assert inputs[DATE_BLOCK]["element"]["initial_date"] == "2024-05-03"
        assert inputs[AMOUNT_BLOCK]["element"]["initial_value"] == "10.00"
        assert inputs[AMOUNT_BLOCK]["label"]["text"] == "Amount (USD)"
        assert inputs[CATEGORY_BLOCK]["element"]["initial_option"]["value"] == "transportation"
        assert view["private_metadata"] == request.request_id

    def test_closable_modals_notify_on_close(self):
        request = self._request(family=WorkflowFamily.MANUAL, kind=RequestKind.MANUAL)

        assert messages.expense_modal("req-1")["notify_on_close"] is True
        assert messages.file_choice_view(request, "USD")["notify_on_close"] is True

    def test_upload_prompts_offer_cancel(self):
        request = self._request(state=RequestState.AWAITING_FILE)

        for message in (messages.quick_prompt(request), messages.waiting_for_file(request, "USD")):
            button = message["blocks"][-1]["elements"][0]
            assert button["action_id"] == messages.CANCEL_ACTION
            assert button["value"] == request.request_id

    def test_confirm_modal_undated_receipt_uses_given_day(self):
        request = self._request(
            fields=ExpenseFields(
                amount=Decimal("8.40"), category=ExpenseCategory.HEALTH_WELLNESS, notes="Pharmacy"
            ),
            receipt=None,
        )

        dated = messages.confirm_modal(request, "USD", today=date(2024, 5, 10))
        undated = messages.confirm_modal(request, "USD")

        def date_element(view):
            return next(b for b in view["blocks"] if b.get("block_id") == DATE_BLOCK)["element"]

        assert date_element(dated)["initial_date"] == "2024-05-10"
        assert "initial_date" not in date_element(undated)

    def test_configure_modal_never_echoes_token(self):
        view = messages.configure_modal("C1", account_id="123456")

        token_block, account_block = view["blocks"][0], view["blocks"][1]
        assert "initial_value" not in token_block["element"]
        assert account_block["element"]["initial_value"] == "123456"
        assert view["private_metadata"] == "C1"

    def test_submitted_without_receipt(self):
        request = self._request(receipt=None)
        message = messages.submitted(request, "USD", with_receipt=False)

        text = message["blocks"][0]["text"]["text"]
        assert "Receipt: None" in text
        assert "Today" not in text
        assert "May 03, 2024" in text

    def test_status_report(self):
        period = cutoff_period(date(2024, 5, 10))
        usage = [
            AllowanceUsage(ExpenseCategory.TRANSPORTATION, Decimal("12.5"), Decimal("50.00")),
            AllowanceUsage(ExpenseCategory.HEALTH_WELLNESS, Decimal("0"), Decimal("16.67")),
        ]

        report = messages.status_report(period, usage, "USD")
        text = "\n".join(
            block["text"]["text"] for block in report["blocks"] if block["type"] == "section"
        )

        assert "Used: *USD 12.50* / USD 50.00" in text
        assert "Remaining: *USD 16.67*" in text
        assert "25%" in text
