"""
Parsing and validation of modal form submissions.

Slack delivers input values as ``values[block_id][action_id]``. Errors are
returned keyed by block id, ready for ``ack(response_action="errors")``.
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation

from ..currency import quantize_for
from ..harvest_client import ExpenseCategory
from .models import TODAY, ExpenseFields

DATE_BLOCK = "date_block"
DATE_ACTION = "date_input"
AMOUNT_BLOCK = "amount_block"
AMOUNT_ACTION = "amount_input"
CATEGORY_BLOCK = "category_block"
CATEGORY_ACTION = "category_input"
NOTES_BLOCK = "notes_block"
NOTES_ACTION = "notes_input"

API_TOKEN_BLOCK = "api_token_block"
API_TOKEN_ACTION = "api_token_input"
ACCOUNT_ID_BLOCK = "account_id_block"
ACCOUNT_ID_ACTION = "account_id_input"

# Plain decimal notation only: no sign, exponent or special values
AMOUNT_PATTERN = re.compile(r"^(\d+(\.\d*)?|\.\d+)$")


def _element(values: dict, block_id: str, action_id: str) -> dict:
    return (values.get(block_id) or {}).get(action_id) or {}


def parse_amount(raw: str | None, currency: str = "USD") -> Decimal | None:
    """
    Parse a user-entered amount.

    The amount is rounded to the minor units of ``currency``. Returns None
    unless the rounded amount is a positive number.
    """
    if raw is None:
        return None
    text = str(raw).strip().replace(",", "")
    if not AMOUNT_PATTERN.match(text):
        return None
    try:
        amount = quantize_for(Decimal(text), currency)
    except InvalidOperation:
        return None
    if amount <= 0:
        return None
    return amount


def parse_expense_form(
    values: dict, currency: str = "USD"
) -> tuple[ExpenseFields | None, dict[str, str]]:
    """
    Read and validate the expense form.

    A missing date means "today". Amount must be a positive number in plain
    decimal notation; it is rounded to the minor units of ``currency``. The
    category must be one of the offered categories.

    Returns:
        (fields, errors): fields is None whenever errors is non-empty
    """
    errors: dict[str, str] = {}

    raw_date = _element(values, DATE_BLOCK, DATE_ACTION).get("selected_date")
    spent_date = TODAY
    if raw_date:
        try:
            spent_date = date.fromisoformat(raw_date).isoformat()
        except ValueError:
            errors[DATE_BLOCK] = "Please select a valid date."

    amount = parse_amount(_element(values, AMOUNT_BLOCK, AMOUNT_ACTION).get("value"), currency)
    if amount is None:
        errors[AMOUNT_BLOCK] = "Please enter a valid amount."

    selected = _element(values, CATEGORY_BLOCK, CATEGORY_ACTION).get("selected_option") or {}
    category = ExpenseCategory.parse(selected.get("value"))
    if category is None:
        errors[CATEGORY_BLOCK] = "Please select a category."

    notes = (_element(values, NOTES_BLOCK, NOTES_ACTION).get("value") or "").strip()

    if errors:
        return None, errors

    return ExpenseFields(spent_date=spent_date, amount=amount, category=category, notes=notes), {}


def parse_credentials_form(values: dict) -> tuple[tuple[str, str] | None, dict[str, str]]:
    """
    Read the /configure form.

    Returns:
        ((api_token, account_id), errors)
    """
    errors: dict[str, str] = {}

    api_token = (_element(values, API_TOKEN_BLOCK, API_TOKEN_ACTION).get("value") or "").strip()
    account_id = (_element(values, ACCOUNT_ID_BLOCK, ACCOUNT_ID_ACTION).get("value") or "").strip()

    if not api_token:
        errors[API_TOKEN_BLOCK] = "Please enter your Harvest API token."
    if not account_id:
        errors[ACCOUNT_ID_BLOCK] = "Please enter your Harvest account ID."
    elif not account_id.isdigit():
        errors[ACCOUNT_ID_BLOCK] = "The account ID is a number."

    if errors:
        return None, errors
    return (api_token, account_id), {}
