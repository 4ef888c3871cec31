"""
Slack Block Kit builders for messages and modals.

Message builders return ``{"text": ..., "blocks": [...]}`` so they can be
splatted into the gateway calls. View builders return a modal view dict.
"""

from datetime import date

from ..harvest_client import ExpenseCategory
from . import forms
from .allowance import AllowanceUsage, CutoffPeriod, progress_bar
from .models import TODAY, ExpenseFields, PendingRequest, ReceiptData

# Callback and action ids registered with Slack
REIMBURSE_MODAL = "reimburse_modal"
FILE_CHOICE_MODAL = "file_choice_modal"
CONFIRM_MODAL = "quick_reimburse_confirm_modal"
CONFIGURE_MODAL = "configure_modal"

WITH_FILE_ACTION = "reimburse_with_file"
WITHOUT_FILE_ACTION = "reimburse_without_file"
REVIEW_ACTION = "quick_reimburse_review"
CANCEL_ACTION = "quick_reimburse_cancel"

SESSION_EXPIRED = "Session expired. Please try again."
GENERIC_ERROR = "Something went wrong while processing your request. Please try again."

HARVEST_DEVELOPERS_URL = "https://id.getharvest.com/developers"


def _plain(text: str) -> dict:
    return {"type": "plain_text", "text": text}


def _section(text: str) -> dict:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _context(text: str) -> dict:
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": text}]}


def _message(text: str, *sections: str) -> dict:
    return {"text": text, "blocks": [_section(section) for section in sections]}


def _modal(title: str, blocks: list, close: str = "Cancel", **extra) -> dict:
    view = {"type": "modal", "title": _plain(title), "close": _plain(close), "blocks": blocks}
    view.update(extra)
    return view


def format_date(spent_date: str | date | None) -> str:
    if spent_date is None:
        return "Not found"
    if spent_date == TODAY:
        return "Today"
    if isinstance(spent_date, str):
        spent_date = date.fromisoformat(spent_date)
    return spent_date.strftime("%b %d, %Y")


def _detail_lines(fields: ExpenseFields, currency: str, receipt: ReceiptData | None = None) -> str:
    amount = f"{currency} {fields.amount}"
    if receipt is not None and receipt.was_converted:
        amount += (
            f" _(converted from {receipt.original_currency} {receipt.original_amount}"
            f" @ 1 {currency} = {receipt.conversion_rate} {receipt.original_currency})_"
        )
    lines = [
        f"• Date: {format_date(fields.spent_date)}",
        f"• Amount: {amount}",
        f"• Category: {fields.category.label if fields.category else 'Not set'}",
    ]
    if fields.notes:
        lines.append(f"• Notes: {fields.notes}")
    return "\n".join(lines)


def _cancel_actions(request_id: str) -> dict:
    return {
        "type": "actions",
        "block_id": "cancel_actions",
        "elements": [
            {
                "type": "button",
                "text": _plain("Cancel"),
                "action_id": CANCEL_ACTION,
                "value": request_id,
            }
        ],
    }


def _category_option(category: ExpenseCategory) -> dict:
    return {"text": _plain(category.label), "value": category.value}


def _expense_inputs(
    fields: ExpenseFields | None = None,
    amount_label: str = "Total Amount",
    today: date | None = None,
) -> list[dict]:
    date_element = {
        "type": "datepicker",
        "action_id": forms.DATE_ACTION,
        "placeholder": _plain("Select a date"),
    }
    amount_element = {
        "type": "plain_text_input",
        "action_id": forms.AMOUNT_ACTION,
        "placeholder": _plain("Enter amount (e.g., 42.50)"),
    }
    category_element = {
        "type": "static_select",
        "action_id": forms.CATEGORY_ACTION,
        "placeholder": _plain("Select category"),
        "options": [_category_option(category) for category in ExpenseCategory],
    }
    notes_element = {
        "type": "plain_text_input",
        "action_id": forms.NOTES_ACTION,
        "multiline": True,
        "placeholder": _plain("Add any notes or description (optional)"),
    }

    if fields is not None:
        if fields.spent_date and fields.spent_date != TODAY:
            date_element["initial_date"] = fields.spent_date
        elif today is not None:
            date_element["initial_date"] = today.isoformat()
        if fields.amount is not None:
            amount_element["initial_value"] = str(fields.amount)
        if fields.category is not None:
            category_element["initial_option"] = _category_option(fields.category)
        if fields.notes:
            notes_element["initial_value"] = fields.notes

    return [
        {"type": "input", "block_id": forms.DATE_BLOCK, "element": date_element, "label": _plain("Date")},
        {"type": "input", "block_id": forms.AMOUNT_BLOCK, "element": amount_element, "label": _plain(amount_label)},
        {"type": "input", "block_id": forms.CATEGORY_BLOCK, "element": category_element, "label": _plain("Category")},
        {
            "type": "input",
            "block_id": forms.NOTES_BLOCK,
            "optional": True,
            "element": notes_element,
            "label": _plain("Notes"),
        },
    ]


# Modals


def expense_modal(request_id: str) -> dict:
    """First step of the manual flow."""
    return _modal(
        "Reimbursement Request",
        _expense_inputs(),
        callback_id=REIMBURSE_MODAL,
        private_metadata=request_id,
        submit=_plain("Next"),
        notify_on_close=True,
    )


def file_choice_view(request: PendingRequest, currency: str) -> dict:
    return _modal(
        "Attach Receipt?",
        [
            _section(f"*Your Details:*\n{_detail_lines(request.fields, currency)}"),
            {"type": "divider"},
            _section("*Do you have a file to attach?*"),
            {
                "type": "actions",
                "block_id": "file_choice_actions",
                "elements": [
                    {
                        "type": "button",
                        "text": _plain("With File"),
                        "style": "primary",
                        "action_id": WITH_FILE_ACTION,
                    },
                    {
                        "type": "button",
                        "text": _plain("Without File"),
                        "action_id": WITHOUT_FILE_ACTION,
                    },
                ],
            },
        ],
        callback_id=FILE_CHOICE_MODAL,
        private_metadata=request.request_id,
        notify_on_close=True,
    )


def upload_prompt_view() -> dict:
    return _modal(
        "Upload File",
        [
            _section(
                "*Please upload your receipt file in the channel.*\n\n"
                "I will process your reimbursement once I receive the file."
            )
        ],
        close="Close",
    )


def processing_view() -> dict:
    return _modal(
        "Processing...",
        [
            _section(
                "*Processing your reimbursement request...*\n\n"
                "The result will be posted in the channel."
            )
        ],
        close="Close",
    )


def notice_view(title: str, text: str) -> dict:
    return _modal(title, [_section(text)], close="Close")


def confirm_modal(request: PendingRequest, currency: str, today: date | None = None) -> dict:
    """Editable review of an AI-read receipt. A receipt without a date shows ``today``."""
    receipt = request.receipt
    if receipt is not None and receipt.was_converted:
        origin = (
            f"_Converted from {receipt.original_currency} {receipt.original_amount}"
            f" @ rate {receipt.conversion_rate}_"
        )
    else:
        origin = f"_Original amount in {currency}_"

    inputs = _expense_inputs(request.fields, amount_label=f"Amount ({currency})", today=today)
    blocks = [_section("*Review and edit the expense details below:*")]
    blocks.extend(inputs[:2])
    blocks.append(_context(origin))
    blocks.extend(inputs[2:])

    return _modal(
        "Confirm Expense",
        blocks,
        callback_id=CONFIRM_MODAL,
        private_metadata=request.request_id,
        submit=_plain("Submit to Harvest"),
    )


def configure_modal(channel_id: str, account_id: str | None = None) -> dict:
    """Credential entry. The stored token is never sent back to Slack."""
    account_element = {
        "type": "plain_text_input",
        "action_id": forms.ACCOUNT_ID_ACTION,
        "placeholder": _plain("Enter your Harvest Account ID"),
    }
    if account_id:
        account_element["initial_value"] = account_id

    return _modal(
        "Harvest Configuration",
        [
            {
                "type": "input",
                "block_id": forms.API_TOKEN_BLOCK,
                "element": {
                    "type": "plain_text_input",
                    "action_id": forms.API_TOKEN_ACTION,
                    "placeholder": _plain("Enter your Harvest API Token"),
                },
                "label": _plain("Harvest API Token"),
            },
            {
                "type": "input",
                "block_id": forms.ACCOUNT_ID_BLOCK,
                "element": account_element,
                "label": _plain("Harvest Account ID"),
            },
            _context(f"Create a Personal Access Token at <{HARVEST_DEVELOPERS_URL}|Harvest Developers>."),
        ],
        callback_id=CONFIGURE_MODAL,
        private_metadata=channel_id,
        submit=_plain("Save"),
    )


def configure_saved_view() -> dict:
    return notice_view(
        "Configuration Saved",
        "*Your Harvest configuration has been saved.*\n\n"
        "You can run `/configure` again to update your settings.",
    )


# Channel messages


def credentials_missing() -> dict:
    return _message(
        "You need to configure your Harvest credentials first.",
        "*Harvest credentials not found*\n\n"
        "Before you can submit reimbursements, you need to configure your Harvest API credentials.",
        "*How to configure:*\n1. Run `/configure` in any channel\n"
        "2. Enter your Harvest API Token and Account ID\n3. Click Save\n\n"
        "*To get your Harvest credentials:*\n"
        f"1. Go to <{HARVEST_DEVELOPERS_URL}|Harvest Developers>\n"
        "2. Create a new Personal Access Token\n3. Copy your Token and Account ID",
    )


def waiting_for_file(request: PendingRequest, currency: str) -> dict:
    message = _message(
        f"Waiting for receipt file from <@{request.user_id}>...",
        f"*Waiting for receipt file*\n\n<@{request.user_id}>, please upload your receipt file "
        f"to complete your reimbursement request.\n\n{_detail_lines(request.fields, currency)}",
    )
    message["blocks"].append(_cancel_actions(request.request_id))
    return message


def quick_prompt(request: PendingRequest) -> dict:
    """Upload prompt of the AI-assisted flow (the request's anchor)."""
    user_id = request.user_id
    category = request.fields.category
    notes = request.fields.notes
    text = (
        f"*{category.label} Reimbursement*\n\n<@{user_id}>, please upload your receipt image.\n\n"
        "I will automatically extract the date and amount from the receipt."
    )
    if notes:
        text += f"\n\n*Notes:* {notes}"
    message = _message("Ready for receipt upload", text)
    message["blocks"].append(_context("_Supported formats: JPG, PNG, HEIC, PDF_"))
    message["blocks"].append(_cancel_actions(request.request_id))
    return message


def unsupported_file() -> dict:
    text = "Please upload an image file (JPG, PNG, HEIC) or PDF."
    return _message(text, text)


def analyzing_receipt() -> dict:
    return _message("Analyzing receipt...", "*Analyzing Receipt*\n\nReading receipt details with AI...")


def submitting(user_id: str) -> dict:
    return _message(
        "Submitting to Harvest...",
        f"*Submitting to Harvest...*\n\nProcessing <@{user_id}>'s expense...",
    )


def receipt_review(request: PendingRequest, currency: str) -> dict:
    """Extracted values with Review / Cancel buttons."""
    message = _message(
        "Receipt analyzed - please review and confirm",
        "*Receipt Analyzed*\n\nPlease review the extracted details:\n\n"
        + _detail_lines(request.fields, currency, request.receipt),
    )
    message["blocks"].append(
        {
            "type": "actions",
            "block_id": "quick_reimburse_actions",
            "elements": [
                {
                    "type": "button",
                    "text": _plain("Review & Submit"),
                    "style": "primary",
                    "action_id": REVIEW_ACTION,
                    "value": request.request_id,
                },
                {
                    "type": "button",
                    "text": _plain("Cancel"),
                    "action_id": CANCEL_ACTION,
                    "value": request.request_id,
                },
            ],
        }
    )
    return message


def submitted(request: PendingRequest, currency: str, with_receipt: bool = True) -> dict:
    details = _detail_lines(request.fields, currency, request.receipt)
    if not with_receipt:
        details += "\n• Receipt: None"
    return _message(
        "Reimbursement processed successfully!",
        f"*Reimbursement Processed Successfully*\n\n<@{request.user_id}>'s reimbursement "
        f"has been submitted to Harvest.\n\n{details}",
    )


def failed(user_id: str, message: str) -> dict:
    return _message(
        f"Reimbursement failed: {message}",
        f"*Reimbursement Failed*\n\n<@{user_id}>, your reimbursement could not be processed.\n\n"
        f"*Error:* {message}",
    )


def cancelled(user_id: str) -> dict:
    return _message(
        "Reimbursement cancelled.",
        f"*Reimbursement Cancelled*\n\n<@{user_id}>, your reimbursement request has been cancelled.",
    )


def superseded(user_id: str) -> dict:
    return _message(
        "Reimbursement replaced by a newer request.",
        f"*Reimbursement Replaced*\n\n<@{user_id}>, this request was replaced by a newer one "
        "and will not be submitted.",
    )


def still_processing() -> dict:
    text = "Your previous reimbursement request is still being processed. Please wait for it to finish."
    return _message(text, text)


def not_owner() -> dict:
    text = "Only the requester can change this reimbursement."
    return _message(text, text)


def session_expired() -> dict:
    return _message(SESSION_EXPIRED, SESSION_EXPIRED)


def generic_error() -> dict:
    return _message(GENERIC_ERROR, f"*Error Processing Request*\n\n{GENERIC_ERROR}")


def status_loading() -> dict:
    return {"text": "Fetching your reimbursement status..."}


def status_report(period: CutoffPeriod, usage: list[AllowanceUsage], currency: str) -> dict:
    """Period-to-date usage against caps."""
    blocks = [
        {"type": "header", "text": _plain("Reimbursement Status")},
        _context(f"*{period.label}* • {period.start.strftime('%B %Y')}"),
        {"type": "divider"},
    ]
    for line in usage:
        blocks.append(
            _section(
                f"*{line.category.label}*\n{progress_bar(line.percent)} {line.percent}%\n\n"
                f"Used: *{currency} {line.used:.2f}* / {currency} {line.limit:.2f}\n"
                f"Remaining: *{currency} {line.remaining:.2f}*"
            )
        )
    blocks.append({"type": "divider"})
    blocks.append(_context("_Use `/reimburse-transpo` or `/reimburse-wellness` to submit expenses_"))
    return {"text": "Your reimbursement status", "blocks": blocks}


def status_error(message: str) -> dict:
    return {"text": f"Error fetching reimbursement status: {message}"}
