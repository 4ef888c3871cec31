"""
slack_bolt application: maps Slack commands, views, actions and events onto
the reimbursement workflow.
"""

import logging

from slack_bolt import App
from slack_sdk import WebClient

from ..harvest_client import ExpenseCategory
from ..workflow import ReimbursementWorkflow, messages

logger = logging.getLogger(__name__)

QUICK_COMMANDS = {
    "/reimburse-transpo": ExpenseCategory.TRANSPORTATION,
    "/reimburse-wellness": ExpenseCategory.HEALTH_WELLNESS,
}

# Closing one of these modals cancels the request it carries
CANCELLABLE_MODALS = (messages.REIMBURSE_MODAL, messages.FILE_CHOICE_MODAL)


def register_handlers(app: App, workflow: ReimbursementWorkflow) -> None:
    """Attach all listeners to a bolt App."""

    @app.command("/reimburse")
    def reimburse(ack, command):
        ack()
        workflow.start_manual(command["user_id"], command["channel_id"], command["trigger_id"])

    def quick_reimburse(ack, command):
        ack()
        category = QUICK_COMMANDS[command["command"]]
        workflow.start_quick(
            command["user_id"],
            command["channel_id"],
            category,
            notes=command.get("text") or "",
        )

    for name in QUICK_COMMANDS:
        app.command(name)(quick_reimburse)

    @app.command("/configure")
    def configure(ack, command):
        ack()
        workflow.open_configure(command["user_id"], command["channel_id"], command["trigger_id"])

    @app.command("/reimbursement-status")
    def reimbursement_status(ack, command):
        ack()
        workflow.show_status(command["user_id"], command["channel_id"])

    @app.view(messages.REIMBURSE_MODAL)
    def expense_form_submitted(ack, view):
        workflow.submit_form(view["private_metadata"], view["state"]["values"], ack)

    @app.view(messages.CONFIRM_MODAL)
    def confirmation_submitted(ack, view):
        workflow.submit_confirmation(view["private_metadata"], view["state"]["values"], ack)

    @app.view(messages.CONFIGURE_MODAL)
    def configure_submitted(ack, body, view):
        workflow.save_configure(body["user"]["id"], view["state"]["values"], ack)

    def modal_closed(ack, body, view):
        ack()
        workflow.cancel(view["private_metadata"], user_id=body["user"]["id"])

    for callback_id in CANCELLABLE_MODALS:
        app.view_closed(callback_id)(modal_closed)

    @app.action(messages.WITH_FILE_ACTION)
    def with_file(ack, body):
        ack()
        workflow.choose_with_file(body["view"]["private_metadata"], body["view"]["id"])

    @app.action(messages.WITHOUT_FILE_ACTION)
    def without_file(ack, body):
        ack()
        workflow.choose_without_file(body["view"]["private_metadata"], body["view"]["id"])

    @app.action(messages.REVIEW_ACTION)
    def review(ack, body):
        ack()
        workflow.open_review(
            body["actions"][0]["value"],
            body["trigger_id"],
            user_id=body["user"]["id"],
            channel_id=(body.get("channel") or {}).get("id"),
        )

    @app.action(messages.CANCEL_ACTION)
    def cancel(ack, body):
        ack()
        workflow.cancel(body["actions"][0]["value"], user_id=body["user"]["id"])

    @app.event("file_shared")
    def file_shared(event):
        workflow.file_shared(event["user_id"], event["channel_id"], event["file_id"])

    @app.event("message")
    def ignore_messages():
        # File uploads also arrive as message events; file_shared drives the workflow
        pass

    logger.debug("Registered Slack listeners")


def create_app(
    client: WebClient,
    workflow: ReimbursementWorkflow,
    signing_secret: str | None = None,
) -> App:
    """Create the bolt App with all listeners registered.

    The App shares ``client`` with the workflow's gateway so both act as the
    same bot user.
    """
    app = App(client=client, signing_secret=signing_secret)
    register_handlers(app, workflow)
    return app
