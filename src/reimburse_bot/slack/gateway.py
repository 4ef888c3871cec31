"""
Thin wrapper around the Slack Web API used by the workflow.
"""

import logging
from dataclasses import dataclass

import requests
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from ..workflow.models import MessageRef

logger = logging.getLogger(__name__)


class SlackGatewayError(Exception):
    """Slack API call or file download failed."""

    pass


@dataclass(frozen=True)
class SharedFile:
    """Metadata of a file shared in a channel."""

    file_id: str
    name: str
    mimetype: str
    url: str


class SlackGateway:
    """
    Slack operations the workflow needs.

    Features:
    - Channel messages (post, update in place, delete, ephemeral)
    - Modal views (open, update)
    - Shared file metadata and authenticated download
    """

    def __init__(self, client: WebClient, download_timeout: int = 30):
        """
        Initialize gateway.

        Args:
            client: Slack WebClient authenticated with the bot token
            download_timeout: Timeout for receipt downloads in seconds
        """
        self.client = client
        self.download_timeout = download_timeout
        self._session = requests.Session()

    def post_message(self, channel_id: str, text: str, blocks: list | None = None) -> MessageRef:
        response = self.client.chat_postMessage(channel=channel_id, text=text, blocks=blocks)
        return MessageRef(channel_id=response["channel"], ts=response["ts"])

    def update_message(self, ref: MessageRef, text: str, blocks: list | None = None) -> None:
        self.client.chat_update(channel=ref.channel_id, ts=ref.ts, text=text, blocks=blocks or [])

    def delete_message(self, ref: MessageRef) -> None:
        try:
            self.client.chat_delete(channel=ref.channel_id, ts=ref.ts)
        except SlackApiError as e:
            logger.warning("Could not delete message %s in %s: %s", ref.ts, ref.channel_id, e)

    def post_ephemeral(self, channel_id: str, user_id: str, text: str, blocks: list | None = None) -> None:
        self.client.chat_postEphemeral(channel=channel_id, user=user_id, text=text, blocks=blocks)

    def open_view(self, trigger_id: str, view: dict) -> None:
        self.client.views_open(trigger_id=trigger_id, view=view)

    def update_view(self, view_id: str, view: dict) -> None:
        self.client.views_update(view_id=view_id, view=view)

    def file_info(self, file_id: str) -> SharedFile:
        """Fetch metadata for a shared file."""
        response = self.client.files_info(file=file_id)
        file = response["file"]
        return SharedFile(
            file_id=file_id,
            name=file.get("name") or file_id,
            mimetype=file.get("mimetype") or "",
            url=file.get("url_private_download") or file.get("url_private") or "",
        )

    def download(self, shared_file: SharedFile) -> bytes:
        """
        Download a private file with the bot token.

        Raises:
            SlackGatewayError: On transport or HTTP errors
        """
        if not shared_file.url:
            raise SlackGatewayError(f"File {shared_file.file_id} has no download URL")

        try:
            response = self._session.get(
                shared_file.url,
                headers={"Authorization": f"Bearer {self.client.token}"},
                timeout=self.download_timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise SlackGatewayError(f"Failed to download file {shared_file.file_id}: {e}") from e

        # Slack answers an unauthenticated download with its HTML login page
        if response.headers.get("Content-Type", "").startswith("text/html"):
            raise SlackGatewayError(
                f"Download of {shared_file.file_id} returned HTML; check the files:read scope"
            )

        logger.debug("Downloaded %s (%d bytes)", shared_file.name, len(response.content))
        return response.content
