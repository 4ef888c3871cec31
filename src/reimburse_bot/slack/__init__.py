"""
Slack integration.

Provides:
- SlackGateway: Web API calls used by the workflow
- create_app: slack_bolt App with all commands, views, actions and events
"""

from .app import QUICK_COMMANDS, create_app, register_handlers
from .gateway import SharedFile, SlackGateway, SlackGatewayError

__all__ = [
    "SlackGateway",
    "SlackGatewayError",
    "SharedFile",
    "create_app",
    "register_handlers",
    "QUICK_COMMANDS",
]
