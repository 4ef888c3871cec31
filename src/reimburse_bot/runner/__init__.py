"""
CLI runner module.

Provides commands:
- run: Start the Slack bot (Socket Mode)
- migrate-credentials: Encrypt legacy plaintext credentials
- rates: Show exchange-rate cache information
- generate-key: Print a new ENCRYPTION_KEY
- init-config: Write a default config file
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
