"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..currency import CurrencyNormalizer, ExchangeRateClient
from ..extraction import ReceiptExtractor
from ..harvest_client import HarvestClient
from ..vault import CredentialVault, EnvelopeCipher, VaultError, generate_secret
from ..workflow import ReimbursementWorkflow, TempFileStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Keep SDK wire logs out of INFO output
    for noisy in ("slack_bolt", "slack_sdk", "httpx", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.DEBUG if verbose else logging.WARNING)


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="reimburse-bot",
        description="Slack bot that submits expense reimbursements to Harvest",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this file (default: .env if present)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # run command
    subparsers.add_parser("run", help="Start the bot (Socket Mode)")

    # migrate-credentials command
    subparsers.add_parser(
        "migrate-credentials", help="Encrypt plaintext credentials left by older versions"
    )

    # rates command
    rates_parser = subparsers.add_parser("rates", help="Show exchange-rate cache information")
    rates_parser.add_argument(
        "--no-refresh",
        action="store_true",
        help="Do not fetch rates before reporting",
    )

    # generate-key command
    subparsers.add_parser("generate-key", help="Print a new random ENCRYPTION_KEY")

    # init-config command
    init_parser = subparsers.add_parser("init-config", help="Write a default config file")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing file",
    )

    return parser


def build_vault(config: Config) -> CredentialVault:
    cipher = EnvelopeCipher.from_secret(config.vault.encryption_key)
    return CredentialVault(config.vault.credentials_file, cipher)


def build_normalizer(config: Config) -> CurrencyNormalizer:
    source = ExchangeRateClient(
        base_url=config.currency.rate_url,
        timeout_seconds=config.currency.timeout_seconds,
    )
    return CurrencyNormalizer(
        source,
        base_currency=config.currency.base_currency,
        cache_seconds=config.currency.cache_seconds,
        failure_backoff_seconds=config.currency.failure_backoff_seconds,
    )


def build_workflow(config: Config, gateway) -> ReimbursementWorkflow:
    """Wire the workflow engine from configuration."""
    harvest = HarvestClient(
        project_id=config.harvest.project_id,
        category_ids=config.harvest.category_ids(),
        base_url=config.harvest.base_url,
        client_id=config.harvest.client_id,
        timeout=config.harvest.timeout_seconds,
    )
    extractor = ReceiptExtractor(
        api_key=config.extraction.api_key,
        model=config.extraction.model,
        base_url=config.extraction.base_url,
        max_tokens=config.extraction.max_tokens,
        timeout_seconds=config.extraction.timeout_seconds,
        default_currency=config.extraction.default_currency,
    )
    return ReimbursementWorkflow(
        gateway=gateway,
        vault=build_vault(config),
        harvest=harvest,
        extractor=extractor,
        normalizer=build_normalizer(config),
        files=TempFileStore(config.temp_dir),
        allowance_limits=config.allowance.limits(),
    )


def cmd_run(config: Config) -> int:
    """Start the bot in Socket Mode."""
    from slack_bolt.adapter.socket_mode import SocketModeHandler
    from slack_sdk import WebClient

    from ..slack import SlackGateway, create_app

    errors = config.validate()
    if errors:
        print("❌ Invalid configuration:")
        for error in errors:
            print(f"   - {error}")
        return 1

    client = WebClient(token=config.slack.bot_token)
    workflow = build_workflow(config, SlackGateway(client))
    app = create_app(client, workflow, signing_secret=config.slack.signing_secret)

    # Startup maintenance is best-effort; the bot still starts on failure
    try:
        migrated = workflow.vault.migrate_legacy()
        if migrated:
            logger.info("Encrypted %d legacy credential values", migrated)
    except VaultError as e:
        logger.error("Credential migration failed: %s", e)

    if workflow.normalizer.refresh():
        logger.info("Exchange rates loaded")
    else:
        logger.warning("Exchange rates unavailable; using fallback rates until the next refresh")

    logger.info("Starting reimbursement bot (Socket Mode)")
    SocketModeHandler(app, config.slack.app_token).start()
    return 0


def cmd_migrate_credentials(config: Config) -> int:
    """Encrypt plaintext credentials in place."""
    vault = build_vault(config)
    try:
        migrated = vault.migrate_legacy()
    except VaultError as e:
        print(f"❌ Migration failed: {e}")
        return 1

    if migrated:
        print(f"✓ Encrypted {migrated} credential value(s) in {config.vault.credentials_file}")
    else:
        print("✓ Nothing to migrate")
    return 0


def cmd_rates(config: Config, refresh: bool = True) -> int:
    """Show exchange-rate cache information."""
    normalizer = build_normalizer(config)
    if refresh and not normalizer.refresh():
        print("⚠️  Could not fetch live rates; showing fallback rates")

    print(json.dumps(normalizer.rates_info(), indent=2))
    return 0


def cmd_generate_key() -> int:
    """Print a random secret for ENCRYPTION_KEY."""
    print(generate_secret())
    return 0


def cmd_init_config(config_path: Path, force: bool = False) -> int:
    """Write the default configuration file."""
    if config_path.exists() and not force:
        print(f"❌ {config_path} already exists (use --force to overwrite)")
        return 1

    create_default_config(config_path)
    print(f"✓ Wrote default configuration to {config_path}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    # Commands that need no configuration
    if parsed.command == "generate-key":
        return cmd_generate_key()
    if parsed.command == "init-config":
        return cmd_init_config(parsed.config, parsed.force)

    if parsed.env_file:
        load_dotenv(parsed.env_file)
    else:
        load_dotenv()

    # Load config
    try:
        config = load_config(parsed.config)
    except (ConfigValidationError, OSError) as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "run":
        return cmd_run(config)
    elif parsed.command == "migrate-credentials":
        return cmd_migrate_credentials(config)
    elif parsed.command == "rates":
        return cmd_rates(config, refresh=not parsed.no_refresh)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
