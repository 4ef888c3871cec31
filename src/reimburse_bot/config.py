"""
Configuration management.

All configuration for the reimbursement bot is defined here; no other module
should invent config keys. Values come from a YAML file and can be
overridden by environment variables (secrets usually live only there).
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

import yaml

from .harvest_client import ExpenseCategory


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class SlackConfig:
    """Slack app credentials.

    Socket Mode needs the app-level token (xapp-...) in addition to the bot
    token (xoxb-...). The signing secret is only used for HTTP mode.
    """

    bot_token: str = ""
    app_token: str = ""
    signing_secret: str | None = None


@dataclass
class HarvestConfig:
    """Harvest expense API settings.

    Every reimbursement is booked against one unbillable project, with the
    expense category chosen by the user.
    """

    base_url: str = "https://api.harvestapp.com/v2"
    project_id: int = 45414040
    # Used to filter expense listings for the status report
    client_id: int | None = None
    transportation_category_id: int = 4264709
    health_wellness_category_id: int = 4264710
    timeout_seconds: int = 30

    def category_ids(self) -> dict[ExpenseCategory, int]:
        """Harvest expense-category id per category."""
        return {
            ExpenseCategory.TRANSPORTATION: self.transportation_category_id,
            ExpenseCategory.HEALTH_WELLNESS: self.health_wellness_category_id,
        }


@dataclass
class ExtractionConfig:
    """Receipt extraction (Anthropic vision model) settings."""

    api_key: str | None = None
    # Optional gateway / proxy URL
    base_url: str | None = None
    model: str = "claude-3-5-haiku-latest"
    max_tokens: int = 1024
    timeout_seconds: int = 60
    # Assumed when the receipt shows no recognizable currency
    default_currency: str = "PHP"


@dataclass
class CurrencyConfig:
    """Exchange-rate settings."""

    base_currency: str = "USD"
    rate_url: str = "https://api.exchangerate-api.com/v4/latest"
    cache_seconds: int = 3600
    failure_backoff_seconds: int = 60
    timeout_seconds: float = 5.0


@dataclass
class VaultConfig:
    """Credential storage settings."""

    credentials_file: Path = field(default_factory=lambda: Path("data/user-configs.json"))
    # Never written to the YAML file; set ENCRYPTION_KEY instead
    encryption_key: str | None = None


@dataclass
class AllowanceConfig:
    """Per-cutoff reimbursement caps (base currency)."""

    transportation_limit: Decimal = Decimal("50.00")
    health_wellness_limit: Decimal = Decimal("16.67")

    def limits(self) -> dict[ExpenseCategory, Decimal]:
        return {
            ExpenseCategory.TRANSPORTATION: self.transportation_limit,
            ExpenseCategory.HEALTH_WELLNESS: self.health_wellness_limit,
        }


@dataclass
class Config:
    """Application configuration."""

    slack: SlackConfig = field(default_factory=SlackConfig)
    harvest: HarvestConfig = field(default_factory=HarvestConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    currency: CurrencyConfig = field(default_factory=CurrencyConfig)
    vault: VaultConfig = field(default_factory=VaultConfig)
    allowance: AllowanceConfig = field(default_factory=AllowanceConfig)
    # Scratch directory for downloaded receipts (system temp dir if unset)
    temp_dir: Path | None = None

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.slack.bot_token:
            errors.append("slack.bot_token is required (SLACK_BOT_TOKEN)")
        if not self.slack.app_token:
            errors.append("slack.app_token is required (SLACK_APP_TOKEN)")
        if not self.vault.encryption_key:
            errors.append("ENCRYPTION_KEY is required to store Harvest credentials")

        if len(self.currency.base_currency) != 3:
            errors.append("currency.base_currency must be a 3-letter ISO code")
        if self.currency.cache_seconds <= 0:
            errors.append("currency.cache_seconds must be positive")

        if self.allowance.transportation_limit < 0 or self.allowance.health_wellness_limit < 0:
            errors.append("allowance limits must not be negative")

        return errors


def _optional_int(value) -> int | None:
    if value in (None, ""):
        return None
    return int(value)


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables override config values:
    - SLACK_BOT_TOKEN, SLACK_APP_TOKEN, SLACK_SIGNING_SECRET
    - ENCRYPTION_KEY
    - ANTHROPIC_API_KEY, ANTHROPIC_BASE_URL, RECEIPT_MODEL
    - CREDENTIALS_FILE
    - EXCHANGE_RATE_URL, REIMBURSE_BASE_CURRENCY
    - HARVEST_CLIENT_ID

    Raises:
        ConfigValidationError: If the file is not a YAML mapping or a
            numeric value cannot be parsed
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    if not isinstance(data, dict):
        raise ConfigValidationError(f"{config_path} must contain a YAML mapping")

    try:
        slack_data = data.get("slack", {})
        slack = SlackConfig(
            bot_token=os.environ.get("SLACK_BOT_TOKEN", slack_data.get("bot_token", "")),
            app_token=os.environ.get("SLACK_APP_TOKEN", slack_data.get("app_token", "")),
            signing_secret=os.environ.get(
                "SLACK_SIGNING_SECRET", slack_data.get("signing_secret")
            ),
        )

        harvest_data = data.get("harvest", {})
        harvest = HarvestConfig(
            base_url=harvest_data.get("base_url", "https://api.harvestapp.com/v2"),
            project_id=int(harvest_data.get("project_id", 45414040)),
            client_id=_optional_int(
                os.environ.get("HARVEST_CLIENT_ID", harvest_data.get("client_id"))
            ),
            transportation_category_id=int(
                harvest_data.get("transportation_category_id", 4264709)
            ),
            health_wellness_category_id=int(
                harvest_data.get("health_wellness_category_id", 4264710)
            ),
            timeout_seconds=int(harvest_data.get("timeout_seconds", 30)),
        )

        extraction_data = data.get("extraction", {})
        extraction = ExtractionConfig(
            api_key=os.environ.get("ANTHROPIC_API_KEY", extraction_data.get("api_key")),
            base_url=os.environ.get("ANTHROPIC_BASE_URL", extraction_data.get("base_url")),
            model=os.environ.get(
                "RECEIPT_MODEL", extraction_data.get("model", "claude-3-5-haiku-latest")
            ),
            max_tokens=int(extraction_data.get("max_tokens", 1024)),
            timeout_seconds=int(extraction_data.get("timeout_seconds", 60)),
            default_currency=str(extraction_data.get("default_currency", "PHP")).upper(),
        )

        currency_data = data.get("currency", {})
        currency = CurrencyConfig(
            base_currency=os.environ.get(
                "REIMBURSE_BASE_CURRENCY", currency_data.get("base_currency", "USD")
            ).upper(),
            rate_url=os.environ.get(
                "EXCHANGE_RATE_URL",
                currency_data.get("rate_url", "https://api.exchangerate-api.com/v4/latest"),
            ),
            cache_seconds=int(currency_data.get("cache_seconds", 3600)),
            failure_backoff_seconds=int(currency_data.get("failure_backoff_seconds", 60)),
            timeout_seconds=float(currency_data.get("timeout_seconds", 5.0)),
        )

        vault_data = data.get("vault", {})
        vault = VaultConfig(
            credentials_file=Path(
                os.environ.get(
                    "CREDENTIALS_FILE",
                    vault_data.get("credentials_file", "data/user-configs.json"),
                )
            ),
            encryption_key=os.environ.get("ENCRYPTION_KEY") or None,
        )

        allowance_data = data.get("allowance", {})
        allowance = AllowanceConfig(
            transportation_limit=Decimal(str(allowance_data.get("transportation_limit", "50.00"))),
            health_wellness_limit=Decimal(
                str(allowance_data.get("health_wellness_limit", "16.67"))
            ),
        )
    except (ValueError, ArithmeticError) as e:
        raise ConfigValidationError(f"Invalid value in {config_path}: {e}") from e

    temp_dir = data.get("temp_dir")

    return Config(
        slack=slack,
        harvest=harvest,
        extraction=extraction,
        currency=currency,
        vault=vault,
        allowance=allowance,
        temp_dir=Path(temp_dir) if temp_dir else None,
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Slack → Harvest Reimbursement Bot Configuration
#
# Secrets are read from the environment (or a .env file):
#   SLACK_BOT_TOKEN, SLACK_APP_TOKEN, ENCRYPTION_KEY, ANTHROPIC_API_KEY
# Generate an encryption key with: reimburse-bot generate-key

slack:
  bot_token: ""                            # Prefer SLACK_BOT_TOKEN
  app_token: ""                            # Socket Mode token (SLACK_APP_TOKEN)

harvest:
  base_url: "https://api.harvestapp.com/v2"
  project_id: 45414040                     # Unbillable expenses project
  client_id: null                          # Filter for /reimbursement-status
  transportation_category_id: 4264709
  health_wellness_category_id: 4264710
  timeout_seconds: 30

# Receipt reading (Anthropic vision model)
extraction:
  model: "claude-3-5-haiku-latest"
  base_url: null                           # Optional gateway URL
  max_tokens: 1024
  timeout_seconds: 60
  default_currency: "PHP"                  # Assumed when the receipt is unclear

currency:
  base_currency: "USD"                     # Currency the ledger books in
  rate_url: "https://api.exchangerate-api.com/v4/latest"
  cache_seconds: 3600                      # Rate cache freshness window
  failure_backoff_seconds: 60              # Wait after a failed refresh
  timeout_seconds: 5.0

vault:
  credentials_file: "data/user-configs.json"

# Caps per semi-monthly cutoff (base currency)
allowance:
  transportation_limit: "50.00"
  health_wellness_limit: "16.67"

# Scratch directory for downloaded receipts (system temp dir if null)
temp_dir: null
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
