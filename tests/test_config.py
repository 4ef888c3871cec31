"""
Tests for configuration loading.
"""

from decimal import Decimal
from pathlib import Path

import pytest

from reimburse_bot.config import Config, ConfigValidationError, create_default_config, load_config
from reimburse_bot.harvest_client import ExpenseCategory

ENV_VARS = (
    "SLACK_BOT_TOKEN",
    "SLACK_APP_TOKEN",
    "SLACK_SIGNING_SECRET",
    "ENCRYPTION_KEY",
    "ANTHROPIC_API_KEY",
    "ANTHROPIC_BASE_URL",
    "RECEIPT_MODEL",
    "CREDENTIALS_FILE",
    "EXCHANGE_RATE_URL",
    "REIMBURSE_BASE_CURRENCY",
    "HARVEST_CLIENT_ID",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    def test_defaults_without_file(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")

        assert config.harvest.project_id == 45414040
        assert config.harvest.category_ids() == {
            ExpenseCategory.TRANSPORTATION: 4264709,
            ExpenseCategory.HEALTH_WELLNESS: 4264710,
        }
        assert config.currency.base_currency == "USD"
        assert config.currency.cache_seconds == 3600
        assert config.extraction.default_currency == "PHP"
        assert config.vault.credentials_file == Path("data/user-configs.json")
        assert config.allowance.limits()[ExpenseCategory.HEALTH_WELLNESS] == Decimal("16.67")
        assert config.temp_dir is None

    def test_default_file_round_trip(self, tmp_path):
        path = tmp_path / "config.yaml"
        create_default_config(path)

        config = load_config(path)

        assert config.harvest.client_id is None
        assert config.extraction.model == "claude-3-5-haiku-latest"
        assert config.allowance.transportation_limit == Decimal("50.00")

    def test_yaml_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            """
harvest:
  project_id: 111
  client_id: 222
  transportation_category_id: 333
currency:
  base_currency: eur
  cache_seconds: 600
allowance:
  transportation_limit: "75.5"
temp_dir: /var/tmp/receipts
"""
        )

        config = load_config(path)

        assert config.harvest.project_id == 111
        assert config.harvest.client_id == 222
        assert config.harvest.category_ids()[ExpenseCategory.TRANSPORTATION] == 333
        assert config.currency.base_currency == "EUR"
        assert config.currency.cache_seconds == 600
        assert config.allowance.transportation_limit == Decimal("75.5")
        assert config.temp_dir == Path("/var/tmp/receipts")

    def test_environment_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text('slack:\n  bot_token: "from-file"\nvault:\n  credentials_file: file.json\n')
        monkeypatch.setenv("SLACK_BOT_TOKEN", "xoxb-env")
        monkeypatch.setenv("SLACK_APP_TOKEN", "xapp-env")
        monkeypatch.setenv("ENCRYPTION_KEY", "s3cret")
        monkeypatch.setenv("CREDENTIALS_FILE", "/data/creds.json")
        monkeypatch.setenv("RECEIPT_MODEL", "claude-test")
        monkeypatch.setenv("HARVEST_CLIENT_ID", "9")

        config = load_config(path)

        assert config.slack.bot_token == "xoxb-env"
        assert config.slack.app_token == "xapp-env"
        assert config.vault.encryption_key == "s3cret"
        assert config.vault.credentials_file == Path("/data/creds.json")
        assert config.extraction.model == "claude-test"
        assert config.harvest.client_id == 9

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigValidationError):
            load_config(path)

    def test_bad_number(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("harvest:\n  project_id: abc\n")

        with pytest.raises(ConfigValidationError):
            load_config(path)


class TestValidate:
    def test_missing_secrets(self):
        errors = Config().validate()

        assert any("SLACK_BOT_TOKEN" in e for e in errors)
        assert any("SLACK_APP_TOKEN" in e for e in errors)
        assert any("ENCRYPTION_KEY" in e for e in errors)

    def test_complete_config(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SLACK_BOT_TOKEN", "xoxb")
        monkeypatch.setenv("SLACK_APP_TOKEN", "xapp")
        monkeypatch.setenv("ENCRYPTION_KEY", "key")

        assert load_config(tmp_path / "none.yaml").validate() == []

    def test_bad_currency_and_limits(self):
        config = Config()
        config.currency.base_currency = "DOLLARS"
        config.allowance.health_wellness_limit = Decimal("-1")

        errors = config.validate()

        assert any("base_currency" in e for e in errors)
        assert any("allowance" in e for e in errors)
