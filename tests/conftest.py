"""Test fixtures and utilities."""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from reimburse_bot.currency import CurrencyNormalizer
from reimburse_bot.harvest_client import ExpenseCategory, SubmissionResult
from reimburse_bot.vault import Credentials, CredentialVault, EnvelopeCipher
from reimburse_bot.workflow import CorrelationStore, MessageRef, ReimbursementWorkflow, TempFileStore

TEST_SECRET = "unit-test-secret"

# Typical vision-model answer for a Philippine taxi receipt
SAMPLE_RECEIPT_JSON = """```json
{
  "amount": 560.00,
  "currency": "PHP",
  "date": "2024-05-03",
  "description": "Grab ride Makati to BGC"
}
```"""


class FakeRateSource:
    """Rate source returning a fixed table, or raising when told to."""

    def __init__(self, rates: dict[str, Decimal] | None = None):
        self.rates = rates if rates is not None else {"PHP": Decimal("56.00"), "EUR": Decimal("0.92")}
        self.error: Exception | None = None
        self.calls = 0

    def fetch_rates(self, base_currency: str) -> dict[str, Decimal]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return dict(self.rates)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway:
    """Records every Slack call the workflow makes."""

    def __init__(self):
        self.posted: list[dict] = []
        self.updated: list[dict] = []
        self.deleted: list[MessageRef] = []
        self.ephemeral: list[dict] = []
        self.opened_views: list[dict] = []
        self.updated_views: list[dict] = []
        self.files: dict = {}
        self.downloads: dict[str, bytes] = {}
        self._ts = 0

    def post_message(self, channel_id, text, blocks=None):
        self._ts += 1
        ref = MessageRef(channel_id=channel_id, ts=f"1700000000.{self._ts:06d}")
        self.posted.append({"ref": ref, "text": text, "blocks": blocks})
        return ref

    def update_message(self, ref, text, blocks=None):
        self.updated.append({"ref": ref, "text": text, "blocks": blocks})

    def delete_message(self, ref):
        self.deleted.append(ref)

    def post_ephemeral(self, channel_id, user_id, text, blocks=None):
        self.ephemeral.append({"channel": channel_id, "user": user_id, "text": text, "blocks": blocks})

    def open_view(self, trigger_id, view):
        self.opened_views.append({"trigger_id": trigger_id, "view": view})

    def update_view(self, view_id, view):
        self.updated_views.append({"view_id": view_id, "view": view})

    def file_info(self, file_id):
        return self.files[file_id]

    def download(self, shared_file):
        return self.downloads[shared_file.file_id]

    def texts(self) -> list[str]:
        """All channel-visible texts in order (posts and updates)."""
        return [m["text"] for m in self.posted + self.updated]


@pytest.fixture
def cipher() -> EnvelopeCipher:
    return EnvelopeCipher.from_secret(TEST_SECRET)


@pytest.fixture
def vault(tmp_path, cipher) -> CredentialVault:
    return CredentialVault(tmp_path / "user-configs.json", cipher)


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(api_token="pat-123", account_id="987654")


@pytest.fixture
def rate_source() -> FakeRateSource:
    return FakeRateSource()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def normalizer(rate_source, clock) -> CurrencyNormalizer:
    return CurrencyNormalizer(rate_source, base_currency="USD", clock=clock)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def harvest() -> MagicMock:
    client = MagicMock()
    client.add_expense.return_value = SubmissionResult(
        success=True, message="Expense created", status_code=201, expense_id=555
    )
    client.usage_by_category.return_value = {
        ExpenseCategory.TRANSPORTATION: Decimal("12.50"),
        ExpenseCategory.HEALTH_WELLNESS: Decimal("0"),
    }
    return client


@pytest.fixture
def extractor() -> MagicMock:
    return MagicMock()


@pytest.fixture
def credential_vault(credentials) -> MagicMock:
    mock = MagicMock()
    mock.get.return_value = credentials
    mock.has_credentials.return_value = True
    return mock


@pytest.fixture
def temp_files(tmp_path) -> TempFileStore:
    return TempFileStore(tmp_path / "receipts")


@pytest.fixture
def workflow(gateway, credential_vault, harvest, extractor, normalizer, temp_files) -> ReimbursementWorkflow:
    return ReimbursementWorkflow(
        gateway=gateway,
        vault=credential_vault,
        harvest=harvest,
        extractor=extractor,
        normalizer=normalizer,
        store=CorrelationStore(),
        files=temp_files,
        today=lambda: date(2024, 5, 10),
    )


@pytest.fixture
def sample_receipt_json() -> str:
    """Vision-model reply for a taxi receipt."""
    return SAMPLE_RECEIPT_JSON
