"""
Exchange-rate source client.

Fetches the latest rates relative to a base currency from an
exchangerate-api.com compatible endpoint (no key required):

    GET {url}/{BASE}  ->  {"base": "USD", "rates": {"PHP": 56.1, ...}}
"""

import logging
from decimal import Decimal, InvalidOperation

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RATE_URL = "https://api.exchangerate-api.com/v4/latest"


class RateSourceError(Exception):
    """Rates could not be fetched or parsed."""

    pass


class ExchangeRateClient:
    """HTTP client for the public exchange-rate API."""

    def __init__(
        self,
        base_url: str = DEFAULT_RATE_URL,
        timeout_seconds: float = 5.0,
        client: httpx.Client | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(
                connect=5.0,
                read=float(timeout_seconds),
                write=5.0,
                pool=5.0,
            )
        )

    def fetch_rates(self, base_currency: str) -> dict[str, Decimal]:
        """
        Fetch rates for one base currency.

        Returns:
            Mapping of currency code to units per 1 base-currency unit

        Raises:
            RateSourceError: On transport, HTTP or payload errors
        """
        url = f"{self.base_url}/{base_currency.upper()}"
        try:
            response = self._client.get(url)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise RateSourceError(
                f"Rate API returned {e.response.status_code} for {url}"
            ) from e
        except httpx.RequestError as e:
            raise RateSourceError(f"Rate API request failed: {e}") from e
        except ValueError as e:
            raise RateSourceError(f"Rate API returned invalid JSON: {e}") from e

        raw_rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(raw_rates, dict) or not raw_rates:
            raise RateSourceError("Rate API response has no rates")

        rates: dict[str, Decimal] = {}
        for code, value in raw_rates.items():
            try:
                rate = Decimal(str(value))
            except (InvalidOperation, ValueError):
                logger.debug("Skipping unparseable rate %s=%r", code, value)
                continue
            if rate > 0:
                rates[code.upper()] = rate

        return rates

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()
