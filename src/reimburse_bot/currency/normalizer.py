"""
Currency normalization with a time-bounded shared rate cache.

Rates are expressed as units of a foreign currency per one unit of the base
currency (1 USD = 56 PHP), so converting into the base currency divides.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from .rate_source import RateSourceError

logger = logging.getLogger(__name__)

# Approximate rates used when the rate source is unreachable (per 1 USD)
FALLBACK_RATES: dict[str, Decimal] = {
    "PHP": Decimal("56.0"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "JPY": Decimal("149.0"),
    "CAD": Decimal("1.36"),
    "AUD": Decimal("1.53"),
}

# ISO 4217 currencies without two decimal places
MINOR_UNITS: dict[str, int] = {
    "JPY": 0,
    "KRW": 0,
    "VND": 0,
    "CLP": 0,
    "ISK": 0,
    "BHD": 3,
    "KWD": 3,
    "OMR": 3,
}

DEFAULT_CACHE_SECONDS = 60 * 60
DEFAULT_FAILURE_BACKOFF_SECONDS = 60

ONE = Decimal("1")


class RateSource(Protocol):
    """Anything that can fetch a rate table for a base currency."""

    def fetch_rates(self, base_currency: str) -> dict[str, Decimal]: ...


@dataclass(frozen=True)
class RateSnapshot:
    """Immutable cache content; replaced wholesale on refresh."""

    rates: dict[str, Decimal] = field(default_factory=dict)
    fetched_at: float | None = None  # clock() value
    fetched_at_wall: datetime | None = None


@dataclass(frozen=True)
class Conversion:
    """Result of converting an amount into the base currency."""

    amount: Decimal
    rate: Decimal
    from_currency: str
    was_converted: bool


def quantize_for(amount: Decimal, currency: str) -> Decimal:
    """Round an amount to the minor-unit precision of a currency."""
    places = MINOR_UNITS.get(currency.upper(), 2)
    return amount.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


class CurrencyNormalizer:
    """
    Converts receipt currencies into the ledger's base currency.

    Resolution order for a rate:
    1. Fresh (or, if refresh failed, stale) cached rate
    2. Static fallback table
    3. 1:1 (treated as already in base currency)

    Refreshes are not serialized: concurrent refreshes may race and the last
    writer wins, which is acceptable for near-identical rate tables.
    """

    def __init__(
        self,
        source: RateSource,
        base_currency: str = "USD",
        cache_seconds: float = DEFAULT_CACHE_SECONDS,
        fallback_rates: dict[str, Decimal] | None = None,
        failure_backoff_seconds: float = DEFAULT_FAILURE_BACKOFF_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the normalizer.

        Args:
            source: Rate source (e.g. ExchangeRateClient)
            base_currency: Ledger currency all amounts are converted into
            cache_seconds: Freshness window of the rate cache
            fallback_rates: Static rates used when no cached rate exists
            failure_backoff_seconds: Minimum delay between failed refreshes
            clock: Monotonic clock, injectable for tests
        """
        self.source = source
        self.base_currency = base_currency.upper()
        self.cache_seconds = cache_seconds
        if fallback_rates is None:
            # Static table is quoted against USD
            fallback_rates = FALLBACK_RATES if self.base_currency == "USD" else {}
        self.fallback_rates = fallback_rates
        self.failure_backoff_seconds = failure_backoff_seconds
        self._clock = clock
        self._snapshot = RateSnapshot()
        self._last_failure: float | None = None

    def _is_stale(self) -> bool:
        snapshot = self._snapshot
        if snapshot.fetched_at is None or not snapshot.rates:
            return True
        return self._clock() - snapshot.fetched_at > self.cache_seconds

    def _in_backoff(self) -> bool:
        if self._last_failure is None:
            return False
        return self._clock() - self._last_failure < self.failure_backoff_seconds

    def refresh(self) -> bool:
        """
        Refresh the rate cache from the source.

        Never raises; on failure the previous cache is kept.

        Returns:
            True if the cache was updated
        """
        try:
            rates = self.source.fetch_rates(self.base_currency)
        except RateSourceError as e:
            logger.error("Failed to fetch exchange rates: %s", e)
            self._last_failure = self._clock()
            return False
        except Exception as e:
            logger.exception("Unexpected error fetching exchange rates: %s", e)
            self._last_failure = self._clock()
            return False

        self._snapshot = RateSnapshot(
            rates=rates,
            fetched_at=self._clock(),
            fetched_at_wall=datetime.now(timezone.utc),
        )
        self._last_failure = None
        logger.info("Exchange rates updated (%d currencies)", len(rates))
        return True

    def _lookup(self, currency: str) -> Decimal | None:
        if self._is_stale() and not self._in_backoff():
            self.refresh()

        cached = self._snapshot.rates.get(currency)
        if cached:
            return cached

        fallback = self.fallback_rates.get(currency)
        if fallback:
            logger.warning("Using fallback rate for %s", currency)
            return fallback

        return None

    def rate(self, currency: str) -> Decimal:
        """
        Get the rate for a currency (units per one base-currency unit).

        Unknown currencies resolve to 1.
        """
        code = currency.upper()
        if code == self.base_currency:
            return ONE
        return self._lookup(code) or ONE

    def convert(self, amount: Decimal, currency: str) -> Conversion:
        """
        Convert an amount into the base currency.

        Args:
            amount: Amount in the source currency
            currency: ISO currency code of the amount

        Returns:
            Conversion with the rounded base-currency amount and rate used
        """
        code = (currency or self.base_currency).upper()

        if code == self.base_currency:
            return Conversion(
                amount=quantize_for(amount, self.base_currency),
                rate=ONE,
                from_currency=code,
                was_converted=False,
            )

        rate = self._lookup(code)
        if rate is None:
            logger.warning("No rate known for %s, treating amount as %s", code, self.base_currency)
            return Conversion(
                amount=quantize_for(amount, self.base_currency),
                rate=ONE,
                from_currency=code,
                was_converted=False,
            )

        converted = quantize_for(amount / rate, self.base_currency)
        return Conversion(amount=converted, rate=rate, from_currency=code, was_converted=True)

    def rates_info(self) -> dict:
        """Describe the cache state for diagnostics."""
        snapshot = self._snapshot
        if snapshot.fetched_at is None:
            cache_age = "not cached"
            last_updated = None
        else:
            minutes = round((self._clock() - snapshot.fetched_at) / 60)
            cache_age = f"{minutes} minutes"
            last_updated = snapshot.fetched_at_wall.isoformat() if snapshot.fetched_at_wall else None

        sample = {}
        for code in ("PHP", "EUR", "GBP"):
            value = snapshot.rates.get(code) or self.fallback_rates.get(code)
            sample[code] = str(value) if value is not None else None

        return {
            "base_currency": self.base_currency,
            "last_updated": last_updated,
            "cache_age": cache_age,
            "cached_currencies": len(snapshot.rates),
            "sample_rates": sample,
        }
