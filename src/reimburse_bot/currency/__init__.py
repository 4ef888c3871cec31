"""
Currency Normalizer.

Converts receipt amounts into the ledger's base currency using a cached
exchange-rate table with static fallback rates.
"""

from .normalizer import FALLBACK_RATES, Conversion, CurrencyNormalizer, quantize_for
from .rate_source import ExchangeRateClient, RateSourceError

__all__ = [
    "CurrencyNormalizer",
    "Conversion",
    "ExchangeRateClient",
    "RateSourceError",
    "FALLBACK_RATES",
    "quantize_for",
]
