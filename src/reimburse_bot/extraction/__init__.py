"""
Receipt extraction.

Reads date, amount, currency and a short description from a receipt image
or PDF using an Anthropic vision model.
"""

from .prompts import DEFAULT_RECEIPT_CURRENCY, PROMPT_VERSION, ReceiptPrompt
from .service import (
    ReceiptExtraction,
    ReceiptExtractionError,
    ReceiptExtractor,
    is_supported_receipt,
)

__all__ = [
    "ReceiptExtractor",
    "ReceiptExtraction",
    "ReceiptExtractionError",
    "ReceiptPrompt",
    "PROMPT_VERSION",
    "DEFAULT_RECEIPT_CURRENCY",
    "is_supported_receipt",
]
