"""Prompt templates for receipt extraction.

Prompts are versioned so extraction logs can be correlated with the
instructions the model was given.
"""

from __future__ import annotations

from dataclasses import dataclass

# v1.1: Explicit summing rule when no total line exists
PROMPT_VERSION = "v1.1"

DEFAULT_RECEIPT_CURRENCY = "PHP"


@dataclass
class ReceiptPrompt:
    """Prompt template for reading a receipt image or PDF.

    Attributes:
        version: Prompt version.
        default_currency: Currency the model should assume when unclear.
    """

    version: str = PROMPT_VERSION
    default_currency: str = DEFAULT_RECEIPT_CURRENCY

    instructions: str = """Analyze this receipt and extract the following information. Return ONLY a valid JSON object with no additional text or explanation.

{{
  "date": "YYYY-MM-DD format, or null if not found",
  "amount": numeric value only (no currency symbol), or null if not found,
  "currency": "ISO 4217 currency code detected, or \\"{default_currency}\\" if unclear",
  "description": "brief description of purchase" or null
}}

Important:
- For the amount field, follow this priority:
  1. If a TOTAL or GRAND TOTAL exists, use that value
  2. If multiple totals exist, use the final/grand total
  3. If there is NO total line, add up ALL individual item amounts and return their SUM
- Never return just the first item amount
- If multiple dates are found, use the EARLIEST date
- Return ONLY the JSON object, no markdown, no explanation"""

    def format(self) -> str:
        """Render the instruction text."""
        return self.instructions.format(default_currency=self.default_currency)
