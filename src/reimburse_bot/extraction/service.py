"""Receipt extraction service.

Sends a receipt image or PDF to an Anthropic vision model and parses the
structured reply into a ReceiptExtraction.
"""

from __future__ import annotations

import base64
import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation

import anthropic

from .prompts import DEFAULT_RECEIPT_CURRENCY, ReceiptPrompt

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-3-5-haiku-latest"
PDF_MIMETYPE = "application/pdf"


def is_supported_receipt(mimetype: str | None) -> bool:
    """Only images and PDFs can be read by the vision model."""
    if not mimetype:
        return False
    return mimetype.startswith("image/") or mimetype == PDF_MIMETYPE


class ReceiptExtractionError(Exception):
    """Receipt could not be read.

    Attributes:
        code: Machine-readable reason (parse_error, no_amount, auth_error,
            api_error, unsupported_media).
        message: Message suitable for showing to the user.
    """

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


@dataclass
class ReceiptExtraction:
    """Structured data read from a receipt.

    Attributes:
        amount: Positive total in the receipt currency.
        currency: Upper-case ISO code (defaults to PHP when unclear).
        date: Receipt date (earliest found), None if not found.
        description: Short purchase description.
        prompt_version: Prompt version that produced this result.
    """

    amount: Decimal
    currency: str
    date: date | None = None
    description: str | None = None
    prompt_version: str = ""


class ReceiptExtractor:
    """Vision-model receipt reader.

    Features:
    - Image and PDF content blocks (base64)
    - Robust JSON parsing of model replies
    - Failures reported as ReceiptExtractionError, never raw SDK errors
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        base_url: str | None = None,
        max_tokens: int = 1024,
        timeout_seconds: float = 60.0,
        default_currency: str = DEFAULT_RECEIPT_CURRENCY,
        client: anthropic.Anthropic | None = None,
    ):
        """Initialize extractor.

        Args:
            api_key: Anthropic API key (falls back to ANTHROPIC_API_KEY).
            model: Vision-capable model name.
            base_url: Optional API base URL (proxy / gateway).
            max_tokens: Reply token budget.
            timeout_seconds: Request timeout.
            default_currency: Currency assumed when the receipt is unclear.
            client: Preconfigured client (tests).
        """
        self.model = model
        self.max_tokens = max_tokens
        self.default_currency = default_currency.upper()
        self.prompt = ReceiptPrompt(default_currency=self.default_currency)
        self._client = client or anthropic.Anthropic(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout_seconds,
            max_retries=1,
        )

    def _content_blocks(self, data: bytes, mimetype: str) -> list[dict]:
        encoded = base64.b64encode(data).decode("ascii")
        block_type = "document" if mimetype == PDF_MIMETYPE else "image"
        return [
            {
                "type": block_type,
                "source": {"type": "base64", "media_type": mimetype, "data": encoded},
            },
            {"type": "text", "text": self.prompt.format()},
        ]

    def extract(self, data: bytes, mimetype: str) -> ReceiptExtraction:
        """Read a receipt.

        Args:
            data: Raw file bytes.
            mimetype: File MIME type (image/* or application/pdf).

        Returns:
            ReceiptExtraction with a positive amount.

        Raises:
            ReceiptExtractionError: If the receipt cannot be read.
        """
        if not is_supported_receipt(mimetype):
            raise ReceiptExtractionError(
                "unsupported_media", "Please upload an image file (JPG, PNG, HEIC) or PDF."
            )

        logger.info(
            "Extracting receipt (%s, %d bytes, prompt %s)", mimetype, len(data), self.prompt.version
        )

        try:
            response = self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": self._content_blocks(data, mimetype)}],
            )
        except anthropic.AuthenticationError as e:
            logger.error("Vision model rejected credentials: %s", e)
            raise ReceiptExtractionError(
                "auth_error", "The receipt reader is misconfigured (invalid API key)."
            ) from e
        except anthropic.APIError as e:
            logger.error("Vision model request failed: %s", e)
            raise ReceiptExtractionError("api_error", f"Failed to analyze receipt: {e}") from e

        text = "".join(
            getattr(part, "text", "") or "" for part in getattr(response, "content", []) or []
        )

        try:
            payload = self._parse_json_response(text)
        except json.JSONDecodeError as e:
            logger.error("Failed to parse receipt reply: %s (content: %.200s)", e, text)
            raise ReceiptExtractionError(
                "parse_error", "Could not parse receipt data from image"
            ) from e

        return self._to_extraction(payload)

    def _parse_json_response(self, content: str) -> dict:
        """Parse JSON from a model reply.

        Handles markdown code fences, surrounding whitespace and JSON
        embedded in explanatory text.

        Raises:
            json.JSONDecodeError: If no JSON object can be recovered.
        """
        if not content:
            raise json.JSONDecodeError("Empty response", "", 0)

        content = content.strip()

        if content.startswith("```json"):
            content = content[7:]
        elif content.startswith("```"):
            content = content[3:]
        if content.endswith("```"):
            content = content[:-3]
        content = content.strip()

        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            match = re.search(r"\{[\s\S]*\}", content)
            if not match:
                raise
            data = json.loads(match.group())

        if not isinstance(data, dict):
            raise json.JSONDecodeError("Expected a JSON object", content, 0)
        return data

    def _to_extraction(self, payload: dict) -> ReceiptExtraction:
        raw_amount = payload.get("amount")
        if raw_amount is None or raw_amount == "":
            raise ReceiptExtractionError("no_amount", "Could not find total amount on receipt")

        try:
            amount = Decimal(str(raw_amount).replace(",", ""))
        except InvalidOperation as e:
            raise ReceiptExtractionError(
                "no_amount", f"Could not read the total amount ({raw_amount!r})"
            ) from e

        if not amount.is_finite() or amount <= 0:
            raise ReceiptExtractionError("no_amount", "The total amount on the receipt is not positive")

        currency = str(payload.get("currency") or self.default_currency).strip().upper()
        if not re.fullmatch(r"[A-Z]{3}", currency):
            logger.warning("Unrecognized currency %r, assuming %s", currency, self.default_currency)
            currency = self.default_currency

        receipt_date = None
        raw_date = payload.get("date")
        if raw_date:
            try:
                receipt_date = date.fromisoformat(str(raw_date)[:10])
            except ValueError:
                logger.warning("Ignoring unparseable receipt date %r", raw_date)

        description = payload.get("description")

        return ReceiptExtraction(
            amount=amount,
            currency=currency,
            date=receipt_date,
            description=str(description).strip() if description else None,
            prompt_version=self.prompt.version,
        )
