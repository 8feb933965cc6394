"""Vision model client that turns a receipt image URL into structured fields."""

import json
import logging
from typing import Any, Dict, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, StrictStr
from pydantic import ValidationError as PydanticValidationError

from extraction.models import ExtractedFields, ExtractionFailure

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an assistant that extracts structured receipt data from images. "
    "If the currency is not visible, use {currency}."
)

USER_PROMPT = (
    "Extract the merchant name, the transaction date (YYYY-MM-DD), the total amount "
    "and the currency code from this receipt image. Use null for anything you cannot read."
)

# Output contract sent to the model and enforced on the reply
RECEIPT_SCHEMA = {
    "type": "object",
    "properties": {
        "merchant": {"type": ["string", "null"]},
        "date": {"type": ["string", "null"]},
        "amount": {"type": ["number", "null"]},
        "currency": {"type": "string"}
    },
    "required": ["merchant", "date", "amount", "currency"],
    "additionalProperties": False
}


class _ModelReply(BaseModel):
    """Shape the model promised to return; keys are required, extras rejected."""

    model_config = ConfigDict(extra='forbid')

    merchant: Optional[StrictStr]
    date: Optional[StrictStr]
    amount: Optional[Union[StrictInt, StrictFloat, StrictStr]]
    currency: Optional[StrictStr]


class ReceiptExtractor:
    """
    Calls an OpenAI vision model with a strict JSON-schema response format.

    ``extract`` never raises: transport errors, timeouts, refusals and replies
    that break the contract all come back as ``ExtractionFailure``.
    """

    def __init__(
        self,
        api_key: str,
        model: str = 'gpt-4o',
        base_url: str = 'https://api.openai.com/v1',
        timeout_seconds: float = 60.0,
        default_currency: str = 'USD',
        http_client: Optional[httpx.Client] = None
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip('/')
        self.timeout_seconds = timeout_seconds
        self.default_currency = default_currency
        self._http = http_client or httpx.Client(timeout=timeout_seconds)

    @classmethod
    def from_settings(cls, settings: Any) -> 'ReceiptExtractor':
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.extraction_timeout_seconds,
            default_currency=settings.default_currency
        )

    def extract(self, image_url: str) -> Union[ExtractedFields, ExtractionFailure]:
        """
        Extract merchant, date, amount and currency from a receipt image.

        Args:
            image_url: URL the model can fetch the image from

        Returns:
            ExtractedFields on success, ExtractionFailure otherwise
        """
        if not self.api_key:
            return ExtractionFailure("Extraction is not configured")

        try:
            response = self._http.post(
                f"{self.base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json"
                },
                json=self._build_request(image_url),
                timeout=self.timeout_seconds
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException:
            logger.warning(f"Extraction timed out after {self.timeout_seconds}s")
            return ExtractionFailure("Extraction timed out")
        except httpx.HTTPStatusError as e:
            logger.warning(f"Extraction request rejected: HTTP {e.response.status_code}")
            return ExtractionFailure(f"Extraction service returned HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Extraction request failed: {e}")
            return ExtractionFailure(f"Extraction request failed: {type(e).__name__}")
        except ValueError:
            logger.warning("Extraction service returned a non-JSON body")
            return ExtractionFailure("Extraction service returned an unreadable response")

        return self._parse_completion(payload)

    def _build_request(self, image_url: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "temperature": 0,
            "messages": [
                {
                    "role": "system",
                    "content": SYSTEM_PROMPT.format(currency=self.default_currency)
                },
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": USER_PROMPT},
                        {"type": "image_url", "image_url": {"url": image_url, "detail": "auto"}}
                    ]
                }
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": "receipt_data",
                    "strict": True,
                    "schema": RECEIPT_SCHEMA
                }
            }
        }

    def _parse_completion(self, payload: Any) -> Union[ExtractedFields, ExtractionFailure]:
        try:
            choice = payload['choices'][0]
            message = choice['message']
        except (KeyError, IndexError, TypeError):
            logger.warning("Extraction reply is missing choices")
            return ExtractionFailure("Extraction service returned an unexpected response")

        if not isinstance(choice, dict) or not isinstance(message, dict):
            logger.warning("Extraction reply has a malformed message")
            return ExtractionFailure("Extraction service returned an unexpected response")

        if message.get('refusal'):
            logger.info(f"Model refused extraction: {message['refusal']}")
            return ExtractionFailure(f"Model refused: {message['refusal']}")

        if choice.get('finish_reason') == 'length':
            return ExtractionFailure("Model reply was truncated")

        content = message.get('content')
        if not content:
            return ExtractionFailure("Model returned no content")
        if not isinstance(content, str):
            logger.warning(f"Extraction reply content is {type(content).__name__}, expected text")
            return ExtractionFailure("Model returned non-text content")

        try:
            reply = _ModelReply.model_validate(json.loads(content))
            fields = ExtractedFields(
                merchant=reply.merchant,
                date=reply.date,
                amount=reply.amount,
                currency=(reply.currency or '').strip() or self.default_currency
            )
        except (ValueError, PydanticValidationError) as e:
            logger.warning(f"Extraction reply failed validation: {e}")
            return ExtractionFailure("Model reply did not match the receipt schema")

        logger.info(
            f"Extracted receipt fields: merchant={'yes' if fields.merchant else 'no'}, "
            f"date={fields.date}, amount={fields.amount}, currency={fields.currency}"
        )
        return fields
