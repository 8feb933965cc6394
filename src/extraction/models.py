"""Extraction result models."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from extraction.parser import MAX_AMOUNT, clean_merchant_name, normalize_currency, normalize_date, parse_amount


class ExtractedFields(BaseModel):
    """Fields read off a receipt image. Any of them may be unknown except currency."""

    model_config = ConfigDict(frozen=True)

    merchant: Optional[str] = None
    date: Optional[str] = Field(default=None, description="ISO 8601 date (YYYY-MM-DD)")
    amount: Optional[Decimal] = None
    currency: str = 'USD'

    @field_validator('merchant', mode='before')
    @classmethod
    def _clean_merchant(cls, value: Any) -> Optional[str]:
        return clean_merchant_name(value)

    @field_validator('date', mode='before')
    @classmethod
    def _normalize_date(cls, value: Any) -> Optional[str]:
        return normalize_date(value)

    @field_validator('amount', mode='before')
    @classmethod
    def _parse_amount(cls, value: Any) -> Optional[Decimal]:
        amount = parse_amount(value)
        # Beyond the stored range; left for manual entry
        if amount is not None and abs(amount) > MAX_AMOUNT:
            return None
        return amount

    @field_validator('currency', mode='before')
    @classmethod
    def _normalize_currency(cls, value: Any) -> str:
        return normalize_currency(value)

    @classmethod
    def empty(cls, currency: str = 'USD') -> 'ExtractedFields':
        """Fields for a receipt the user has to fill in by hand."""
        return cls(currency=currency)


@dataclass(frozen=True)
class ExtractionFailure:
    """A definite, non-exceptional extraction failure."""

    reason: str
