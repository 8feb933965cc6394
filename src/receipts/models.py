"""Receipt data models."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from extraction.parser import CENTS
from shared.exceptions import ValidationError
from shared.validators import (
    decode_base64_image,
    sanitize_string,
    validate_amount,
    validate_currency,
    validate_date,
    validate_date_range
)


def utc_now() -> str:
    """Current time as an ISO 8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat()


def _validation_error(error: PydanticValidationError) -> ValidationError:
    """Turn a pydantic error into the application's ValidationError."""
    first = error.errors()[0]
    field = '.'.join(str(part) for part in first.get('loc', ())) or 'value'
    message = first.get('msg', 'Invalid value')
    # Errors raised from our validators arrive as "Value error, <message>"
    if message.startswith('Value error, '):
        message = message[len('Value error, '):]
    return ValidationError(f"{field}: {message}")


class ReceiptStatus(str, Enum):
    """Lifecycle status of a receipt."""

    UNVERIFIED = 'unverified'
    VERIFIED = 'verified'


class Receipt(BaseModel):
    """Receipt model."""

    user_id: str
    receipt_id: str
    storage_ref: str
    merchant: Optional[str] = None
    transaction_date: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: str = 'USD'
    category_id: Optional[str] = None
    status: ReceiptStatus = ReceiptStatus.UNVERIFIED
    created_at: str
    updated_at: str

    @field_validator('amount', mode='after')
    @classmethod
    def _fixed_scale(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        if value is None:
            return None
        return value.quantize(CENTS)

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'Receipt':
        """Build a receipt from a DynamoDB item."""
        return cls.model_validate(item)

    def to_item(self) -> Dict[str, Any]:
        """DynamoDB item; unknown values are left out rather than stored as NULL."""
        item = self.model_dump(exclude_none=True)
        item['status'] = self.status.value
        return item

    def to_api(self) -> Dict[str, Any]:
        """JSON-ready representation."""
        return self.model_dump(mode='json')


class ReceiptCreate(BaseModel):
    """Data for a new receipt record."""

    user_id: str
    storage_ref: str
    merchant: Optional[str] = None
    transaction_date: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: str = 'USD'
    category_id: Optional[str] = None
    status: ReceiptStatus = ReceiptStatus.UNVERIFIED


class ReceiptCorrection(BaseModel):
    """
    Fields a user may edit on their own receipt.

    Only keys present in the input are applied: an absent key leaves the
    stored value alone, an explicit null clears it. Identity fields
    (owner, id, storage reference) and status are ignored here.
    """

    model_config = ConfigDict(extra='ignore')

    merchant: Optional[str] = None
    transaction_date: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    category_id: Optional[str] = None

    @field_validator('merchant', mode='before')
    @classmethod
    def _clean_merchant(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return sanitize_string(value, max_length=200) or None

    @field_validator('transaction_date', mode='before')
    @classmethod
    def _check_date(cls, value: Any) -> Optional[str]:
        return validate_date(value)

    @field_validator('amount', mode='before')
    @classmethod
    def _check_amount(cls, value: Any) -> Optional[Decimal]:
        return validate_amount(value)

    @field_validator('currency', mode='before')
    @classmethod
    def _check_currency(cls, value: Any) -> str:
        return validate_currency(value)

    @field_validator('category_id', mode='before')
    @classmethod
    def _check_category(cls, value: Any) -> Optional[str]:
        if value is None or value == '':
            return None
        if not isinstance(value, str):
            raise ValueError("category_id must be a string")
        return value.strip()

    @classmethod
    def parse(cls, data: Optional[Dict[str, Any]]) -> 'ReceiptCorrection':
        """
        Validate user input.

        Accepts the legacy names ``vendor`` (merchant) and ``date``
        (transaction_date) as aliases.

        Raises:
            ValidationError: If any supplied field is invalid
        """
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")

        data = dict(data)
        if 'vendor' in data and 'merchant' not in data:
            data['merchant'] = data.pop('vendor')
        if 'date' in data and 'transaction_date' not in data:
            data['transaction_date'] = data.pop('date')

        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise _validation_error(e) from e

    def changes(self) -> Dict[str, Any]:
        """Only the fields the caller actually supplied."""
        return self.model_dump(exclude_unset=True)


class ReceiptPatch(ReceiptCorrection):
    """A correction that may also move the status forward."""

    status: Optional[ReceiptStatus] = None


class ReceiptFilters(BaseModel):
    """Owner-scoped list filters; every supplied filter must match."""

    category_id: Optional[str] = None
    status: Optional[ReceiptStatus] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    merchant: Optional[str] = None
    sort_by: Literal['transaction_date', 'created_at'] = 'transaction_date'
    descending: bool = True

    @field_validator('start_date', 'end_date', mode='before')
    @classmethod
    def _check_date(cls, value: Any) -> Optional[str]:
        return validate_date(value)

    @field_validator('merchant', 'category_id', mode='before')
    @classmethod
    def _blank_is_none(cls, value: Any) -> Optional[str]:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def from_query(cls, params: Optional[Dict[str, Any]]) -> 'ReceiptFilters':
        """
        Build filters from API Gateway query string parameters.

        Raises:
            ValidationError: If a filter value is invalid
        """
        params = dict(params or {})
        if 'from_date' in params and 'start_date' not in params:
            params['start_date'] = params.pop('from_date')
        if 'to_date' in params and 'end_date' not in params:
            params['end_date'] = params.pop('to_date')
        if 'order' in params:
            params['descending'] = str(params.pop('order')).lower() != 'asc'

        known = {key: value for key, value in params.items() if key in cls.model_fields}
        try:
            filters = cls.model_validate(known)
        except PydanticValidationError as e:
            raise _validation_error(e) from e

        validate_date_range(filters.start_date, filters.end_date)
        return filters


class ReceiptFile(BaseModel):
    """An uploaded file waiting to be ingested."""

    filename: str = 'receipt'
    content_type: str
    content: bytes = Field(repr=False)

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'ReceiptFile':
        """
        Build a file from a JSON upload entry.

        Args:
            payload: ``{"filename", "content_type", "image_data"}`` with base64 image data

        Raises:
            ValidationError: If the entry is malformed
        """
        if not isinstance(payload, dict):
            raise ValidationError("Each file must be an object")

        content, uri_type = decode_base64_image(payload.get('image_data'))
        content_type = payload.get('content_type') or uri_type
        if not content_type:
            raise ValidationError("content_type is required")

        try:
            return cls(
                filename=str(payload.get('filename') or 'receipt'),
                content_type=content_type,
                content=content
            )
        except PydanticValidationError as e:
            raise _validation_error(e) from e


class FileStage(str, Enum):
    """Pipeline stage at which a file failed."""

    UPLOAD = 'upload'
    PERSIST = 'persist'


class FileError(BaseModel):
    """Why one file of a batch did not become a receipt."""

    filename: str
    stage: FileStage
    reason: str
    error_type: str


class IngestionResult(BaseModel):
    """Outcome of one upload batch."""

    created: List[Receipt] = Field(default_factory=list)
    failures: List[FileError] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.created) + len(self.failures)

    def summary(self) -> str:
        """Human readable outcome, e.g. "3 of 4 receipts uploaded; 1 failed"."""
        text = f"{len(self.created)} of {self.total} receipts uploaded"
        if self.failures:
            reasons = '; '.join(f"{f.filename}: {f.reason}" for f in self.failures)
            text += f"; {len(self.failures)} failed ({reasons})"
        return text
