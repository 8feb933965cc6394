"""Validation utilities for the receipt tracker application."""

import base64
import binascii
import re
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from extraction.parser import MAX_AMOUNT, normalize_currency, normalize_date, parse_amount

from .exceptions import AuthError, ValidationError


# Upload policy
MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024
ALLOWED_CONTENT_TYPES = ('image/png', 'image/jpeg')

# Leading bytes of each accepted image format
_IMAGE_SIGNATURES = {
    'image/png': b'\x89PNG\r\n\x1a\n',
    'image/jpeg': b'\xff\xd8\xff',
}


def validate_owner_id(owner_id: Optional[str]) -> str:
    """
    Validate the authenticated caller's identifier.

    Args:
        owner_id: Identifier supplied by the identity provider

    Returns:
        Stripped owner identifier

    Raises:
        AuthError: If no usable identity is present
    """
    if not isinstance(owner_id, str) or not owner_id.strip():
        raise AuthError()
    return owner_id.strip()


def validate_content_type(content_type: Optional[str]) -> str:
    """
    Validate an upload's MIME type.

    Args:
        content_type: Declared MIME type

    Returns:
        Normalized MIME type

    Raises:
        ValidationError: If the type is not an accepted image type
    """
    normalized = (content_type or '').split(';', 1)[0].strip().lower()
    if normalized == 'image/jpg':
        normalized = 'image/jpeg'

    if normalized not in ALLOWED_CONTENT_TYPES:
        raise ValidationError(
            f"Invalid file type {content_type!r}. Only PNG and JPEG images are allowed."
        )

    return normalized


def validate_file_size(size_bytes: int, max_size_bytes: int = MAX_FILE_SIZE_BYTES) -> int:
    """
    Validate file size.

    Args:
        size_bytes: File size in bytes
        max_size_bytes: Maximum allowed size (default: 10 MiB)

    Returns:
        Validated size

    Raises:
        ValidationError: If the file is empty or exceeds the limit
    """
    if size_bytes <= 0:
        raise ValidationError("File is empty")

    if size_bytes > max_size_bytes:
        raise ValidationError(f"File size exceeds {max_size_bytes // (1024 * 1024)}MB limit")

    return size_bytes


def validate_image_signature(content: bytes, content_type: str) -> None:
    """Check that the bytes actually look like the declared image type."""
    signature = _IMAGE_SIGNATURES.get(content_type)
    if signature and not content.startswith(signature):
        raise ValidationError(f"File content does not match declared type {content_type}")


def decode_base64_image(data: str) -> Tuple[bytes, Optional[str]]:
    """
    Decode base64 image data, with or without a data URI prefix.

    Args:
        data: Base64 string, optionally prefixed with ``data:image/...;base64,``

    Returns:
        Tuple of (raw bytes, MIME type from the data URI or None)

    Raises:
        ValidationError: If the data is missing or not valid base64
    """
    if not data or not isinstance(data, str):
        raise ValidationError("Image data is required")

    uri_type = None
    if data.startswith('data:'):
        header, _, data = data.partition(',')
        if not header.startswith('data:image/'):
            raise ValidationError("Invalid image format")
        uri_type = header[len('data:'):].split(';', 1)[0]

    try:
        return base64.b64decode(data, validate=True), uri_type
    except (binascii.Error, ValueError):
        raise ValidationError("Invalid base64 encoding")


def validate_amount(amount: Any) -> Optional[Decimal]:
    """
    Validate a monetary amount from manual entry or extraction.

    Currency symbols and thousands separators are stripped before parsing.
    No sign constraint is applied.

    Args:
        amount: Amount to validate (number, string or None)

    Returns:
        Amount quantized to two decimal places, or None when empty

    Raises:
        ValidationError: If the value is not a finite decimal or is too large
    """
    try:
        value = parse_amount(amount)
    except ValueError:
        raise ValidationError(f"Invalid amount format: {amount!r}")

    if value is not None and abs(value) > MAX_AMOUNT:
        raise ValidationError("Amount is too large")

    return value


def validate_date(date_value: Any) -> Optional[str]:
    """
    Validate a transaction date.

    Args:
        date_value: ISO date string, date object or None

    Returns:
        ISO 8601 date string (YYYY-MM-DD), or None when empty

    Raises:
        ValidationError: If the value cannot be read as a calendar date
    """
    try:
        return normalize_date(date_value)
    except ValueError:
        raise ValidationError(f"Invalid date: {date_value!r}. Use YYYY-MM-DD")


def validate_currency(currency: Any, default: str = 'USD') -> str:
    """
    Validate a currency code.

    Args:
        currency: ISO 4217 code or common symbol; None selects the default
        default: Fallback code

    Returns:
        Upper-case three-letter code

    Raises:
        ValidationError: If the value is not a recognizable currency
    """
    try:
        return normalize_currency(currency, default)
    except ValueError:
        raise ValidationError(f"Invalid currency: {currency!r}")


def validate_date_range(start_date: Optional[str], end_date: Optional[str]) -> None:
    """Reject ranges whose start falls after their end."""
    if start_date and end_date and start_date > end_date:
        raise ValidationError("start_date must not be after end_date")


def validate_required_fields(data: Dict[str, Any], required_fields: List[str]) -> None:
    """
    Validate that required fields are present in data.

    Args:
        data: Data dictionary to validate
        required_fields: List of required field names

    Raises:
        ValidationError: If any required field is missing
    """
    missing_fields = [field for field in required_fields if field not in data or data[field] is None]

    if missing_fields:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing_fields)}"
        )


def sanitize_string(value: str, max_length: Optional[int] = None) -> str:
    """
    Sanitize string input.

    Args:
        value: String to sanitize
        max_length: Optional maximum length

    Returns:
        Sanitized string

    Raises:
        ValidationError: If string is invalid
    """
    if not isinstance(value, str):
        raise ValidationError("Value must be a string")

    # Collapse runs of whitespace
    value = ' '.join(value.split())

    if max_length and len(value) > max_length:
        raise ValidationError(f"Value exceeds maximum length of {max_length}")

    return value


def sanitize_key_component(value: str) -> str:
    """Replace anything outside [A-Za-z0-9._-] so the value is safe in an object key."""
    return re.sub(r'[^a-zA-Z0-9._-]', '_', value)
