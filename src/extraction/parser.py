"""Normalizers for receipt field values coming from the model or from manual edits."""

import logging
import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')

# numeric(10, 2)
MAX_AMOUNT = Decimal('99999999.99')

CURRENCY_SYMBOLS = {
    '$': 'USD',
    'US$': 'USD',
    '€': 'EUR',
    '£': 'GBP',
    '¥': 'JPY',
    '₹': 'INR',
    'C$': 'CAD',
    'A$': 'AUD',
}

# Thousands groups like 1,234 or 12,345,678
_THOUSANDS = re.compile(r'^\d{1,3}(,\d{3})+(\.\d+)?$')
# Decimal comma like 4,50
_DECIMAL_COMMA = re.compile(r'^\d+,\d{1,2}$')


def parse_amount(value: Any) -> Optional[Decimal]:
    """
    Parse a monetary amount into a Decimal with two decimal places.

    Accepts numbers and strings such as ``"$1,234.50"``, ``"12.3 USD"`` or
    ``"(4.00)"``.

    Args:
        value: Raw amount

    Returns:
        Quantized Decimal, or None for empty input

    Raises:
        ValueError: If the value is not a finite decimal
    """
    if value is None:
        return None

    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")

    if isinstance(value, (int, Decimal)):
        number = Decimal(value)
    elif isinstance(value, float):
        number = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return None

        negative = cleaned.startswith('(') and cleaned.endswith(')')
        if negative:
            cleaned = cleaned[1:-1]

        # Drop currency symbols, codes and whitespace, keep digits, sign and separators
        cleaned = re.sub(r'[^\d.,\-+]', '', cleaned)

        if _THOUSANDS.match(cleaned.lstrip('+-')):
            cleaned = cleaned.replace(',', '')
        elif _DECIMAL_COMMA.match(cleaned.lstrip('+-')):
            cleaned = cleaned.replace(',', '.')
        else:
            cleaned = cleaned.replace(',', '')

        if negative:
            cleaned = '-' + cleaned.lstrip('+-')

        try:
            number = Decimal(cleaned)
        except InvalidOperation:
            raise ValueError(f"Invalid amount: {value!r}")
    else:
        raise ValueError(f"Invalid amount: {value!r}")

    if not number.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")

    try:
        return number.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Amount out of range: {value!r}")


def normalize_date(value: Any) -> Optional[str]:
    """
    Normalize a date value to ISO 8601 (YYYY-MM-DD).

    Strict ISO input is taken as-is; anything else goes through dateutil.

    Args:
        value: Date string, date or datetime

    Returns:
        ISO date string, or None for empty input

    Raises:
        ValueError: If the value is not a readable calendar date
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value.date().isoformat()

    if isinstance(value, date):
        return value.isoformat()

    if not isinstance(value, str):
        raise ValueError(f"Invalid date: {value!r}")

    text = value.strip()
    if not text:
        return None

    try:
        if re.match(r'^\d{4}-\d{2}-\d{2}', text):
            return date.fromisoformat(text[:10]).isoformat()
        return date_parser.parse(text).date().isoformat()
    except (ValueError, OverflowError):
        logger.warning(f"Failed to parse date: {value}")
        raise ValueError(f"Invalid date: {value!r}")


def normalize_currency(value: Any, default: str = 'USD') -> str:
    """
    Normalize a currency code or symbol to an upper-case ISO 4217 code.

    Args:
        value: Code such as ``"usd"`` or symbol such as ``"€"``
        default: Code used when the value is empty

    Returns:
        Three-letter currency code

    Raises:
        ValueError: If the value is neither a code nor a known symbol
    """
    if value is None:
        return default

    if not isinstance(value, str):
        raise ValueError(f"Invalid currency: {value!r}")

    text = value.strip()
    if not text:
        return default

    if text.upper() in CURRENCY_SYMBOLS:
        return CURRENCY_SYMBOLS[text.upper()]

    code = text.upper()
    if not re.fullmatch(r'[A-Z]{3}', code):
        raise ValueError(f"Invalid currency: {value!r}")

    return code


def clean_merchant_name(value: Any) -> Optional[str]:
    """Collapse whitespace in a merchant name; blank names become None."""
    if value is None:
        return None

    cleaned = ' '.join(str(value).split())
    return cleaned[:200] or None
