"""
Directory attribute encoding, validation and protection rules.

These functions translate domain field values into the string representation
stored in the directory and back again. They do not talk to the directory
themselves, so they can be used (and tested) without an LDAP connection.

Writes are strict (an unparseable date raises FormatError), reads are lenient
(an unparseable stored date is logged and treated as absent).
"""

import logging
from datetime import date, datetime
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Attribute that carries the hire date, stored as "BirthDate:YYYY-MM-DD"
DATE_ATTRIBUTES = frozenset(['info'])
DATE_PREFIX = 'BirthDate:'

# Identity attributes are never written by reconciliation
PROTECTED_ATTRIBUTES = frozenset(['samaccountname', 'userprincipalname'])

MAX_EMAIL_LENGTH = 256
MAX_PHONE_LENGTH = 32
MAX_EMPLOYEE_ID_LENGTH = 64

PHONE_ATTRIBUTES = frozenset(['telephonenumber', 'mobile'])

# Accepted textual date layouts besides ISO 8601
DATE_FORMATS = ['%d.%m.%Y', '%m/%d/%Y', '%Y/%m/%d']


class FormatError(ValueError):
    """Raised when a value cannot be encoded for a directory attribute."""

    def __init__(self, attribute: str, value: Any, message: Optional[str] = None):
        self.attribute = attribute
        self.value = value
        super().__init__(message or f"Invalid date format for attribute {attribute}: {value!r}")


def is_date_attribute(attribute: str) -> bool:
    return bool(attribute) and attribute.lower() in DATE_ATTRIBUTES


def _parse_date(value: Any) -> date:
    """Parse a date from a date/datetime object or text. Raises ValueError."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        raise ValueError("empty date value")

    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    raise ValueError(f"unrecognised date: {text}")


def format_attribute_value(attribute: str, raw_value: Any) -> str:
    """
    Encode a domain value for storage in a directory attribute.

    Args:
        attribute: Directory attribute name (e.g. 'mail', 'info')
        raw_value: Domain value (string, date or datetime)

    Returns:
        The attribute value as stored in the directory

    Raises:
        FormatError: If a date attribute value cannot be parsed as a date
    """
    if is_date_attribute(attribute):
        try:
            parsed = _parse_date(raw_value)
        except (ValueError, TypeError):
            raise FormatError(attribute, raw_value)
        return f"{DATE_PREFIX}{parsed.strftime('%Y-%m-%d')}"

    if isinstance(raw_value, str):
        return raw_value
    return str(raw_value)


def parse_attribute_value(attribute: str, stored_value: Optional[str],
                          as_date: Optional[bool] = None,
                          log: Optional[logging.Logger] = None) -> Any:
    """
    Decode a stored directory attribute value into a domain value.

    Never raises: a date that cannot be parsed is logged and returned as None.

    Args:
        attribute: Directory attribute name
        stored_value: Raw value read from the directory
        as_date: Force date decoding; defaults to whether the attribute is a
            known date attribute
        log: Logger to report unparseable values to (defaults to the module logger)

    Returns:
        A date for date attributes, otherwise the stored string (or None)
    """
    log = log or logger

    if as_date is None:
        as_date = is_date_attribute(attribute)

    if stored_value is None:
        return None

    if not as_date:
        return stored_value

    text = str(stored_value)
    if text.startswith(DATE_PREFIX):
        text = text[len(DATE_PREFIX):]

    try:
        return _parse_date(text)
    except (ValueError, TypeError):
        log.warning(f"Failed to parse date from attribute {attribute} value: {stored_value!r}")
        return None


def is_protected_attribute(attribute: str) -> bool:
    """Return True for attributes that reconciliation must never overwrite."""
    return bool(attribute) and attribute.lower() in PROTECTED_ATTRIBUTES


def is_valid_attribute_value(attribute: str, value: Optional[str]) -> bool:
    """
    Check a formatted value against the per-attribute shape and length rules.

    Empty or whitespace-only values are never valid.
    """
    if value is None or not str(value).strip():
        return False

    name = attribute.lower()
    if name == 'mail':
        return '@' in value and len(value) <= MAX_EMAIL_LENGTH
    if name in PHONE_ATTRIBUTES:
        return len(value) <= MAX_PHONE_LENGTH
    if name == 'employeeid':
        return len(value) <= MAX_EMPLOYEE_ID_LENGTH
    return True
