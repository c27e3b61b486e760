"""
Input validation functions for the Bakehouse application.

This module provides validation functions for user-supplied input:
- String validation (required fields, length, sanitizing)
- Contact validation (email, phone)
- Numeric validation (positive integers, ranges)
- Name normalization for ingredient matching
"""

import re
from typing import Any, Tuple

from .constants import (
    ERROR_INVALID_EMAIL,
    ERROR_INVALID_PHONE,
    ERROR_REQUIRED_FIELD,
    MAX_EMAIL_LENGTH,
)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^[\d\s\-+().]{10,20}$")
CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F]")
WHITESPACE = re.compile(r"\s+")


def validate_required_string(value: Any, field_name: str = "Field") -> Tuple[bool, str]:
    """
    Validate that a string field is not empty.

    Args:
        value: The string value to validate
        field_name: Name of the field for error messages

    Returns:
        Tuple of (is_valid, error_message)
    """
    if value is None or not isinstance(value, str) or value.strip() == "":
        return False, f"{field_name}: {ERROR_REQUIRED_FIELD}"
    return True, ""


def validate_email(value: Any, field_name: str = "Email") -> Tuple[bool, str]:
    """
    Validate an email address format.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(value, str) or len(value) > MAX_EMAIL_LENGTH:
        return False, f"{field_name}: {ERROR_INVALID_EMAIL}"
    if not EMAIL_PATTERN.match(value.strip()):
        return False, f"{field_name}: {ERROR_INVALID_EMAIL}"
    return True, ""


def validate_phone(value: Any, field_name: str = "Phone") -> Tuple[bool, str]:
    """
    Validate a phone number (10-20 digits and separators).

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(value, str) or not PHONE_PATTERN.match(value.strip()):
        return False, f"{field_name}: {ERROR_INVALID_PHONE}"
    return True, ""


def validate_int_range(
    value: Any, min_value: int, max_value: int, field_name: str = "Field"
) -> Tuple[bool, str]:
    """
    Validate that a value is an integer within [min_value, max_value].

    Booleans and floats with a fractional part are rejected.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if isinstance(value, bool):
        return False, f"{field_name}: Must be a whole number"
    if isinstance(value, float):
        if not value.is_integer():
            return False, f"{field_name}: Must be a whole number"
        value = int(value)
    if not isinstance(value, int):
        return False, f"{field_name}: Must be a whole number"
    if value < min_value or value > max_value:
        return False, f"{field_name}: Must be between {min_value} and {max_value}"
    return True, ""


def sanitize_string(value: Any, max_length: int) -> str:
    """
    Remove control characters, trim, and cap the length of free text.

    Args:
        value: Raw input (None becomes "")
        max_length: Maximum length of the returned string

    Returns:
        Sanitized string
    """
    if value is None:
        return ""
    return CONTROL_CHARS.sub("", str(value)).strip()[:max_length]


def normalize_phone(value: str) -> str:
    """Keep only digits and a leading plus sign."""
    return re.sub(r"[^\d+]", "", value)


def normalize_name(value: str) -> str:
    """
    Normalize an ingredient name for matching.

    Lower-cases and collapses internal whitespace so that "Bread  Flour"
    and " bread flour" are the same ingredient.
    """
    return WHITESPACE.sub(" ", value.strip()).lower()
