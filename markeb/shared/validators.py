"""Shared validation utilities"""

import re
from datetime import date
from typing import Optional

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

# Royal Mail format, with or without the space before the inward code
UK_POSTCODE_PATTERN = re.compile(r"^([A-Z]{1,2}\d[A-Z\d]?)\s*(\d[A-Z]{2})$")

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Returns:
        Lowercase, trimmed email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValueError("Invalid email format")
    return email


def normalize_uk_postcode(postcode: Optional[str]) -> Optional[str]:
    """
    Normalize a UK postcode to upper case with a single space ("SW1A 1AA").

    Raises:
        ValueError: If the postcode is not a valid UK format
    """
    if not postcode:
        return postcode

    match = UK_POSTCODE_PATTERN.match(postcode.strip().upper())
    if not match:
        raise ValueError("Invalid UK postcode")
    return f"{match.group(1)} {match.group(2)}"


def validate_uk_phone(phone: Optional[str]) -> Optional[str]:
    """
    Validate a UK phone number and normalize it to E.164 (+44XXXXXXXXXX).

    Accepts 07700 900123, +44 7700 900123 and 0044 7700 900123.
    """
    if not phone:
        return phone

    digits = re.sub(r"\D", "", phone)
    if digits.startswith("0044"):
        digits = digits[4:]
    elif digits.startswith("44") and len(digits) in (11, 12):
        digits = digits[2:]
    elif digits.startswith("0"):
        digits = digits[1:]

    if len(digits) not in (9, 10):
        raise ValueError("Phone number must be a valid UK number")
    return f"+44{digits}"


def validate_booking_date(value: str) -> str:
    """YYYY-MM-DD"""
    try:
        return date.fromisoformat(value.strip()).isoformat()
    except (AttributeError, ValueError) as e:
        raise ValueError("Date must be in YYYY-MM-DD format") from e


def validate_booking_time(value: str) -> str:
    """HH:MM, 24-hour clock"""
    value = (value or "").strip()
    if not TIME_PATTERN.match(value):
        raise ValueError("Time must be in HH:MM format")
    return value
