"""Shared validation utilities"""

import re
from typing import Optional

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def normalize_email(email: str) -> str:
    """Canonical form used for the one-response-per-recipient rule"""
    return email.strip().lower()


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Args:
        email: Email address string

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = normalize_email(email)

    if not EMAIL_PATTERN.match(email):
        raise ValueError("Invalid email format")

    return email


def find_duplicates(values: list[str]) -> list[str]:
    """Return values that occur more than once, in first-seen order"""
    seen = set()
    duplicates = []
    for value in values:
        if value in seen and value not in duplicates:
            duplicates.append(value)
        seen.add(value)
    return duplicates
