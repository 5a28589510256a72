"""Contact validation and phone normalization."""

import re
from typing import Optional

from .errors import ValidationError
from .models import ContactIdentity


EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
E164_REGEX = re.compile(r"^\+[1-9]\d{1,14}$")
NON_DIGITS = re.compile(r"\D")

MIN_NAME_LENGTH = 2


def digits_only(value: str) -> str:
    return NON_DIGITS.sub("", value or "")


def format_phone_number(value: str) -> str:
    """Format up to 10 digits as (XXX) XXX-XXXX, as the capture form shows it."""
    digits = digits_only(value)
    if len(digits) <= 3:
        return digits
    if len(digits) <= 6:
        return f"({digits[:3]}) {digits[3:]}"
    return f"({digits[:3]}) {digits[3:6]}-{digits[6:10]}"


def normalize_to_e164(phone: Optional[str]) -> Optional[str]:
    """Normalize a phone number to E.164, or return None if it can't be."""
    if not phone:
        return None

    cleaned = re.sub(r"[^\d+]", "", phone)
    if cleaned.startswith("+"):
        if E164_REGEX.match(cleaned):
            return cleaned
        cleaned = cleaned.lstrip("+")

    if "+" in cleaned:
        return None

    # US numbers
    if len(cleaned) == 10:
        return f"+1{cleaned}"
    if len(cleaned) == 11 and cleaned.startswith("1"):
        return f"+{cleaned}"

    if 10 <= len(cleaned) <= 15 and not cleaned.startswith("0"):
        return f"+{cleaned}"
    return None


def validate_contact(
    first_name: str,
    last_name: str,
    email: str,
    phone: str,
) -> ContactIdentity:
    """Check the step-1 fields and build a ContactIdentity.

    Raises:
        ValidationError: With one message per failing field
    """
    first_name = (first_name or "").strip()
    last_name = (last_name or "").strip()
    email = (email or "").strip()
    phone = (phone or "").strip()

    errors: dict[str, str] = {}
    if len(first_name) < MIN_NAME_LENGTH:
        errors["first_name"] = "Please enter your first name"
    if len(last_name) < MIN_NAME_LENGTH:
        errors["last_name"] = "Please enter your last name"
    if not EMAIL_REGEX.match(email):
        errors["email"] = "Please enter a valid email address"
    if len(digits_only(phone)) != 10:
        errors["phone"] = "Please enter a valid 10-digit phone number"

    if errors:
        raise ValidationError(errors)

    return ContactIdentity(
        first_name=first_name,
        last_name=last_name,
        email=email,
        phone=format_phone_number(phone),
    )
