import re
from typing import Optional

from .errors import ValidationError


EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
PHONE_REGEX = re.compile(r"^\+?[0-9 ()-]{6,20}$")


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_REGEX.match(email))


def is_valid_phone(phone: str) -> bool:
    return bool(PHONE_REGEX.match(phone))


def parse_int(value: str) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def require_text(value: Optional[str], field: str, min_length: int = 1) -> str:
    text = (value or "").strip()
    if len(text) < min_length:
        raise ValidationError(f"Field '{field}' is required.")
    return text
