"""Utility functions for sanitization, validation and time."""

import math
import re
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

import bleach

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to a naive datetime, as SQLite hands stored values back without a zone."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def sanitize_question_text(text: str) -> str:
    """Sanitize question text to prevent XSS attacks.

    Allows basic formatting tags but removes script/dangerous content.
    LaTeX delimiters pass through untouched.
    """
    allowed_tags = ["b", "i", "u", "em", "strong", "p", "br", "code", "pre", "ul", "ol", "li", "sub", "sup"]
    sanitized = bleach.clean(text, tags=allowed_tags, attributes={}, strip=True)
    return sanitized.strip()


def sanitize_plain(text: str) -> str:
    """Strip all HTML, leaving plain text."""
    return bleach.clean(text, tags=[], strip=True).strip()


def validate_email(email: str) -> Tuple[bool, str]:
    """Return ``(is_valid, error_message)`` for an email address."""
    if not email or not email.strip():
        return False, "Email address is required."
    if not EMAIL_PATTERN.match(email.strip()):
        return False, "Please enter a valid email address."
    return True, ""


def clamp_marks(value: Any, max_marks: int) -> int:
    """Coerce a grading input into an integer within ``[0, max_marks]``.

    Out-of-range values are clamped rather than rejected; anything that is
    not a number counts as 0.
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number):
        return 0
    if math.isinf(number):
        return max_marks if number > 0 else 0
    marks = int(number)
    return min(max(0, marks), max_marks)
