"""Utility functions for sanitization and time handling."""

from datetime import datetime, timezone

import bleach

ALLOWED_TEXT_TAGS = ["b", "i", "u", "em", "strong", "p", "br", "code", "pre", "ul", "ol", "li"]


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every datetime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Normalise an incoming datetime to naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def sanitize_text_block(text: str) -> str:
    """Sanitize an exam text block.

    Allows basic formatting tags but removes script/dangerous content.
    """
    sanitized = bleach.clean(text, tags=ALLOWED_TEXT_TAGS, attributes={}, strip=True)
    return sanitized.strip()


def sanitize_feedback(text: str) -> str:
    """Sanitize grader feedback; strips all HTML to plain text."""
    sanitized = bleach.clean(text, tags=[], strip=True)
    return sanitized.strip()
