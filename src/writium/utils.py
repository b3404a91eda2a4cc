"""Utility helpers for identifier validation and text clean-up."""

from __future__ import annotations

import re
import unicodedata

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    flags=re.IGNORECASE,
)
SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


def is_uuid(value: object) -> bool:
    """Check if the value is a canonical textual UUID."""
    return isinstance(value, str) and UUID_PATTERN.match(value.strip()) is not None


def clean_uuid(value: object) -> str | None:
    """Return the trimmed UUID, or ``None`` when the value is not one."""
    if not is_uuid(value):
        return None
    return str(value).strip()


def slugify(value: str, max_length: int = 80) -> str:
    """Create a filesystem-safe slug."""
    value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode()
    value = value.lower()
    value = SLUG_PATTERN.sub("-", value).strip("-")
    if not value:
        value = "document"
    return value[:max_length]
