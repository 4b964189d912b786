"""Argument checks shared by the command handlers."""

from typing import Any, Mapping, Optional
from urllib.parse import urlparse

from .errors import ValidationError

PRIORITIES = ("P1", "P2", "P3", "P4")
FREQUENCIES = ("daily", "weekly")
IDEA_COLORS = ("yellow", "green", "blue", "purple", "orange", "red", "cyan")
MAX_IDEA_LENGTH = 280


def sanitize(value: Any) -> str:
    """Strip a string argument; anything else becomes ''."""
    if not isinstance(value, str):
        return ""
    return value.strip()


def parse_tags(value: Any) -> list[str]:
    """Accept a list of strings or a comma-separated string."""
    if isinstance(value, list) and all(isinstance(t, str) for t in value):
        items = value
    elif isinstance(value, str):
        items = value.split(",")
    else:
        return []
    return [t.strip() for t in items if t.strip()]


def _is_rating(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= 5


def is_valid_priority(value: Any) -> bool:
    return isinstance(value, str) and value in PRIORITIES


def is_valid_mood(value: Any) -> bool:
    return _is_rating(value)


def is_valid_energy(value: Any) -> bool:
    return _is_rating(value)


def is_valid_frequency(value: Any) -> bool:
    return isinstance(value, str) and value in FREQUENCIES


def is_valid_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc)


def extract_domain(url: str) -> str:
    host = urlparse(url).hostname
    if not host:
        return url
    return host.replace("www.", "", 1)


def require_string(args: Mapping[str, Any], key: str, what: str) -> str:
    """Return a non-empty stripped string argument or raise ValidationError."""
    value = sanitize(args.get(key))
    if not value:
        raise ValidationError(f"{what} is required")
    return value


def int_arg(args: Mapping[str, Any], key: str, default: Optional[int] = None) -> Optional[int]:
    """An integer argument, or ``default`` if absent or not a number."""
    value = args.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(value)
