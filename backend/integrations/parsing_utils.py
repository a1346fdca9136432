"""Shared parsing helpers for provider responses and webhook payloads.

Provider SDKs return a mix of plain dicts and generated model objects, and
webhook payloads vary between snake_case and camelCase keys.  These helpers
confine that looseness to one place.
"""

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation


def get_field(obj, *names, default=None):
    """Return the first present, non-None value among ``names``.

    Works on dicts, dict-like SDK objects (``.get``), and attribute objects.
    """
    if obj is None:
        return default
    for name in names:
        if isinstance(obj, dict) or hasattr(obj, "get"):
            try:
                value = obj.get(name)
            except (TypeError, AttributeError):
                value = getattr(obj, name, None)
        else:
            value = getattr(obj, name, None)
        if value is not None:
            return value
    return default


def unwrap_body(response):
    """Strip the SDK's response envelope, if any."""
    if isinstance(response, (dict, list)):
        return response
    body = getattr(response, "body", None)
    return response if body is None else body


def parse_timestamp(value) -> datetime | None:
    """Parse an ISO 8601 string, Unix epoch number, or date to an aware UTC datetime.

    Handles ``Z`` suffixes, ``+0000`` offsets without a colon, date-only
    strings, and epoch seconds or milliseconds.  Returns ``None`` for
    anything unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _from_epoch(value)

    text = str(value).strip()
    if text.isdigit():
        return _from_epoch(int(text))
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    if len(text) >= 5 and text[-5] in "+-" and text[-4:].isdigit():
        text = text[:-2] + ":" + text[-2:]

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _from_epoch(value: float) -> datetime | None:
    # Values this large are milliseconds
    if value > 10**11:
        value = value / 1000
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def to_decimal(value) -> Decimal | None:
    """Convert a numeric-ish value to Decimal, or ``None``."""
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
