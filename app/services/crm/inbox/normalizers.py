"""ID, address and timestamp normalization for CRM inbox.

Webhook and sync payloads from every platform pass through these helpers
before anything is looked up or stored, so lookups by native id and
comparisons of profile fields are stable across platforms.
"""

import hashlib
from datetime import UTC, datetime

# Epoch values above this are milliseconds (LINE, Facebook, website widget).
_EPOCH_MS_THRESHOLD = 10**11


def _normalize_external_id(raw_id) -> str | None:
    """Normalize a platform-native ID, hashing if over 120 characters.

    Args:
        raw_id: The raw native ID (string or number).

    Returns:
        The normalized ID, a SHA-256 hash if too long, or None if empty.
    """
    if raw_id is None:
        return None
    candidate = str(raw_id).strip()
    if not candidate:
        return None
    if len(candidate) > 120:
        return hashlib.sha256(candidate.encode("utf-8")).hexdigest()
    return candidate


def _normalize_email_address(address: str | None) -> str | None:
    """Lowercase and strip an email address.

    Args:
        address: The email address to normalize.

    Returns:
        The lowercased, stripped email address, or None if empty.
    """
    if not address:
        return None
    candidate = address.strip().lower()
    return candidate or None


def _normalize_phone_address(value: str | None) -> str | None:
    """Extract digits only from a phone number.

    Args:
        value: The phone number string to normalize.

    Returns:
        ``+`` followed by the digits, or None if no digits found.
    """
    if not value:
        return None
    digits = "".join(ch for ch in value if ch.isdigit())
    if not digits:
        return None
    return f"+{digits}"


def _normalize_text(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_timestamp(value) -> datetime | None:
    """Parse an epoch (seconds or milliseconds) or ISO-8601 value as an aware UTC datetime.

    Args:
        value: Epoch number, numeric string, ISO string, or datetime.

    Returns:
        The UTC datetime, or None when the value is missing or unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        seconds = value / 1000 if value > _EPOCH_MS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if text.lstrip("-").isdigit():
        return _coerce_timestamp(int(text))
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
