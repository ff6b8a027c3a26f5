# Overview: UTC helpers; the database stores naive UTC, the API speaks ISO-8601 with 'Z'.

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC 'now', the form every DateTime column is written in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(dt: datetime) -> datetime:
    """Aware datetimes are converted to UTC; naive ones are taken as UTC already."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a client-supplied timestamp (e.g. an order's expected_delivery).

    None and "" mean "not given". A trailing 'Z' or an explicit offset is
    honoured; a value without one is read as UTC. Anything that is not an
    ISO-8601 string raises ValueError.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("datetime must be an ISO-8601 string")
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_naive_utc(datetime.fromisoformat(text))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Second-precision ISO-8601 with a trailing 'Z' for JSON payloads and audit values."""
    if dt is None:
        return None
    return as_naive_utc(dt).replace(microsecond=0).isoformat() + "Z"
