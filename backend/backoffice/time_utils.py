# Overview: UTC timestamp helpers shared by models and services.

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time in UTC, tz-naive like every stored timestamp."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_datetime(value) -> datetime:
    """
    Canonical UTC-naive time for a ledger row's occurred_at.

    None means now. Aware datetimes are converted to UTC. Strings are ISO-8601,
    with a trailing Z or an offset allowed; a naive string is read as UTC.
    Anything else, or a blank or unparseable string, raises ValueError.
    """
    if value is None:
        return utcnow()

    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("invalid datetime")
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)

    if not isinstance(value, datetime):
        raise ValueError("invalid datetime")

    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 to the second with a trailing Z; naive values are UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
