# storefront/utils/dates.py
from __future__ import annotations
from datetime import datetime, timezone


def utcnow() -> datetime:
    # naive UTC, the way timestamps are stored
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso8601(s: str | None):
    if not s:
        return None
    if not isinstance(s, str):
        return None
    s = s.strip()
    # support trailing 'Z' (UTC)
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)  # store naive UTC
    return dt


def iso(dt: datetime | None):
    return dt.isoformat() if dt else None
