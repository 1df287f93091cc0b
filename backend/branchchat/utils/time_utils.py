from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def not_before(previous: datetime | None) -> datetime:
    """Return now, clamped so it never precedes ``previous``."""

    now = utc_now()
    if previous is not None and now < previous:
        return previous
    return now
