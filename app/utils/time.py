"""Time utilities - naive UTC timestamps as stored in the database."""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current UTC time without tzinfo (DateTime columns are stored naive)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def not_before(*previous: Optional[datetime]) -> datetime:
    """
    Current UTC time, clamped so it never precedes any of the given timestamps.

    Keeps lifecycle timestamps non-decreasing even if the wall clock steps back.
    """
    now = utc_now()
    for ts in previous:
        if ts is not None and ts > now:
            now = ts
    return now
