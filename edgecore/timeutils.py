"""
Time helpers

Every timestamp the engines store or compare is timezone-aware UTC.
"""

from datetime import datetime, timezone
from typing import Optional


def ensure_utc(when: Optional[datetime] = None) -> datetime:
    """
    Normalize a timestamp to aware UTC.

    None means now. Naive datetimes are taken to be UTC already; aware
    datetimes are converted.
    """
    if when is None:
        return datetime.now(timezone.utc)
    if when.tzinfo is None:
        return when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc)
