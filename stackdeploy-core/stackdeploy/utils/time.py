import threading
import time
from datetime import datetime, timezone
from typing import Optional


class Clock:
    """
    Source of time for all polling loops. ``now`` returns a monotonic timestamp in seconds, ``sleep`` blocks
    for the given duration, but returns early if the given ``cancel_event`` is set.
    """

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float, cancel_event: Optional[threading.Event] = None) -> None:
        if seconds <= 0:
            return
        if cancel_event is not None:
            cancel_event.wait(seconds)
        else:
            time.sleep(seconds)


def timestamp_to_utc(value: datetime) -> datetime:
    """Returns the given datetime as timezone-aware UTC datetime (naive datetimes are interpreted as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
