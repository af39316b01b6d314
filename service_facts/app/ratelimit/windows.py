"""
Fixed-window granularities for quota counting.
"""

from datetime import datetime, timezone
from typing import Tuple


class FixedWindow:
    """Windows of a constant length aligned to the epoch."""

    def __init__(self, duration: int, name: str = "rate"):
        if duration <= 0:
            raise ValueError("Window duration must be positive")
        self.duration = duration
        self.name = name

    def bounds(self, now: float) -> Tuple[float, float]:
        """Get the (start, end) of the window containing ``now``."""
        start = float(int(now // self.duration) * self.duration)
        return start, start + self.duration

    def __repr__(self) -> str:
        return f"FixedWindow(duration={self.duration}, name={self.name!r})"


class CalendarMonthWindow:
    """Windows that reset at 00:00 UTC on the 1st of each month."""

    def __init__(self, name: str = "monthly"):
        self.name = name

    def bounds(self, now: float) -> Tuple[float, float]:
        """Get the (start, end) of the calendar month containing ``now``."""
        moment = datetime.fromtimestamp(now, tz=timezone.utc)
        start = moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1)
        else:
            end = start.replace(month=start.month + 1)
        return start.timestamp(), end.timestamp()

    def __repr__(self) -> str:
        return f"CalendarMonthWindow(name={self.name!r})"
