"""
Time Window Models

Concrete time ranges for shifts and production days. A production day runs
from 05:32 to 05:31:59.999 of the next calendar day; its three shifts are
contiguous segments inside it.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from ..models import Shift


@dataclass(frozen=True)
class TimeSegment:
    """
    A half-open time range [start, end).

    Shift windows share boundaries, so the end instant belongs to the
    next segment.
    """
    start: datetime
    end: datetime
    description: str = ""
    shift: Optional[Shift] = None
    production_day: Optional[date] = None

    def __post_init__(self):
        """Validate time segment"""
        if self.end <= self.start:
            raise ValueError(
                f"End time ({self.end}) must be after start time ({self.start})"
            )

    @property
    def duration_minutes(self) -> float:
        """Calculate segment duration in minutes"""
        return (self.end - self.start).total_seconds() / 60.0

    @property
    def duration_hours(self) -> float:
        """Calculate segment duration in hours"""
        return self.duration_minutes / 60.0

    def contains(self, timestamp: datetime) -> bool:
        """Check if timestamp falls within this segment"""
        return self.start <= timestamp < self.end

    def elapsed_minutes(self, now: datetime) -> float:
        """Minutes of the segment that have passed at `now` (0 before start)"""
        if now <= self.start:
            return 0.0
        return (min(now, self.end) - self.start).total_seconds() / 60.0

    def __repr__(self) -> str:
        desc = f" ({self.description})" if self.description else ""
        return (
            f"TimeSegment({self.start.strftime('%Y-%m-%d %H:%M')} → "
            f"{self.end.strftime('%Y-%m-%d %H:%M')}{desc})"
        )
