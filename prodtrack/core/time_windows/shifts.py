"""
Shift Classification

Maps timestamps to the factory's three shifts and to the production day they
belong to. The production day starts at 05:32, so anything before that clock
time is booked on the previous calendar date.

Shift schedule (local time):
- Morning:   05:32 - 13:50
- Afternoon: 13:50 - 22:08
- Night:     22:08 - 05:32 (next day)
"""

from datetime import date, datetime, time, timedelta
from typing import Optional

import pytz

from ...config import Config
from ..models import Shift
from .models import TimeSegment


MORNING_START = time(5, 32)
AFTERNOON_START = time(13, 50)
NIGHT_START = time(22, 8)

# Planned minutes per shift used as the availability denominator.
# Night is booked 22:08 -> 05:30 on the plant schedule.
SCHEDULED_SHIFT_MINUTES = {
    Shift.MORNING: 498,
    Shift.AFTERNOON: 498,
    Shift.NIGHT: 442,
}

# Fixed shift length used for hourly averages and lost-hours estimates
NOMINAL_SHIFT_HOURS = 8


def to_local(timestamp: datetime) -> datetime:
    """
    Express a timestamp in the deployment's local timezone.

    Timezone-aware values are converted to Config.TIMEZONE; naive values
    are assumed to already be local wall-clock time.

    Raises:
        TypeError: If timestamp is not a datetime
    """
    if not isinstance(timestamp, datetime):
        raise TypeError(
            f"Expected a datetime, got {type(timestamp).__name__}"
        )
    if timestamp.tzinfo is None:
        return timestamp
    return timestamp.astimezone(Config.timezone())


def to_local_naive(timestamp: datetime) -> datetime:
    """Local wall-clock time without tzinfo, comparable across aware and naive callers"""
    return to_local(timestamp).replace(tzinfo=None)


def classify_shift(timestamp: datetime) -> Shift:
    """
    Determine the shift a timestamp falls into.

    Args:
        timestamp: Any datetime (aware or local naive)

    Returns:
        Shift.MORNING, Shift.AFTERNOON or Shift.NIGHT

    Examples:
        >>> classify_shift(datetime(2024, 3, 10, 5, 32))
        <Shift.MORNING: 'Morning'>
        >>> classify_shift(datetime(2024, 3, 10, 22, 8))
        <Shift.NIGHT: 'Night'>
    """
    clock = to_local(timestamp).time()

    if MORNING_START <= clock < AFTERNOON_START:
        return Shift.MORNING
    if AFTERNOON_START <= clock < NIGHT_START:
        return Shift.AFTERNOON
    # Wraps past midnight
    return Shift.NIGHT


def production_day_of(timestamp: datetime) -> date:
    """
    Get the production day a timestamp is booked on.

    Examples:
        >>> production_day_of(datetime(2024, 3, 10, 5, 0))
        datetime.date(2024, 3, 9)
        >>> production_day_of(datetime(2024, 3, 10, 5, 32))
        datetime.date(2024, 3, 10)
    """
    local = to_local(timestamp)
    if local.time() < MORNING_START:
        return local.date() - timedelta(days=1)
    return local.date()


def is_same_production_day(first: datetime, second: datetime) -> bool:
    """Check whether two timestamps belong to the same production day"""
    return production_day_of(first) == production_day_of(second)


def is_same_shift(first: datetime, second: datetime) -> bool:
    """Check whether two timestamps fall in the same shift of the same production day"""
    return (
        is_same_production_day(first, second)
        and classify_shift(first) == classify_shift(second)
    )


def scheduled_shift_minutes(now: datetime) -> int:
    """Planned minutes of the shift running at `now`"""
    return SCHEDULED_SHIFT_MINUTES[classify_shift(now)]


def shift_segment(
    production_day: date,
    shift: Shift,
    timezone: Optional[str] = None
) -> TimeSegment:
    """
    Build the concrete time window of a shift on a production day.

    Args:
        production_day: The production day (date the day's Morning shift starts)
        shift: Shift to build the window for
        timezone: Optional timezone name; when given the segment is
                  timezone-aware, otherwise naive local time

    Returns:
        TimeSegment covering [shift start, next shift start)
    """
    shift = Shift.parse(shift)
    next_day = production_day + timedelta(days=1)

    if shift is Shift.MORNING:
        start = datetime.combine(production_day, MORNING_START)
        end = datetime.combine(production_day, AFTERNOON_START)
    elif shift is Shift.AFTERNOON:
        start = datetime.combine(production_day, AFTERNOON_START)
        end = datetime.combine(production_day, NIGHT_START)
    else:
        start = datetime.combine(production_day, NIGHT_START)
        end = datetime.combine(next_day, MORNING_START)

    if timezone:
        tz = pytz.timezone(timezone)
        start = tz.localize(start)
        end = tz.localize(end)

    return TimeSegment(
        start=start,
        end=end,
        description=f"{shift.value} shift {production_day.isoformat()}",
        shift=shift,
        production_day=production_day,
    )


def current_shift_segment(now: datetime) -> TimeSegment:
    """
    Get the window of the shift running at `now`.

    The segment is timezone-aware (Config.TIMEZONE) when `now` is aware,
    naive otherwise, so it can be compared directly with `now`.
    """
    timezone = Config.TIMEZONE if now.tzinfo is not None else None
    return shift_segment(production_day_of(now), classify_shift(now), timezone)