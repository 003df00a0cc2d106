import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import Union


class TimeScale(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


@dataclass(frozen=True)
class TimeRange:
    """A calendar window with inclusive bounds and a short display label."""

    start: datetime
    end: datetime
    scale: TimeScale
    label: str


def _start_of(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def _end_of(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.max, tzinfo=tz)


def _week_range(day: date, tz: tzinfo) -> TimeRange:
    # Weeks run Sunday through Saturday and are labelled by their Friday
    days_from_sunday = (day.weekday() + 1) % 7
    saturday = day + timedelta(days=6 - days_from_sunday)
    sunday = saturday - timedelta(days=6)
    friday = saturday - timedelta(days=1)
    return TimeRange(
        start=_start_of(sunday, tz),
        end=_end_of(saturday, tz),
        scale=TimeScale.WEEK,
        label=f"End {friday.month}/{friday.day}",
    )


def calculate_time_range(
    day: Union[date, datetime],
    scale: Union[TimeScale, str],
    tz: tzinfo = timezone.utc,
) -> TimeRange:
    """
    Calendar window containing ``day`` at the given scale.

    Args:
        day: Any date or datetime inside the wanted window. An aware datetime's
            own timezone takes precedence over ``tz``.
        scale: ``day``, ``week``, ``month`` or ``year``.
        tz: Timezone for the bounds, so they compare with episode timestamps.

    Returns:
        A TimeRange from 00:00 of the first day to the last microsecond of the
        last day, with labels like ``Mon 9/1``, ``End 9/5``, ``Sep '25``, ``2025``.

    Raises:
        ValueError: If the scale is unknown.
    """
    try:
        scale = TimeScale(scale)
    except ValueError:
        raise ValueError(f"Unknown time scale: {scale!r}") from None

    if isinstance(day, datetime):
        if day.tzinfo is not None:
            tz = day.tzinfo
        day = day.date()

    if scale is TimeScale.DAY:
        return TimeRange(
            start=_start_of(day, tz),
            end=_end_of(day, tz),
            scale=scale,
            label=f"{day:%a} {day.month}/{day.day}",
        )

    if scale is TimeScale.WEEK:
        return _week_range(day, tz)

    if scale is TimeScale.MONTH:
        last_day = calendar.monthrange(day.year, day.month)[1]
        return TimeRange(
            start=_start_of(day.replace(day=1), tz),
            end=_end_of(day.replace(day=last_day), tz),
            scale=scale,
            label=f"{day:%b} '{day:%y}",
        )

    return TimeRange(
        start=_start_of(date(day.year, 1, 1), tz),
        end=_end_of(date(day.year, 12, 31), tz),
        scale=scale,
        label=str(day.year),
    )
