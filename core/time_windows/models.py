"""
Time Window Models

Windows used by the floor engine:
- Monitoring window bounding which open batches are considered
- Production day (local calendar day) for daily log lookups and due dates
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
import pytz


@dataclass(frozen=True)
class TimeSegment:
    """
    Represents a single time range for analysis.

    Both ends are timezone-aware; the engine keeps them in UTC.
    """
    start: datetime
    end: datetime
    description: str = ""

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
        return self.start <= timestamp <= self.end

    def __repr__(self) -> str:
        desc = f" ({self.description})" if self.description else ""
        return (
            f"TimeSegment({self.start.strftime('%Y-%m-%d %H:%M')} → "
            f"{self.end.strftime('%Y-%m-%d %H:%M')}{desc})"
        )


def ensure_utc(timestamp: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC"""
    if timestamp.tzinfo is None:
        return pytz.UTC.localize(timestamp)
    return timestamp.astimezone(pytz.UTC)


def trailing_window(now: datetime, days: int = 90) -> TimeSegment:
    """
    Monitoring window ending at `now`.

    Args:
        now: Wall-clock time of the refresh cycle
        days: Look-back length in days

    Returns:
        TimeSegment from now - days to now (UTC)
    """
    end = ensure_utc(now)
    return TimeSegment(end - timedelta(days=days), end, f"last {days} days")


def local_date(now: datetime, timezone: str = "Asia/Kolkata") -> date:
    """Calendar date of `now` in the plant timezone"""
    tz = pytz.timezone(timezone)
    return ensure_utc(now).astimezone(tz).date()


def production_day(now: datetime, timezone: str = "Asia/Kolkata") -> TimeSegment:
    """
    Local calendar day containing `now`, expressed in UTC.

    Args:
        now: Wall-clock time of the refresh cycle
        timezone: Plant timezone name

    Returns:
        TimeSegment covering local midnight to the next local midnight
    """
    tz = pytz.timezone(timezone)
    day = local_date(now, timezone)
    start = tz.localize(datetime(day.year, day.month, day.day, 0, 0, 0))
    next_day = day + timedelta(days=1)
    end = tz.localize(datetime(next_day.year, next_day.month, next_day.day, 0, 0, 0))
    return TimeSegment(
        start.astimezone(pytz.UTC),
        end.astimezone(pytz.UTC),
        f"production day {day.isoformat()}"
    )
