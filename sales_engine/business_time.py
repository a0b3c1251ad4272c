"""
Business-timezone calendar.

Every revenue bucket is keyed by the calendar date in one fixed timezone
(America/Sao_Paulo by default), regardless of where the server runs.
Conversion goes through the tz database (zoneinfo), so DST rules are
honored if the region ever reintroduces them.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from sales_engine.config import config

DATE_KEY_FORMAT = "%Y-%m-%d"

Timestamp = Union[datetime, str]


def format_date_key(day: date) -> str:
    """Format a date as a YYYY-MM-DD bucket key."""
    return day.strftime(DATE_KEY_FORMAT)


def parse_date_key(key: str) -> date:
    """Parse a YYYY-MM-DD bucket key. Raises ValueError on bad input."""
    if not isinstance(key, str) or len(key) != 10:
        raise ValueError(f"Invalid date key: {key!r}")
    return datetime.strptime(key, DATE_KEY_FORMAT).date()


def is_date_key(key: str) -> bool:
    """Check whether a string is a valid YYYY-MM-DD key."""
    try:
        parse_date_key(key)
    except (ValueError, TypeError):
        return False
    return True


def parse_timestamp(value: Timestamp) -> datetime:
    """
    Parse a timestamp into an aware datetime.

    Accepts datetimes and ISO-8601 strings (with "Z" or an offset).
    Naive values are interpreted as UTC, matching how the store returns
    `timestamp without time zone` columns.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class BusinessDay:
    """A calendar day in the business timezone."""
    year: int
    month: int
    day: int

    @property
    def as_date(self) -> date:
        return date(self.year, self.month, self.day)

    @property
    def date_key(self) -> str:
        return format_date_key(self.as_date)

    @classmethod
    def from_date(cls, value: date) -> "BusinessDay":
        return cls(value.year, value.month, value.day)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BusinessCalendar:
    """
    Converts timestamps to bucket keys in the business timezone.

    Usage:
        calendar = BusinessCalendar()
        calendar.to_bucket_key("2024-11-04T02:30:00Z")  # "2024-11-03"
        calendar.today().date_key
    """

    def __init__(
        self,
        timezone_name: str = None,
        clock: Optional[Callable[[], datetime]] = None,
        epoch_month: int = None,
        epoch_day: int = None,
    ):
        """
        Args:
            timezone_name: IANA timezone name (defaults to config)
            clock: Returns the current aware datetime; injectable for tests
            epoch_month: Month of the fixed "30d" window start
            epoch_day: Day of the fixed "30d" window start
        """
        self.timezone_name = timezone_name or config.calendar.business_timezone
        self.tz = ZoneInfo(self.timezone_name)
        self._clock = clock or _utc_now
        self.epoch_month = epoch_month or config.calendar.chart_epoch_month
        self.epoch_day = epoch_day or config.calendar.chart_epoch_day

    def now(self) -> datetime:
        """Current instant in the business timezone."""
        current = self._clock()
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        return current.astimezone(self.tz)

    def today(self) -> BusinessDay:
        """Today's date in the business timezone."""
        return BusinessDay.from_date(self.now().date())

    def to_business_date(self, timestamp: Timestamp) -> date:
        """Calendar date of a timestamp in the business timezone."""
        return parse_timestamp(timestamp).astimezone(self.tz).date()

    def to_bucket_key(self, timestamp: Timestamp) -> str:
        """Bucket key (YYYY-MM-DD) of a timestamp in the business timezone."""
        return format_date_key(self.to_business_date(timestamp))

    def start_of_day(self, day: date) -> datetime:
        """First instant of a business day, in UTC."""
        return datetime.combine(day, time.min, tzinfo=self.tz).astimezone(timezone.utc)

    def day_bounds(self, day: date) -> Tuple[datetime, datetime]:
        """UTC instants [start, end) covering one business day."""
        return self.start_of_day(day), self.start_of_day(day + timedelta(days=1))

    def range_bounds(self, start: Optional[date], end: date) -> Tuple[Optional[datetime], datetime]:
        """
        UTC instants [start, end) covering business days start..end inclusive.

        A start of None means "from the beginning".
        """
        lower = self.start_of_day(start) if start else None
        return lower, self.start_of_day(end + timedelta(days=1))

    def chart_epoch(self, today: Optional[date] = None) -> date:
        """
        Fixed start of the "30d" window: the most recent Nov 3 on or before today.
        """
        today = today or self.today().as_date
        year = today.year
        if (today.month, today.day) < (self.epoch_month, self.epoch_day):
            year -= 1
        return date(year, self.epoch_month, self.epoch_day)
