"""
Chart series formatting.

Turns a bucket map into ordered chart points for one window. Presentation
only: nothing here is persisted.
"""
import calendar as month_calendar
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, List, Mapping, Optional, Tuple, Union

from sales_engine.business_time import format_date_key, parse_date_key
from sales_engine.models import ChartPoint, DateBucket, WindowKind
from sales_engine.validators import validate_selected_month, validate_window

MONTH_ABBREVIATIONS = ("Jan", "Fev", "Mar", "Abr", "Mai", "Jun",
                       "Jul", "Ago", "Set", "Out", "Nov", "Dez")

WINDOW_DAYS = {
    WindowKind.LAST_7_DAYS: 7,
    WindowKind.LAST_90_DAYS: 90,
}

ALL_TIME_START = date(1970, 1, 1)


def day_label(day: date) -> str:
    """Short axis label, e.g. "03/11"."""
    return day.strftime("%d/%m")


def full_day_label(day: date) -> str:
    """Tooltip label, e.g. "03 de nov"."""
    return f"{day.day:02d} de {MONTH_ABBREVIATIONS[day.month - 1].lower()}"


def month_label(day: date) -> str:
    """Month axis label, e.g. "Nov/2024"."""
    return f"{MONTH_ABBREVIATIONS[day.month - 1]}/{day.year}"


def window_bounds(
    window: Union[WindowKind, str],
    today: date,
    selected_month: Optional[str] = None,
    epoch: Optional[date] = None,
) -> Tuple[date, date]:
    """
    Inclusive (start, end) business dates covered by a window.

    Args:
        window: Window kind
        today: Today's business date
        selected_month: "YYYY-MM" for the month window (defaults to today's month)
        epoch: Fixed start of the 30d window

    Returns:
        (start, end); start may be after end for a future month
    """
    window = validate_window(window)

    if window in WINDOW_DAYS:
        return today - timedelta(days=WINDOW_DAYS[window] - 1), today

    if window == WindowKind.SINCE_EPOCH:
        if epoch is None:
            raise ValueError("epoch is required for the 30d window")
        return epoch, today

    if window == WindowKind.MONTH:
        year, month = validate_selected_month(selected_month) if selected_month else (today.year, today.month)
        last_day = month_calendar.monthrange(year, month)[1]
        return date(year, month, 1), min(date(year, month, last_day), today)

    return ALL_TIME_START, today


def _day_point(day: date, bucket: Optional[DateBucket]) -> ChartPoint:
    bucket = bucket or DateBucket()
    return ChartPoint(
        date_key=format_date_key(day),
        display_label=day_label(day),
        full_label=full_day_label(day),
        revenue=round(bucket.revenue, 2),
        count=bucket.count,
    )


def format_chart_series(
    buckets: Mapping[str, DateBucket],
    window: Union[WindowKind, str],
    today: date,
    selected_month: Optional[str] = None,
    epoch: Optional[date] = None,
) -> List[ChartPoint]:
    """
    Build the chart series for a window.

    The 30d window emits one point per day from the epoch to today, filling
    gaps with zeros. The all-time window groups by month. Every other window
    emits only the days that have sales.
    """
    window = validate_window(window)
    start, end = window_bounds(window, today, selected_month, epoch)
    start_key, end_key = format_date_key(start), format_date_key(end)

    in_window = {
        key: bucket for key, bucket in buckets.items()
        if start_key <= key <= end_key and not bucket.is_empty
    }

    if window == WindowKind.SINCE_EPOCH:
        points = []
        day = start
        while day <= end:
            points.append(_day_point(day, in_window.get(format_date_key(day))))
            day += timedelta(days=1)
        return points

    if window == WindowKind.ALL_TIME:
        months: Dict[date, DateBucket] = defaultdict(DateBucket)
        for key, bucket in in_window.items():
            day = parse_date_key(key)
            months[day.replace(day=1)].merge(bucket)
        return [
            ChartPoint(
                date_key=format_date_key(first_day),
                display_label=month_label(first_day),
                full_label=month_label(first_day),
                revenue=round(bucket.revenue, 2),
                count=bucket.count,
            )
            for first_day, bucket in sorted(months.items())
        ]

    return [
        _day_point(parse_date_key(key), bucket)
        for key, bucket in sorted(in_window.items())
    ]
