"""
Input validation functions for API parameters.

All validators raise ValidationError on invalid input.
"""

import re
from datetime import date, datetime
from typing import Optional, Tuple, Union

from sales_engine.exceptions import ValidationError
from sales_engine.models import WindowKind

SELECTED_MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")

# Export ranges are bounded by the record cap, not by days; this only
# rejects obviously wrong input
MAX_EXPORT_DAYS = 3660


def validate_window(value: Union[WindowKind, str, None], field: str = "window") -> WindowKind:
    """
    Validate a chart window identifier.

    Args:
        value: "7d", "30d", "90d", "month" or "all" (or a WindowKind)
        field: Field name for error messages

    Returns:
        The WindowKind member

    Raises:
        ValidationError: If the window is unknown
    """
    if isinstance(value, WindowKind):
        return value
    if not value:
        raise ValidationError(field, "Window is required")
    try:
        return WindowKind(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            field,
            f"Must be one of {WindowKind.values()}",
            value
        )


def validate_selected_month(value: Optional[str], field: str = "month") -> Tuple[int, int]:
    """
    Validate a "YYYY-MM" month selector.

    Returns:
        (year, month)

    Raises:
        ValidationError: If the value is malformed or the month is out of range
    """
    if not value or not isinstance(value, str):
        raise ValidationError(field, "Month is required", value)

    match = SELECTED_MONTH_PATTERN.match(value.strip())
    if not match:
        raise ValidationError(field, "Invalid month format. Expected YYYY-MM", value)

    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValidationError(field, "Month must be between 01 and 12", value)
    if year < 1970:
        raise ValidationError(field, "Year must be 1970 or later", value)
    return year, month


def validate_date_string(
    value: str,
    field: str = "date",
    format: str = "%Y-%m-%d"
) -> date:
    """
    Validate and parse a date string.

    Raises:
        ValidationError: If date is invalid or in wrong format
    """
    if not value:
        raise ValidationError(field, "Date is required", value)

    if not isinstance(value, str):
        raise ValidationError(field, "Must be a string", value)

    try:
        return datetime.strptime(value, format).date()
    except ValueError:
        raise ValidationError(
            field,
            f"Invalid date format. Expected {format}",
            value
        )


def validate_date_range(
    start_date: Optional[str],
    end_date: Optional[str],
    max_days: int = MAX_EXPORT_DAYS
) -> Tuple[Optional[date], Optional[date]]:
    """
    Validate an optional date range.

    Either bound may be omitted. When both are given, start must not be
    after end and the span must not exceed max_days.

    Returns:
        Tuple of (start, end) as date objects or None
    """
    start = validate_date_string(start_date, "start_date") if start_date else None
    end = validate_date_string(end_date, "end_date") if end_date else None

    if start and end:
        if start > end:
            raise ValidationError(
                "date_range",
                "Start date must be before or equal to end date",
                f"{start_date} to {end_date}"
            )

        days_diff = (end - start).days
        if days_diff > max_days:
            raise ValidationError(
                "date_range",
                f"Date range cannot exceed {max_days} days",
                f"{days_diff} days"
            )

    return start, end
