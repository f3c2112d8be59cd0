"""Shared validation utilities"""

from datetime import date, time
from typing import Optional


def format_time_of_day(value: Optional[time], with_seconds: bool = True) -> Optional[str]:
    """Format a time as "HH:MM:SS" (or "HH:MM")"""
    if value is None:
        return None
    return value.strftime("%H:%M:%S" if with_seconds else "%H:%M")


def day_of_week(value: date) -> int:
    """Day of week with Sunday as 0 and Saturday as 6"""
    return (value.weekday() + 1) % 7


def validate_day_of_week(value: int) -> int:
    """
    Validate a recurring slot's weekday.

    Raises:
        ValueError: If the value is not 0 (Sunday) through 6 (Saturday)
    """
    if not 0 <= value <= 6:
        raise ValueError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
    return value


def validate_positive_minutes(value: int, field: str = "minutes") -> int:
    if value is None or value <= 0:
        raise ValueError(f"{field} must be greater than 0")
    return value
