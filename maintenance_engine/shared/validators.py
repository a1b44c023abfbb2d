"""Shared validation utilities"""

import re
from datetime import date
from typing import Optional

from ..exceptions import ValidationError
from ..models_visit import VisitPriority

TIME_OF_DAY_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def validate_time_of_day(value: Optional[str], field: str = "scheduled_time") -> Optional[str]:
    """
    Validate HH:MM (24h) format.

    Raises:
        ValidationError: If the value is not a valid time of day
    """
    if value is None:
        return None
    value = value.strip()
    if not TIME_OF_DAY_PATTERN.match(value):
        raise ValidationError(f"{field} must be HH:MM (24h), got '{value}'", field=field)
    return value


def require_text(value: Optional[str], field: str) -> str:
    """Return the stripped text or raise if it is missing/blank"""
    if value is None or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    return value.strip()


def validate_rating(rating: Optional[int]) -> Optional[int]:
    if rating is None:
        return None
    if not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("customer_rating must be between 1 and 5", field="customer_rating")
    return rating


def validate_priority(priority: Optional[str]) -> Optional[str]:
    if priority is None:
        return None
    try:
        return VisitPriority(priority).value
    except ValueError:
        allowed = ", ".join(p.value for p in VisitPriority)
        raise ValidationError(f"priority must be one of: {allowed}", field="priority")


def validate_in_window(
    value: date, start: date, end: Optional[date], field: str = "scheduled_date"
) -> date:
    """Ensure a date falls inside a contract window [start, end]"""
    if value < start or (end is not None and value > end):
        window = f"{start.isoformat()} to {end.isoformat() if end else 'open-ended'}"
        raise ValidationError(
            f"{field} {value.isoformat()} is outside the contract window ({window})", field=field
        )
    return value


def validate_window(start: date, end: Optional[date]) -> None:
    if end is not None and end <= start:
        raise ValidationError("end_date must be after start_date", field="end_date")
