from datetime import date
from typing import Tuple
import re

from app.core.exceptions import ValidationError

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")


def parse_period(value: str) -> Tuple[int, int]:
    """'2026-03' -> (2026, 3)"""
    match = _PERIOD_RE.match(value or "")
    if not match:
        raise ValidationError(f"Period must be formatted as yyyy-mm, got '{value}'")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValidationError(f"Month out of range in period '{value}'")
    return year, month


def format_period(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def period_of(day: date) -> Tuple[int, int]:
    return day.year, day.month


def next_period(year: int, month: int) -> Tuple[int, int]:
    return (year + 1, 1) if month == 12 else (year, month + 1)


def previous_period(year: int, month: int) -> Tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)
