"""
Date handling shared by posting, accrual and import.

Spreadsheet dates arrive in many shapes. ``normalize_date`` accepts ISO
dates and the day-first family (DD-MM-YYYY, DD/MM/YYYY, DD.MM.YYYY, two-digit
years), clamps the result to the configured minimum system date, and passes
unparseable text through unchanged so callers can flag it softly.
"""

import calendar
import re
from datetime import date, datetime
from typing import Optional, Union

from .config import get_config

_ISO_PREFIX = re.compile(r'^(\d{4})-(\d{1,2})-(\d{1,2})')
_SEPARATORS = re.compile(r'[/\-.\s]+')

# Two-digit years above the pivot belong to the 1900s
TWO_DIGIT_YEAR_PIVOT = 50


def expand_year(year: int) -> int:
    if year >= 100:
        return year
    return 1900 + year if year > TWO_DIGIT_YEAR_PIVOT else 2000 + year


def _build(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(expand_year(year), month, day)
    except ValueError:
        return None


def parse_flexible_date(text: str) -> Optional[date]:
    """
    Parse a date string in any supported layout
    
    Day-first is the default for ambiguous inputs; a first part above 12
    forces day-first and a second part above 12 forces month-first.
    
    Returns:
        Parsed date, or None if the text is not a recognisable date
    """
    if not text:
        return None
    text = text.strip()
    
    iso = _ISO_PREFIX.match(text)
    if iso:
        year, month, day = (int(g) for g in iso.groups())
        return _build(year, month, day)
    
    parts = [p for p in _SEPARATORS.split(text) if p]
    if len(parts) != 3 or not all(p.isdigit() for p in parts):
        return None
    
    if len(parts[0]) == 4:
        year, month, day = (int(p) for p in parts)
        return _build(year, month, day)
    
    if len(parts[2]) not in (2, 4):
        return None
    
    first, second, year = (int(p) for p in parts)
    if second > 12 and first <= 12:
        month, day = first, second
    else:
        day, month = first, second
    return _build(year, month, day)


def clamp_date(value: date, min_date: Optional[date] = None) -> date:
    """Clamp a date to the minimum system date"""
    min_date = min_date or get_config().min_system_date
    return max(value, min_date)


def normalize_date(value: Union[str, date, None], min_date: Optional[date] = None) -> Optional[str]:
    """
    Normalize a date to ``YYYY-MM-DD``, clamped to the minimum system date
    
    Unparseable strings are returned unchanged.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return clamp_date(value, min_date).isoformat()
    
    parsed = parse_flexible_date(value)
    if parsed is None:
        return value
    return clamp_date(parsed, min_date).isoformat()


def to_date(value: Optional[str]) -> Optional[date]:
    """Read back a normalized ``YYYY-MM-DD`` string; None for anything else"""
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def add_months(value: date, months: int) -> date:
    """Add calendar months, pinning to the last day of shorter months"""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)
