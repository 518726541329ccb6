# Requires Python 3.12+
# Uses native type hints: list[x], tuple[x, y], X | None (PEP 585, PEP 604)
from __future__ import annotations

import re
import datetime as dt

import numpy as np

from .errors import ValidationError

__version__ = "0.3.1"

DateLike = str | dt.date | dt.datetime | np.datetime64

_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


# =============================================================================
# Date normalization (single contract used by every module)
# =============================================================================

def normalize_date(value: object) -> dt.date:
    """
    Normalize a date-like value to a calendar date.

    Accepted inputs:
        - ISO strings ("2024-03-15", "2024-03-15T00:00:00")
        - datetime.date / datetime.datetime (time part is dropped)
        - numpy.datetime64 (any unit, NaT rejected)

    Everything else, including None and empty strings, is rejected.

    Args:
        value: Date-like input

    Returns:
        datetime.date

    Raises:
        ValidationError: If the value is missing or cannot be parsed
    """
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if isinstance(value, np.datetime64):
        if np.isnat(value):
            raise ValidationError("date is NaT")
        return value.astype("datetime64[D]").item()
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValidationError("date string is empty")
        try:
            return dt.date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return dt.datetime.fromisoformat(text).date()
        except ValueError as e:
            raise ValidationError(f"unparseable date string: {value!r}") from e
    raise ValidationError(
        f"unsupported date input of type {type(value).__name__}: {value!r}"
    )


def is_missing_date(value: object) -> bool:
    """True for None and blank strings (absent, as opposed to malformed)."""
    return value is None or (isinstance(value, str) and not value.strip())


def optional_date(value: object) -> dt.date | None:
    """normalize_date, but None/blank input returns None instead of raising."""
    if is_missing_date(value):
        return None
    return normalize_date(value)


def us_to_iso(value: object) -> object:
    """
    Convert a "MM/DD/YYYY" string to "YYYY-MM-DD"; other values pass through.

    Used at the loader boundary only. The engine itself accepts ISO input.
    """
    if not isinstance(value, str):
        return value
    m = _US_DATE.match(value.strip())
    if not m:
        return value
    mm, dd, yyyy = m.groups()
    return f"{yyyy}-{int(mm):02d}-{int(dd):02d}"


# =============================================================================
# Month arithmetic
# =============================================================================

def month_start(value: object) -> dt.date:
    """First day of the month containing value."""
    d = normalize_date(value)
    return d.replace(day=1)


def add_months(value: object, n: int) -> dt.date:
    """First day of the month n months after value's month (n may be negative)."""
    d = normalize_date(value)
    total = d.year * 12 + (d.month - 1) + n
    return dt.date(total // 12, total % 12 + 1, 1)


def month_key(value: object) -> str:
    """Calendar-month key "YYYY-MM"."""
    d = normalize_date(value)
    return f"{d.year:04d}-{d.month:02d}"


def months_between(start: object, end: object) -> int:
    """Whole calendar months from start's month to end's month (can be negative)."""
    a = normalize_date(start)
    b = normalize_date(end)
    return (b.year - a.year) * 12 + (b.month - a.month)
