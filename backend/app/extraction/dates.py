"""
Date recognition for deadline extraction.

Recognised forms (first match wins):
    2025-03-31, 2025/03/31          (year first)
    31/03/2025, 31-03-2025          (day first)
    31 March 2025, 31st March 2025
    March 31, 2025
An optional HH:MM following the date is kept as `time`.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any

_MONTHS = {
    name: index
    for index, name in enumerate(
        [
            "january", "february", "march", "april", "may", "june",
            "july", "august", "september", "october", "november", "december",
        ],
        start=1,
    )
}
_MONTH_RE = "(" + "|".join(_MONTHS) + ")"

_YEAR_FIRST = re.compile(r"\b(\d{4})[/\-](\d{1,2})[/\-](\d{1,2})\b")
_DAY_FIRST = re.compile(r"\b(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})\b")
_DAY_MONTH_NAME = re.compile(rf"\b(\d{{1,2}})(?:st|nd|rd|th)?\s+{_MONTH_RE}\s+(\d{{4}})\b", re.IGNORECASE)
_MONTH_NAME_DAY = re.compile(rf"\b{_MONTH_RE}\s+(\d{{1,2}})(?:st|nd|rd|th)?,?\s+(\d{{4}})\b", re.IGNORECASE)
_TIME = re.compile(r"\b([01]?\d|2[0-3]):([0-5]\d)\b")


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def find_date(text: str) -> tuple[date, re.Match] | None:
    """Return the first recognisable calendar date in `text` and its match."""
    match = _YEAR_FIRST.search(text)
    if match:
        parsed = _safe_date(int(match[1]), int(match[2]), int(match[3]))
        if parsed:
            return parsed, match

    match = _DAY_FIRST.search(text)
    if match:
        parsed = _safe_date(int(match[3]), int(match[2]), int(match[1]))
        if parsed:
            return parsed, match

    match = _DAY_MONTH_NAME.search(text)
    if match:
        parsed = _safe_date(int(match[3]), _MONTHS[match[2].lower()], int(match[1]))
        if parsed:
            return parsed, match

    match = _MONTH_NAME_DAY.search(text)
    if match:
        parsed = _safe_date(int(match[3]), _MONTHS[match[1].lower()], int(match[2]))
        if parsed:
            return parsed, match

    return None


def extract_date(text: str) -> dict[str, Any] | None:
    """
    Parse a deadline phrase into {"date", "time", "text"}.

    Returns None when no calendar date is present, so callers can
    drop the candidate.
    """
    found = find_date(text)
    if found is None:
        return None
    parsed, match = found
    time_match = _TIME.search(text, match.end())
    return {
        "date": parsed.isoformat(),
        "time": f"{int(time_match[1]):02d}:{time_match[2]}" if time_match else None,
        "text": text.strip(),
    }


def deadline_date(value: Any) -> date | None:
    """Read the calendar date back out of a stored deadline value."""
    raw = value.get("date") if isinstance(value, dict) else value
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str):
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None
