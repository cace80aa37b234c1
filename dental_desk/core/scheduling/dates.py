"""
Date/time preference parsing.

Turns caller phrases like "next Tuesday 2pm" or "tomorrow morning" into a
structured preference, and decides whether a candidate start time honours
that preference (same date, start within an hour of the requested time).
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from dateutil import parser as dtparser

from dental_desk.config import settings

logger = logging.getLogger(__name__)

TIME_TOLERANCE = timedelta(minutes=60)

WEEKDAYS = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

PART_OF_DAY = {
    "morning": time(10, 0),
    "noon": time(12, 0),
    "midday": time(12, 0),
    "afternoon": time(14, 0),
    "evening": time(17, 0),
}

_MONTH = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|"
    r"aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)

_ISO_DATE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_NUMERIC_DATE = re.compile(r"\b(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?\b")
_MONTH_DAY = re.compile(rf"\b{_MONTH}\.?\s+\d{{1,2}}(?:st|nd|rd|th)?\b")
_DAY_MONTH = re.compile(rf"\b\d{{1,2}}(?:st|nd|rd|th)?\s+(?:of\s+)?{_MONTH}\b")
_WEEKDAY = re.compile(
    r"\b(?:(next|this)\s+)?(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b"
)

_CLOCK = re.compile(r"\b(\d{1,2}):(\d{2})\s*(am|pm|a\.m\.|p\.m\.)?")
_HOUR_MERIDIEM = re.compile(r"\b(\d{1,2})\s*(am|pm|a\.m\.|p\.m\.)")
_HOUR_OCLOCK = re.compile(r"\b(\d{1,2})\s*o'?clock\b")
_AT_HOUR = re.compile(r"\bat\s+(\d{1,2})\b(?![:/\d])")


@dataclass(frozen=True)
class DateTimePreference:
    """A caller's requested date and/or time. Missing parts are wildcards."""

    date: Optional[date] = None
    time: Optional[time] = None

    @property
    def is_empty(self) -> bool:
        return self.date is None and self.time is None

    def describe(self) -> str:
        parts = []
        if self.date:
            parts.append(self.date.strftime("%A, %B %d").replace(" 0", " "))
        if self.time:
            parts.append(format_time(self.time))
        return " at ".join(parts) or "any time"


def clinic_now() -> datetime:
    """Current time in the clinic timezone."""
    return datetime.now(settings.tz)


def to_clinic_time(value: datetime) -> datetime:
    """Attach or convert to the clinic timezone."""
    if value.tzinfo is None:
        return value.replace(tzinfo=settings.tz)
    return value.astimezone(settings.tz)


def format_time(value: time) -> str:
    return value.strftime("%I:%M %p").lstrip("0")


def format_when(value: datetime) -> str:
    """Human form used in replies, e.g. "Tuesday, October 20 at 2:00 PM"."""
    local = to_clinic_time(value)
    day = local.strftime("%A, %B %d").replace(" 0", " ")
    return f"{day} at {format_time(local.time())}"


def parse(text: Optional[str], reference: datetime) -> DateTimePreference:
    """
    Parse a free-text date/time preference.

    Args:
        text: Caller phrase, e.g. "next tuesday at 2pm"
        reference: Current time in the clinic timezone

    Returns:
        DateTimePreference with whatever parts could be recognised
    """
    if not text:
        return DateTimePreference()

    lowered = text.lower().strip()
    preference = DateTimePreference(
        date=_parse_date(lowered, reference.date()),
        time=_parse_time(lowered),
    )
    logger.debug(f"Parsed preference {text!r} -> {preference}")
    return preference


def matches(candidate: datetime, preference: DateTimePreference) -> bool:
    """Check whether a candidate start time satisfies a preference.

    The date must match exactly when given. The time matches when the
    candidate starts within an hour either side of the requested time.
    """
    local = to_clinic_time(candidate)

    if preference.date is not None and local.date() != preference.date:
        return False

    if preference.time is not None:
        target = datetime.combine(local.date(), preference.time, tzinfo=local.tzinfo)
        return abs(local - target) <= TIME_TOLERANCE

    return True


def _parse_date(text: str, today: date) -> Optional[date]:
    if re.search(r"\bday after tomorrow\b", text):
        return today + timedelta(days=2)
    if re.search(r"\btomorrow\b", text):
        return today + timedelta(days=1)
    if re.search(r"\btoday\b", text):
        return today
    if re.search(r"\bnext week\b", text):
        return today + timedelta(days=7)

    match = _WEEKDAY.search(text)
    if match:
        qualifier, name = match.groups()
        days_ahead = (WEEKDAYS[name] - today.weekday()) % 7
        if days_ahead == 0 and qualifier != "this":
            days_ahead = 7
        return today + timedelta(days=days_ahead)

    match = _ISO_DATE.search(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
        return _safe_date(year, month, day)

    match = _NUMERIC_DATE.search(text)
    if match:
        month, day = int(match.group(1)), int(match.group(2))
        year = match.group(3)
        if year:
            full_year = int(year) + 2000 if len(year) == 2 else int(year)
            return _safe_date(full_year, month, day)
        return _roll_forward(_safe_date(today.year, month, day), today)

    match = _MONTH_DAY.search(text) or _DAY_MONTH.search(text)
    if match:
        fragment = match.group(0).replace(" of ", " ")
        try:
            parsed = dtparser.parse(fragment, default=datetime(today.year, today.month, 1))
        except (ValueError, OverflowError):
            logger.warning(f"Could not parse date fragment: {fragment!r}")
            return None
        return _roll_forward(parsed.date(), today)

    return None


def _parse_time(text: str) -> Optional[time]:
    match = _CLOCK.search(text)
    if match:
        return _build_time(int(match.group(1)), int(match.group(2)), match.group(3))

    match = _HOUR_MERIDIEM.search(text)
    if match:
        return _build_time(int(match.group(1)), 0, match.group(2))

    match = _HOUR_OCLOCK.search(text) or _AT_HOUR.search(text)
    if match:
        return _build_time(int(match.group(1)), 0, None)

    for word, value in PART_OF_DAY.items():
        if re.search(rf"\b{word}\b", text):
            return value

    return None


def _build_time(hour: int, minute: int, meridiem: Optional[str]) -> Optional[time]:
    if meridiem:
        is_pm = meridiem.startswith("p")
        if hour < 1 or hour > 12:
            return None
        if is_pm and hour != 12:
            hour += 12
        elif not is_pm and hour == 12:
            hour = 0
    elif 1 <= hour <= 7:
        # Nobody books a dental appointment at 3 in the morning
        hour += 12

    if hour > 23 or minute > 59:
        return None
    return time(hour, minute)


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _roll_forward(value: Optional[date], today: date) -> Optional[date]:
    if value is None or value >= today:
        return value
    return _safe_date(value.year + 1, value.month, value.day)
