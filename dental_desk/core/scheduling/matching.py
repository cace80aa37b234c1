"""
Slot matching.

Reduces a calendar's open intervals to the single best appointment to offer
for a treatment. Pure: no I/O, no session access.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from dental_desk.config import settings
from dental_desk.core.scheduling import dates
from dental_desk.core.scheduling.calendar_client import AppointmentSlot
from dental_desk.core.scheduling.dates import DateTimePreference
from dental_desk.core.scheduling.treatments import (
    Treatment,
    eligible_providers,
    required_minutes,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkingHours:
    """Bookable window of each working day, in clinic local time."""

    start_hour: int = 9
    end_hour: int = 18
    weekdays: frozenset = field(default_factory=lambda: frozenset(range(5)))

    @classmethod
    def from_settings(cls) -> "WorkingHours":
        return cls(
            start_hour=settings.working_hours_start,
            end_hour=settings.working_hours_end,
            weekdays=frozenset(settings.working_days_list),
        )

    def contains(self, slot: AppointmentSlot) -> bool:
        """True if the interval lies entirely inside one working day."""
        start = dates.to_clinic_time(slot.start)
        end = dates.to_clinic_time(slot.end)
        if start.weekday() not in self.weekdays:
            return False
        opening = start.replace(hour=self.start_hour, minute=0, second=0, microsecond=0)
        closing = start.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(
            hours=self.end_hour
        )
        return opening <= start and end <= closing


def subtract(gap: AppointmentSlot, excluded: Optional[AppointmentSlot]) -> list[AppointmentSlot]:
    """Remove an excluded interval from an open interval on the same calendar."""
    if excluded is None or not gap.overlaps(excluded):
        return [gap]

    pieces = []
    if gap.start < excluded.start:
        pieces.append(AppointmentSlot(gap.provider, gap.start, excluded.start))
    if excluded.end < gap.end:
        pieces.append(AppointmentSlot(gap.provider, excluded.end, gap.end))
    return pieces


def select_slot(
    treatment: Treatment,
    open_slots: list[AppointmentSlot],
    preference: Optional[DateTimePreference] = None,
    provider: Optional[str] = None,
    unit_count: Optional[int] = None,
    excluded: Optional[AppointmentSlot] = None,
    hours: Optional[WorkingHours] = None,
) -> Optional[AppointmentSlot]:
    """
    Pick the appointment to offer.

    Args:
        treatment: Treatment being booked
        open_slots: Open intervals across all candidate providers
        preference: Requested date and/or time (missing parts match anything)
        provider: Provider the caller is fixed on, if any
        unit_count: Tooth count for fillings
        excluded: Interval that must not be offered again
        hours: Working hours (defaults to settings)

    Returns:
        The earliest appointment honouring the preference, else the earliest
        appointment at all, else None when nothing fits
    """
    hours = hours or WorkingHours.from_settings()
    preference = preference or DateTimePreference()

    providers = eligible_providers(treatment)
    if provider is not None:
        providers = tuple(p for p in providers if p == provider)

    candidates: list[tuple[AppointmentSlot, int]] = []
    for gap in open_slots:
        if gap.provider not in providers:
            continue
        for piece in subtract(gap, excluded):
            minutes = required_minutes(treatment, piece.provider, unit_count)
            if piece.duration_minutes < minutes or not hours.contains(piece):
                continue
            candidates.append((piece, minutes))

    if not candidates:
        logger.info(f"No open interval fits {treatment.value} for {list(providers)}")
        return None

    if not preference.is_empty:
        preferred = []
        for piece, minutes in candidates:
            start = _preferred_start(piece, minutes, preference)
            if start is not None:
                preferred.append(piece.offer(start, minutes))
        if preferred:
            return min(preferred, key=_order)
        logger.info(f"Nothing near {preference.describe()}, falling back to earliest slot")

    piece, minutes = min(candidates, key=lambda c: _order(c[0]))
    return piece.offer(piece.start, minutes)


def _preferred_start(
    piece: AppointmentSlot,
    minutes: int,
    preference: DateTimePreference,
) -> Optional[datetime]:
    """Closest start inside the interval to the requested time, if it matches."""
    start = dates.to_clinic_time(piece.start)
    latest = dates.to_clinic_time(piece.end) - timedelta(minutes=minutes)

    if preference.time is not None:
        target = datetime.combine(start.date(), preference.time, tzinfo=start.tzinfo)
        start = min(max(target, start), latest)

    return start if dates.matches(start, preference) else None


def _order(slot: AppointmentSlot) -> tuple:
    return (slot.start, slot.provider)
