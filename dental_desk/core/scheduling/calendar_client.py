"""
HTTP client for the clinic calendar service.

The calendar service owns the providers' calendars and exposes:
- Open intervals between existing events
- Creating/cancelling events on a provider calendar
- Looking up a caller's upcoming appointments
"""

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

import httpx

from dental_desk.config import get_settings
from dental_desk.core.scheduling.dates import clinic_now, to_clinic_time

logger = logging.getLogger(__name__)

EVENT_TITLE_PREFIX = "##AI Booked##"


class CalendarClientError(Exception):
    """Raised when the calendar service cannot be read."""
    pass


def _parse_dt(value: str) -> datetime:
    return to_clinic_time(datetime.fromisoformat(value.replace("Z", "+00:00")))


def contact_digits(contact: Optional[str]) -> str:
    """Digits-only form of a phone number or contact id."""
    return re.sub(r"\D", "", contact or "")


def same_contact(a: Optional[str], b: Optional[str]) -> bool:
    """Compare contacts by digit suffix so country codes and formatting are ignored."""
    left, right = contact_digits(a), contact_digits(b)
    if not left or not right:
        return False
    return left.endswith(right) or right.endswith(left)


@dataclass(frozen=True)
class AppointmentSlot:
    """An interval on one provider's calendar."""

    provider: str
    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def contains(self, other: "AppointmentSlot") -> bool:
        """True if other lies entirely inside this interval on the same calendar."""
        return (
            self.provider == other.provider
            and self.start <= other.start
            and self.end >= other.end
        )

    def overlaps(self, other: "AppointmentSlot") -> bool:
        return (
            self.provider == other.provider
            and self.start < other.end
            and other.start < self.end
        )

    def offer(self, start: datetime, minutes: int) -> "AppointmentSlot":
        """Carve an appointment of the given length out of this interval."""
        return replace(self, start=start, end=start + timedelta(minutes=minutes))

    @classmethod
    def from_dict(cls, data: dict) -> "AppointmentSlot":
        """Create from API response dict."""
        return cls(
            provider=data.get("provider", data.get("provider_name", "")),
            start=_parse_dt(data.get("start", data.get("start_time", ""))),
            end=_parse_dt(data.get("end", data.get("end_time", ""))),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "provider": self.provider,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration_minutes": self.duration_minutes,
        }


@dataclass(frozen=True)
class Appointment:
    """An existing booking on a provider calendar."""

    appointment_id: str
    event_id: str
    calendar_id: str
    provider: str
    start: datetime
    end: datetime
    patient_name: str = ""
    treatment: str = ""
    contact: str = ""

    @property
    def slot(self) -> AppointmentSlot:
        return AppointmentSlot(provider=self.provider, start=self.start, end=self.end)

    @classmethod
    def from_dict(cls, data: dict) -> "Appointment":
        """Create from API response dict."""
        event_id = data.get("event_id", data.get("id", ""))
        return cls(
            appointment_id=data.get("id", event_id),
            event_id=event_id,
            calendar_id=data.get("calendar_id", ""),
            provider=data.get("provider", ""),
            start=_parse_dt(data["start"]),
            end=_parse_dt(data["end"]),
            patient_name=data.get("patient_name", ""),
            treatment=data.get("treatment", ""),
            contact=data.get("contact", ""),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.appointment_id,
            "event_id": self.event_id,
            "calendar_id": self.calendar_id,
            "provider": self.provider,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "patient_name": self.patient_name,
            "treatment": self.treatment,
            "contact": self.contact,
        }


@dataclass
class CommitResult:
    """Result of a calendar write (create or cancel)."""

    success: bool
    appointment_id: Optional[str] = None
    message: Optional[str] = None
    error_code: Optional[str] = None


class CalendarClient:
    """
    HTTP client for the calendar service.

    Endpoints:
    - POST /api/open-slots - Open intervals for providers
    - POST /api/calendars/{calendar_id}/events - Create event
    - DELETE /api/calendars/{calendar_id}/events/{event_id} - Cancel event
    - GET /api/appointments?contact=... - Upcoming appointments for a caller
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        provider_calendars: Optional[dict[str, str]] = None,
    ):
        """Initialize client.

        Args:
            base_url: Calendar service base URL (defaults to settings)
            timeout: Request timeout in seconds
            provider_calendars: Provider name to calendar id mapping
        """
        settings = get_settings()
        self.base_url = base_url or settings.calendar_api_url
        self.timeout = timeout or settings.calendar_timeout_seconds
        self.provider_calendars = (
            provider_calendars
            if provider_calendars is not None
            else settings.provider_calendar_map
        )
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def calendar_for(self, provider: str) -> Optional[str]:
        """Calendar id for a provider, if configured."""
        return self.provider_calendars.get(provider)

    # === Availability ===

    async def list_open_slots(
        self,
        treatment: str,
        providers: list[str],
    ) -> list[AppointmentSlot]:
        """Fetch open intervals for the given providers.

        Args:
            treatment: Treatment being booked
            providers: Providers whose calendars to scan

        Returns:
            Open intervals, sorted by start time

        Raises:
            CalendarClientError: If the calendar service cannot be read
        """
        client = await self._get_client()
        payload = {
            "treatment": treatment,
            "providers": [
                {"name": name, "calendar_id": self.calendar_for(name)}
                for name in providers
            ],
        }

        try:
            response = await client.post("/api/open-slots", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Failed to list open slots: {e}")
            raise CalendarClientError(f"Open slot lookup failed: {e}") from e
        except ValueError as e:
            logger.error(f"Unreadable open slot response: {e}")
            raise CalendarClientError(f"Open slot response is not JSON: {e}") from e

        if not isinstance(data, (list, dict)):
            raise CalendarClientError(f"Unexpected open slot response: {type(data).__name__}")

        items = data if isinstance(data, list) else data.get("slots", [])
        slots = []
        for item in items:
            try:
                slots.append(AppointmentSlot.from_dict(item))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed slot {item!r}: {e}")

        return sorted(slots, key=lambda s: (s.start, s.provider))

    # === Bookings ===

    async def commit(
        self,
        calendar_id: str,
        slot: AppointmentSlot,
        patient_name: str,
        treatment: str,
        contact: str,
    ) -> CommitResult:
        """Create an event on a provider calendar.

        Args:
            calendar_id: Provider calendar to write to
            slot: Appointment interval
            patient_name: Patient's name
            treatment: Treatment booked
            contact: Caller's contact identifier

        Returns:
            CommitResult with the new appointment id on success
        """
        client = await self._get_client()
        payload = {
            "summary": f"{EVENT_TITLE_PREFIX} {slot.provider} {patient_name} {treatment} {contact}",
            "start": slot.start.isoformat(),
            "end": slot.end.isoformat(),
            "provider": slot.provider,
            "patient_name": patient_name,
            "treatment": treatment,
            "contact": contact,
        }

        try:
            response = await client.post(
                f"/api/calendars/{calendar_id}/events",
                json=payload,
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to create event: {e}")
            return CommitResult(
                success=False,
                error_code="connection_error",
                message="Unable to connect to calendar service",
            )

        if response.status_code in (200, 201):
            # The event exists even when the body cannot be read
            data = _safe_json(response)
            if not data:
                logger.warning(f"Event created on {calendar_id} without a readable id")
            return CommitResult(
                success=True,
                appointment_id=data.get("id", data.get("event_id")),
                message="Appointment created",
            )

        data = _safe_json(response)
        logger.warning(f"Calendar rejected event on {calendar_id}: {response.status_code}")
        return CommitResult(
            success=False,
            error_code=data.get("error_code", "commit_failed"),
            message=data.get("message", "Appointment could not be created"),
        )

    async def cancel(self, calendar_id: str, event_id: str) -> CommitResult:
        """Delete an event from a provider calendar."""
        client = await self._get_client()

        try:
            response = await client.delete(f"/api/calendars/{calendar_id}/events/{event_id}")
        except httpx.HTTPError as e:
            logger.error(f"Failed to cancel event {event_id}: {e}")
            return CommitResult(
                success=False,
                error_code="connection_error",
                message="Unable to connect to calendar service",
            )

        if response.status_code in (200, 204):
            return CommitResult(success=True, appointment_id=event_id, message="Appointment cancelled")

        data = _safe_json(response)
        logger.warning(f"Calendar rejected cancel of {event_id}: {response.status_code}")
        return CommitResult(
            success=False,
            appointment_id=event_id,
            error_code=data.get("error_code", "cancel_failed"),
            message=data.get("message", "Appointment could not be cancelled"),
        )

    async def find_by_contact(self, contact: str) -> list[Appointment]:
        """Upcoming appointments booked under a contact.

        Raises:
            CalendarClientError: If the calendar service cannot be read
        """
        digits = contact_digits(contact)
        if not digits:
            return []

        client = await self._get_client()
        try:
            response = await client.get(
                "/api/appointments",
                params={"contact": digits, "from": clinic_now().isoformat()},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Failed to look up appointments: {e}")
            raise CalendarClientError(f"Appointment lookup failed: {e}") from e
        except ValueError as e:
            logger.error(f"Unreadable appointment response: {e}")
            raise CalendarClientError(f"Appointment response is not JSON: {e}") from e

        if not isinstance(data, (list, dict)):
            raise CalendarClientError(f"Unexpected appointment response: {type(data).__name__}")

        items = data if isinstance(data, list) else data.get("appointments", [])
        appointments = []
        for item in items:
            try:
                appointment = Appointment.from_dict(item)
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed appointment {item!r}: {e}")
                continue
            if same_contact(appointment.contact, contact):
                appointments.append(appointment)

        return sorted(appointments, key=lambda a: a.start)


def _safe_json(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


# Singleton
_client: Optional[CalendarClient] = None


def get_calendar_client() -> CalendarClient:
    """Get singleton CalendarClient."""
    global _client
    if _client is None:
        _client = CalendarClient()
    return _client
