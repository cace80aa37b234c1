"""
Audit Logging Module

Records booking outcomes and conversation turns so staff can follow up on
anything that went wrong. Recording is best effort: a failing sink is
logged and never interrupts the conversation.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

import httpx

from dental_desk.config import settings

logger = logging.getLogger(__name__)

STATUS_CONFIRMED = "CONFIRMED"
STATUS_CANCELLED = "CANCELLED"
STATUS_NEEDS_FOLLOW_UP = "NEEDS FOLLOW-UP"
STATUS_INFO = "INFO"

WEBHOOK_TIMEOUT_SECONDS = 5.0


class AuditEventType(str, Enum):
    """Types of audit events."""

    CONVERSATION_TURN = "conversation_turn"

    # Booking
    BOOKING_CREATED = "booking_created"
    BOOKING_FAILED = "booking_failed"
    SLOT_CONFLICT = "slot_conflict"

    # Cancellation
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    CANCELLATION_FAILED = "cancellation_failed"
    CANCELLATION_NOT_FOUND = "cancellation_not_found"

    # Reschedule
    APPOINTMENT_RESCHEDULED = "appointment_rescheduled"
    RESCHEDULE_FAILED = "reschedule_failed"
    RESCHEDULE_NOT_FOUND = "reschedule_not_found"


@dataclass
class AuditEvent:
    """Individual audit event record."""

    event_type: AuditEventType
    conversation_id: str
    status: str = STATUS_INFO
    contact_id: Optional[str] = None
    patient_name: Optional[str] = None
    action: str = ""
    details: dict = field(default_factory=dict)
    id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def needs_follow_up(self) -> bool:
        return self.status == STATUS_NEEDS_FOLLOW_UP

    def to_dict(self) -> dict:
        """Convert to dictionary for transmission."""
        return {
            "id": str(self.id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "conversation_id": self.conversation_id,
            "contact_id": self.contact_id,
            "patient_name": self.patient_name,
            "status": self.status,
            "action": self.action,
            "details": self.details,
        }

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)


class AuditLogger:
    """
    Audit sink.

    Every event is written to the application log. When a webhook URL is
    configured the event is also POSTed there as JSON (e.g. to a sheet or
    ticketing integration). The POST runs as a background task so a slow
    sink never holds up the caller's reply.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Audit Logger.

        Args:
            webhook_url: Where to POST events (defaults to settings)
            http_client: Optional HTTP client (for testing)
        """
        self.webhook_url = webhook_url if webhook_url is not None else settings.audit_webhook_url
        self._client = http_client
        self._in_flight: set[asyncio.Task] = set()

    async def record(self, event: AuditEvent) -> None:
        """Record an event. Never raises."""
        log_level = logging.WARNING if event.needs_follow_up else logging.INFO
        logger.log(
            log_level,
            f"AUDIT: {event.event_type.value} | {event.action} | "
            f"conversation={event.conversation_id} | status={event.status}",
        )

        if not self.webhook_url:
            return

        task = asyncio.create_task(self._post(event))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    @property
    def in_flight(self) -> int:
        """Webhook posts not yet finished."""
        return len(self._in_flight)

    async def _post(self, event: AuditEvent) -> None:
        try:
            if self._client is None:
                self._client = httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_SECONDS)
            response = await self._client.post(self.webhook_url, json=event.to_dict())
            response.raise_for_status()
        except Exception as e:
            logger.error(f"Audit sink failed for {event.event_type.value}: {e}")

    async def flush(self) -> None:
        """Wait for every webhook post started so far."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    async def close(self) -> None:
        await self.flush()
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Singleton
_audit: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get singleton AuditLogger."""
    global _audit
    if _audit is None:
        _audit = AuditLogger()
    return _audit
