"""
Shared pieces of the booking, cancellation and reschedule flows.

Every flow step returns a FlowResult; nothing is inferred by re-reading
session or calendar state after a side-effecting call.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from dental_desk.core.intelligence.session.models import Session
from dental_desk.core.intelligence.session.state import BookingState, can_transition
from dental_desk.core.scheduling.calendar_client import Appointment, CalendarClient
from dental_desk.infra.audit import STATUS_INFO, AuditEvent, AuditEventType, AuditLogger

logger = logging.getLogger(__name__)


@dataclass
class FlowResult:
    """Outcome of one flow step."""

    success: bool
    message: str
    outcome: str  # offered, committed, declined, ambiguous, slot_taken, not_found, ...

    def with_prefix(self, prefix: str) -> "FlowResult":
        return FlowResult(self.success, f"{prefix} {self.message}", self.outcome)


def move(session: Session, new_state: BookingState) -> None:
    """Set the booking state, logging transitions the state table does not allow."""
    if session.state != new_state and not can_transition(session.state, new_state):
        logger.warning(
            f"Unexpected booking transition {session.state.value} -> {new_state.value} "
            f"for {session.conversation_id}"
        )
    session.state = new_state


def calendar_for_appointment(calendar: CalendarClient, appointment: Appointment) -> Optional[str]:
    return appointment.calendar_id or calendar.calendar_for(appointment.provider)


async def audit(
    sink: AuditLogger,
    session: Session,
    event_type: AuditEventType,
    action: str,
    status: str = STATUS_INFO,
    **details,
) -> None:
    """Record an audit event for the session's caller."""
    await sink.record(
        AuditEvent(
            event_type=event_type,
            conversation_id=session.conversation_id,
            contact_id=session.contact_id,
            patient_name=session.patient_name,
            status=status,
            action=action,
            details=details,
        )
    )
