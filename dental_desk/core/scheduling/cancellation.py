"""Cancellation flow: locate the caller's appointment, confirm, cancel."""

import logging
from typing import Optional

from dental_desk.core.intelligence.confirmation import (
    ConfirmationContext,
    ConfirmationDetector,
    ConfirmationOutcome,
    PendingKind,
    get_confirmation_detector,
)
from dental_desk.core.intelligence.session.models import CancellationPending, Session
from dental_desk.core.scheduling.calendar_client import (
    Appointment,
    CalendarClient,
    CalendarClientError,
    get_calendar_client,
)
from dental_desk.core.scheduling.dates import format_when
from dental_desk.core.scheduling.flow import FlowResult, audit, calendar_for_appointment
from dental_desk.core.scheduling.response import ResponseGenerator, get_response_generator
from dental_desk.infra.audit import (
    STATUS_CANCELLED,
    STATUS_NEEDS_FOLLOW_UP,
    AuditEventType,
    AuditLogger,
    get_audit_logger,
)

logger = logging.getLogger(__name__)


class CancellationFlow:
    """Two-phase cancellation of an existing appointment."""

    def __init__(
        self,
        calendar: Optional[CalendarClient] = None,
        detector: Optional[ConfirmationDetector] = None,
        responses: Optional[ResponseGenerator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._calendar = calendar or get_calendar_client()
        self._detector = detector or get_confirmation_detector()
        self._responses = responses or get_response_generator()
        self._audit = audit_logger or get_audit_logger()

    async def start(self, session: Session) -> FlowResult:
        """
        Look up the caller's next appointment and ask them to confirm.

        When several are booked, the soonest upcoming one is presented.
        """
        contact = session.contact_id or session.conversation_id

        try:
            appointments = await self._calendar.find_by_contact(contact)
        except CalendarClientError:
            return FlowResult(False, self._responses.lookup_failed(), "lookup_failed")

        if not appointments:
            await audit(
                self._audit,
                session,
                AuditEventType.CANCELLATION_NOT_FOUND,
                "No appointment found to cancel",
            )
            return FlowResult(False, self._responses.no_appointment_found(), "not_found")

        appointment = appointments[0]
        session.reschedule = None
        session.pending = CancellationPending(appointment=appointment)
        logger.info(f"Presented {appointment.appointment_id} for cancellation to {session.conversation_id}")
        return FlowResult(True, self._responses.cancellation_found(appointment), "presented")

    async def handle_reply(self, session: Session, message: str) -> FlowResult:
        """Act on the caller's answer to "confirm cancellation?"."""
        appointment = session.booking_to_cancel

        outcome = await self._detector.detect(
            message,
            ConfirmationContext(
                kind=PendingKind.CANCELLATION,
                description=f"cancel appointment with {appointment.provider} on {format_when(appointment.start)}",
            ),
        )

        if outcome == ConfirmationOutcome.AMBIGUOUS:
            return FlowResult(False, self._responses.cancellation_found(appointment), "ambiguous")

        if outcome == ConfirmationOutcome.DECLINED:
            session.clear_pending()
            return FlowResult(True, self._responses.cancellation_kept(), "declined")

        return await self._cancel(session, appointment)

    async def _cancel(self, session: Session, appointment: Appointment) -> FlowResult:
        calendar_id = calendar_for_appointment(self._calendar, appointment)
        if calendar_id:
            result = await self._calendar.cancel(calendar_id, appointment.event_id)
            succeeded, reason = result.success, result.message
        else:
            logger.error(f"No calendar known for appointment {appointment.appointment_id}")
            succeeded, reason = False, "no calendar for provider"

        session.clear_pending()

        if not succeeded:
            await audit(
                self._audit,
                session,
                AuditEventType.CANCELLATION_FAILED,
                f"Cancellation failed: {reason}",
                status=STATUS_NEEDS_FOLLOW_UP,
                appointment=appointment.to_dict(),
            )
            return FlowResult(False, self._responses.cancellation_failed(), "cancel_failed")

        if session.committed_appointment_id == appointment.appointment_id:
            session.booking_confirmed = False
            session.committed_appointment_id = None

        await audit(
            self._audit,
            session,
            AuditEventType.APPOINTMENT_CANCELLED,
            f"Cancelled appointment with {appointment.provider}",
            status=STATUS_CANCELLED,
            appointment=appointment.to_dict(),
        )
        return FlowResult(True, self._responses.cancellation_done(appointment), "cancelled")
