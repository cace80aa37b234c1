"""
Reschedule flow.

Cancels the caller's existing appointment, then hands over to the booking
flow with the caller's provider preference carried across and the
just-cancelled interval excluded from the next offer.
"""

import logging
import re
from dataclasses import replace
from datetime import datetime
from typing import Optional

from dental_desk.core.intelligence.confirmation import (
    ConfirmationContext,
    ConfirmationDetector,
    ConfirmationOutcome,
    PendingKind,
    get_confirmation_detector,
    keyword_outcome,
)
from dental_desk.core.intelligence.session.models import (
    ReschedulePending,
    RescheduleCarryOver,
    Session,
)
from dental_desk.core.intelligence.session.state import BookingState
from dental_desk.core.scheduling import dates
from dental_desk.core.scheduling.booking import BookingFlow
from dental_desk.core.scheduling.calendar_client import (
    Appointment,
    CalendarClient,
    CalendarClientError,
    get_calendar_client,
)
from dental_desk.core.scheduling.flow import (
    FlowResult,
    audit,
    calendar_for_appointment,
    move,
)
from dental_desk.core.scheduling.response import ResponseGenerator, get_response_generator
from dental_desk.core.scheduling.treatments import Treatment, canonical_provider, is_eligible
from dental_desk.infra.audit import (
    STATUS_NEEDS_FOLLOW_UP,
    AuditEventType,
    AuditLogger,
    get_audit_logger,
)

logger = logging.getLogger(__name__)

ORDINALS = {
    "first": 1,
    "1st": 1,
    "second": 2,
    "2nd": 2,
    "third": 3,
    "3rd": 3,
    "fourth": 4,
    "4th": 4,
    "fifth": 5,
    "5th": 5,
}


def choose_appointment(
    candidates: tuple[Appointment, ...],
    message: str,
    reference: datetime,
) -> Optional[Appointment]:
    """
    Pick one appointment from a numbered list using the caller's reply.

    Accepts a list number ("2"), an ordinal ("the second one"), a date or
    time fragment ("tuesday", "2pm") or a dentist's name, as long as it
    singles out exactly one appointment.
    """
    text = message.lower().strip()

    match = re.fullmatch(r"#?(\d{1,2})[.)]?", text) or re.search(
        r"\b(?:number|option|no\.?)\s*(\d{1,2})\b", text
    )
    if match:
        index = int(match.group(1)) - 1
        return candidates[index] if 0 <= index < len(candidates) else None

    preference = dates.parse(message, reference)
    if preference.date is not None:
        return _single(a for a in candidates if dates.matches(a.start, preference))

    for word, number in ORDINALS.items():
        if re.search(rf"\b{word}\b", text):
            return candidates[number - 1] if number <= len(candidates) else None
    if re.search(r"\blast\b", text):
        return candidates[-1]

    if preference.time is not None:
        return _single(a for a in candidates if dates.matches(a.start, preference))

    for token in re.findall(r"dr\.?\s*\w+", text):
        provider = canonical_provider(token)
        if provider:
            return _single(a for a in candidates if a.provider == provider)

    return None


def _single(matches) -> Optional[Appointment]:
    found = list(matches)
    return found[0] if len(found) == 1 else None


class RescheduleFlow:
    """Cancellation of the old appointment followed by a new booking."""

    def __init__(
        self,
        booking: BookingFlow,
        calendar: Optional[CalendarClient] = None,
        detector: Optional[ConfirmationDetector] = None,
        responses: Optional[ResponseGenerator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._booking = booking
        self._calendar = calendar or get_calendar_client()
        self._detector = detector or get_confirmation_detector()
        self._responses = responses or get_response_generator()
        self._audit = audit_logger or get_audit_logger()

    async def start(self, session: Session) -> FlowResult:
        """Find the appointment to move, asking the caller to pick when there are several."""
        contact = session.contact_id or session.conversation_id

        try:
            appointments = await self._calendar.find_by_contact(contact)
        except CalendarClientError:
            return FlowResult(False, self._responses.lookup_failed(), "lookup_failed")

        if not appointments:
            await audit(
                self._audit,
                session,
                AuditEventType.RESCHEDULE_NOT_FOUND,
                "No appointment found to reschedule",
            )
            return FlowResult(False, self._responses.no_appointment_found(), "not_found")

        session.reschedule = None
        preserved = session.provider

        if len(appointments) == 1:
            session.pending = ReschedulePending(
                appointment=appointments[0],
                preserved_provider=preserved,
            )
            return FlowResult(True, self._responses.reschedule_found(appointments[0]), "presented")

        session.pending = ReschedulePending(
            candidates=tuple(appointments),
            preserved_provider=preserved,
        )
        return FlowResult(True, self._responses.reschedule_choose(appointments), "choose")

    async def handle_reply(self, session: Session, message: str) -> FlowResult:
        """Act on the caller's choice or confirmation."""
        pending: ReschedulePending = session.pending

        if pending.awaiting_choice:
            return self._handle_choice(session, pending, message)

        appointment = pending.appointment
        outcome = await self._detector.detect(
            message,
            ConfirmationContext(
                kind=PendingKind.RESCHEDULE,
                description=(
                    f"move appointment with {appointment.provider} on "
                    f"{dates.format_when(appointment.start)} to a new time"
                ),
            ),
        )

        if outcome == ConfirmationOutcome.AMBIGUOUS:
            return FlowResult(False, self._responses.reschedule_found(appointment), "ambiguous")

        if outcome == ConfirmationOutcome.DECLINED:
            session.clear_pending()
            return FlowResult(True, self._responses.reschedule_kept(), "declined")

        return await self._cancel_and_rebook(session, pending)

    def _handle_choice(
        self,
        session: Session,
        pending: ReschedulePending,
        message: str,
    ) -> FlowResult:
        chosen = choose_appointment(pending.candidates, message, dates.clinic_now())

        if chosen is None:
            if keyword_outcome(message) == ConfirmationOutcome.DECLINED:
                session.clear_pending()
                return FlowResult(True, self._responses.reschedule_kept(), "declined")
            return FlowResult(
                False,
                self._responses.reschedule_choose(list(pending.candidates)),
                "ambiguous",
            )

        session.pending = replace(pending, appointment=chosen, candidates=())
        return FlowResult(True, self._responses.reschedule_found(chosen), "presented")

    async def _cancel_and_rebook(self, session: Session, pending: ReschedulePending) -> FlowResult:
        appointment = pending.appointment
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
                AuditEventType.RESCHEDULE_FAILED,
                f"Could not cancel old appointment: {reason}",
                status=STATUS_NEEDS_FOLLOW_UP,
                appointment=appointment.to_dict(),
            )
            return FlowResult(False, self._responses.reschedule_failed(), "cancel_failed")

        self._carry_over(session, pending)
        move(session, BookingState.COLLECTING_INFO)
        logger.info(f"Old appointment {appointment.appointment_id} cancelled, rebooking")

        prefix = self._responses.reschedule_cancelled(appointment)
        if not self._booking.is_ready(session):
            missing = session.missing_fields()[0]
            return FlowResult(
                True,
                f"{prefix} {self._responses.ask_for(missing, session.patient_name)}",
                "cancelled_old",
            )

        offer = await self._booking.offer(session)
        return offer.with_prefix(prefix)

    def _carry_over(self, session: Session, pending: ReschedulePending) -> None:
        """Prepare the session for booking the replacement appointment."""
        appointment = pending.appointment

        if session.committed_appointment_id == appointment.appointment_id or session.booking_confirmed:
            session.booking_confirmed = False
            session.committed_appointment_id = None

        if session.treatment is None:
            session.treatment = Treatment.parse(appointment.treatment)
        if not session.patient_name and appointment.patient_name:
            session.patient_name = appointment.patient_name

        provider = pending.preserved_provider
        if provider and session.treatment and not is_eligible(session.treatment, provider):
            logger.info(f"Preserved provider {provider} cannot do {session.treatment.value}")
            provider = None

        session.provider = provider
        session.reschedule = RescheduleCarryOver(
            excluded_slot=appointment.slot,
            preserved_provider=provider,
        )
        session.clear_slot_cache()
        if "booking" not in session.intents:
            session.intents.append("booking")
