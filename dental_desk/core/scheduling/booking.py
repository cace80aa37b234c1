"""
Booking flow: offer a slot, take the caller's answer, commit.

Between the offer and the caller's "yes" someone else may book the same
time, so the live calendar is re-read after every confirmation and the
offered slot is only written if it is still open.
"""

import logging
from typing import Optional

from dental_desk.config import settings
from dental_desk.core.intelligence.confirmation import (
    ConfirmationContext,
    ConfirmationDetector,
    ConfirmationOutcome,
    PendingKind,
    get_confirmation_detector,
)
from dental_desk.core.intelligence.session.models import BookingPending, Session
from dental_desk.core.intelligence.session.state import BookingState
from dental_desk.core.scheduling import dates
from dental_desk.core.scheduling.calendar_client import (
    AppointmentSlot,
    CalendarClient,
    CalendarClientError,
    get_calendar_client,
)
from dental_desk.core.scheduling.flow import FlowResult, audit, move
from dental_desk.core.scheduling.matching import select_slot
from dental_desk.core.scheduling.response import ResponseGenerator, get_response_generator
from dental_desk.core.scheduling.treatments import (
    Treatment,
    eligible_providers,
    required_minutes,
)
from dental_desk.infra.audit import (
    STATUS_CONFIRMED,
    STATUS_NEEDS_FOLLOW_UP,
    AuditEventType,
    AuditLogger,
    get_audit_logger,
)

logger = logging.getLogger(__name__)


def still_open(slot: AppointmentSlot, open_slots: list[AppointmentSlot], minutes: int) -> bool:
    """True if a fresh open interval still holds the whole offered slot."""
    return any(
        gap.contains(slot) and gap.duration_minutes >= minutes
        for gap in open_slots
    )


class BookingFlow:
    """
    Offer -> confirm -> commit lifecycle for new appointments.

    States: IDLE -> COLLECTING_INFO -> SLOT_OFFERED -> COMMITTED, with every
    failure returning to COLLECTING_INFO and no pending slot left behind.
    """

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

    def is_ready(self, session: Session) -> bool:
        """All details needed to look for a slot are known."""
        return not session.missing_fields()

    async def offer(self, session: Session) -> FlowResult:
        """
        Find the best slot and offer it.

        Args:
            session: Session with patient name and treatment known

        Returns:
            FlowResult with the offer, or the reason nothing was offered
        """
        treatment = session.treatment
        providers = self._providers(session)

        try:
            open_slots = await self._open_slots(session, treatment, providers)
        except CalendarClientError:
            session.clear_pending()
            move(session, BookingState.COLLECTING_INFO)
            return FlowResult(
                False,
                self._responses.contact_staff("checking availability"),
                "lookup_failed",
            )

        preference = dates.parse(session.date_time_text, dates.clinic_now())
        slot = select_slot(
            treatment,
            open_slots,
            preference=preference,
            provider=session.provider,
            unit_count=session.unit_count,
            excluded=session.excluded_slot,
        )

        if slot is None:
            session.clear_pending()
            move(session, BookingState.COLLECTING_INFO)
            return FlowResult(
                False,
                self._responses.no_slots(treatment, session.provider),
                "no_slots",
            )

        if session.provider is None:
            session.provider = slot.provider
        session.pending = BookingPending(slot=slot)
        session.committed_appointment_id = None
        move(session, BookingState.SLOT_OFFERED)

        logger.info(
            f"Offered {slot.provider} {slot.start.isoformat()} to {session.conversation_id}"
        )
        return FlowResult(True, self._responses.offer_slot(slot, treatment), "offered")

    async def handle_reply(self, session: Session, message: str) -> FlowResult:
        """Act on the caller's answer to an offered slot."""
        slot = session.selected_slot
        treatment = session.treatment

        outcome = await self._detector.detect(
            message,
            ConfirmationContext(
                kind=PendingKind.BOOKING,
                description=f"{treatment.value} with {slot.provider} on {dates.format_when(slot.start)}",
            ),
        )

        if outcome == ConfirmationOutcome.AMBIGUOUS:
            return FlowResult(False, self._responses.offer_slot(slot, treatment), "ambiguous")

        if outcome == ConfirmationOutcome.DECLINED:
            session.clear_pending()
            move(session, BookingState.COLLECTING_INFO)
            return FlowResult(True, self._responses.offer_declined(), "declined")

        return await self.confirm(session)

    async def confirm(self, session: Session) -> FlowResult:
        """
        Re-check the offered slot against the live calendar and commit it.

        Returns:
            FlowResult; on every non-success path the pending slot is cleared
        """
        slot = session.selected_slot
        try:
            return await self._recheck_and_commit(session, slot)
        except Exception:
            logger.exception(
                f"Unexpected error confirming {slot.start.isoformat()} for {session.conversation_id}"
            )
            return await self._fail(session, slot, "unexpected error while committing")

    async def _recheck_and_commit(self, session: Session, slot: AppointmentSlot) -> FlowResult:
        treatment = session.treatment

        try:
            fresh = await self._calendar.list_open_slots(treatment.value, [slot.provider])
        except CalendarClientError:
            return await self._fail(session, slot, "availability re-check failed")

        minutes = required_minutes(treatment, slot.provider, session.unit_count)
        if not still_open(slot, fresh, minutes):
            logger.info(f"Slot {slot.start.isoformat()} with {slot.provider} was taken, re-matching")
            session.clear_pending()
            move(session, BookingState.COLLECTING_INFO)
            session.cache_slots(self._cache_key(treatment, (slot.provider,)), fresh)
            await audit(
                self._audit,
                session,
                AuditEventType.SLOT_CONFLICT,
                "Offered slot taken before confirmation",
                slot=slot.to_dict(),
            )
            alternative = await self.offer(session)
            return alternative.with_prefix(self._responses.slot_taken())

        calendar_id = self._calendar.calendar_for(slot.provider)
        if not calendar_id:
            logger.error(f"No calendar configured for {slot.provider}")
            return await self._fail(session, slot, "no calendar configured for provider")

        result = await self._calendar.commit(
            calendar_id,
            slot,
            patient_name=session.patient_name,
            treatment=treatment.value,
            contact=session.contact_id or session.conversation_id,
        )

        if not result.success:
            return await self._fail(session, slot, result.message or "calendar rejected the booking")

        rescheduled = session.reschedule is not None
        session.clear_pending()
        session.booking_confirmed = True
        session.committed_appointment_id = result.appointment_id
        session.reschedule = None
        session.clear_slot_cache()
        move(session, BookingState.COMMITTED)

        await audit(
            self._audit,
            session,
            AuditEventType.APPOINTMENT_RESCHEDULED if rescheduled else AuditEventType.BOOKING_CREATED,
            f"{treatment.value} booked with {slot.provider}",
            status=STATUS_CONFIRMED,
            appointment_id=result.appointment_id,
            slot=slot.to_dict(),
        )
        return FlowResult(
            True,
            self._responses.booking_confirmed(slot, treatment, session.patient_name),
            "committed",
        )

    async def _fail(self, session: Session, slot: AppointmentSlot, reason: str) -> FlowResult:
        session.clear_pending()
        move(session, BookingState.COLLECTING_INFO)
        await audit(
            self._audit,
            session,
            AuditEventType.RESCHEDULE_FAILED if session.reschedule else AuditEventType.BOOKING_FAILED,
            f"Booking failed: {reason}",
            status=STATUS_NEEDS_FOLLOW_UP,
            slot=slot.to_dict(),
        )
        return FlowResult(False, self._responses.booking_failed(), "commit_failed")

    def _providers(self, session: Session) -> tuple[str, ...]:
        providers = eligible_providers(session.treatment)
        if session.provider in providers:
            return (session.provider,)
        return providers

    def _cache_key(self, treatment: Treatment, providers: tuple[str, ...]) -> tuple:
        return (treatment.value, providers)

    async def _open_slots(
        self,
        session: Session,
        treatment: Treatment,
        providers: tuple[str, ...],
    ) -> list[AppointmentSlot]:
        key = self._cache_key(treatment, providers)
        cached = session.cached_slots(key, settings.slot_cache_ttl_seconds)
        if cached is not None:
            return cached

        open_slots = await self._calendar.list_open_slots(treatment.value, list(providers))
        session.cache_slots(key, open_slots)
        return open_slots
