"""
Turn Orchestrator.

Single entry point for a caller message. Deterministic checks (is the caller
answering a pending offer, cancellation or reschedule?) run ahead of
AI-driven interpretation; whatever happens, a reply string comes back.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from dental_desk.config import settings
from dental_desk.core.intelligence.confirmation import (
    ConfirmationDetector,
    get_confirmation_detector,
)
from dental_desk.core.intelligence.extraction import (
    ExtractedFields,
    FieldExtractor,
    get_field_extractor,
)
from dental_desk.core.intelligence.intent import (
    Intent,
    IntentClassifier,
    IntentResult,
    get_intent_classifier,
    is_end_session_command,
)
from dental_desk.core.intelligence.session import (
    BookingPending,
    BookingState,
    CancellationPending,
    ReschedulePending,
    Session,
    SessionStore,
    get_session_store,
)
from dental_desk.core.scheduling.booking import BookingFlow
from dental_desk.core.scheduling.calendar_client import (
    CalendarClient,
    CalendarClientError,
    get_calendar_client,
)
from dental_desk.core.scheduling.cancellation import CancellationFlow
from dental_desk.core.scheduling.flow import FlowResult, move
from dental_desk.core.scheduling.reschedule import RescheduleFlow
from dental_desk.core.scheduling.response import ResponseGenerator, get_response_generator
from dental_desk.core.scheduling.treatments import is_eligible
from dental_desk.infra.audit import AuditEvent, AuditEventType, AuditLogger, get_audit_logger

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class TurnResult:
    """Reply for one turn plus what happened, for API callers."""

    message: str
    conversation_id: str
    state: BookingState = BookingState.IDLE
    outcome: str = "open_ended"
    intents: list[str] = field(default_factory=list)
    processing_time_ms: Optional[float] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "message": self.message,
            "conversation_id": self.conversation_id,
            "state": self.state.value,
            "outcome": self.outcome,
            "intents": self.intents,
            "processing_time_ms": self.processing_time_ms,
        }


class TurnOrchestrator:
    """
    Sequences a turn across the session store, the AI collaborators and
    the booking, cancellation and reschedule flows.

    The session is fetched once at the start of a turn, threaded through
    every step, and written back once at the end.
    """

    def __init__(
        self,
        session_store: Optional[SessionStore] = None,
        classifier: Optional[IntentClassifier] = None,
        extractor: Optional[FieldExtractor] = None,
        detector: Optional[ConfirmationDetector] = None,
        calendar: Optional[CalendarClient] = None,
        responses: Optional[ResponseGenerator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """Initialize orchestrator with optional dependencies (for testing)."""
        self._sessions = session_store or get_session_store()
        self._classifier = classifier or get_intent_classifier()
        self._extractor = extractor or get_field_extractor()
        self._calendar = calendar or get_calendar_client()
        self._responses = responses or get_response_generator()
        self._audit = audit_logger or get_audit_logger()
        detector = detector or get_confirmation_detector()

        self.booking = BookingFlow(self._calendar, detector, self._responses, self._audit)
        self.cancellation = CancellationFlow(self._calendar, detector, self._responses, self._audit)
        self.reschedule = RescheduleFlow(
            self.booking, self._calendar, detector, self._responses, self._audit
        )

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    async def handle_turn(
        self,
        conversation_id: str,
        text: str,
        contact_id: Optional[str] = None,
    ) -> str:
        """Process one caller message and return the reply text. Never raises."""
        result = await self.process(conversation_id, text, contact_id)
        return result.message

    async def process(
        self,
        conversation_id: str,
        text: str,
        contact_id: Optional[str] = None,
    ) -> TurnResult:
        """Process one caller message.

        Args:
            conversation_id: Conversation key (usually the caller's number)
            text: Caller's message
            contact_id: Caller contact used to find existing appointments

        Returns:
            TurnResult with the reply; failures produce an apology reply
        """
        start_time = _utcnow()

        try:
            result = await self._process(conversation_id, (text or "").strip(), contact_id)
        except Exception as e:
            logger.error(f"Turn failed for {conversation_id}: {e}", exc_info=True)
            result = TurnResult(
                message=self._responses.technical_difficulty(),
                conversation_id=conversation_id,
                outcome="error",
            )

        result.processing_time_ms = (_utcnow() - start_time).total_seconds() * 1000
        return result

    async def _process(
        self,
        conversation_id: str,
        text: str,
        contact_id: Optional[str],
    ) -> TurnResult:
        if is_end_session_command(text):
            self._sessions.end(conversation_id)
            return TurnResult(
                message=self._responses.session_cleared(),
                conversation_id=conversation_id,
                outcome="session_cleared",
            )

        session = self._sessions.get(conversation_id)
        if contact_id:
            session.contact_id = contact_id
        elif not session.contact_id:
            session.contact_id = conversation_id

        context = self._classification_context(session)
        session.add_turn("user", text)

        intent_result, fields = await asyncio.gather(
            self._classifier.classify(text, session_context=context),
            self._extractor.extract(text, conversation_context=session.history_messages()[:-1]),
        )

        for intent in intent_result.intents:
            if intent.value not in session.intents:
                session.intents.append(intent.value)

        flow_result = await self._dispatch(session, text, intent_result, fields)
        reply = flow_result.message

        session.add_turn("assistant", reply)
        self._sessions.save(session)

        await self._audit.record(
            AuditEvent(
                event_type=AuditEventType.CONVERSATION_TURN,
                conversation_id=conversation_id,
                contact_id=session.contact_id,
                patient_name=session.patient_name,
                action=flow_result.outcome,
                details={
                    "intents": [i.value for i in intent_result.intents],
                    "state": session.state.value,
                    "user_message": text,
                    "reply": reply,
                },
            )
        )

        return TurnResult(
            message=reply,
            conversation_id=conversation_id,
            state=session.state,
            outcome=flow_result.outcome,
            intents=[i.value for i in intent_result.intents],
        )

    async def _dispatch(
        self,
        session: Session,
        text: str,
        intent_result: IntentResult,
        fields: ExtractedFields,
    ) -> FlowResult:
        """Route the turn to whichever flow owns it."""
        pending = session.pending

        if isinstance(pending, BookingPending):
            result = await self.booking.handle_reply(session, text)
            if result.outcome != "declined":
                return result
            if self._merge_fields(session, fields):
                if self.booking.is_ready(session):
                    return await self.booking.offer(session)
            elif session.reschedule is not None:
                # A bare "no" to the replacement slot ends the reschedule
                logger.info(f"Replacement slot declined, reschedule over for {session.conversation_id}")
                session.reschedule = None
            return result

        # Details given while answering a cancellation or reschedule still count
        changed = self._merge_fields(session, fields)

        if isinstance(pending, CancellationPending):
            return await self.cancellation.handle_reply(session, text)

        if isinstance(pending, ReschedulePending):
            return await self.reschedule.handle_reply(session, text)

        if intent_result.has(Intent.CANCEL):
            return await self.cancellation.start(session)

        if intent_result.has(Intent.RESCHEDULE):
            return await self.reschedule.start(session)

        if session.has_intent(Intent.BOOKING.value) and not session.booking_confirmed:
            move(session, BookingState.COLLECTING_INFO)
            if self.booking.is_ready(session) and (changed or intent_result.has(Intent.BOOKING)):
                return await self.booking.offer(session)
            reply = await self._responses.generate(session, text)
            return FlowResult(True, reply, "collecting")

        if session.booking_confirmed and intent_result.has(Intent.BOOKING) and not changed:
            return FlowResult(True, self._responses.already_booked(session.patient_name), "already_booked")

        reply = await self._responses.generate(session, text)
        reply = await self._post_process(session, intent_result, reply)
        return FlowResult(True, reply, "open_ended")

    def _merge_fields(self, session: Session, fields: ExtractedFields) -> bool:
        """Fold validated extracted fields into the session.

        Returns:
            True if anything changed
        """
        changed = False

        if fields.patient_name and not session.patient_name:
            session.patient_name = fields.patient_name
            changed = True

        if fields.treatment and fields.treatment != session.treatment:
            session.treatment = fields.treatment
            changed = True
            if session.provider and not is_eligible(session.treatment, session.provider):
                logger.info(f"{session.provider} does not do {session.treatment.value}, clearing")
                session.provider = None

        if fields.provider and fields.provider != session.provider:
            if session.treatment and not is_eligible(session.treatment, fields.provider):
                logger.warning(
                    f"Ignoring provider {fields.provider} for {session.treatment.value}"
                )
            else:
                session.provider = fields.provider
                changed = True

        if fields.unit_count and fields.unit_count != session.unit_count:
            session.unit_count = fields.unit_count
            changed = True

        if fields.date_time_text and fields.date_time_text != session.date_time_text:
            session.date_time_text = fields.date_time_text
            changed = True

        return changed

    async def _post_process(self, session: Session, intent_result: IntentResult, reply: str) -> str:
        """Append appointment details or pricing notes to an open-ended reply."""
        if intent_result.has(Intent.APPOINTMENT_INQUIRY):
            try:
                appointments = await self._calendar.find_by_contact(
                    session.contact_id or session.conversation_id
                )
                reply = f"{reply}\n\n{self._responses.upcoming_appointments(appointments)}"
            except CalendarClientError:
                logger.warning(f"Appointment inquiry lookup failed for {session.conversation_id}")

        if intent_result.has(Intent.PRICE_INQUIRY) and settings.pricing_info:
            reply = f"{reply}\n\n{settings.pricing_info}"

        return reply

    def _classification_context(self, session: Session) -> dict:
        last_reply = next(
            (turn.content for turn in reversed(session.history) if turn.role == "assistant"),
            None,
        )
        return {
            "state": session.state.value,
            "intents": list(session.intents),
            "pending": type(session.pending).__name__ if session.pending else None,
            "last_reply": last_reply,
        }


# Singleton
_orchestrator: Optional[TurnOrchestrator] = None


def get_turn_orchestrator() -> TurnOrchestrator:
    """Get singleton TurnOrchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = TurnOrchestrator()
    return _orchestrator


async def handle_turn(conversation_id: str, text: str, contact_id: Optional[str] = None) -> str:
    """Convenience function for one turn using the singleton orchestrator."""
    return await get_turn_orchestrator().handle_turn(conversation_id, text, contact_id)
