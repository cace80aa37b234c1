"""
Response Generator.

Fixed templates for every deterministic step of booking, cancelling and
rescheduling, plus an LLM reply for open-ended turns with a template
fallback when the model is unavailable.
"""

import logging
from typing import Optional

from dental_desk.config import settings
from dental_desk.core.intelligence.session.models import Session
from dental_desk.core.scheduling.calendar_client import Appointment, AppointmentSlot
from dental_desk.core.scheduling.dates import clinic_now, format_when
from dental_desk.core.scheduling.treatments import ALL_PROVIDERS, Treatment
from dental_desk.infra.claude import ClaudeClient, ClaudeClientError, get_claude_client

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are the friendly text-message receptionist of {clinic}, a dental clinic.

Today is {today}.

You help patients book, cancel and reschedule appointments. Booking,
cancelling and availability checks are done by the system, not by you:
never say an appointment is booked, cancelled or available unless the
conversation already shows the system confirmed it.

Treatments: {treatments}.
Dentists: {providers} (Dr BracesA and Dr BracesB do braces maintenance only).
Opening hours: Monday to Friday, {opening}:00 to {closing}:00.

## What we know about this patient
{known}

## Still needed to book
{missing}

Guidelines:
- Keep replies short (1-3 sentences), warm and plain
- Ask for one missing detail at a time
- Use the patient's name if known
- For prices or anything you cannot answer, offer to pass the question to {contact}

Reply with the message text only."""


FIELD_QUESTIONS = {
    "patient_name": "May I have your full name for the appointment?",
    "treatment": (
        "What would you like to come in for? We offer consultations, cleanings, "
        "fillings and braces maintenance."
    ),
    "unit_count": "How many teeth need fillings?",
}


class ResponseGenerator:
    """
    Reply builder.

    Deterministic replies come from the template methods; ``generate``
    is used only when no state machine claimed the turn.
    """

    def __init__(self, claude_client: Optional[ClaudeClient] = None):
        """Initialize generator.

        Args:
            claude_client: Claude client (uses singleton if not provided)
        """
        self._claude_client = claude_client

    async def _get_client(self) -> ClaudeClient:
        """Get Claude client."""
        if self._claude_client is None:
            self._claude_client = await get_claude_client()
        return self._claude_client

    async def generate(self, session: Session, user_message: str) -> str:
        """Open-ended reply for the current turn.

        Args:
            session: Session for the conversation (history includes the
                caller's current message)
            user_message: The caller's message

        Returns:
            Reply text, never raises
        """
        messages = session.history_messages() or [{"role": "user", "content": user_message}]

        try:
            client = await self._get_client()
            response = await client.chat(
                messages=messages,
                system_prompt=self.build_system_prompt(session),
                model=settings.claude_reply_model,
                max_tokens=250,
                temperature=0.5,
            )
            reply = response.content.strip()
            if reply:
                return reply
        except ClaudeClientError as e:
            logger.warning(f"LLM reply generation failed: {e}")

        return self.fallback(session)

    def build_system_prompt(self, session: Session) -> str:
        """System prompt describing the clinic and what is known so far."""
        known = []
        if session.patient_name:
            known.append(f"- Name: {session.patient_name}")
        if session.treatment:
            known.append(f"- Treatment: {session.treatment.value}")
        if session.provider:
            known.append(f"- Dentist: {session.provider}")
        if session.unit_count:
            known.append(f"- Teeth needing fillings: {session.unit_count}")
        if session.date_time_text:
            known.append(f"- Preferred time: {session.date_time_text}")
        if session.booking_confirmed:
            known.append("- Already has a confirmed booking in this conversation")

        missing = [FIELD_QUESTIONS[f] for f in session.missing_fields()]

        return SYSTEM_PROMPT.format(
            clinic=settings.clinic_name,
            today=clinic_now().strftime("%A, %B %d, %Y"),
            treatments=", ".join(t.value for t in Treatment),
            providers=", ".join(ALL_PROVIDERS),
            opening=settings.working_hours_start,
            closing=settings.working_hours_end,
            known="\n".join(known) or "- Nothing yet",
            missing="\n".join(f"- {q}" for q in missing) or "- Nothing, a slot can be offered",
            contact=settings.receptionist_contact,
        )

    def fallback(self, session: Session) -> str:
        """Template reply when the model is unavailable."""
        if session.has_intent("booking") and not session.booking_confirmed:
            missing = session.missing_fields()
            if missing:
                return self.ask_for(missing[0], session.patient_name)
        return self.greeting()

    # === Collection ===

    def greeting(self) -> str:
        return (
            f"Hello! Thanks for contacting {settings.clinic_name}. I can help you book, "
            "cancel or reschedule an appointment. How can I help you today?"
        )

    def ask_for(self, field_name: str, patient_name: Optional[str] = None) -> str:
        question = FIELD_QUESTIONS.get(field_name, "Could you tell me a bit more?")
        if patient_name and field_name != "patient_name":
            return f"Thanks, {patient_name}. {question}"
        return question

    def session_cleared(self) -> str:
        return "Your session has been cleared. Starting fresh! How can I help you today?"

    def technical_difficulty(self) -> str:
        return "I'm having trouble right now, please try again."

    def contact_staff(self, what: str) -> str:
        return (
            f"I apologize, there was an error {what}. Please contact "
            f"{settings.receptionist_contact} directly and they will help you."
        )

    # === Booking ===

    def offer_slot(self, slot: AppointmentSlot, treatment: Treatment) -> str:
        return (
            "I found an available slot:\n"
            f"Doctor: {slot.provider}\n"
            f"Treatment: {treatment.value}\n"
            f"When: {format_when(slot.start)} ({slot.duration_minutes} minutes)\n"
            "Would you like to confirm this appointment?"
        )

    def no_slots(self, treatment: Treatment, provider: Optional[str] = None) -> str:
        with_provider = f" with {provider}" if provider else ""
        return (
            f"I'm sorry, there are no open slots for {treatment.value.lower()}{with_provider} "
            "in the coming weeks. Would you like to try another dentist, or shall I ask "
            f"{settings.receptionist_contact} to call you?"
        )

    def slot_taken(self) -> str:
        return "Sorry, that time was just taken by someone else. Let me find another time for you."

    def booking_confirmed(self, slot: AppointmentSlot, treatment: Treatment, patient_name: str) -> str:
        return (
            f"You're all set, {patient_name}! Your {treatment.value.lower()} with "
            f"{slot.provider} is booked for {format_when(slot.start)}. "
            "See you then!"
        )

    def offer_declined(self) -> str:
        return (
            "No problem. What day or time would suit you better? "
            "You can also ask for a different dentist."
        )

    def booking_failed(self) -> str:
        return self.contact_staff("booking your appointment")

    def already_booked(self, patient_name: Optional[str]) -> str:
        name = f", {patient_name}" if patient_name else ""
        return (
            f"Your appointment is already booked{name}. If you'd like to change it, "
            "just say you want to reschedule."
        )

    # === Cancellation ===

    def cancellation_found(self, appointment: Appointment) -> str:
        return (
            "I found your appointment:\n"
            f"{self.describe_appointment(appointment)}\n"
            "Would you like to confirm cancellation?"
        )

    def cancellation_done(self, appointment: Appointment) -> str:
        return (
            f"Your appointment with {appointment.provider} on "
            f"{format_when(appointment.start)} has been cancelled. "
            "Is there anything else I can help you with?"
        )

    def cancellation_kept(self) -> str:
        return "No problem. Your appointment remains scheduled. Is there anything else I can help you with?"

    def cancellation_failed(self) -> str:
        return self.contact_staff("cancelling your appointment")

    def no_appointment_found(self) -> str:
        return (
            "I couldn't find any upcoming appointments under your number. "
            "Would you like to book a new one?"
        )

    def lookup_failed(self) -> str:
        return self.contact_staff("looking up your appointment")

    # === Reschedule ===

    def reschedule_found(self, appointment: Appointment) -> str:
        return (
            "I found your appointment:\n"
            f"{self.describe_appointment(appointment)}\n"
            "Would you like to reschedule it? I'll cancel this one and find you a new time."
        )

    def reschedule_choose(self, appointments: list[Appointment]) -> str:
        lines = ["You have more than one upcoming appointment. Which one would you like to reschedule?"]
        for i, appointment in enumerate(appointments, 1):
            lines.append(f"{i}. {appointment.provider}, {format_when(appointment.start)}")
        lines.append("Reply with the number or the day.")
        return "\n".join(lines)

    def reschedule_cancelled(self, appointment: Appointment) -> str:
        return f"I've cancelled your appointment on {format_when(appointment.start)}."

    def reschedule_kept(self) -> str:
        return "No problem. Your appointment remains scheduled as it was. Anything else I can help with?"

    def reschedule_failed(self) -> str:
        return self.contact_staff("rescheduling your appointment")

    # === Inquiries ===

    def describe_appointment(self, appointment: Appointment) -> str:
        lines = [f"Doctor: {appointment.provider}"]
        if appointment.treatment:
            lines.append(f"Treatment: {appointment.treatment}")
        lines.append(f"When: {format_when(appointment.start)}")
        return "\n".join(lines)

    def upcoming_appointments(self, appointments: list[Appointment]) -> str:
        if not appointments:
            return "I don't see any upcoming appointments under your number."
        lines = ["Your upcoming appointments:"]
        for appointment in appointments:
            lines.append(f"- {appointment.provider}, {format_when(appointment.start)}")
        return "\n".join(lines)


# Singleton
_generator: Optional[ResponseGenerator] = None


def get_response_generator() -> ResponseGenerator:
    """Get singleton ResponseGenerator."""
    global _generator
    if _generator is None:
        _generator = ResponseGenerator()
    return _generator
