"""
Conversation session data.

A session holds everything known about one caller's conversation: the
profile fields collected so far, the single action awaiting the caller's
confirmation, and a bounded turn history used as AI context.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from dental_desk.core.intelligence.session.state import BookingState
from dental_desk.core.scheduling.calendar_client import Appointment, AppointmentSlot
from dental_desk.core.scheduling.treatments import Treatment, needs_unit_count


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BookingPending:
    """A slot has been offered and awaits yes/no."""

    slot: AppointmentSlot


@dataclass(frozen=True)
class CancellationPending:
    """An appointment has been presented for cancellation."""

    appointment: Appointment


@dataclass(frozen=True)
class ReschedulePending:
    """
    A reschedule is in progress.

    With several existing appointments the caller first picks one from
    ``candidates``; ``appointment`` is set once the choice is made.
    """

    appointment: Optional[Appointment] = None
    candidates: tuple[Appointment, ...] = ()
    preserved_provider: Optional[str] = None

    @property
    def awaiting_choice(self) -> bool:
        return self.appointment is None


PendingAction = Union[BookingPending, CancellationPending, ReschedulePending, None]


@dataclass(frozen=True)
class RescheduleCarryOver:
    """What survives the cancel half of a reschedule into the booking half."""

    excluded_slot: AppointmentSlot
    preserved_provider: Optional[str] = None


@dataclass
class ConversationTurn:
    """Single message in the conversation history."""

    role: str  # "user" or "assistant"
    content: str
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Session:
    """State for one conversation, keyed by conversation id."""

    conversation_id: str
    contact_id: Optional[str] = None

    # Caller profile
    patient_name: Optional[str] = None
    treatment: Optional[Treatment] = None
    provider: Optional[str] = None
    unit_count: Optional[int] = None
    date_time_text: Optional[str] = None
    intents: list[str] = field(default_factory=list)

    # Booking lifecycle
    state: BookingState = BookingState.IDLE
    pending: PendingAction = None
    booking_confirmed: bool = False
    committed_appointment_id: Optional[str] = None
    reschedule: Optional[RescheduleCarryOver] = None

    # Open-slot cache, display/matching only
    slot_cache: list[AppointmentSlot] = field(default_factory=list)
    slot_cache_key: Optional[tuple] = None
    slot_cache_at: Optional[datetime] = None

    # Bookkeeping
    history: list[ConversationTurn] = field(default_factory=list)
    max_history: int = 20
    created_at: datetime = field(default_factory=_utcnow)
    last_activity: datetime = field(default_factory=_utcnow)

    # === Pending action views ===

    @property
    def booking_pending(self) -> bool:
        return isinstance(self.pending, BookingPending)

    @property
    def cancellation_pending(self) -> bool:
        return isinstance(self.pending, CancellationPending)

    @property
    def reschedule_pending(self) -> bool:
        return isinstance(self.pending, ReschedulePending)

    @property
    def selected_slot(self) -> Optional[AppointmentSlot]:
        return self.pending.slot if isinstance(self.pending, BookingPending) else None

    @property
    def booking_to_cancel(self) -> Optional[Appointment]:
        if isinstance(self.pending, CancellationPending):
            return self.pending.appointment
        return None

    @property
    def appointment_to_reschedule(self) -> Optional[Appointment]:
        if isinstance(self.pending, ReschedulePending):
            return self.pending.appointment
        return None

    @property
    def excluded_slot(self) -> Optional[AppointmentSlot]:
        return self.reschedule.excluded_slot if self.reschedule else None

    def clear_pending(self) -> None:
        self.pending = None

    # === Profile ===

    def missing_fields(self) -> list[str]:
        """Profile fields still needed before a slot can be offered."""
        missing = []
        if not self.patient_name:
            missing.append("patient_name")
        if not self.treatment:
            missing.append("treatment")
        if needs_unit_count(self.treatment) and not self.unit_count:
            missing.append("unit_count")
        return missing

    def has_intent(self, intent: str) -> bool:
        return intent in self.intents

    # === Slot cache ===

    def cached_slots(self, key: tuple, ttl_seconds: int) -> Optional[list[AppointmentSlot]]:
        """Cached open intervals for key, or None when absent or stale."""
        if self.slot_cache_key != key or self.slot_cache_at is None:
            return None
        if _utcnow() - self.slot_cache_at > timedelta(seconds=ttl_seconds):
            return None
        return list(self.slot_cache)

    def cache_slots(self, key: tuple, slots: list[AppointmentSlot]) -> None:
        self.slot_cache = list(slots)
        self.slot_cache_key = key
        self.slot_cache_at = _utcnow()

    def clear_slot_cache(self) -> None:
        self.slot_cache = []
        self.slot_cache_key = None
        self.slot_cache_at = None

    # === History ===

    def add_turn(self, role: str, content: str) -> None:
        """Append a message, keeping only the most recent turns."""
        self.history.append(ConversationTurn(role=role, content=content))
        if len(self.history) > self.max_history:
            self.history = self.history[-self.max_history:]

    def history_messages(self) -> list[dict]:
        """History in Anthropic messages format."""
        return [{"role": turn.role, "content": turn.content} for turn in self.history]

    def to_dict(self) -> dict:
        """Snapshot for debugging endpoints."""
        pending = None
        if self.pending is not None:
            pending = type(self.pending).__name__
        return {
            "conversation_id": self.conversation_id,
            "contact_id": self.contact_id,
            "patient_name": self.patient_name,
            "treatment": self.treatment.value if self.treatment else None,
            "provider": self.provider,
            "unit_count": self.unit_count,
            "date_time_text": self.date_time_text,
            "intents": list(self.intents),
            "state": self.state.value,
            "pending": pending,
            "selected_slot": self.selected_slot.to_dict() if self.selected_slot else None,
            "booking_confirmed": self.booking_confirmed,
            "committed_appointment_id": self.committed_appointment_id,
            "excluded_slot": self.excluded_slot.to_dict() if self.excluded_slot else None,
            "turns": len(self.history),
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
        }
