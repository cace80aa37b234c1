"""Booking state machine."""

from enum import Enum
from typing import Set


class BookingState(str, Enum):
    """States in the appointment booking flow."""

    IDLE = "idle"
    COLLECTING_INFO = "collecting_info"
    SLOT_OFFERED = "slot_offered"
    COMMITTED = "committed"


# Any state may fall back to COLLECTING_INFO on error
VALID_TRANSITIONS: dict[BookingState, Set[BookingState]] = {
    BookingState.IDLE: {
        BookingState.COLLECTING_INFO,
    },
    BookingState.COLLECTING_INFO: {
        BookingState.COLLECTING_INFO,
        BookingState.SLOT_OFFERED,
    },
    BookingState.SLOT_OFFERED: {
        BookingState.SLOT_OFFERED,
        BookingState.COMMITTED,
        BookingState.COLLECTING_INFO,
    },
    BookingState.COMMITTED: {
        BookingState.COLLECTING_INFO,  # Rescheduling starts a new attempt
    },
}


def can_transition(from_state: BookingState, to_state: BookingState) -> bool:
    """Check if a state transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())


def get_valid_transitions(state: BookingState) -> Set[BookingState]:
    """Get all valid transitions from a state."""
    return VALID_TRANSITIONS.get(state, set())
