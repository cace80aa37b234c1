"""Conversation session state: models, booking states and the in-memory store."""

from .models import (
    BookingPending,
    CancellationPending,
    ConversationTurn,
    PendingAction,
    ReschedulePending,
    RescheduleCarryOver,
    Session,
)
from .manager import SessionStore, get_session_store
from .state import BookingState, can_transition

__all__ = [
    # Models
    "BookingPending",
    "CancellationPending",
    "ConversationTurn",
    "PendingAction",
    "ReschedulePending",
    "RescheduleCarryOver",
    "Session",
    # Store
    "SessionStore",
    "get_session_store",
    # State
    "BookingState",
    "can_transition",
]
