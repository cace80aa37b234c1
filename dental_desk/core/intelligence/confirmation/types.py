"""Confirmation outcome types."""

from dataclasses import dataclass
from enum import Enum


class ConfirmationOutcome(str, Enum):
    """How the caller answered a yes/no question."""

    CONFIRMED = "confirmed"
    DECLINED = "declined"
    AMBIGUOUS = "ambiguous"


class PendingKind(str, Enum):
    """Which action the caller is being asked to confirm."""

    BOOKING = "booking"
    CANCELLATION = "cancellation"
    RESCHEDULE = "reschedule"


@dataclass(frozen=True)
class ConfirmationContext:
    """What is being confirmed, for the model prompt."""

    kind: PendingKind
    description: str = ""
