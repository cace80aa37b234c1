"""Intent types for conversation classification."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Intent(str, Enum):
    """What the caller is trying to do. A message may carry several."""

    BOOKING = "booking"                          # Book a new appointment
    CANCEL = "cancel"                            # Cancel an existing one
    RESCHEDULE = "reschedule"                    # Move an existing one
    PRICE_INQUIRY = "price_inquiry"              # Ask what something costs
    APPOINTMENT_INQUIRY = "appointment_inquiry"  # Ask about their booking

    @classmethod
    def parse(cls, value: str) -> Optional["Intent"]:
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass
class IntentResult:
    """Result of intent classification."""

    intents: list[Intent] = field(default_factory=list)

    # Whether the keyword fallback produced this result
    fallback_used: bool = False

    # Raw LLM output for debugging
    raw_response: Optional[str] = None

    processing_time_ms: float = 0.0

    def has(self, intent: Intent) -> bool:
        return intent in self.intents

    @property
    def is_empty(self) -> bool:
        return not self.intents

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "intents": [intent.value for intent in self.intents],
            "fallback_used": self.fallback_used,
            "processing_time_ms": self.processing_time_ms,
        }
