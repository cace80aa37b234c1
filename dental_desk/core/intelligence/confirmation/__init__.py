"""Yes/no detection for pending actions."""

from .types import ConfirmationContext, ConfirmationOutcome, PendingKind
from .detector import (
    CONFIRMATION_KEYWORDS,
    DECLINE_KEYWORDS,
    ConfirmationDetector,
    get_confirmation_detector,
    keyword_outcome,
)

__all__ = [
    "ConfirmationContext",
    "ConfirmationOutcome",
    "PendingKind",
    "CONFIRMATION_KEYWORDS",
    "DECLINE_KEYWORDS",
    "ConfirmationDetector",
    "get_confirmation_detector",
    "keyword_outcome",
]
