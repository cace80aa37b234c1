"""Intent classification for caller messages."""

from .types import Intent, IntentResult
from .classifier import (
    IntentClassifier,
    get_intent_classifier,
    is_end_session_command,
    keyword_intents,
)

__all__ = [
    "Intent",
    "IntentResult",
    "IntentClassifier",
    "get_intent_classifier",
    "is_end_session_command",
    "keyword_intents",
]
