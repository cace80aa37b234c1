"""
Intent classification.

Claude Haiku classifies each message into zero or more intents. When the
model is unavailable or answers with something unusable, a keyword
fallback keeps the conversation moving.
"""

import logging
import re
import time
from typing import Optional

from dental_desk.config import settings
from dental_desk.infra.claude import (
    ClaudeClient,
    ClaudeClientError,
    get_claude_client,
    parse_json_response,
)
from .types import Intent, IntentResult

logger = logging.getLogger(__name__)


CLASSIFICATION_PROMPT = """You classify messages sent to a dental clinic's booking assistant.

## Intents (a message may have several, or none)

- booking: wants to BOOK a new appointment or is giving details for one
- cancel: wants to CANCEL an existing appointment
- reschedule: wants to MOVE an existing appointment to another time
- price_inquiry: asks what a treatment costs
- appointment_inquiry: asks when/where their existing appointment is

Greetings, thanks and small talk have no intent.

## Context

{context}

## Message

"{message}"

## Response

Respond with ONLY valid JSON:
{{"intents": ["<intent>", ...]}}"""


END_SESSION_COMMANDS = (
    "end session",
    "clear session",
    "reset session",
    "start over",
    "restart",
    "new session",
)

_END_SESSION = re.compile(
    r"^\s*(?:" + "|".join(re.escape(c) for c in END_SESSION_COMMANDS) + r")\s*[.!]*\s*$",
    re.IGNORECASE,
)


def is_end_session_command(message: str) -> bool:
    """True if the whole message is a request to wipe the conversation."""
    return bool(_END_SESSION.match(message or ""))


def _has(text: str, *phrases: str) -> bool:
    return any(re.search(rf"\b{re.escape(p)}\b", text) for p in phrases)


def keyword_intents(message: str) -> list[Intent]:
    """Deterministic intent detection used when the model is unavailable."""
    text = message.lower()
    intents: list[Intent] = []

    rescheduling = _has(
        text,
        "reschedule",
        "move my appointment",
        "change my appointment",
        "different time",
    )
    if rescheduling:
        intents.append(Intent.RESCHEDULE)
    elif _has(text, "cancel"):
        intents.append(Intent.CANCEL)
    elif _has(text, "book", "appointment", "schedule", "booking"):
        if not _has(text, "when is my", "my appointment"):
            intents.append(Intent.BOOKING)

    if _has(text, "price", "cost", "how much", "fee", "fees"):
        intents.append(Intent.PRICE_INQUIRY)

    if _has(text, "when is my", "my appointment", "upcoming") and not intents:
        intents.append(Intent.APPOINTMENT_INQUIRY)

    return intents


class IntentClassifier:
    """LLM-based intent classifier with a keyword fallback."""

    def __init__(self, claude_client: Optional[ClaudeClient] = None):
        """Initialize classifier.

        Args:
            claude_client: Optional Claude client (for testing)
        """
        self._client = claude_client

    async def _get_client(self) -> ClaudeClient:
        """Get or create Claude client."""
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    async def classify(
        self,
        message: str,
        session_context: Optional[dict] = None,
    ) -> IntentResult:
        """
        Classify the intents in a caller message.

        Args:
            message: Caller's message
            session_context: Current session state for context

        Returns:
            IntentResult, never raises
        """
        message = message.strip()
        start_time = time.time()

        if not message:
            return IntentResult()

        prompt = CLASSIFICATION_PROMPT.format(
            context=self._build_context(session_context),
            message=message,
        )

        try:
            client = await self._get_client()
            response = await client.generate(
                prompt=prompt,
                model=settings.claude_intent_model,
                max_tokens=100,
                temperature=0,
            )
            result = self._parse_response(response.content)
        except ClaudeClientError as e:
            logger.warning(f"Intent model unavailable, using keywords: {e}")
            result = IntentResult(intents=keyword_intents(message), fallback_used=True)

        result.processing_time_ms = (time.time() - start_time) * 1000
        logger.debug(f"Classified intents: {[i.value for i in result.intents]}")
        return result

    def _build_context(self, session_context: Optional[dict]) -> str:
        """Build context string for the prompt."""
        if not session_context:
            return "New conversation, no prior context."

        parts = []
        if session_context.get("state"):
            parts.append(f"Booking state: {session_context['state']}")
        if session_context.get("intents"):
            parts.append(f"Earlier intents: {', '.join(session_context['intents'])}")
        if session_context.get("pending"):
            parts.append(f"Awaiting caller's answer about: {session_context['pending']}")
        if session_context.get("last_reply"):
            parts.append(f"Assistant just said: \"{session_context['last_reply'][:200]}\"")

        return "\n".join(parts) or "New conversation, no prior context."

    def _parse_response(self, content: str) -> IntentResult:
        """Parse LLM JSON response.

        Raises:
            ClaudeClientError: If the answer is not the expected JSON
        """
        data = parse_json_response(content)
        raw = data.get("intents") or []
        if not isinstance(raw, list):
            raise ClaudeClientError(f"Expected intent list, got {raw!r}")

        intents = []
        for value in raw:
            intent = Intent.parse(str(value))
            if intent is None:
                logger.warning(f"Ignoring unknown intent from model: {value!r}")
            elif intent not in intents:
                intents.append(intent)

        return IntentResult(intents=intents, raw_response=content)


# Singleton
_classifier: Optional[IntentClassifier] = None


def get_intent_classifier() -> IntentClassifier:
    """Get singleton IntentClassifier."""
    global _classifier
    if _classifier is None:
        _classifier = IntentClassifier()
    return _classifier
