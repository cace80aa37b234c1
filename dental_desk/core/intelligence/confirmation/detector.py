"""
Confirmation detection.

Decides whether a reply to "Would you like to confirm ...?" is a yes, a no,
or neither. The model handles paraphrase; whole-word keyword lists are the
fallback. Ambiguous is never treated as yes.
"""

import logging
import re
from typing import Optional

from dental_desk.config import settings
from dental_desk.infra.claude import (
    ClaudeClient,
    ClaudeClientError,
    get_claude_client,
    parse_json_response,
)
from .types import ConfirmationContext, ConfirmationOutcome, PendingKind

logger = logging.getLogger(__name__)


CONFIRMATION_KEYWORDS = (
    "yes",
    "ok",
    "okay",
    "sure",
    "confirm",
    "confirmed",
    "yep",
    "yeah",
    "alright",
    "sounds good",
    "that works",
    "perfect",
    "great",
)

DECLINE_KEYWORDS = (
    "no",
    "nope",
    "cancel",
    "change",
    "different",
    "not",
    "don't",
    "decline",
)

CONFIRMATION_PROMPT = """The assistant of a dental clinic asked the patient to confirm an action.

## Pending action

{kind}: {description}

## Patient's reply

"{message}"

Decide whether the reply clearly accepts the pending action, clearly rejects it,
or does neither (a question, a new request, or a mixed answer).

Respond with ONLY valid JSON:
{{"isConfirmation": <true/false>, "isDecline": <true/false>}}"""


def _matches_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(re.search(rf"(?<![\w']){re.escape(k)}(?![\w'])", text) for k in keywords)


def keyword_outcome(
    message: str,
    kind: Optional[PendingKind] = None,
) -> ConfirmationOutcome:
    """
    Classify a reply using the keyword lists.

    When a cancellation is being confirmed, "cancel" agrees with the pending
    action rather than rejecting it.
    """
    text = message.lower().replace("’", "'")
    deny = DECLINE_KEYWORDS
    if kind == PendingKind.CANCELLATION:
        deny = tuple(k for k in deny if k != "cancel")

    confirmed = _matches_any(text, CONFIRMATION_KEYWORDS)
    declined = _matches_any(text, deny)

    if kind == PendingKind.CANCELLATION and not confirmed and not declined:
        confirmed = _matches_any(text, ("cancel",))

    if confirmed and not declined:
        return ConfirmationOutcome.CONFIRMED
    if declined and not confirmed:
        return ConfirmationOutcome.DECLINED
    return ConfirmationOutcome.AMBIGUOUS


class ConfirmationDetector:
    """Yes/no/ambiguous classifier for replies to a pending action."""

    def __init__(self, claude_client: Optional[ClaudeClient] = None):
        """Initialize detector.

        Args:
            claude_client: Optional Claude client (for testing)
        """
        self._client = claude_client

    async def _get_client(self) -> ClaudeClient:
        """Get or create Claude client."""
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    async def detect(
        self,
        message: str,
        context: ConfirmationContext,
    ) -> ConfirmationOutcome:
        """
        Classify the caller's reply to a pending action.

        Args:
            message: Caller's reply
            context: What the caller is confirming

        Returns:
            ConfirmationOutcome, never raises
        """
        message = message.strip()
        if not message:
            return ConfirmationOutcome.AMBIGUOUS

        try:
            outcome = await self._detect_with_model(message, context)
        except ClaudeClientError as e:
            logger.warning(f"Confirmation model unavailable, using keywords: {e}")
            outcome = keyword_outcome(message, context.kind)

        logger.debug(f"Confirmation for {context.kind.value}: {outcome.value}")
        return outcome

    async def _detect_with_model(
        self,
        message: str,
        context: ConfirmationContext,
    ) -> ConfirmationOutcome:
        client = await self._get_client()
        response = await client.generate(
            prompt=CONFIRMATION_PROMPT.format(
                kind=context.kind.value,
                description=context.description or "(no details)",
                message=message,
            ),
            model=settings.claude_intent_model,
            max_tokens=50,
            temperature=0,
        )

        data = parse_json_response(response.content)
        is_confirmation = data.get("isConfirmation") is True
        is_decline = data.get("isDecline") is True

        if is_confirmation and not is_decline:
            return ConfirmationOutcome.CONFIRMED
        if is_decline and not is_confirmation:
            return ConfirmationOutcome.DECLINED
        return ConfirmationOutcome.AMBIGUOUS


# Singleton
_detector: Optional[ConfirmationDetector] = None


def get_confirmation_detector() -> ConfirmationDetector:
    """Get singleton ConfirmationDetector."""
    global _detector
    if _detector is None:
        _detector = ConfirmationDetector()
    return _detector
