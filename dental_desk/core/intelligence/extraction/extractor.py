"""
LLM-based field extraction using Claude Haiku.

Extracts: patient name, treatment, provider, tooth count, date/time phrase.
"""

import logging
import time
from typing import Optional

from dental_desk.config import settings
from dental_desk.core.scheduling.dates import clinic_now
from dental_desk.core.scheduling.treatments import ALL_PROVIDERS, Treatment
from dental_desk.infra.claude import (
    ClaudeClient,
    ClaudeClientError,
    get_claude_client,
    parse_json_response,
)
from .types import ExtractedFields

logger = logging.getLogger(__name__)


EXTRACTION_PROMPT = """Extract dental appointment details from the patient's message.

Today is {today}.

## What to Extract

- patient_name: The patient's own name if they give it (e.g. "I'm Jane Doe" -> "Jane Doe")
- treatment: One of {treatments}. Map "check-up"/"exam" to Consultation, "braces adjustment" to Braces Maintenance
- provider: One of {providers}, only if the patient names a dentist
- unit_count: Number of teeth needing fillings, as an integer
- date_time_text: The date/time phrase exactly as written (e.g. "next Tuesday at 2pm", "tomorrow morning")

Use the recent conversation only to resolve what short answers refer to
(e.g. "Jane" after being asked for a name).

{context}

## Message

"{message}"

## Response

Respond with ONLY valid JSON (use null for anything not mentioned):
{{
    "patient_name": "<name or null>",
    "treatment": "<treatment or null>",
    "provider": "<provider or null>",
    "unit_count": <integer or null>,
    "date_time_text": "<text or null>"
}}"""


class FieldExtractor:
    """LLM-based booking detail extraction using Claude Haiku."""

    def __init__(self, claude_client: Optional[ClaudeClient] = None):
        """Initialize extractor.

        Args:
            claude_client: Optional Claude client (for testing)
        """
        self._client = claude_client

    async def _get_client(self) -> ClaudeClient:
        """Get or create Claude client."""
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    async def extract(
        self,
        message: str,
        conversation_context: Optional[list[dict]] = None,
    ) -> ExtractedFields:
        """
        Extract booking details from a caller message.

        Args:
            message: Caller's message
            conversation_context: Recent conversation for context

        Returns:
            ExtractedFields holding only validated values; empty on failure
        """
        message = message.strip()
        start_time = time.time()

        if not message:
            return ExtractedFields()

        prompt = self._build_prompt(message, conversation_context)

        try:
            client = await self._get_client()
            response = await client.generate(
                prompt=prompt,
                model=settings.claude_intent_model,
                max_tokens=200,
                temperature=0,
            )
            result = ExtractedFields.from_raw(parse_json_response(response.content))
        except ClaudeClientError as e:
            logger.error(f"Field extraction failed: {e}")
            return ExtractedFields()

        result.raw_response = response.content
        result.processing_time_ms = (time.time() - start_time) * 1000
        logger.debug(f"Extracted fields: {result.to_dict()}")
        return result

    def _build_prompt(
        self,
        message: str,
        context: Optional[list[dict]] = None,
    ) -> str:
        """Build extraction prompt."""
        context_block = ""
        if context:
            lines = ["## Recent conversation"]
            for turn in context[-4:]:
                role = "Patient" if turn.get("role") == "user" else "Assistant"
                lines.append(f"{role}: {turn.get('content', '')[:200]}")
            context_block = "\n".join(lines)

        return EXTRACTION_PROMPT.format(
            today=clinic_now().strftime("%A, %Y-%m-%d"),
            treatments=", ".join(t.value for t in Treatment),
            providers=", ".join(ALL_PROVIDERS),
            context=context_block,
            message=message,
        )


# Singleton
_extractor: Optional[FieldExtractor] = None


def get_field_extractor() -> FieldExtractor:
    """Get singleton FieldExtractor."""
    global _extractor
    if _extractor is None:
        _extractor = FieldExtractor()
    return _extractor
