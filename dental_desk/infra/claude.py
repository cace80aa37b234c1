"""
Claude API Client

The intent classifier, field extractor, confirmation detector and reply
generator all talk to Anthropic through ClaudeClient. Transient errors are
retried with backoff on the requested model, then the fallback model gets
one pass before the call is given up as a ClaudeClientError.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from anthropic import APIConnectionError, APIError, AsyncAnthropic, RateLimitError

from dental_desk.config import settings

logger = logging.getLogger(__name__)

RETRYABLE = (RateLimitError, APIConnectionError)


class ClaudeClientError(Exception):
    """A model call failed, or its answer cannot be used."""


@dataclass
class ClaudeResponse:
    """Text answer plus accounting for one model call."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int
    stop_reason: Optional[str]
    latency_ms: float

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


def parse_json_response(content: str) -> dict:
    """Parse a JSON object out of a model answer.

    Models sometimes wrap JSON in Markdown fences; those are stripped first.

    Raises:
        ClaudeClientError: If the content is not a JSON object
    """
    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        text = text.rsplit("```", 1)[0]

    try:
        data = json.loads(text.strip())
    except json.JSONDecodeError as e:
        raise ClaudeClientError(f"Invalid JSON from model: {e}") from e

    if not isinstance(data, dict):
        raise ClaudeClientError(f"Expected JSON object, got {type(data).__name__}")
    return data


class ClaudeClient:
    """Anthropic messages API with retry and a fallback model."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        attempts_per_model: int = 2,
        backoff_seconds: float = 1.0,
    ):
        """Initialize Claude client.

        Args:
            api_key: Anthropic API key (defaults to settings)
            attempts_per_model: Tries per model on rate limit / connection errors
            backoff_seconds: First retry delay, doubled on each further retry
        """
        api_key = api_key or settings.anthropic_api_key
        if not api_key:
            raise ClaudeClientError("Anthropic API key is not configured")

        self._client = AsyncAnthropic(api_key=api_key)
        self._fallback_model = settings.claude_fallback_model
        self._attempts = max(1, attempts_per_model)
        self._backoff = backoff_seconds

    async def generate(
        self,
        prompt: str,
        model: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 256,
        temperature: float = 0.0,
    ) -> ClaudeResponse:
        """Answer a single prompt; used for the JSON classification calls."""
        return await self.chat(
            messages=[{"role": "user", "content": prompt}],
            model=model,
            system_prompt=system_prompt,
            max_tokens=max_tokens,
            temperature=temperature,
        )

    async def chat(
        self,
        messages: list[dict],
        model: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 256,
        temperature: float = 0.3,
    ) -> ClaudeResponse:
        """
        Answer a conversation.

        Args:
            messages: Alternating user/assistant turns, oldest first
            model: Model to try first
            system_prompt: System prompt (optional)
            max_tokens: Maximum tokens in response
            temperature: Sampling temperature

        Returns:
            ClaudeResponse from the first model that answered

        Raises:
            ClaudeClientError: If every model failed
        """
        models = [model]
        if self._fallback_model and self._fallback_model != model:
            models.append(self._fallback_model)

        request: dict[str, Any] = {
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": messages,
        }
        if system_prompt:
            request["system"] = system_prompt

        last_error: Optional[Exception] = None
        for candidate in models:
            try:
                return await self._complete(candidate, request)
            except (APIError, ClaudeClientError) as e:
                last_error = e
                logger.warning(f"Model {candidate} failed: {e}")

        raise ClaudeClientError(f"Claude API call failed: {last_error}") from last_error

    async def _complete(self, model: str, request: dict[str, Any]) -> ClaudeResponse:
        start_time = time.time()

        for attempt in range(1, self._attempts + 1):
            try:
                response = await self._client.messages.create(model=model, **request)
                break
            except RETRYABLE:
                if attempt == self._attempts:
                    raise
                delay = self._backoff * 2 ** (attempt - 1)
                logger.info(f"Claude busy or unreachable, retry {attempt} in {delay:.1f}s")
                await asyncio.sleep(delay)

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not text:
            raise ClaudeClientError(f"Empty answer from {model}")

        result = ClaudeResponse(
            content=text,
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
            latency_ms=(time.time() - start_time) * 1000,
        )
        logger.debug(f"{model} answered in {result.latency_ms:.0f}ms ({result.total_tokens} tokens)")
        return result

    async def close(self) -> None:
        await self._client.close()


# Singleton
_claude_client: Optional[ClaudeClient] = None


async def get_claude_client() -> ClaudeClient:
    """Get singleton ClaudeClient.

    Raises:
        ClaudeClientError: If no API key is configured
    """
    global _claude_client
    if _claude_client is None:
        _claude_client = ClaudeClient()
    return _claude_client


async def close_claude_client() -> None:
    """Close the singleton client if one was created."""
    global _claude_client
    if _claude_client is not None:
        await _claude_client.close()
        _claude_client = None
