"""Shared Claude Vision client used by the grading and handwriting oracles."""

import asyncio
import json
import logging
from typing import Optional

from anthropic import AsyncAnthropic, APIConnectionError, APIError, APITimeoutError, RateLimitError

from ..config import (
    ANTHROPIC_API_KEY,
    CLAUDE_VISION_MODEL,
    CLAUDE_MAX_TOKENS,
    API_MAX_RETRIES,
    API_RETRY_DELAY,
    API_TIMEOUT,
)
from ..errors import OracleFailure
from ..ingest.images import get_image_as_base64, get_image_media_type

logger = logging.getLogger("scangrade.claude")


def image_block(image) -> dict:
    """Build a base64 image content block for the Messages API."""
    return {
        "type": "image",
        "source": {
            "type": "base64",
            "media_type": get_image_media_type(image),
            "data": get_image_as_base64(image),
        },
    }


def extract_json(response_text: str) -> dict:
    """Pull the outermost JSON object out of a model response."""
    start = response_text.find("{")
    end = response_text.rfind("}") + 1
    if start == -1 or end == 0:
        raise OracleFailure(f"No JSON found in response: {response_text[:500]}", transient=True)
    try:
        return json.loads(response_text[start:end])
    except json.JSONDecodeError as e:
        raise OracleFailure(f"Could not parse response: {e}. Response: {response_text[:500]}", transient=True)


class ClaudeClient:
    """Owns one AsyncAnthropic connection and its retry policy.

    Construct it once per session and pass it to the oracles that need it.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 client: Optional[AsyncAnthropic] = None):
        self.model = model or CLAUDE_VISION_MODEL
        self.client = client or AsyncAnthropic(api_key=api_key or ANTHROPIC_API_KEY, timeout=API_TIMEOUT)

    async def _api_call_with_retry(self, **kwargs) -> object:
        """Make an Anthropic API call with retry logic for transient errors."""
        last_error = None
        for attempt in range(1, API_MAX_RETRIES + 1):
            try:
                return await self.client.messages.create(**kwargs)
            except RateLimitError as e:
                last_error = e
                wait = API_RETRY_DELAY * attempt
                logger.warning("Rate limited (attempt %d/%d), retrying in %ds", attempt, API_MAX_RETRIES, wait)
                await asyncio.sleep(wait)
            except (APITimeoutError, APIConnectionError) as e:
                last_error = e
                logger.warning("API timeout or connection error (attempt %d/%d)", attempt, API_MAX_RETRIES)
                await asyncio.sleep(API_RETRY_DELAY)
            except APIError as e:
                status = getattr(e, "status_code", None)
                if status and status >= 500:
                    last_error = e
                    logger.warning("API server error %s (attempt %d/%d)", status, attempt, API_MAX_RETRIES)
                    await asyncio.sleep(API_RETRY_DELAY)
                else:
                    raise OracleFailure(f"Claude API error: {e}", transient=False) from e
        raise OracleFailure(f"Claude API unavailable after {API_MAX_RETRIES} attempts: {last_error}") from last_error

    async def ask_json(self, content: list, system: Optional[str] = None, max_tokens: int = CLAUDE_MAX_TOKENS) -> dict:
        """Send one user message and parse a JSON object out of the reply."""
        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": content}],
        }
        if system:
            kwargs["system"] = system

        response = await self._api_call_with_retry(**kwargs)
        response_text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )
        return extract_json(response_text)
