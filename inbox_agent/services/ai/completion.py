"""
Shared JSON-mode chat completion call for the message analysis services.

Every failure is raised as a CapabilityError so callers can hand the call
to retry_with_backoff without knowing about the OpenAI SDK.
"""

import json
from typing import Any

import openai
from openai import AsyncOpenAI

from inbox_agent.config import settings
from inbox_agent.infrastructure.observability.logging import get_logger
from inbox_agent.services.infrastructure.retry import (
    CapabilityError,
    ErrorKind,
    capability_error_from_openai,
)

logger = get_logger(__name__)


def build_openai_client() -> AsyncOpenAI | None:
    """Create the shared client, or None when no API key is configured."""
    if not settings.openai_configured():
        logger.warning("OPENAI_API_KEY not configured, AI capabilities disabled")
        return None

    # Retries are handled by retry_with_backoff so backoff and logging stay uniform
    return AsyncOpenAI(
        api_key=settings.OPENAI_API_KEY,
        timeout=settings.OPENAI_TIMEOUT_SECONDS,
        max_retries=0,
    )


class JsonCompletionService:
    """Base class for services that ask a model for a single JSON object."""

    operation = "json_completion"

    def __init__(self, client: AsyncOpenAI | None = None, *, model: str, temperature: float):
        self.client = client
        self.model = model
        self.temperature = temperature

    async def _complete_json(self, system_message: str, user_message: str) -> dict[str, Any]:
        if self.client is None:
            raise CapabilityError(
                "OpenAI client not configured",
                kind=ErrorKind.PERMANENT,
                operation=self.operation,
            )

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_message},
                    {"role": "user", "content": user_message},
                ],
                max_tokens=settings.OPENAI_MAX_TOKENS,
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as e:
            raise capability_error_from_openai(e, self.operation) from e

        if not response.choices or not response.choices[0].message.content:
            raise CapabilityError("Empty response from OpenAI API", operation=self.operation)

        content = response.choices[0].message.content.strip()
        logger.debug(
            "OpenAI call successful",
            operation=self.operation,
            model=self.model,
            usage_tokens=response.usage.total_tokens if response.usage else 0,
        )

        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            # Malformed model output is treated as transient and retried
            raise CapabilityError(
                f"Invalid JSON from model: {e}", operation=self.operation
            ) from e

        if not isinstance(payload, dict):
            raise CapabilityError("Model response is not a JSON object", operation=self.operation)

        return payload
