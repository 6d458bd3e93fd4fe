"""
Client for the FAQ matching service.

The service embeds the message, searches the account's FAQ templates and
returns the best match. Two response shapes are in circulation, so both are
normalized into FAQMatch here.
"""

from typing import Any

import httpx

from inbox_agent.config import settings
from inbox_agent.features.daily_agent.domain.models import FAQMatch
from inbox_agent.infrastructure.observability.logging import get_logger
from inbox_agent.services.infrastructure.retry import (
    CapabilityError,
    ErrorKind,
    capability_error_from_httpx,
    retry_with_backoff,
)

logger = get_logger(__name__)

OPERATION = "detect_faq"


def parse_faq_response(data: dict[str, Any]) -> FAQMatch:
    """Normalize either response shape into an FAQMatch."""
    confidence = data.get("matchConfidence", data.get("confidence", 0.0))
    suggested = data.get("faqAnswer", data.get("suggestedResponse"))
    template_id = data.get("faqTemplateId", data.get("templateId"))

    try:
        confidence = float(confidence or 0.0)
    except (TypeError, ValueError) as e:
        raise CapabilityError(
            f"Invalid confidence in FAQ response: {confidence!r}",
            kind=ErrorKind.TRANSIENT,
            operation=OPERATION,
        ) from e

    cost = data.get("cost")
    return FAQMatch(
        is_faq=bool(data.get("isFAQ", False)),
        confidence=confidence,
        suggested_response=suggested,
        template_id=template_id,
        cost=float(cost) if isinstance(cost, int | float) else None,
    )


class FAQMatchService:
    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url if base_url is not None else settings.FAQ_SERVICE_URL
        self.token = token if token is not None else settings.FAQ_SERVICE_TOKEN
        self._transport = transport

    async def detect(self, text: str, account_id: str, message_id: str | None = None) -> FAQMatch:
        """
        Ask the FAQ service whether text matches one of the account's templates.

        Raises:
            CapabilityError: service not configured, or retries exhausted
        """
        if not self.base_url:
            raise CapabilityError(
                "FAQ_SERVICE_URL not configured", kind=ErrorKind.VALIDATION, operation=OPERATION
            )

        payload = {"messageId": message_id, "messageText": text, "creatorId": account_id}
        return await retry_with_backoff(lambda: self._post(payload), operation=OPERATION)

    async def _post(self, payload: dict[str, Any]) -> FAQMatch:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with httpx.AsyncClient(
                timeout=settings.EXTERNAL_REQUEST_TIMEOUT, transport=self._transport
            ) as client:
                response = await client.post(self.base_url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise capability_error_from_httpx(e, OPERATION) from e
        except ValueError as e:
            raise CapabilityError(f"Invalid JSON from FAQ service: {e}", operation=OPERATION) from e

        if not isinstance(data, dict):
            raise CapabilityError("FAQ service returned a non-object body", operation=OPERATION)

        return parse_faq_response(data)
