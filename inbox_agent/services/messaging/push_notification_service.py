"""
Client for the push notification gateway.

Sends one multicast request per notification. The gateway reports delivery
per endpoint, so a partial failure comes back as a DeliveryReport rather
than an exception.
"""

from dataclasses import dataclass, field
from typing import Any

import httpx

from inbox_agent.config import settings
from inbox_agent.features.daily_agent.domain.models import DeviceEndpoint
from inbox_agent.infrastructure.observability.logging import get_logger
from inbox_agent.services.infrastructure.retry import (
    CapabilityError,
    ErrorKind,
    capability_error_from_httpx,
    retry_with_backoff,
)

logger = get_logger(__name__)

OPERATION = "send_push"


@dataclass(slots=True)
class DeliveryReport:
    success_count: int
    failure_count: int
    failed_tokens: list[str] = field(default_factory=list)


class PushNotificationService:
    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url if base_url is not None else settings.PUSH_GATEWAY_URL
        self.token = token if token is not None else settings.PUSH_GATEWAY_TOKEN
        self._transport = transport

    async def send_multicast(
        self,
        endpoints: list[DeviceEndpoint],
        title: str,
        body: str,
        data: dict[str, str],
    ) -> DeliveryReport:
        """
        Deliver a notification to every endpoint.

        Raises:
            CapabilityError: gateway unreachable or request rejected
        """
        if not self.base_url:
            raise CapabilityError(
                "PUSH_GATEWAY_URL not configured", kind=ErrorKind.VALIDATION, operation=OPERATION
            )

        tokens = [endpoint.token for endpoint in endpoints]
        payload = {
            "tokens": tokens,
            "notification": {"title": title, "body": body},
            "data": data,
        }
        result = await retry_with_backoff(lambda: self._post(payload), operation=OPERATION)

        responses = result.get("responses") or []
        failed_tokens = [
            token
            for token, item in zip(tokens, responses, strict=False)
            if not item.get("success", False)
        ]
        success_count = int(result.get("successCount", len(tokens) - len(failed_tokens)))
        report = DeliveryReport(
            success_count=success_count,
            failure_count=int(result.get("failureCount", len(tokens) - success_count)),
            failed_tokens=failed_tokens,
        )

        if report.failure_count:
            logger.warning(
                "Push delivery partially failed",
                succeeded=report.success_count,
                failed=report.failure_count,
            )
        return report

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
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
            raise CapabilityError(f"Invalid JSON from push gateway: {e}", operation=OPERATION) from e

        return data if isinstance(data, dict) else {}
