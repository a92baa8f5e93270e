# app/infrastructure/external/efiling_gateway_client.py
"""
Submission gateway client.

The state machine only depends on the SubmissionGateway protocol:

    submit(document, idempotency_key) -> SubmissionReceipt(ack_number)

EFilingGatewayClient is the httpx implementation. It forwards the key as an
``Idempotency-Key`` header so a retried request returns the original
acknowledgement instead of filing twice, and maps transport failures to
SubmissionError (timeouts, 5xx and 429 retriable; other 4xx not).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from app.domain.errors import SubmissionError

logger = logging.getLogger("efiling_gateway_client")


@dataclass(frozen=True)
class SubmissionReceipt:
    ack_number: str
    raw: dict | None = None


class SubmissionGateway(Protocol):
    async def submit(self, document: dict[str, Any], idempotency_key: str) -> SubmissionReceipt:
        ...


class EFilingGatewayClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not base_url or not api_key:
            raise RuntimeError("E-filing gateway not configured")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings=None) -> EFilingGatewayClient:
        if settings is None:
            from app.config.settings import get_settings

            settings = get_settings()
        return cls(
            settings.EFILING_GATEWAY_BASE_URL,
            settings.EFILING_GATEWAY_API_KEY,
            timeout=settings.EFILING_GATEWAY_TIMEOUT_SECONDS,
        )

    def _headers(self, idempotency_key: str) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Idempotency-Key": idempotency_key,
        }

    async def submit(self, document: dict[str, Any], idempotency_key: str) -> SubmissionReceipt:
        url = f"{self.base_url}/returns"
        logger.info("Submitting return to gateway (key=%s)", idempotency_key)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                resp = await client.post(url, json=document, headers=self._headers(idempotency_key))
                resp.raise_for_status()
            except httpx.TimeoutException as exc:
                raise SubmissionError(
                    "E-filing gateway timed out", retriable=True, timed_out=True,
                ) from exc
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                raise SubmissionError(
                    f"Return submission failed: {status}",
                    retriable=status >= 500 or status == 429,
                    status_code=status,
                ) from exc
            except httpx.TransportError as exc:
                raise SubmissionError(f"E-filing gateway unreachable: {exc}", retriable=True) from exc

        body = resp.json()
        ack = body.get("ack_number") or body.get("acknowledgementNumber")
        if not ack:
            raise SubmissionError("Gateway response missing acknowledgement number", retriable=False)
        return SubmissionReceipt(ack_number=str(ack), raw=body)
