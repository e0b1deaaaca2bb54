"""Outbound SMS through the HTTP gateway."""

from __future__ import annotations

import logging

import httpx

from ...config import settings

logger = logging.getLogger(__name__)


class SmsNotifier:
    def __init__(
        self,
        gateway_url: str | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.gateway_url = gateway_url or settings.sms_gateway_url
        if not self.gateway_url:
            raise ValueError("SMS gateway URL is not configured.")
        self.api_key = api_key if api_key is not None else settings.sms_api_key
        self._client = httpx.AsyncClient(timeout=10.0, transport=transport)

    async def send_sms(self, phone: str, message: str) -> None:
        response = await self._client.post(
            self.gateway_url,
            json={"phone": phone, "message": message, "apiKey": self.api_key},
        )
        response.raise_for_status()
        logger.info(f"SMS sent to {phone}")

    async def close(self) -> None:
        await self._client.aclose()
