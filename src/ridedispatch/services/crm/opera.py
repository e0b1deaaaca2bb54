"""HTTP client for the Opera PMS bookings/transfers API."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

import httpx

from ...config import settings
from ...errors import CRMError
from ...models.domain import Transfer

logger = logging.getLogger(__name__)


class OperaClient:
    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.opera_api_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("Opera PMS API URL is not configured.")
        self.token = token if token is not None else (settings.opera_api_token or "")
        self.timeout = timeout if timeout is not None else settings.opera_timeout_seconds
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            headers={"Authorization": f"Bearer {self.token}", "Accept": "application/json"},
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(f"Opera PMS request {method} {self.base_url}{path} failed: {exc}")
            raise CRMError(f"Opera PMS request failed: {method} {path}") from exc

    async def get_bookings(
        self,
        date_from: str | None = None,
        date_to: str | None = None,
        include_transfers: bool = False,
    ) -> list[dict]:
        params = {"dateFrom": date_from or date.today().isoformat()}
        if date_to:
            params["dateTo"] = date_to
        if include_transfers:
            params["expand"] = "transfers"
        data = await self._request("GET", "/bookings", params=params)
        if not isinstance(data, dict) or "bookings" not in data:
            raise CRMError("Unexpected Opera PMS response: missing 'bookings'")
        return data["bookings"]

    async def get_booking(self, booking_id: str) -> dict:
        data = await self._request("GET", f"/bookings/{booking_id}", params={"expand": "transfers"})
        if not data:
            raise CRMError(f"Booking {booking_id} not found")
        return data

    async def get_transfers_for_date(self, day: str) -> list[Transfer]:
        bookings = await self.get_bookings(date_from=day, date_to=day, include_transfers=True)
        return [
            Transfer.from_api(item)
            for booking in bookings
            for item in (booking.get("transfers") or [])
        ]

    async def create_booking_transfer(self, booking_id: str, transfer_fields: dict) -> Transfer:
        data = await self._request("POST", f"/bookings/{booking_id}/transfers", json=transfer_fields)
        if not isinstance(data, dict) or "id" not in data:
            raise CRMError(f"Unexpected Opera PMS response when creating a transfer for {booking_id}")
        return Transfer.from_api(data)

    async def close(self) -> None:
        await self._client.aclose()
