"""HTTP client for the taxi-dispatch provider's create_order endpoint."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from ...config import settings
from ...errors import ProviderError
from ...models.domain import DriverInfo, ProviderOrderResult, ProviderRequest
from .formatter import to_curl

logger = logging.getLogger(__name__)


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def normalize_order_response(data: Any) -> ProviderOrderResult:
    """Accept either ``order_id`` or ``id`` as the provider's order key."""

    if not isinstance(data, dict):
        raise ProviderError("Malformed provider response: expected a JSON object", response_body=data)
    if data.get("order_id") not in (None, ""):
        order_id = data["order_id"]
    elif data.get("id") not in (None, ""):
        order_id = data["id"]
    else:
        raise ProviderError("Malformed provider response: missing order_id", response_body=data)

    driver = data.get("driver_info")
    driver_info = None
    if isinstance(driver, dict):
        driver_info = DriverInfo(name=str(driver.get("name", "")), phone=str(driver.get("phone", "")))
    return ProviderOrderResult(
        order_id=str(order_id),
        status=str(data.get("status") or "created"),
        driver_info=driver_info,
    )


def _error_detail(response: httpx.Response) -> tuple[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return response.text, response.text
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body), body
    return str(body), body


class ProviderClient:
    def __init__(
        self,
        base_url: str | None = None,
        app_id: str | None = None,
        tenant_id: str | None = None,
        dispatcher_id: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.base_url = (base_url or settings.provider_base_url).rstrip("/")
        if not self.base_url:
            raise ValueError("Provider base URL is not configured.")
        self.app_id = app_id if app_id is not None else settings.provider_app_id
        self.tenant_id = tenant_id if tenant_id is not None else settings.provider_tenant_id
        self.dispatcher_id = dispatcher_id if dispatcher_id is not None else settings.provider_dispatcher_id
        self.timeout = timeout if timeout is not None else settings.provider_timeout_seconds
        self.max_attempts = max_attempts if max_attempts is not None else settings.provider_max_attempts
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.provider_backoff_seconds
        self._sleep = sleep
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=transport)

    @property
    def create_order_url(self) -> str:
        return f"{self.base_url}/create_order"

    def headers(self) -> dict[str, str]:
        return {
            "appid": self.app_id,
            "lang": "ru",
            "tenantid": self.tenant_id,
            "typeclient": "dispatcher",
            "dispatcherid": self.dispatcher_id or "",
            "Content-Type": "application/x-www-form-urlencoded",
        }

    async def create_order(self, request: ProviderRequest) -> ProviderOrderResult:
        """Send the signed request, retrying transient failures with linear backoff.

        Retryable: no response (network error or timeout), HTTP 429, HTTP 5xx.
        Any other 4xx and malformed success bodies fail immediately. The final
        error carries a cURL reproduction of the request.
        """
        url = self.create_order_url
        headers = self.headers()
        form = request.form_fields()

        attempt = 0
        while True:
            attempt += 1
            try:
                result = await self._send(url, headers, form)
                logger.info(f"Provider accepted order {result.order_id} for client {request.client_id} (attempt {attempt})")
                return result
            except ProviderError as error:
                if error.retryable and attempt < self.max_attempts:
                    wait_time = self.backoff_seconds * attempt
                    logger.warning(
                        f"Provider call failed ({error}); retrying in {wait_time:.1f}s "
                        f"(attempt {attempt}/{self.max_attempts})"
                    )
                    await self._sleep(wait_time)
                    continue
                error.curl = to_curl("POST", url, headers, form)
                logger.error(f"Provider call failed after {attempt} attempt(s): {error}\nReproduce with: {error.curl}")
                raise

    async def _send(self, url: str, headers: dict[str, str], form: dict[str, str]) -> ProviderOrderResult:
        try:
            response = await self._client.post(url, data=form, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderError(f"Provider request timed out after {self.timeout:.0f}s", retryable=True) from exc
        except httpx.TransportError as exc:
            raise ProviderError(f"Provider is unreachable at {self.base_url}: {exc}", retryable=True) from exc

        if response.is_error:
            detail, body = _error_detail(response)
            raise ProviderError(
                f"Provider API error: {detail} (status: {response.status_code})",
                status_code=response.status_code,
                retryable=is_retryable_status(response.status_code),
                response_body=body,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(
                "Malformed provider response: body is not JSON",
                status_code=response.status_code,
                response_body=response.text,
            ) from exc
        try:
            return normalize_order_response(data)
        except ProviderError as error:
            error.status_code = response.status_code
            raise

    async def close(self) -> None:
        await self._client.aclose()
