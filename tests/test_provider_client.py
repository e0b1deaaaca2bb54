import asyncio
from urllib.parse import parse_qsl

import httpx
import pytest

from ridedispatch.errors import ProviderError
from ridedispatch.models.domain import ProviderRequest
from ridedispatch.services.provider.client import ProviderClient, normalize_order_response


def _request() -> ProviderRequest:
    return ProviderRequest(
        address='{\\"address\\":[]}',
        device_token="citylink_auto",
        city_id="210861",
        client_id="client-1",
        company_id="12601",
        client_phone="79123456789",
        tariff_id="39741",
        order_time="01.06.2025 14:30:00",
        pay_type="CORP_BALANCE",
        comment="",
        current_time="1748773800",
        type_request="1",
        additional_options="[]",
        signature="abc123",
    )


def _client(handler, sleeps=None) -> ProviderClient:
    async def fake_sleep(seconds: float) -> None:
        if sleeps is not None:
            sleeps.append(seconds)

    return ProviderClient(
        base_url="https://provider.test/",
        app_id="app",
        tenant_id="tenant",
        dispatcher_id="7",
        timeout=10.0,
        max_attempts=3,
        backoff_seconds=1.0,
        transport=httpx.MockTransport(handler),
        sleep=fake_sleep,
    )


def _sequence(responses, calls):
    responses = iter(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        response = next(responses)
        if isinstance(response, Exception):
            raise response
        return response

    return handler


def test_normalize_accepts_order_id_or_id():
    assert normalize_order_response({"order_id": "42"}).order_id == "42"
    assert normalize_order_response({"id": 42}).order_id == "42"


def test_normalize_reads_driver_info():
    result = normalize_order_response(
        {"order_id": "42", "status": "assigned", "driver_info": {"name": "Ivan", "phone": "79000000000"}}
    )

    assert result.status == "assigned"
    assert result.driver_info.name == "Ivan"


def test_normalize_rejects_missing_id():
    with pytest.raises(ProviderError) as excinfo:
        normalize_order_response({"status": "created"})

    assert "missing order_id" in str(excinfo.value)
    assert not excinfo.value.retryable


def test_create_order_sends_headers_and_form():
    calls = []
    client = _client(_sequence([httpx.Response(200, json={"id": 99})], calls))

    result = asyncio.run(client.create_order(_request()))

    assert result.order_id == "99"
    sent = calls[0]
    assert str(sent.url) == "https://provider.test/create_order"
    assert sent.headers["appid"] == "app"
    assert sent.headers["tenantid"] == "tenant"
    assert sent.headers["typeclient"] == "dispatcher"
    assert sent.headers["lang"] == "ru"
    form = dict(parse_qsl(sent.content.decode("utf-8")))
    assert form["signature"] == "abc123"
    assert form["client_phone"] == "79123456789"


def test_retries_transient_errors_with_linear_backoff():
    calls, sleeps = [], []
    handler = _sequence(
        [httpx.Response(503), httpx.Response(503), httpx.Response(200, json={"order_id": "7"})],
        calls,
    )

    result = asyncio.run(_client(handler, sleeps).create_order(_request()))

    assert result.order_id == "7"
    assert len(calls) == 3
    assert sleeps == [1.0, 2.0]


def test_client_error_is_not_retried():
    calls, sleeps = [], []
    handler = _sequence([httpx.Response(400, json={"message": "bad tariff"})], calls)

    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(_client(handler, sleeps).create_order(_request()))

    error = excinfo.value
    assert len(calls) == 1
    assert sleeps == []
    assert error.status_code == 400
    assert not error.retryable
    assert "bad tariff" in str(error)
    assert error.curl.startswith("curl -X POST https://provider.test/create_order")


def test_gives_up_after_max_attempts():
    calls, sleeps = [], []
    handler = _sequence([httpx.Response(429)] * 3, calls)

    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(_client(handler, sleeps).create_order(_request()))

    assert len(calls) == 3
    assert sleeps == [1.0, 2.0]
    assert excinfo.value.retryable
    assert excinfo.value.curl


def test_timeout_is_retried():
    calls = []
    handler = _sequence(
        [httpx.ReadTimeout("slow"), httpx.Response(200, json={"order_id": "8"})],
        calls,
    )

    result = asyncio.run(_client(handler).create_order(_request()))

    assert result.order_id == "8"
    assert len(calls) == 2


def test_malformed_success_body_is_not_retried():
    calls = []
    handler = _sequence([httpx.Response(200, text="<html>ok</html>")], calls)

    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(_client(handler).create_order(_request()))

    assert len(calls) == 1
    assert "not JSON" in str(excinfo.value)
