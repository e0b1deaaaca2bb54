import json
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from ridedispatch.models.domain import CanonicalOrder, ResolvedLocation
from ridedispatch.services.provider.formatter import (
    ProviderRequestFormatter,
    compact_json,
    format_order_time,
    sign_payload,
    to_curl,
)

MOSCOW = ZoneInfo("Europe/Moscow")

PICKUP = ResolvedLocation(lat=55.751244, lon=37.618423, label='Москва, "Красная" площадь')
DROPOFF = ResolvedLocation(lat=55.972642, lon=37.414589, label="Шереметьево")

PROTOCOL_ORDER = [
    "address",
    "device_token",
    "city_id",
    "client_id",
    "company_id",
    "client_phone",
    "tariff_id",
    "order_time",
    "pay_type",
    "comment",
    "current_time",
    "type_request",
    "additional_options",
]


def _order(**overrides) -> CanonicalOrder:
    values = dict(
        pickup_text="Красная площадь",
        dropoff_text="Шереметьево",
        client_id="client-1",
        phone="8 (912) 345-67-89",
        vehicle_class="sedan",
        scheduled_time=datetime(2025, 6, 1, 14, 30, tzinfo=MOSCOW),
        options=frozenset({"child_seat", "business_class"}),
        comment="Terminal B",
    )
    values.update(overrides)
    return CanonicalOrder(**values)


def _formatter(clock=lambda: 1748773800.0) -> ProviderRequestFormatter:
    return ProviderRequestFormatter(
        "s3cret",
        tz="Europe/Moscow",
        city_id="210861",
        company_id="12601",
        device_token="citylink_auto",
        pay_type="CORP_BALANCE",
        tariffs={"sedan": "39741", "minivan": "39742"},
        clock=clock,
    )


def test_build_fills_fields_in_protocol_order():
    request = _formatter().build(_order(), PICKUP, DROPOFF)

    assert list(request.signed_fields()) == PROTOCOL_ORDER
    assert list(request.form_fields()) == PROTOCOL_ORDER + ["signature"]
    assert request.client_phone == "79123456789"
    assert request.tariff_id == "39741"
    assert request.order_time == "01.06.2025 14:30:00"
    assert request.current_time == "1748773800"
    assert request.type_request == "1"
    assert request.additional_options == '["business_class","child_seat"]'


def test_minivan_tariff():
    request = _formatter().build(_order(vehicle_class="minivan"), PICKUP, DROPOFF)

    assert request.tariff_id == "39742"


def test_address_block_escapes_quotes():
    address = _formatter().format_address(PICKUP, DROPOFF)

    assert '"' not in address.replace('\\"', "")
    decoded = json.loads(address.replace('\\"', '"'))
    first, second = decoded["address"]
    assert first["lat"] == "55.751244"
    assert first["lon"] == "37.618423"
    assert first["city_id"] == "210861"
    assert second["label"] == "Шереметьево"


def test_signature_is_hmac_over_compact_json():
    request = _formatter().build(_order(), PICKUP, DROPOFF)

    assert request.signature == sign_payload(request.signed_fields(), "s3cret")
    assert len(request.signature) == 64


def test_signature_is_deterministic_for_same_clock():
    first = _formatter().build(_order(), PICKUP, DROPOFF)
    second = _formatter().build(_order(), PICKUP, DROPOFF)

    assert first.signature == second.signature


def test_signature_changes_with_current_time():
    ticks = iter([1748773800.0, 1748773801.0])
    formatter = _formatter(clock=lambda: next(ticks))

    first = formatter.build(_order(), PICKUP, DROPOFF)
    second = formatter.build(_order(), PICKUP, DROPOFF)

    assert first.current_time != second.current_time
    assert first.signature != second.signature


def test_missing_secret_rejected(monkeypatch):
    from ridedispatch.services.provider import formatter as formatter_module

    monkeypatch.setattr(formatter_module.settings, "provider_secret", None)
    with pytest.raises(ValueError):
        ProviderRequestFormatter(None, tz="Europe/Moscow")


def test_order_time_converted_to_service_timezone():
    utc_time = datetime.fromisoformat("2025-06-01T11:30:00+00:00")

    assert format_order_time(utc_time, MOSCOW) == "01.06.2025 14:30:00"


def test_compact_json_keeps_cyrillic():
    assert compact_json({"a": "б", "c": [1, 2]}) == '{"a":"б","c":[1,2]}'


def test_to_curl_reproduces_request():
    command = to_curl(
        "post",
        "https://provider.test/create_order",
        {"appid": "app", "lang": "ru"},
        {"client_id": "client 1", "type_request": "1"},
    )

    assert command.startswith("curl -X POST https://provider.test/create_order")
    assert "-H 'appid: app'" in command
    assert "--data 'client_id=client+1&type_request=1'" in command
