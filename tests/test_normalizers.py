from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from ridedispatch.models.domain import Transfer
from ridedispatch.schemas.orders import OrderRequest
from ridedispatch.services.orders import normalizers

MOSCOW = ZoneInfo("Europe/Moscow")


def _transfer(**overrides) -> Transfer:
    data = {
        "id": "T-100",
        "type": "ARRIVAL",
        "pickupAddress": "Шереметьево, терминал B",
        "dropoffAddress": "Гостиница Метрополь",
        "scheduledTime": "2025-06-01T14:30:00Z",
        "vehicleType": "STANDARD",
        "notes": "Guest phone +7 912 345 67 89",
    }
    data.update(overrides)
    return Transfer.from_api(data)


def test_api_payload_becomes_canonical_order():
    payload = OrderRequest(
        addresses=["Красная площадь", "Шереметьево"],
        phone="+7 (912) 345-67-89",
        client_id="corp-1",
        vehicle_type="minivan",
        time=datetime(2025, 6, 1, 14, 30),
        options=["child_seat"],
        comment="Terminal B",
        email="guest@example.com",
    )

    order = normalizers.order_from_api_payload(payload, MOSCOW)

    assert order.pickup_text == "Красная площадь"
    assert order.dropoff_text == "Шереметьево"
    assert order.phone == "+79123456789"
    assert order.client_id == "corp-1"
    assert order.vehicle_class == "minivan"
    assert order.scheduled_time == datetime(2025, 6, 1, 14, 30, tzinfo=MOSCOW)
    assert order.options == frozenset({"child_seat"})
    assert order.source_channel == "api"
    assert order.contact_email == "guest@example.com"


def test_api_payload_defaults():
    payload = OrderRequest(addresses=["A street 1", "B street 2"], phone="79123456789")

    order = normalizers.order_from_api_payload(payload, MOSCOW)

    assert order.client_id.startswith("manual-")
    assert order.vehicle_class == "sedan"
    assert order.scheduled_time.tzinfo is not None


def test_api_payload_requires_two_addresses():
    with pytest.raises(ValueError, match="two addresses"):
        normalizers.order_from_api_payload(OrderRequest(addresses=["only one", " "], phone="79123456789"), MOSCOW)


def test_api_payload_rejects_short_phone():
    with pytest.raises(ValueError, match="phone"):
        normalizers.order_from_api_payload(OrderRequest(addresses=["a", "b"], phone="12345"), MOSCOW)


def test_transfer_becomes_canonical_order():
    order = normalizers.order_from_transfer(_transfer(), MOSCOW)

    assert order.client_id == "transfer-T-100"
    assert order.booking_id == "T-100"
    assert order.source_channel == "opera"
    assert order.vehicle_class == "sedan"
    assert order.phone == "+7 912 345 67 89"
    assert order.scheduled_time == datetime(2025, 6, 1, 14, 30, tzinfo=ZoneInfo("UTC"))


def test_transfer_options_and_vehicle_mapping():
    business = _transfer(vehicleType="BUSINESS", notes="Travelling with a child")
    minivan = _transfer(vehicleType="minivan", notes=None)

    assert normalizers.order_from_transfer(business, MOSCOW).options == frozenset({"business_class", "child_seat"})
    assert normalizers.order_from_transfer(minivan, MOSCOW).vehicle_class == "minivan"
    assert normalizers.order_from_transfer(minivan, MOSCOW).phone == ""


def test_transfer_with_bad_time_rejected():
    with pytest.raises(ValueError, match="T-100"):
        normalizers.order_from_transfer(_transfer(scheduledTime="tomorrow"), MOSCOW)


def test_sms_with_time_and_phone():
    order = normalizers.order_from_sms("Тверская 1 > Шереметьево 01.06.2025 14:30 89123456789", "79990000000", MOSCOW)

    assert order.pickup_text == "Тверская 1"
    assert order.dropoff_text == "Шереметьево"
    assert order.phone == "79123456789"
    assert order.scheduled_time == datetime(2025, 6, 1, 14, 30, tzinfo=MOSCOW)
    assert order.source_channel == "sms"
    assert order.vehicle_class == "sedan"


def test_sms_falls_back_to_sender_and_detects_minivan():
    order = normalizers.order_from_sms("Минивэн Арбат 10 - Внуково", "79990000000", MOSCOW)

    assert order.pickup_text == "Арбат 10"
    assert order.dropoff_text == "Внуково"
    assert order.phone == "79990000000"
    assert order.vehicle_class == "minivan"


def test_sms_without_route_rejected():
    with pytest.raises(ValueError, match="addresses"):
        normalizers.order_from_sms("позвоните мне", "79990000000", MOSCOW)


def test_extract_phone():
    assert normalizers.extract_phone("call 8 (912) 345-67-89 please") == "8 (912) 345-67-89"
    assert normalizers.extract_phone("no digits here") is None
    assert normalizers.extract_phone(None) is None
