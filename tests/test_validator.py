from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from ridedispatch.models.domain import ResolvedLocation
from ridedispatch.services.validation import rules
from ridedispatch.services.validation.validator import (
    HOURS_ERROR,
    PAST_TIME_ERROR,
    PHONE_ERROR,
    TOO_CLOSE_ERROR,
    OrderValidator,
)

MOSCOW = ZoneInfo("Europe/Moscow")
# 2025-06-01 09:00 in Moscow
NOW = datetime(2025, 6, 1, 6, 0, tzinfo=timezone.utc)

PICKUP = ResolvedLocation(lat=55.751244, lon=37.618423, label="Москва, Красная площадь")
DROPOFF = ResolvedLocation(lat=55.972642, lon=37.414589, label="Шереметьево")


def _validator() -> OrderValidator:
    return OrderValidator(tz=MOSCOW, clock=lambda: NOW)


def test_valid_order_passes():
    result = _validator().validate(PICKUP, DROPOFF, datetime(2025, 6, 1, 12, 0, tzinfo=MOSCOW), "+7 (912) 345-67-89")

    assert result.valid
    assert result.errors == []


def test_past_time_is_the_only_error():
    result = _validator().validate(PICKUP, DROPOFF, NOW - timedelta(hours=1), "79123456789")

    assert not result.valid
    assert result.errors == [PAST_TIME_ERROR]


def test_invalid_phone_rejected():
    result = _validator().validate(PICKUP, DROPOFF, NOW + timedelta(hours=1), "12345")

    assert result.errors == [PHONE_ERROR]


def test_leading_eight_is_normalized():
    assert rules.normalize_phone("8 (912) 345-67-89") == "79123456789"
    assert rules.is_valid_phone("8-912-345-67-89")


def test_locations_too_close():
    nearby = ResolvedLocation(lat=PICKUP.lat + 0.0005, lon=PICKUP.lon - 0.0005, label="next door")
    result = _validator().validate(PICKUP, nearby, NOW + timedelta(hours=1), "79123456789")

    assert result.errors == [TOO_CLOSE_ERROR]


def test_one_axis_far_enough_is_not_too_close():
    same_street = ResolvedLocation(lat=PICKUP.lat, lon=PICKUP.lon + 0.002, label="down the street")

    assert not rules.locations_too_close(PICKUP, same_street)


def test_outside_operating_hours():
    night = datetime(2025, 6, 2, 3, 30, tzinfo=MOSCOW)
    result = _validator().validate(PICKUP, DROPOFF, night, "79123456789")

    assert result.errors == [HOURS_ERROR]


def test_hours_boundaries():
    assert rules.within_operating_hours(datetime(2025, 6, 1, 5, 0))
    assert rules.within_operating_hours(datetime(2025, 6, 1, 23, 59))
    assert not rules.within_operating_hours(datetime(2025, 6, 1, 4, 59))


def test_naive_time_is_interpreted_as_local():
    # 08:30 local is before NOW (09:00 local) even though 08:30 UTC would be after it.
    result = _validator().validate(PICKUP, DROPOFF, datetime(2025, 6, 1, 8, 30), "79123456789")

    assert result.errors == [PAST_TIME_ERROR]


def test_errors_accumulate():
    nearby = ResolvedLocation(lat=PICKUP.lat, lon=PICKUP.lon, label="same spot")
    result = _validator().validate(PICKUP, nearby, datetime(2025, 6, 1, 2, 0, tzinfo=MOSCOW), "bad")

    assert result.errors == [PAST_TIME_ERROR, PHONE_ERROR, TOO_CLOSE_ERROR, HOURS_ERROR]
