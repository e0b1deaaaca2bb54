"""Business rules checked before an order is dispatched."""

from __future__ import annotations

import re
from datetime import datetime

from ...models.domain import ResolvedLocation

OPENING_HOUR = 5
CLOSING_HOUR = 23
MIN_COORDINATE_DELTA = 0.001

PHONE_PATTERN = re.compile(r"^7\d{10}$")


def normalize_phone(phone: str) -> str:
    """Strip non-digits and rewrite a leading trunk ``8`` to the country code ``7``."""
    digits = re.sub(r"\D", "", phone or "")
    return re.sub(r"^8", "7", digits)


def is_valid_phone(phone: str) -> bool:
    return bool(PHONE_PATTERN.match(normalize_phone(phone)))


def within_operating_hours(local_time: datetime) -> bool:
    return OPENING_HOUR <= local_time.hour <= CLOSING_HOUR


def locations_too_close(pickup: ResolvedLocation, dropoff: ResolvedLocation) -> bool:
    return (
        abs(pickup.lat - dropoff.lat) < MIN_COORDINATE_DELTA
        and abs(pickup.lon - dropoff.lon) < MIN_COORDINATE_DELTA
    )
