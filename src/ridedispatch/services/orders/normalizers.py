"""Intake normalizers turning channel payloads into canonical orders."""

from __future__ import annotations

import re
import time
from datetime import datetime
from zoneinfo import ZoneInfo

from ...config import settings
from ...models.domain import CanonicalOrder, Transfer, VehicleClass
from ...schemas.orders import OrderRequest
from ..validation.rules import normalize_phone

PHONE_IN_TEXT = re.compile(r"(?:\+7|8)?[\s-]?\(?\d{3}\)?[\s-]?\d{3}[\s-]?\d{2}[\s-]?\d{2}")
SMS_DATETIME = re.compile(r"(\d{1,2})\.(\d{1,2})(?:\.(\d{2,4}))?\s+(\d{1,2}):(\d{2})")
SMS_ROUTE_SEPARATOR = re.compile(r"\s*(?:->|→|>|\s-\s)\s*")
API_PHONE = re.compile(r"^[\d+]{11,15}$")
MINIVAN_WORD = re.compile(r"минивэн", re.IGNORECASE)


def _service_tz() -> ZoneInfo:
    return ZoneInfo(settings.timezone)


def _now(tz: ZoneInfo) -> datetime:
    return datetime.now(tz)


def _localize(value: datetime, tz: ZoneInfo) -> datetime:
    return value.replace(tzinfo=tz) if value.tzinfo is None else value


def order_from_api_payload(payload: OrderRequest, tz: ZoneInfo | None = None) -> CanonicalOrder:
    """Direct API intake: two addresses and a phone are mandatory."""
    tz = tz or _service_tz()
    addresses = [address.strip() for address in payload.addresses if address and address.strip()]
    if len(addresses) < 2:
        raise ValueError("At least two addresses are required: pickup and drop-off")

    phone = re.sub(r"[^\d+]", "", payload.phone or "")
    if not API_PHONE.match(phone):
        raise ValueError("Invalid phone number format")

    vehicle_class: VehicleClass = "minivan" if payload.vehicle_type == "minivan" else "sedan"
    return CanonicalOrder(
        pickup_text=addresses[0],
        dropoff_text=addresses[1],
        client_id=payload.client_id or f"manual-{int(time.time() * 1000)}",
        phone=phone,
        vehicle_class=vehicle_class,
        scheduled_time=_localize(payload.time, tz) if payload.time else _now(tz),
        options=frozenset(payload.options),
        comment=payload.comment or "",
        source_channel="api",
        contact_email=payload.email,
    )


def extract_phone(text: str | None) -> str | None:
    if not text:
        return None
    match = PHONE_IN_TEXT.search(text)
    return match.group(0) if match else None


def map_vehicle_type(crm_type: str | None) -> VehicleClass:
    return "minivan" if (crm_type or "").upper() == "MINIVAN" else "sedan"


def transfer_options(transfer: Transfer) -> frozenset[str]:
    options = set()
    if transfer.vehicle_type.upper() == "BUSINESS":
        options.add("business_class")
    if transfer.notes and "child" in transfer.notes.lower():
        options.add("child_seat")
    return frozenset(options)


def order_from_transfer(transfer: Transfer, tz: ZoneInfo | None = None) -> CanonicalOrder:
    """PMS transfer booking intake."""
    tz = tz or _service_tz()
    try:
        scheduled = datetime.fromisoformat(transfer.scheduled_time.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValueError(f"Invalid scheduled time for transfer {transfer.id}: {transfer.scheduled_time!r}") from exc
    return CanonicalOrder(
        pickup_text=transfer.pickup_address,
        dropoff_text=transfer.dropoff_address,
        client_id=f"transfer-{transfer.id}",
        phone=extract_phone(transfer.notes) or "",
        vehicle_class=map_vehicle_type(transfer.vehicle_type),
        scheduled_time=_localize(scheduled, tz),
        options=transfer_options(transfer),
        comment=transfer.notes or "",
        source_channel="opera",
        booking_id=transfer.id,
    )


def _sms_time(text: str, tz: ZoneInfo) -> datetime | None:
    match = SMS_DATETIME.search(text)
    if not match:
        return None
    day, month, year, hour, minute = match.groups()
    now = _now(tz)
    if year is None:
        year_value = now.year
    else:
        year_value = int(year) + 2000 if len(year) == 2 else int(year)
    try:
        return datetime(year_value, int(month), int(day), int(hour), int(minute), tzinfo=tz)
    except ValueError as exc:
        raise ValueError(f"Invalid date in SMS: {match.group(0)!r}") from exc


def order_from_sms(text: str, sender_phone: str, tz: ZoneInfo | None = None) -> CanonicalOrder:
    """SMS intake: ``<pickup> > <drop-off> [DD.MM[.YYYY] HH:MM] [phone]``."""
    tz = tz or _service_tz()
    scheduled = _sms_time(text, tz)
    phone = extract_phone(SMS_DATETIME.sub(" ", text))

    route_text = SMS_DATETIME.sub(" ", text)
    if phone:
        route_text = route_text.replace(phone, " ")
    route_text = MINIVAN_WORD.sub(" ", route_text)
    parts = [part.strip(" ,;") for part in SMS_ROUTE_SEPARATOR.split(route_text)]
    addresses = [part for part in parts if part]
    if len(addresses) < 2:
        raise ValueError("Could not extract pickup and drop-off addresses from SMS")

    return CanonicalOrder(
        pickup_text=addresses[0],
        dropoff_text=addresses[1],
        client_id=f"sms-{int(time.time() * 1000)}",
        phone=normalize_phone(phone) if phone else sender_phone,
        vehicle_class="minivan" if MINIVAN_WORD.search(text) else "sedan",
        scheduled_time=scheduled or _now(tz),
        source_channel="sms",
        comment="",
    )
