"""Wire payload construction and signing for the dispatch provider.

The provider verifies an HMAC-SHA256 over the compact JSON serialization of the
payload fields (everything except ``signature``) in protocol order, so the
serialization here must match what is transmitted byte for byte. ``current_time``
is part of the signed payload, which makes every signature unique per call.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import shlex
import time
from datetime import datetime
from typing import Callable, Mapping
from urllib.parse import urlencode
from zoneinfo import ZoneInfo

from ...config import settings
from ...models.domain import CanonicalOrder, ProviderRequest, ResolvedLocation
from ..validation.rules import normalize_phone

TYPE_REQUEST = "1"


def compact_json(value: object) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def sign_payload(payload: Mapping[str, str], secret: str) -> str:
    message = compact_json(dict(payload)).encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def format_order_time(value: datetime, tz: ZoneInfo) -> str:
    local = value.replace(tzinfo=tz) if value.tzinfo is None else value.astimezone(tz)
    return local.strftime("%d.%m.%Y %H:%M:00")


def to_curl(method: str, url: str, headers: Mapping[str, str], form: Mapping[str, str]) -> str:
    """Render a request as a copy-pasteable cURL command."""

    parts = ["curl", "-X", method.upper(), shlex.quote(url)]
    for name, value in headers.items():
        parts.extend(["-H", shlex.quote(f"{name}: {value}")])
    if form:
        parts.extend(["--data", shlex.quote(urlencode(list(form.items())))])
    return " ".join(parts)


class ProviderRequestFormatter:
    def __init__(
        self,
        secret: str | None = None,
        *,
        tz: str | None = None,
        city_id: str | None = None,
        company_id: str | None = None,
        device_token: str | None = None,
        pay_type: str | None = None,
        tariffs: Mapping[str, str] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.secret = secret or settings.provider_secret
        if not self.secret:
            raise ValueError("Provider signing secret is not configured.")
        self.tz = ZoneInfo(tz or settings.timezone)
        self.city_id = city_id or settings.provider_city_id
        self.company_id = company_id or settings.provider_company_id
        self.device_token = device_token or settings.provider_device_token
        self.pay_type = pay_type or settings.provider_pay_type
        self.tariffs = dict(tariffs or {"sedan": settings.sedan_tariff_id, "minivan": settings.minivan_tariff_id})
        self._clock = clock

    def _address_entry(self, location: ResolvedLocation) -> dict[str, str]:
        return {
            "city_id": self.city_id,
            "city": "",
            "label": location.label,
            "street": "",
            "house": "",
            "housing": "",
            "porch": "",
            "apt": "",
            "lat": f"{location.lat:.6f}",
            "lon": f"{location.lon:.6f}",
            "intercom": "",
        }

    def format_address(self, pickup: ResolvedLocation, dropoff: ResolvedLocation) -> str:
        """Both locations as one string field, with inner quotes escaped."""
        block = {"address": [self._address_entry(pickup), self._address_entry(dropoff)]}
        return compact_json(block).replace('"', '\\"')

    def tariff_for(self, vehicle_class: str) -> str:
        return self.tariffs.get(vehicle_class, self.tariffs["sedan"])

    def build(
        self,
        order: CanonicalOrder,
        pickup: ResolvedLocation,
        dropoff: ResolvedLocation,
    ) -> ProviderRequest:
        request = ProviderRequest(
            address=self.format_address(pickup, dropoff),
            device_token=self.device_token,
            city_id=self.city_id,
            client_id=order.client_id,
            company_id=self.company_id,
            client_phone=normalize_phone(order.phone),
            tariff_id=self.tariff_for(order.vehicle_class),
            order_time=format_order_time(order.scheduled_time, self.tz),
            pay_type=self.pay_type,
            comment=order.comment or "",
            current_time=str(int(self._clock())),
            type_request=TYPE_REQUEST,
            additional_options=compact_json(sorted(order.options)),
        )
        request.signature = sign_payload(request.signed_fields(), self.secret)
        return request
