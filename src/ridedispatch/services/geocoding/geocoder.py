"""Upstream geocoding client (Yandex Geocoder HTTP API)."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from ...config import settings
from ...errors import ResolutionError
from ...models.domain import ResolvedLocation

logger = logging.getLogger(__name__)


class Geocoder(Protocol):
    async def geocode(self, address: str) -> ResolvedLocation:
        ...


class YandexGeocoder:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or settings.geocoder_url
        self.api_key = api_key if api_key is not None else settings.geocoder_api_key
        if not self.api_key:
            logger.warning("Geocoder API key is not configured; lookups will likely be rejected.")
        self._client = httpx.AsyncClient(transport=transport)

    async def geocode(self, address: str) -> ResolvedLocation:
        params = {"geocode": address, "apikey": self.api_key or "", "format": "json"}
        try:
            response = await self._client.get(self.base_url, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(f"Geocoding request failed for '{address}': {exc}")
            raise ResolutionError(address, "geocoding service unavailable") from exc
        return parse_geocoder_response(address, data)

    async def close(self) -> None:
        await self._client.aclose()


def parse_geocoder_response(address: str, data: dict) -> ResolvedLocation:
    """Extract the first feature member; its ``pos`` is ``"lon lat"``."""

    try:
        members = data["response"]["GeoObjectCollection"]["featureMember"]
    except (KeyError, TypeError) as exc:
        raise ResolutionError(address, "malformed geocoder response") from exc
    if not members:
        raise ResolutionError(address, "no matching location found")

    geo_object = members[0]["GeoObject"]
    try:
        lon_text, lat_text = geo_object["Point"]["pos"].split()
        label = geo_object["metaDataProperty"]["GeocoderMetaData"]["text"]
        return ResolvedLocation(lat=float(lat_text), lon=float(lon_text), label=label)
    except (KeyError, ValueError, AttributeError) as exc:
        raise ResolutionError(address, "malformed geocoder feature") from exc
