"""
Reverse geocoding: coordinates -> country, region, city.

OpenStreetMap Nominatim is tried first, BigDataCloud second. Currency and
timezone are not reported by either service and come from the country tables.
"""

import logging
from typing import Any, Callable, NamedTuple, Optional

import httpx

from src.core.config import Settings, settings as default_settings
from src.core.countries import COUNTRY_CURRENCY_MAP, COUNTRY_TIMEZONE_MAP

logger = logging.getLogger(__name__)


class Place(NamedTuple):
    country: Optional[str]
    country_code: Optional[str]
    region: Optional[str]
    city: Optional[str]

    def to_payload(self) -> dict[str, Any]:
        code = (self.country_code or "").upper()
        return {
            "country": self.country,
            "countryCode": code,
            "region": self.region,
            "city": self.city,
            "currency": COUNTRY_CURRENCY_MAP.get(code or "US", "USD"),
            "timezone": COUNTRY_TIMEZONE_MAP.get(code or "US", "UTC"),
        }


def _from_nominatim(data: dict) -> Place:
    address = data.get("address") or {}
    return Place(
        country=address.get("country"),
        country_code=(address.get("country_code") or "").upper() or None,
        region=address.get("state") or address.get("region") or address.get("province"),
        city=(
            address.get("city") or address.get("town")
            or address.get("village") or address.get("municipality")
        ),
    )


def _from_bigdatacloud(data: dict) -> Place:
    return Place(
        country=data.get("countryName"),
        country_code=(data.get("countryCode") or "").upper() or None,
        region=data.get("principalSubdivision"),
        city=data.get("city") or data.get("locality"),
    )


class GeocodingService(NamedTuple):
    name: str
    url: str
    transform: Callable[[dict], Place]


DEFAULT_SERVICES = [
    GeocodingService(
        "nominatim",
        "https://nominatim.openstreetmap.org/reverse?format=json&lat={lat}&lon={lng}&zoom=10&addressdetails=1",
        _from_nominatim,
    ),
    GeocodingService(
        "bigdatacloud",
        "https://api.bigdatacloud.net/data/reverse-geocode-client?latitude={lat}&longitude={lng}&localityLanguage=en",
        _from_bigdatacloud,
    ),
]


def validate_coordinates(lat: Optional[str], lng: Optional[str]) -> tuple[float, float]:
    """Parse query-string coordinates.

    Raises:
        ValueError: with a message suitable for a 400 response.
    """
    if not lat or not lng:
        raise ValueError("Missing latitude or longitude parameters")
    try:
        latitude, longitude = float(lat), float(lng)
    except ValueError:
        raise ValueError("Invalid latitude or longitude values")
    if latitude != latitude or longitude != longitude:
        raise ValueError("Invalid latitude or longitude values")
    if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
        raise ValueError("Coordinates out of valid range")
    return latitude, longitude


class ReverseGeocoder:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        settings: Optional[Settings] = None,
        services: Optional[list[GeocodingService]] = None,
    ):
        cfg = settings or default_settings
        self.http_client = http_client
        self.services = services if services is not None else DEFAULT_SERVICES
        self.timeout = cfg.reverse_geocode_timeout_seconds
        self.user_agent = cfg.upstream_user_agent

    async def reverse(self, latitude: float, longitude: float) -> Optional[Place]:
        for service in self.services:
            place = await self._query(service, latitude, longitude)
            if place is not None:
                return place
        logger.error("All reverse geocoding services failed")
        return None

    async def _query(self, service: GeocodingService, latitude: float, longitude: float) -> Optional[Place]:
        logger.info("Trying reverse geocoding with %s...", service.name)
        try:
            res = await self.http_client.get(
                service.url.format(lat=latitude, lng=longitude),
                headers={"User-Agent": self.user_agent, "Accept": "application/json"},
                timeout=self.timeout,
            )
            res.raise_for_status()
            data = res.json()
        except httpx.TimeoutException:
            logger.warning("%s timed out, trying next service...", service.name)
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("%s reverse geocoding failed: %s", service.name, e)
            return None

        if not isinstance(data, dict) or data.get("error"):
            logger.warning("%s returned an error: %s", service.name, data)
            return None

        place = service.transform(data)
        if not (place.country and place.country_code):
            logger.warning("%s returned incomplete location data", service.name)
            return None
        return place
