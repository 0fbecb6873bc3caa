"""
Raw detection primitives used by the location resolver.

- device geolocation through a callback-style geolocator (the shape browsers
  expose as ``navigator.geolocation.getCurrentPosition``)
- reverse geocoding of coordinates via ``/location/reverse-geocode``
- IP geolocation via ``/location/detect``

Every primitive returns None on failure instead of raising.
"""

import asyncio
import logging
import time
from typing import Callable, NamedTuple, Optional, Protocol, Union

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from src.core.config import Settings, settings as default_settings
from src.location.models import DEFAULT_LOCATION, Coordinates, LocationData

logger = logging.getLogger(__name__)


class PositionOptions(NamedTuple):
    enable_high_accuracy: bool = False
    timeout: float = 8.0
    maximum_age: float = 60 * 5


class Geolocator(Protocol):
    """Device position source.

    Implementations call exactly one of the callbacks, possibly from another
    thread and possibly long after the caller stopped waiting.
    """

    def get_current_position(
        self,
        on_success: Callable[[Coordinates], None],
        on_error: Callable[[Exception], None],
        options: PositionOptions,
    ) -> None: ...


class LocationPayload(BaseModel):
    """Body returned by the detect and reverse-geocode endpoints."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="ignore")

    country: Optional[str] = None
    country_code: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    currency: Optional[str] = None
    timezone: Optional[str] = None
    ip: Optional[str] = None
    error: Union[str, bool, None] = None

    def to_location(self, coords: Optional[Coordinates] = None) -> LocationData:
        return LocationData(
            country=self.country or DEFAULT_LOCATION.country,
            country_code=self.country_code or DEFAULT_LOCATION.country_code,
            city=self.city,
            region=self.region,
            latitude=coords.latitude if coords else self.latitude,
            longitude=coords.longitude if coords else self.longitude,
            currency=self.currency or DEFAULT_LOCATION.currency,
            timezone=self.timezone or DEFAULT_LOCATION.timezone,
            ip=self.ip,
        )


class GeoProvider:
    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        geolocator: Optional[Geolocator] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        cfg = settings or default_settings
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(base_url=cfg.api_base_url)
        self.geolocator = geolocator
        self.clock = clock
        self.options = PositionOptions(
            enable_high_accuracy=cfg.geolocation_high_accuracy,
            timeout=cfg.geolocation_timeout_seconds,
            maximum_age=cfg.geolocation_maximum_age_seconds,
        )
        self.ip_lookup_timeout = cfg.ip_lookup_timeout_seconds
        self._last_position: Optional[tuple[float, Coordinates]] = None

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def current_position(self) -> Optional[Coordinates]:
        """Ask the device for coordinates, giving up after the configured timeout."""
        if self.geolocator is None:
            logger.info("Device geolocation is not supported")
            return None

        if self._last_position is not None:
            taken_at, coords = self._last_position
            if self.clock() - taken_at <= self.options.maximum_age:
                return coords

        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def settle(value: Optional[Coordinates]) -> None:
            # A result arriving after the timeout finds the future cancelled
            if not future.done():
                future.set_result(value)

        def on_success(coords: Coordinates) -> None:
            loop.call_soon_threadsafe(settle, coords)

        def on_error(error: Exception) -> None:
            logger.info("Device geolocation failed: %s", error)
            loop.call_soon_threadsafe(settle, None)

        try:
            self.geolocator.get_current_position(on_success, on_error, self.options)
        except Exception as e:
            logger.info("Device geolocation unavailable: %s", e)
            return None

        try:
            coords = await asyncio.wait_for(future, timeout=self.options.timeout)
        except asyncio.TimeoutError:
            logger.info("Device geolocation timed out after %ss", self.options.timeout)
            return None

        if coords is not None:
            self._last_position = (self.clock(), coords)
        return coords

    async def reverse_geocode(self, coords: Coordinates) -> Optional[LocationData]:
        try:
            response = await self.http_client.get(
                "/location/reverse-geocode",
                params={"lat": coords.latitude, "lng": coords.longitude},
            )
            response.raise_for_status()
            payload = LocationPayload.model_validate(response.json())
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            logger.info("Reverse geocoding failed: %s", e)
            return None

        if payload.error:
            logger.info("Reverse geocoding returned an error: %s", payload.error)
            return None
        return payload.to_location(coords)

    async def detect_by_browser(self) -> Optional[LocationData]:
        coords = await self.current_position()
        if coords is None:
            return None
        return await self.reverse_geocode(coords)

    async def _fetch_detect(self) -> dict:
        response = await self.http_client.get(
            "/location/detect",
            headers={"Cache-Control": "no-cache"},
            timeout=self.ip_lookup_timeout,
        )
        response.raise_for_status()
        return response.json()

    async def detect_by_ip(self) -> Optional[LocationData]:
        """Locate the visitor by IP; the whole lookup is bounded by ``ip_lookup_timeout``."""
        try:
            body = await asyncio.wait_for(self._fetch_detect(), timeout=self.ip_lookup_timeout)
            payload = LocationPayload.model_validate(body)
        except asyncio.TimeoutError:
            logger.info("IP-based location detection timed out after %ss", self.ip_lookup_timeout)
            return None
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            logger.info("IP-based location detection failed: %s", e)
            return None

        if payload.error:
            logger.info("IP-based location detection returned an error: %s", payload.error)
            return None
        return payload.to_location()
