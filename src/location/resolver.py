import logging
from typing import Awaitable, Callable, NamedTuple, Optional

from src.location.geo_provider import GeoProvider
from src.location.models import (
    DEFAULT_LOCATION,
    DEFAULT_LOCATION_ERROR,
    DetectionMethod,
    LocationData,
    Resolution,
)

logger = logging.getLogger(__name__)


class DetectionTier(NamedTuple):
    method: DetectionMethod
    detect: Callable[[], Awaitable[Optional[LocationData]]]


class LocationResolver:
    """Runs the detection tiers in priority order and always yields a location.

    Device geolocation is tried first because it is more accurate than IP
    lookup. Tiers run one after another, never concurrently; the first one
    that produces a location wins. When every tier misses, the static default
    is returned together with an error message.
    """

    def __init__(self, geo: GeoProvider, tiers: Optional[list[DetectionTier]] = None):
        self.geo = geo
        self.tiers = tiers if tiers is not None else [
            DetectionTier("browser", geo.detect_by_browser),
            DetectionTier("ip", geo.detect_by_ip),
        ]

    async def resolve(self) -> Resolution:
        for tier in self.tiers:
            try:
                location = await tier.detect()
            except Exception as e:
                logger.warning("Detection tier %r raised: %s", tier.method, e)
                location = None
            if location is not None:
                logger.info("Location detected via %s: %s", tier.method, location.country_code)
                return Resolution(location, tier.method)
            logger.info("Detection tier %r missed, falling through", tier.method)

        logger.warning("All detection tiers failed, using default location")
        return Resolution(DEFAULT_LOCATION, None, DEFAULT_LOCATION_ERROR)
