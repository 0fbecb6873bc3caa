"""
GeoIP lookup for detecting a visitor's location from their IP address.
Results are cached in-memory and optionally persisted to disk for performance.
"""

import asyncio
import ipaddress
import json
import logging
import os
import time
from typing import Any, Callable, NamedTuple, Optional

import httpx

from src.core.config import Settings, settings as default_settings
from src.core.countries import COUNTRY_CURRENCY_MAP

logger = logging.getLogger(__name__)


class IPLocation(NamedTuple):
    ip: Optional[str]
    country: Optional[str]
    country_code: Optional[str]
    region: Optional[str]
    city: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    timezone: Optional[str]
    currency: Optional[str]

    def to_payload(self) -> dict[str, Any]:
        code = (self.country_code or "").upper()
        return {
            "country": self.country,
            "countryCode": code,
            "region": self.region,
            "city": self.city,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "currency": self.currency or COUNTRY_CURRENCY_MAP.get(code or "US", "USD"),
            "timezone": self.timezone,
            "ip": self.ip,
        }


def _float(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _from_ipapi(data: dict) -> IPLocation:
    return IPLocation(
        ip=data.get("ip"),
        country=data.get("country_name"),
        country_code=data.get("country_code"),
        region=data.get("region"),
        city=data.get("city"),
        latitude=_float(data.get("latitude")),
        longitude=_float(data.get("longitude")),
        timezone=data.get("timezone"),
        currency=data.get("currency"),
    )


def _from_ip_api(data: dict) -> IPLocation:
    return IPLocation(
        ip=data.get("query"),
        country=data.get("country"),
        country_code=data.get("countryCode"),
        region=data.get("region"),
        city=data.get("city"),
        latitude=_float(data.get("lat")),
        longitude=_float(data.get("lon")),
        timezone=data.get("timezone"),
        currency=data.get("currency"),
    )


def _from_geojs(data: dict) -> IPLocation:
    code = (data.get("country_code") or "").upper()
    return IPLocation(
        ip=data.get("ip"),
        country=data.get("country"),
        country_code=code,
        region=data.get("region"),
        city=data.get("city"),
        latitude=_float(data.get("latitude")),
        longitude=_float(data.get("longitude")),
        timezone=data.get("timezone"),
        currency=COUNTRY_CURRENCY_MAP.get(code, "USD"),
    )


class GeoIPService(NamedTuple):
    name: str
    url: str
    transform: Callable[[dict], IPLocation]


DEFAULT_SERVICES = [
    GeoIPService("ipapi.co", "https://ipapi.co/{ip}/json/", _from_ipapi),
    GeoIPService(
        "ip-api.com",
        "http://ip-api.com/json/{ip}?fields=status,message,country,countryCode,region,city,lat,lon,timezone,currency,query",
        _from_ip_api,
    ),
    GeoIPService("geojs.io", "https://get.geojs.io/v1/ip/geo/{ip}.json", _from_geojs),
]


def is_public_ip(ip: Optional[str]) -> bool:
    """False for missing, malformed, loopback, private and link-local addresses."""
    if not ip:
        return False
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return address.is_global


class GeoIPLookup:
    """
    Resolve an IP address through an ordered list of geolocation services.

    Results are cached in-memory keyed by IP for ``ttl`` seconds (default 24h),
    holding at most ``max_entries`` addresses; expired and oldest entries are
    evicted whenever a new one is added.
    When ``cache_path`` is set the cache is persisted as JSON so lookups
    survive restarts.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        settings: Optional[Settings] = None,
        services: Optional[list[GeoIPService]] = None,
        clock: Callable[[], float] = time.time,
    ):
        cfg = settings or default_settings
        self.http_client = http_client
        self.services = services if services is not None else DEFAULT_SERVICES
        self.clock = clock
        self.ttl = cfg.geoip_cache_ttl_seconds
        self.timeout = cfg.geoip_service_timeout_seconds
        self.user_agent = cfg.upstream_user_agent
        self.cache_path = cfg.geoip_cache_path
        self.max_entries = cfg.geoip_cache_max_entries
        # Stores ip -> (timestamp_seconds, location)
        self._cache: dict[str, tuple[float, IPLocation]] = {}
        self._save_lock = asyncio.Lock()

    def load_cache(self) -> None:
        """Load unexpired entries from disk, if a cache file is configured."""
        if not self.cache_path or not os.path.exists(self.cache_path):
            return
        try:
            with open(self.cache_path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
            now = self.clock()
            # raw is expected to be mapping ip -> {"ts": float, "data": list}
            for key, val in raw.items():
                ts = float(val.get("ts", 0))
                data = val.get("data")
                if data is None:
                    continue
                if now - ts < self.ttl:
                    self._cache[key] = (ts, IPLocation(*data))
        except (OSError, ValueError, TypeError, AttributeError) as e:
            # Failure to load cache should not stop the app
            logger.warning("Failed to load geoip cache from disk: %s", e)

    def _evict(self, now: float) -> None:
        """Drop expired entries, then the oldest ones beyond ``max_entries``."""
        for key in [k for k, (ts, _) in self._cache.items() if now - ts >= self.ttl]:
            del self._cache[key]
        overflow = len(self._cache) - self.max_entries
        if overflow > 0:
            for key, _ in sorted(self._cache.items(), key=lambda item: item[1][0])[:overflow]:
                del self._cache[key]

    def _write_cache(self, to_write: dict) -> None:
        try:
            with open(self.cache_path, "w", encoding="utf-8") as fh:
                json.dump(to_write, fh)
        except OSError as e:
            logger.warning("Failed to save geoip cache to disk: %s", e)

    async def _save_cache(self) -> None:
        if not self.cache_path:
            return
        to_write = {key: {"ts": ts, "data": list(data)} for key, (ts, data) in self._cache.items()}
        async with self._save_lock:
            await asyncio.to_thread(self._write_cache, to_write)

    async def lookup(self, ip: str) -> Optional[IPLocation]:
        """Return the location for ``ip`` or None when every service fails."""
        entry = self._cache.get(ip)
        now = self.clock()
        if entry:
            ts, data = entry
            if now - ts < self.ttl:
                return data

        for service in self.services:
            location = await self._query(service, ip)
            if location is not None:
                self._cache[ip] = (now, location)
                self._evict(now)
                await self._save_cache()
                return location

        logger.error("All IP geolocation services failed")
        return None

    async def _query(self, service: GeoIPService, ip: str) -> Optional[IPLocation]:
        logger.info("Trying location detection with %s...", service.name)
        try:
            res = await self.http_client.get(
                service.url.format(ip=ip),
                headers={"User-Agent": self.user_agent, "Accept": "application/json"},
                timeout=self.timeout,
            )
            res.raise_for_status()
            data = res.json()
        except httpx.TimeoutException:
            logger.warning("%s timed out, trying next service...", service.name)
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("%s failed: %s", service.name, e)
            return None

        if not isinstance(data, dict):
            logger.warning("%s returned an unexpected body", service.name)
            return None
        if data.get("error") or data.get("status") == "fail":
            # Don't cache error results
            logger.warning(
                "%s returned an error: %s",
                service.name, data.get("reason") or data.get("message") or "error status",
            )
            return None

        location = service.transform(data)
        if not (location.country and location.country_code):
            logger.warning("%s returned incomplete location data", service.name)
            return None
        return location
