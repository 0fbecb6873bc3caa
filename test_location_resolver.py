"""Tests for the detection primitives and the tiered resolver."""

import asyncio
import time

import httpx

from conftest import FixedGeolocator, SilentGeolocator
from src.core.config import Settings
from src.location.geo_provider import GeoProvider, PositionOptions
from src.location.models import DEFAULT_LOCATION, DEFAULT_LOCATION_ERROR, Coordinates, LocationData
from src.location.resolver import DetectionTier, LocationResolver

PARIS = Coordinates(48.8566, 2.3522)

REVERSE_PAYLOAD = {
    "country": "France",
    "countryCode": "FR",
    "region": "Île-de-France",
    "city": "Paris",
    "currency": "EUR",
    "timezone": "Europe/Paris",
}

DETECT_PAYLOAD = {
    "country": "Germany",
    "countryCode": "DE",
    "region": "Berlin",
    "city": "Berlin",
    "latitude": 52.52,
    "longitude": 13.405,
    "currency": "EUR",
    "timezone": "Europe/Berlin",
    "ip": "8.8.8.8",
}


def make_geo(http_client, settings, geolocator=None) -> GeoProvider:
    return GeoProvider(http_client=http_client, geolocator=geolocator, settings=settings)


async def test_browser_tier_wins_without_ip_lookup(http_client, upstream, test_settings):
    upstream.on("/v1/location/reverse-geocode", httpx.Response(200, json=REVERSE_PAYLOAD))
    upstream.on("/v1/location/detect", httpx.Response(200, json=DETECT_PAYLOAD))
    resolver = LocationResolver(make_geo(http_client, test_settings, FixedGeolocator(PARIS)))

    resolution = await resolver.resolve()

    assert resolution.detection_method == "browser"
    assert resolution.error is None
    assert resolution.location.country_code == "FR"
    assert resolution.location.latitude == PARIS.latitude
    assert upstream.calls_to("/v1/location/detect") == 0


async def test_reverse_geocode_sends_coordinates(http_client, upstream, test_settings):
    upstream.on("/v1/location/reverse-geocode", httpx.Response(200, json=REVERSE_PAYLOAD))
    geo = make_geo(http_client, test_settings, FixedGeolocator(PARIS))

    await geo.detect_by_browser()

    request = upstream.requests[0]
    assert request.url.params["lat"] == str(PARIS.latitude)
    assert request.url.params["lng"] == str(PARIS.longitude)


async def test_denied_geolocation_falls_through_to_ip(http_client, upstream, test_settings):
    upstream.on("/v1/location/detect", httpx.Response(200, json=DETECT_PAYLOAD))
    geolocator = FixedGeolocator(error=PermissionError("User denied Geolocation"))
    resolver = LocationResolver(make_geo(http_client, test_settings, geolocator))

    resolution = await resolver.resolve()

    assert resolution.detection_method == "ip"
    assert resolution.location.country == "Germany"
    assert resolution.location.ip == "8.8.8.8"
    assert upstream.calls_to("/v1/location/reverse-geocode") == 0


async def test_ip_lookup_sends_no_cache(http_client, upstream, test_settings):
    upstream.on("/v1/location/detect", httpx.Response(200, json=DETECT_PAYLOAD))

    await make_geo(http_client, test_settings).detect_by_ip()

    assert upstream.requests[0].headers["cache-control"] == "no-cache"


async def test_reverse_geocode_failure_falls_through(http_client, upstream, test_settings):
    upstream.on("/v1/location/reverse-geocode", httpx.Response(404, json={"error": "nope"}))
    upstream.on("/v1/location/detect", httpx.Response(200, json=DETECT_PAYLOAD))
    resolver = LocationResolver(make_geo(http_client, test_settings, FixedGeolocator(PARIS)))

    resolution = await resolver.resolve()

    assert resolution.detection_method == "ip"


async def test_unsupported_geolocation_and_failed_ip_yield_default(http_client, upstream, test_settings):
    upstream.on("/v1/location/detect", httpx.Response(500, text="boom"))
    resolver = LocationResolver(make_geo(http_client, test_settings, geolocator=None))

    resolution = await resolver.resolve()

    assert resolution.location == DEFAULT_LOCATION
    assert resolution.detection_method is None
    assert resolution.error == DEFAULT_LOCATION_ERROR


async def test_ip_error_body_is_a_miss(http_client, upstream, test_settings):
    upstream.on("/v1/location/detect", httpx.Response(200, json={"error": "IP geolocation failed"}))
    assert await make_geo(http_client, test_settings).detect_by_ip() is None


async def test_ip_malformed_body_is_a_miss(http_client, upstream, test_settings):
    upstream.on("/v1/location/detect", httpx.Response(200, text="<html>"))
    assert await make_geo(http_client, test_settings).detect_by_ip() is None


async def test_ip_network_error_is_a_miss(http_client, upstream, test_settings):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    upstream.on("/v1/location/detect", refuse)
    assert await make_geo(http_client, test_settings).detect_by_ip() is None


async def test_partial_payload_is_filled_from_defaults(http_client, upstream, test_settings):
    upstream.on("/v1/location/detect", httpx.Response(200, json={"city": "Somewhere"}))

    location = await make_geo(http_client, test_settings).detect_by_ip()

    assert location.city == "Somewhere"
    assert location.country_code == "US"
    assert location.currency == "USD"
    assert location.timezone == "America/New_York"


async def test_geolocation_timeout_discards_late_result(http_client, upstream, test_settings):
    upstream.on("/v1/location/reverse-geocode", httpx.Response(200, json=REVERSE_PAYLOAD))
    upstream.on("/v1/location/detect", httpx.Response(200, json=DETECT_PAYLOAD))
    geolocator = SilentGeolocator()
    geo = make_geo(http_client, test_settings, geolocator)

    resolution = await LocationResolver(geo).resolve()
    assert resolution.detection_method == "ip"

    # The device finally answers after the resolver moved on
    geolocator.on_success(PARIS)
    await asyncio.sleep(0)

    assert upstream.calls_to("/v1/location/reverse-geocode") == 0


async def test_recent_position_is_reused(http_client, upstream, test_settings):
    upstream.on("/v1/location/reverse-geocode", httpx.Response(200, json=REVERSE_PAYLOAD))
    geolocator = FixedGeolocator(PARIS)
    geo = make_geo(http_client, test_settings, geolocator)

    await geo.current_position()
    await geo.current_position()

    assert geolocator.calls == 1


async def test_tiers_run_in_order_and_stop_at_first_hit(http_client, test_settings):
    calls = []
    found = LocationData(country="Japan", country_code="JP", currency="JPY")

    async def miss():
        calls.append("browser")
        return None

    async def boom():
        calls.append("ip")
        raise RuntimeError("unexpected")

    async def hit():
        calls.append("manual")
        return found

    async def never():
        calls.append("never")
        return found

    resolver = LocationResolver(
        make_geo(http_client, test_settings),
        tiers=[
            DetectionTier("browser", miss),
            DetectionTier("ip", boom),
            DetectionTier("manual", hit),
            DetectionTier("ip", never),
        ],
    )

    resolution = await resolver.resolve()

    assert resolution.location == found
    assert resolution.detection_method == "manual"
    assert calls == ["browser", "ip", "manual"]


async def test_ip_lookup_is_abandoned_after_its_deadline(upstream, test_settings):
    async def trickle():
        for byte in b'{"country": "Germany", "countryCode": "DE", "currency": "EUR"}':
            await asyncio.sleep(0.05)
            yield bytes([byte])

    upstream.on("/v1/location/detect", lambda request: httpx.Response(200, content=trickle()))
    settings = test_settings.model_copy(update={"ip_lookup_timeout_seconds": 0.2})
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(upstream), base_url=settings.api_base_url
    ) as client:
        geo = make_geo(client, settings)

        started = time.monotonic()
        location = await geo.detect_by_ip()
        elapsed = time.monotonic() - started

    assert location is None
    assert elapsed < 1.0


async def test_geolocator_receives_position_options(http_client, upstream, test_settings):
    upstream.on("/v1/location/reverse-geocode", httpx.Response(200, json=REVERSE_PAYLOAD))
    geolocator = FixedGeolocator(PARIS)

    await make_geo(http_client, test_settings, geolocator).detect_by_browser()

    assert geolocator.options == PositionOptions(
        enable_high_accuracy=False,
        timeout=test_settings.geolocation_timeout_seconds,
        maximum_age=300,
    )


def test_default_geolocation_settings():
    cfg = Settings(_env_file=None)
    assert cfg.geolocation_high_accuracy is False
    assert cfg.geolocation_timeout_seconds == 8
    assert cfg.geolocation_maximum_age_seconds == 300
    assert cfg.ip_lookup_timeout_seconds == 10
