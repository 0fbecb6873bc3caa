"""Tests for the location bootstrap and the context layered on top of it."""

import asyncio

import httpx
import pytest

from src.location.bootstrap import LocationService, create_location_service
from src.location.context import (
    LocationContext,
    current_country_code,
    current_country_name,
    current_currency,
    location_for_country,
    search_countries,
    ship_to_text,
)
from src.location.geo_provider import GeoProvider
from src.location.models import LocationData
from src.location.resolver import DetectionTier, LocationResolver
from src.location.store import LAST_UPDATED_KEY, InMemoryStorage, LocationStore, format_timestamp

BERLIN = LocationData(country="Germany", country_code="DE", city="Berlin", currency="EUR")
CAIRO = LocationData(country="Egypt", country_code="EG", city="Cairo", currency="EGP")
TOKYO = LocationData(country="Japan", country_code="JP", city="Tokyo", currency="JPY")


class CountingTier:
    """Detection tier returning a fixed location, optionally after a gate opens."""

    def __init__(self, location, gate: asyncio.Event = None):
        self.location = location
        self.gate = gate
        self.calls = 0
        self.started = asyncio.Event()

    async def __call__(self):
        self.calls += 1
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        return self.location


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def make_service(http_client, test_settings, clock, storage):
    def build(tier: CountingTier) -> LocationService:
        geo = GeoProvider(http_client=http_client, settings=test_settings)
        resolver = LocationResolver(geo, tiers=[DetectionTier("ip", tier)])
        return LocationService(resolver, LocationStore(storage, test_settings, clock))

    return build


async def test_first_visit_detects_and_persists(make_service, storage):
    tier = CountingTier(BERLIN)
    service = make_service(tier)
    assert service.state.is_loading is True
    assert service.state.location is None

    state = await service.init()

    assert tier.calls == 1
    assert state.is_loading is False
    assert state.location == BERLIN
    assert state.detection_method == "ip"
    assert state.is_manual_override is False
    assert service.store.load().location == BERLIN


async def test_fresh_cache_skips_detection(make_service, clock):
    make_service(CountingTier(BERLIN)).store.save(CAIRO)
    clock.advance(hours=2)

    tier = CountingTier(BERLIN)
    state = await make_service(tier).init()

    assert tier.calls == 0
    assert state.location == CAIRO
    assert state.detection_method is None
    assert state.is_loading is False


async def test_manual_location_survives_staleness(make_service, clock):
    first = make_service(CountingTier(BERLIN))
    await first.init()
    first.set_location_manually(CAIRO)

    clock.advance(hours=48)
    tier = CountingTier(BERLIN)
    state = await make_service(tier).init()

    assert tier.calls == 0
    assert state.location == CAIRO
    assert state.is_manual_override is True
    assert state.detection_method == "manual"


async def test_stale_cache_triggers_detection(make_service, storage, clock):
    make_service(CountingTier(BERLIN)).store.save(CAIRO)
    clock.advance(hours=25)

    tier = CountingTier(TOKYO)
    service = make_service(tier)
    state = await service.init()

    assert tier.calls == 1
    assert state.location == TOKYO
    assert service.store.load().location == TOKYO
    assert storage.get_item(LAST_UPDATED_KEY) == format_timestamp(clock.now)
    assert service.is_location_stale is False


async def test_refresh_drops_manual_override(make_service):
    tier = CountingTier(BERLIN)
    service = make_service(tier)
    await service.init()
    service.set_location_manually(CAIRO)

    location = await service.refresh_location()

    assert tier.calls == 2
    assert location == BERLIN
    assert service.state.is_manual_override is False
    assert service.state.detection_method == "ip"
    assert service.store.load().is_manual_override is False


async def test_manual_selection_beats_inflight_detection(make_service):
    gate = asyncio.Event()
    tier = CountingTier(BERLIN, gate)
    service = make_service(tier)

    detection = asyncio.create_task(service.init())
    await tier.started.wait()
    service.set_location_manually(CAIRO)
    gate.set()
    await detection

    assert service.state.location == CAIRO
    assert service.state.is_manual_override is True
    assert service.state.is_loading is False
    record = service.store.load()
    assert record.location == CAIRO
    assert record.is_manual_override is True


async def test_total_failure_resolves_to_default_with_error(make_service):
    state = await make_service(CountingTier(None)).init()

    assert state.location.country_code == "US"
    assert state.error == "Could not detect location, using default"
    assert state.detection_method is None


async def test_context_manager_closes_owned_client(test_settings, storage, upstream):
    upstream.on("/v1/location/detect", httpx.Response(200, json={"country": "Canada", "countryCode": "CA", "currency": "CAD"}))
    service = create_location_service(test_settings, storage=storage)
    await service.resolver.geo.http_client.aclose()
    service.resolver.geo.http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(upstream), base_url=test_settings.api_base_url
    )

    async with service:
        assert service.state.location.country_code == "CA"

    assert service.resolver.geo.http_client.is_closed


# ========== CONTEXT ==========

def test_derivations_without_location():
    assert current_currency(None) == "USD"
    assert current_country_name(None) == "United States"
    assert current_country_code(None) == "US"
    assert ship_to_text(None) == "Ship to: United States"


def test_derivations_fall_back_to_tables():
    bare = LocationData(country="", country_code="eg")
    assert current_currency(bare) == "EGP"
    assert current_country_name(bare) == "Egypt"
    assert current_country_code(bare) == "EG"

    unknown = LocationData(country="", country_code="zz")
    assert current_currency(unknown) == "USD"
    assert current_country_name(unknown) == "United States"


def test_ship_to_text_only_names_non_usd_currency():
    usa = LocationData(country="United States", country_code="US", currency="USD")
    assert ship_to_text(usa) == "Ship to: United States"
    assert ship_to_text(CAIRO) == "Ship to: Egypt | EGP"


def test_search_countries_matches_name_code_and_currency():
    assert [c.code for c in search_countries("egy")] == ["EG"]
    assert "JP" in {c.code for c in search_countries("jpy")}
    assert "DE" in {c.code for c in search_countries("De")}
    assert len(search_countries("")) == len(search_countries(" "))


def test_location_for_country():
    location = location_for_country("fi")
    assert location.country == "Finland"
    assert location.currency == "EUR"
    assert location.timezone == "Europe/Helsinki"

    with pytest.raises(ValueError):
        location_for_country("XX")


async def test_context_select_country_sets_manual_override(make_service):
    context = LocationContext(make_service(CountingTier(BERLIN)))
    await context.service.init()
    assert context.current_country_option().code == "DE"
    assert context.shipping().ship_to_text == "Ship to: Germany | EUR"

    context.select_country("EG")

    assert context.state.is_manual_override is True
    assert context.currency() == "EGP"
    assert context.currency_info().currency == "EGP"
    assert context.country_code() == "EG"
