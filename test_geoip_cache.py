"""Tests for the IP geolocation cache kept by the detect endpoint."""

import json

import httpx
import pytest

from src.providers.geoip import GeoIPLookup, GeoIPService, _from_ipapi

SERVICES = [GeoIPService("ipapi.co", "https://ipapi.co/{ip}/json/", _from_ipapi)]


class Clock:
    def __init__(self):
        self.now = 1_000_000.0

    def __call__(self):
        return self.now


def answer(request):
    ip = request.url.path.strip("/").split("/")[0]
    return httpx.Response(200, json={"ip": ip, "country_name": "Somewhere", "country_code": "US", "city": "Town"})


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def cache_file(tmp_path):
    return tmp_path / "geoip.json"


@pytest.fixture
def geoip_settings(test_settings, cache_file):
    return test_settings.model_copy(update={
        "geoip_cache_path": str(cache_file),
        "geoip_cache_ttl_seconds": 100,
        "geoip_cache_max_entries": 3,
    })


@pytest.fixture
async def lookup(geoip_settings, clock):
    async with httpx.AsyncClient(transport=httpx.MockTransport(answer)) as client:
        yield GeoIPLookup(client, geoip_settings, services=SERVICES, clock=clock)


def persisted_ips(cache_file):
    return set(json.loads(cache_file.read_text(encoding="utf-8")))


async def test_expired_entries_are_evicted_and_not_persisted(lookup, cache_file, clock):
    await lookup.lookup("8.8.8.8")
    clock.now += 150

    await lookup.lookup("1.1.1.1")

    assert set(lookup._cache) == {"1.1.1.1"}
    assert persisted_ips(cache_file) == {"1.1.1.1"}


async def test_cache_keeps_only_the_newest_entries(lookup, cache_file, clock):
    for ip in ("8.8.8.8", "8.8.4.4", "1.1.1.1", "9.9.9.9"):
        await lookup.lookup(ip)
        clock.now += 1

    assert set(lookup._cache) == {"8.8.4.4", "1.1.1.1", "9.9.9.9"}
    assert persisted_ips(cache_file) == {"8.8.4.4", "1.1.1.1", "9.9.9.9"}


async def test_fresh_entry_is_served_from_cache(lookup, clock):
    first = await lookup.lookup("8.8.8.8")
    clock.now += 50

    lookup.services = []
    assert await lookup.lookup("8.8.8.8") == first


async def test_persisted_cache_is_reloaded(lookup, geoip_settings, clock):
    await lookup.lookup("8.8.8.8")

    reloaded = GeoIPLookup(lookup.http_client, geoip_settings, services=SERVICES, clock=clock)
    reloaded.load_cache()

    assert reloaded._cache["8.8.8.8"][1].country_code == "US"
