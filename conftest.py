"""Shared fixtures: settings without disk caches or retry delays, fake upstreams."""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx
import pytest

from src.core.config import Settings
from src.location.geo_provider import PositionOptions
from src.location.models import Coordinates


class FakeClock:
    """Settable UTC clock for staleness checks."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FixedGeolocator:
    """Answers every position request immediately."""

    def __init__(self, coords: Optional[Coordinates] = None, error: Optional[Exception] = None):
        self.coords = coords
        self.error = error
        self.calls = 0
        self.options: Optional[PositionOptions] = None

    def get_current_position(self, on_success, on_error, options: PositionOptions) -> None:
        self.calls += 1
        self.options = options
        if self.error is not None:
            on_error(self.error)
        else:
            on_success(self.coords)


class SilentGeolocator:
    """Never answers on its own; the test fires the stored callbacks later."""

    def __init__(self):
        self.on_success: Optional[Callable] = None
        self.on_error: Optional[Callable] = None

    def get_current_position(self, on_success, on_error, options: PositionOptions) -> None:
        self.on_success = on_success
        self.on_error = on_error


class Upstream:
    """Routes requests by path to canned handlers and records every call."""

    def __init__(self):
        self.routes: dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, path: str, handler) -> None:
        if isinstance(handler, httpx.Response):
            response = handler
            handler = lambda request: response
        self.routes[path] = handler

    def calls_to(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == path)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, json={"error": "not found"})
        return handler(request)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        geoip_cache_path=None,
        rate_retry_delay_seconds=0,
        geolocation_timeout_seconds=0.05,
        location_storage_path=str(tmp_path / "location.json"),
        api_base_url="http://shop.test/v1",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
async def http_client(upstream, test_settings):
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(upstream), base_url=test_settings.api_base_url
    ) as client:
        yield client
