"""
Session bootstrap for the visitor's location.

The bootstrap is a small LangGraph graph:

    START -> load_cache -> (use_cache | detect) -> END

``load_cache`` reads the persisted record and its staleness, the router picks
the next node from that freshly loaded record, and ``detect`` runs the
resolver and persists its answer. Manual selections and refreshes go through
LocationService and share the same graph.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

import httpx
from langgraph.graph import StateGraph, START, END
from typing_extensions import TypedDict

from src.core.config import Settings, settings as default_settings
from src.location.geo_provider import GeoProvider, Geolocator
from src.location.models import DetectionMethod, LocationData, LocationState
from src.location.resolver import LocationResolver
from src.location.store import (
    JsonFileStorage,
    KeyValueStorage,
    LocationStore,
    PersistedLocation,
    utc_now,
)

logger = logging.getLogger(__name__)


# ========== STATE ==========
class BootstrapState(TypedDict):
    """State threaded through the bootstrap graph"""

    generation: int
    force_detection: bool
    record: Optional[PersistedLocation]
    stale: bool
    location: Optional[LocationData]
    is_manual_override: bool
    detection_method: Optional[DetectionMethod]
    error: Optional[str]
    superseded: bool


class LocationService:
    """Owns the session's LocationState.

    Create it, ``await init()`` once per session, and ``await dispose()`` when
    done (or use it as an async context manager).
    """

    def __init__(self, resolver: LocationResolver, store: LocationStore):
        self.resolver = resolver
        self.store = store
        self._state = LocationState()
        self._generation = 0
        self._graph = self._build_graph()

    async def __aenter__(self) -> "LocationService":
        await self.init()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.dispose()

    @property
    def state(self) -> LocationState:
        return self._state

    @property
    def is_location_stale(self) -> bool:
        return self.store.is_stale()

    # ========== GRAPH NODES ==========
    async def _load_cache(self, state: BootstrapState) -> dict:
        """Read the persisted record unless a fresh detection was requested."""
        if state["force_detection"]:
            return {"record": None, "stale": True}
        record = self.store.load()
        return {"record": record, "stale": record is None or self.store.is_stale()}

    async def _route_after_load(self, state: BootstrapState) -> str:
        # Decide from the record loaded in this run, not from self._state
        record = state["record"]
        if record is None:
            return "detect"
        if record.is_manual_override:
            # Manual selections never expire on their own
            return "use_cache"
        if not state["stale"]:
            return "use_cache"
        return "detect"

    async def _use_cache(self, state: BootstrapState) -> dict:
        record = state["record"]
        return {
            "location": record.location,
            "is_manual_override": record.is_manual_override,
            "detection_method": "manual" if record.is_manual_override else None,
            "error": None,
        }

    async def _detect(self, state: BootstrapState) -> dict:
        resolution = await self.resolver.resolve()
        if state["generation"] != self._generation:
            return {"superseded": True}

        self.store.save(resolution.location, is_manual=False)
        return {
            "location": resolution.location,
            "is_manual_override": False,
            "detection_method": resolution.detection_method,
            "error": resolution.error,
        }

    def _build_graph(self):
        graph = StateGraph(BootstrapState)

        graph.add_node("load_cache", self._load_cache)
        graph.add_node("use_cache", self._use_cache)
        graph.add_node("detect", self._detect)

        graph.add_edge(START, "load_cache")
        graph.add_conditional_edges("load_cache", self._route_after_load, ["use_cache", "detect"])
        graph.add_edge("use_cache", END)
        graph.add_edge("detect", END)

        return graph.compile()

    # ========== OPERATIONS ==========
    async def _run(self, force_detection: bool) -> LocationState:
        self._generation += 1
        generation = self._generation
        previous = self._state
        self._state = LocationState(
            location=previous.location,
            is_loading=True,
            error=None,
            is_manual_override=previous.is_manual_override,
            detection_method=previous.detection_method,
        )

        result = await self._graph.ainvoke({
            "generation": generation,
            "force_detection": force_detection,
            "record": None,
            "stale": True,
            "location": None,
            "is_manual_override": False,
            "detection_method": None,
            "error": None,
            "superseded": False,
        })

        if result["superseded"] or generation != self._generation:
            logger.info("Discarding location result overtaken by a newer request")
            return self._state

        self._state = LocationState(
            location=result["location"],
            is_loading=False,
            error=result["error"],
            is_manual_override=result["is_manual_override"],
            detection_method=result["detection_method"],
        )
        return self._state

    async def init(self) -> LocationState:
        """Bootstrap from storage, detecting only when the cache can't be used."""
        return await self._run(force_detection=False)

    async def dispose(self) -> None:
        await self.resolver.geo.aclose()

    async def auto_detect_location(self) -> LocationData:
        state = await self._run(force_detection=True)
        return state.location

    def set_location_manually(self, location: LocationData) -> LocationState:
        self._generation += 1
        self._state = LocationState(
            location=location,
            is_loading=False,
            error=None,
            is_manual_override=True,
            detection_method="manual",
        )
        self.store.save(location, is_manual=True)
        return self._state

    async def refresh_location(self) -> LocationData:
        """Drop any manual override and detect again."""
        self.store.clear_override()
        return await self.auto_detect_location()


def create_location_service(
    settings: Optional[Settings] = None,
    storage: Optional[KeyValueStorage] = None,
    geolocator: Optional[Geolocator] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    clock: Callable[[], datetime] = utc_now,
) -> LocationService:
    cfg = settings or default_settings
    geo = GeoProvider(http_client=http_client, geolocator=geolocator, settings=cfg)
    store = LocationStore(storage or JsonFileStorage(cfg.location_storage_path), cfg, clock)
    return LocationService(LocationResolver(geo), store)
