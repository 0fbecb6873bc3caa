"""
Persistence for the visitor's last resolved location.

Three keys are kept in a flat string key/value storage:

- ``userLocation``: JSON-encoded LocationData
- ``locationManualOverride``: ``"true"`` / ``"false"``
- ``locationLastUpdated``: ISO-8601 timestamp of the last write

Storage failures never reach callers: reads degrade to a cache miss and writes
are logged key by key.
"""

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Callable, NamedTuple, Optional, Protocol

from dateutil import parser as date_parser
from pydantic import ValidationError

from src.core.config import Settings, settings as default_settings
from src.location.models import LocationData

logger = logging.getLogger(__name__)


LOCATION_KEY = "userLocation"
MANUAL_OVERRIDE_KEY = "locationManualOverride"
LAST_UPDATED_KEY = "locationLastUpdated"


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class InMemoryStorage:
    """Process-local storage, mostly useful for tests and server-side rendering."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage:
    """Storage persisted to a small JSON object on disk.

    The file is read once on construction and rewritten on every change so
    values survive process restarts.
    """

    def __init__(self, path: str):
        self.path = path
        self._data: dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        if not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, ValueError) as e:
            logger.warning("Failed to load location storage from %s: %s", self.path, e)
            return
        if isinstance(raw, dict):
            self._data = {str(k): str(v) for k, v in raw.items()}

    def _flush(self, data: dict[str, str]) -> None:
        # Readers only ever see a complete file
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(data, fh)
        os.replace(tmp_path, self.path)

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        updated = {**self._data, key: value}
        self._flush(updated)
        self._data = updated

    def remove_item(self, key: str) -> None:
        if key not in self._data:
            return
        updated = {k: v for k, v in self._data.items() if k != key}
        self._flush(updated)
        self._data = updated


class PersistedLocation(NamedTuple):
    location: LocationData
    is_manual_override: bool


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """Render a timestamp the way browsers' ``toISOString`` does."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class LocationStore:
    def __init__(
        self,
        storage: KeyValueStorage,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.clock = clock
        cfg = settings or default_settings
        self.stale_after = timedelta(hours=cfg.location_stale_after_hours)

    def load(self) -> Optional[PersistedLocation]:
        """Return the saved location, or None when absent or unreadable."""
        try:
            raw = self.storage.get_item(LOCATION_KEY)
            if raw is None:
                return None
            location = LocationData.model_validate(json.loads(raw))
            is_manual = self.storage.get_item(MANUAL_OVERRIDE_KEY) == "true"
        except (ValueError, ValidationError) as e:
            logger.error("Failed to load saved location: %s", e)
            return None
        except Exception as e:
            logger.error("Location storage read failed: %s", e)
            return None
        return PersistedLocation(location, is_manual)

    def save(self, location: LocationData, is_manual: bool = False) -> None:
        """Write the location triple; a failing key does not stop the others."""
        entries = (
            (LOCATION_KEY, location.to_json()),
            (MANUAL_OVERRIDE_KEY, "true" if is_manual else "false"),
            (LAST_UPDATED_KEY, format_timestamp(self.clock())),
        )
        for key, value in entries:
            try:
                self.storage.set_item(key, value)
            except Exception as e:
                logger.error("Failed to save %s: %s", key, e)

    def last_updated(self) -> Optional[datetime]:
        try:
            raw = self.storage.get_item(LAST_UPDATED_KEY)
            if not raw:
                return None
            moment = date_parser.isoparse(raw)
        except Exception as e:
            logger.warning("Unreadable %s value: %s", LAST_UPDATED_KEY, e)
            return None
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment

    def is_stale(self) -> bool:
        updated = self.last_updated()
        if updated is None:
            return True
        return self.clock() - updated > self.stale_after

    def clear_override(self) -> None:
        try:
            self.storage.remove_item(MANUAL_OVERRIDE_KEY)
        except Exception as e:
            logger.error("Failed to clear %s: %s", MANUAL_OVERRIDE_KEY, e)
