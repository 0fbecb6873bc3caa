"""
Location value types shared by the resolver, the store and the context layer.
"""

from typing import Literal, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel


DetectionMethod = Literal["ip", "browser", "manual"]


class LocationData(BaseModel):
    """One resolved geographic/currency context.

    Serialised with camelCase keys (``countryCode``) so persisted records and
    endpoint payloads share one shape.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    country: str
    country_code: str
    city: Optional[str] = None
    region: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    currency: Optional[str] = None
    timezone: Optional[str] = None
    ip: Optional[str] = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


DEFAULT_LOCATION = LocationData(
    country="United States",
    country_code="US",
    currency="USD",
    timezone="America/New_York",
)

DEFAULT_LOCATION_ERROR = "Could not detect location, using default"


class LocationState(BaseModel):
    """Session view of the visitor's location."""

    location: Optional[LocationData] = None
    is_loading: bool = True
    error: Optional[str] = None
    is_manual_override: bool = False
    detection_method: Optional[DetectionMethod] = None

    @model_validator(mode="after")
    def _manual_implies_manual_method(self):
        if self.is_manual_override and self.detection_method != "manual":
            raise ValueError("a manual override must carry detection_method='manual'")
        return self


class Resolution(NamedTuple):
    """Outcome of one pass through the detection tiers."""

    location: LocationData
    detection_method: Optional[DetectionMethod]
    error: Optional[str] = None


class Coordinates(NamedTuple):
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
