"""
Display-oriented view of the visitor's location.

Every helper tolerates a missing location or missing fields and falls back to
the static country tables, then to the United States / USD.
"""

from typing import NamedTuple, Optional

from src.core.countries import (
    COUNTRY_CURRENCY_MAP,
    COUNTRY_NAMES,
    COUNTRY_OPTIONS,
    COUNTRY_TIMEZONE_MAP,
    CountryOption,
)
from src.location.bootstrap import LocationService
from src.location.models import LocationData, LocationState


DEFAULT_CURRENCY = "USD"
DEFAULT_COUNTRY_NAME = "United States"
DEFAULT_COUNTRY_CODE = "US"


def current_currency(location: Optional[LocationData]) -> str:
    if location is None:
        return DEFAULT_CURRENCY
    if location.currency:
        return location.currency
    code = (location.country_code or "").upper()
    return COUNTRY_CURRENCY_MAP.get(code, DEFAULT_CURRENCY)


def current_country_name(location: Optional[LocationData]) -> str:
    if location is None:
        return DEFAULT_COUNTRY_NAME
    if location.country:
        return location.country
    code = (location.country_code or "").upper()
    return COUNTRY_NAMES.get(code, DEFAULT_COUNTRY_NAME)


def current_country_code(location: Optional[LocationData]) -> str:
    if location is None or not location.country_code:
        return DEFAULT_COUNTRY_CODE
    return location.country_code.upper()


def ship_to_text(location: Optional[LocationData]) -> str:
    # USD is never spelled out, every other currency is
    country = current_country_name(location)
    currency = current_currency(location)
    if currency != DEFAULT_CURRENCY:
        return f"Ship to: {country} | {currency}"
    return f"Ship to: {country}"


def search_countries(term: str) -> list[CountryOption]:
    """Countries whose name, code or currency contains ``term``."""
    needle = term.strip().lower()
    return [
        option for option in COUNTRY_OPTIONS
        if needle in option.name.lower()
        or needle in option.code.lower()
        or needle in option.currency.lower()
    ]


def location_for_country(code: str) -> LocationData:
    code = code.upper()
    for option in COUNTRY_OPTIONS:
        if option.code == code:
            return LocationData(
                country=option.name,
                country_code=option.code,
                currency=option.currency,
                timezone=COUNTRY_TIMEZONE_MAP.get(option.code),
            )
    raise ValueError(f"Unknown country code: {code}")


class ShippingInfo(NamedTuple):
    country: str
    country_code: str
    ship_to_text: str
    is_loading: bool
    location: Optional[LocationData]


class CurrencyInfo(NamedTuple):
    currency: str
    is_loading: bool
    location: Optional[LocationData]


class LocationContext:
    """Derived fields and user actions over a LocationService."""

    def __init__(self, service: LocationService):
        self.service = service

    @property
    def state(self) -> LocationState:
        return self.service.state

    @property
    def location(self) -> Optional[LocationData]:
        return self.service.state.location

    def currency(self) -> str:
        return current_currency(self.location)

    def country_name(self) -> str:
        return current_country_name(self.location)

    def country_code(self) -> str:
        return current_country_code(self.location)

    def ship_to_text(self) -> str:
        return ship_to_text(self.location)

    def current_country_option(self) -> Optional[CountryOption]:
        location = self.location
        if location is None:
            return None
        code = (location.country_code or "").upper()
        for option in COUNTRY_OPTIONS:
            if option.code == code or option.name == location.country:
                return option
        return None

    def shipping(self) -> ShippingInfo:
        return ShippingInfo(
            country=self.country_name(),
            country_code=self.country_code(),
            ship_to_text=self.ship_to_text(),
            is_loading=self.state.is_loading,
            location=self.location,
        )

    def currency_info(self) -> CurrencyInfo:
        return CurrencyInfo(self.currency(), self.state.is_loading, self.location)

    def set_location_manually(self, location: LocationData) -> LocationState:
        return self.service.set_location_manually(location)

    def select_country(self, code: str) -> LocationState:
        return self.service.set_location_manually(location_for_country(code))

    async def refresh_location(self) -> LocationData:
        return await self.service.refresh_location()
