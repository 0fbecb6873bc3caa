import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from src.providers.geoip import GeoIPLookup, is_public_ip
from src.providers.reverse_geocode import ReverseGeocoder, validate_coordinates

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/location")


def get_client_ip(request: Request) -> str:
    """Best guess at the visitor's address behind proxies and CDNs."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value.strip()

    return request.client.host if request.client else "unknown"


@router.get("/detect")
async def detect_location(request: Request):
    """
    Locate the caller by IP address.

    Answers ``{"error": ...}`` when the address can't be located, leaving the
    choice of a default location to the client.
    """
    client_ip = get_client_ip(request)

    # Skip detection for localhost/private networks
    if not is_public_ip(client_ip):
        logger.info("Non-public client address %s, skipping IP geolocation", client_ip)
        return {"error": "Location unavailable for a non-public address", "ip": client_ip}

    geoip: GeoIPLookup = request.app.state.geoip
    location = await geoip.lookup(client_ip)
    if location is None:
        return {"error": "IP geolocation failed", "ip": client_ip}

    return location.to_payload()


@router.get("/reverse-geocode")
async def reverse_geocode(request: Request, lat: Optional[str] = None, lng: Optional[str] = None):
    """Turn ``lat``/``lng`` into country, region, city, currency and timezone."""
    try:
        latitude, longitude = validate_coordinates(lat, lng)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)

    geocoder: ReverseGeocoder = request.app.state.reverse_geocoder
    place = await geocoder.reverse(latitude, longitude)
    if place is None:
        return JSONResponse({"error": "Could not determine location from coordinates"}, status_code=404)

    return place.to_payload()
