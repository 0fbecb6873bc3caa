from fastapi import APIRouter, Request
from pydantic import BaseModel

router = APIRouter()


class HealthResponse(BaseModel):
    """Liveness answer, plus which upstream-backed services are wired."""

    status: str
    message: str
    version: str
    services: dict[str, bool]


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    cfg = request.app.state.settings
    state = request.app.state
    return HealthResponse(
        status="healthy",
        message=f"{cfg.app_name} is running",
        version=cfg.api_version,
        services={
            "geoip": hasattr(state, "geoip"),
            "reverse_geocode": hasattr(state, "reverse_geocoder"),
            "exchange_rates": hasattr(state, "exchange_rates"),
        },
    )
