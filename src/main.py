import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.core.config import Settings, settings
from src.api.routes import currency, health, location
from src.providers.exchange_rates import ExchangeRateService
from src.providers.geoip import GeoIPLookup
from src.providers.reverse_geocode import ReverseGeocoder

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.app_debug else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    # Startup
    cfg: Settings = app.state.settings
    logger.info(f"Starting {cfg.app_name}")
    logger.info(f"Debug mode: {cfg.app_debug}")
    logger.info(f"API Version: {cfg.api_version}")

    owns_client = app.state.http_client is None
    client = app.state.http_client or httpx.AsyncClient(follow_redirects=True)

    app.state.geoip = GeoIPLookup(client, cfg)
    app.state.geoip.load_cache()
    app.state.reverse_geocoder = ReverseGeocoder(client, cfg)
    app.state.exchange_rates = ExchangeRateService(client, cfg)
    yield
    # Shutdown
    if owns_client:
        await client.aclose()
    logger.info("Shutting down application")


def create_application(
    app_settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``http_client`` is used for every upstream call when given; otherwise one
    is created on startup and closed on shutdown.
    """
    cfg = app_settings or settings
    app = FastAPI(
        title=cfg.app_name,
        version=cfg.api_version,
        debug=cfg.app_debug,
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.http_client = http_client

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.allowed_origins,
        allow_credentials=True,
        allow_methods=cfg.allowed_methods,
        allow_headers=cfg.allowed_headers,
    )

    # Include routers
    app.include_router(health.router, prefix=f"/{cfg.api_version}", tags=["health"])
    app.include_router(location.router, prefix=f"/{cfg.api_version}", tags=["location"])
    app.include_router(currency.router, prefix=f"/{cfg.api_version}", tags=["currency"])

    return app


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.app_debug,
    )
