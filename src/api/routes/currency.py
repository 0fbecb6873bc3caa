import logging
import math
import time
from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from src.currency.errors import CurrencyError
from src.providers.exchange_rates import (
    SUPPORTED_CURRENCIES,
    ExchangeRateService,
    build_quote,
    is_supported_currency,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/currency")


def _bad_request(error: str, message: str, **extra) -> JSONResponse:
    return JSONResponse({"error": error, "message": message, **extra}, status_code=400)


@router.get("/convert")
async def convert_currency(
    request: Request,
    amount: Optional[str] = None,
    from_currency: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = None,
):
    """
    Convert ``amount`` from one currency to another.

    The answer's ``meta.source`` names the tier that produced the rate and
    ``meta.warning`` is set when static fallback rates were used.
    """
    started = time.perf_counter()
    settings = request.app.state.settings

    if not amount or not from_currency or not to:
        return _bad_request(
            "Missing required parameters",
            "Please provide amount, from, and to currency codes",
            details="Required: ?amount=<number>&from=<currency>&to=<currency>",
        )

    try:
        value = float(amount)
    except ValueError:
        value = math.nan
    if math.isnan(value) or value <= 0:
        return _bad_request("Invalid amount", "Amount must be a positive number")
    if value > settings.max_conversion_amount:
        return _bad_request("Amount too large", "Maximum amount allowed is 1 billion")

    source, target = from_currency.upper(), to.upper()
    supported = sorted(SUPPORTED_CURRENCIES)
    if not is_supported_currency(source):
        return _bad_request(
            "Invalid source currency",
            f"Currency code '{from_currency}' is not supported",
            supportedCurrencies=supported,
        )
    if not is_supported_currency(target):
        return _bad_request(
            "Invalid target currency",
            f"Currency code '{to}' is not supported",
            supportedCurrencies=supported,
        )

    if source == target:
        logger.info("Same currency conversion: %s %s", value, source)
        return build_quote(source, target, value, 1, "same-currency").to_wire()

    service: ExchangeRateService = request.app.state.exchange_rates
    try:
        quote = await service.convert(source, target, value)
    except CurrencyError as e:
        return JSONResponse(
            {
                "error": e.message,
                "message": "This currency conversion is not currently supported",
                "supportedCurrencies": supported,
            },
            status_code=e.status_code,
        )

    elapsed_ms = int((time.perf_counter() - started) * 1000)
    logger.info(
        "Conversion completed in %sms: %s %s = %.2f %s", elapsed_ms, value, source, quote.response, target
    )
    return JSONResponse(
        quote.to_wire(),
        headers={
            "Cache-Control": "public, max-age=300, stale-while-revalidate=600",
            "X-Processing-Time": f"{elapsed_ms}ms",
        },
    )


@router.get("/currencies")
async def list_currencies(request: Request):
    """Currency code -> display name."""
    service: ExchangeRateService = request.app.state.exchange_rates
    currencies, from_fallback = await service.list_currencies()
    max_age = 300 if from_fallback else 3600
    return JSONResponse(currencies, headers={"Cache-Control": f"public, max-age={max_age}"})
