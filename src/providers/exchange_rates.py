"""
Exchange rate lookups for the conversion endpoint.

Rates come from an ordered list of tiers:

1. exchangerate-api.com (latest rates for the base currency)
2. moneymorph.dev (direct conversion)
3. a static table of fallback rates, flagged with a warning

Retryable failures (timeouts, network errors, 5xx) are retried within a tier
with a progressive delay before moving on to the next tier.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, NamedTuple, Optional

import httpx
from pydantic import ValidationError

from src.core.config import Settings, settings as default_settings
from src.currency.errors import CurrencyError, ErrorType
from src.currency.models import FALLBACK_SOURCE, QuoteMeta, QuoteRequest, RateQuote

logger = logging.getLogger(__name__)


# Only currencies we have reliable fallback rates for
SUPPORTED_CURRENCIES = frozenset({
    "USD", "EUR", "GBP", "JPY", "CAD", "AUD", "CHF", "CNY",
    "EGP", "SAR", "AED", "KWD", "QAR", "OMR", "BHD",
})

# Emergency rates, updated by hand
FALLBACK_RATES: dict[str, dict[str, float]] = {
    "USD": {
        "EUR": 0.85, "GBP": 0.73, "JPY": 110.0, "CAD": 1.25, "AUD": 1.35,
        "CHF": 0.92, "CNY": 6.45, "EGP": 31.0, "SAR": 3.75, "AED": 3.67,
        "KWD": 0.30, "QAR": 3.64, "OMR": 0.38, "BHD": 0.38,
    },
    "EUR": {"USD": 1.18, "GBP": 0.86, "JPY": 129.5, "EGP": 36.5},
    "GBP": {"USD": 1.37, "EUR": 1.16, "EGP": 42.5},
    "EGP": {"USD": 0.032, "EUR": 0.027, "GBP": 0.024, "SAR": 0.12, "AED": 0.12},
}

FALLBACK_WARNING = "Using cached exchange rates - may not be current"

FALLBACK_CURRENCY_NAMES: dict[str, str] = {
    "USD": "US Dollar",
    "EUR": "Euro",
    "GBP": "British Pound Sterling",
    "JPY": "Japanese Yen",
    "CAD": "Canadian Dollar",
    "AUD": "Australian Dollar",
    "CHF": "Swiss Franc",
    "CNY": "Chinese Yuan",
    "EGP": "Egyptian Pound",
    "SAR": "Saudi Riyal",
    "AED": "UAE Dirham",
    "INR": "Indian Rupee",
    "BRL": "Brazilian Real",
    "MXN": "Mexican Peso",
    "KRW": "South Korean Won",
    "SGD": "Singapore Dollar",
    "HKD": "Hong Kong Dollar",
    "NOK": "Norwegian Krone",
    "SEK": "Swedish Krona",
    "DKK": "Danish Krone",
}


def _format_amount(amount: float) -> str:
    return str(int(amount)) if float(amount).is_integer() else str(amount)


def build_quote(
    from_currency: str,
    to_currency: str,
    amount: float,
    rate: float,
    source: Optional[str],
    warning: Optional[str] = None,
) -> RateQuote:
    return RateQuote(
        meta=QuoteMeta(
            timestamp=int(time.time()),
            rate=rate,
            source=source,
            warning=warning,
        ),
        request=QuoteRequest(
            to=to_currency,
            query=f"/convert/{_format_amount(amount)}/{from_currency}/{to_currency}",
            from_=from_currency,
            amount=amount,
        ),
        response=amount * rate,
    )


def is_supported_currency(code: str) -> bool:
    code = code.upper()
    return len(code) == 3 and code.isalpha() and code.isascii() and code in SUPPORTED_CURRENCIES


def fallback_rate(from_currency: str, to_currency: str) -> Optional[float]:
    """Look up a static rate directly, inverted, or through USD."""
    direct = FALLBACK_RATES.get(from_currency, {}).get(to_currency)
    if direct:
        return direct

    inverse = FALLBACK_RATES.get(to_currency, {}).get(from_currency)
    if inverse:
        return 1 / inverse

    from_to_usd = FALLBACK_RATES.get(from_currency, {}).get("USD")
    usd_to_target = FALLBACK_RATES["USD"].get(to_currency)
    if from_to_usd and usd_to_target:
        return from_to_usd * usd_to_target
    return None


class RateTier(NamedTuple):
    name: str
    fetch: Callable[[str, str, float], Awaitable[RateQuote]]


class ExchangeRateService:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.http_client = http_client
        self.settings = settings or default_settings
        self.sleep = sleep
        self.tiers = [
            RateTier("ExchangeRate API", self._from_exchangerate_api),
            RateTier("MoneyMorph API", self._from_moneymorph),
            RateTier("Fallback rates", self._from_fallback_rates),
        ]

    async def convert(self, from_currency: str, to_currency: str, amount: float) -> RateQuote:
        """Convert through the first tier that answers.

        Raises:
            CurrencyError: the error of the last tier when none could answer.
        """
        last_error: Optional[CurrencyError] = None
        for tier in self.tiers:
            quote, error = await self._attempt(tier, from_currency, to_currency, amount)
            if quote is not None:
                return quote
            last_error = error

        logger.error("All conversion methods failed for %s -> %s", from_currency, to_currency)
        raise last_error or CurrencyError(
            "Currency conversion failed", ErrorType.API_UNAVAILABLE, 503, False
        )

    async def _attempt(
        self, tier: RateTier, from_currency: str, to_currency: str, amount: float
    ) -> tuple[Optional[RateQuote], Optional[CurrencyError]]:
        max_retries = max(1, self.settings.rate_max_retries)
        last_error: Optional[CurrencyError] = None

        for attempt in range(1, max_retries + 1):
            try:
                return await tier.fetch(from_currency, to_currency, amount), None
            except CurrencyError as e:
                last_error = e
                if not e.retryable:
                    logger.info("%s failed permanently: %s", tier.name, e.message)
                    break
                if attempt < max_retries:
                    logger.warning("%s attempt %s failed, retrying: %s", tier.name, attempt, e.message)
                    await self.sleep(self.settings.rate_retry_delay_seconds * attempt)

        return None, last_error

    async def _get(self, name: str, url: str, timeout: float) -> httpx.Response:
        try:
            return await self.http_client.get(
                url, headers={"Content-Type": "application/json"}, timeout=timeout
            )
        except httpx.TimeoutException:
            logger.warning("%s request timed out", name)
            raise CurrencyError(f"{name} request timed out", ErrorType.TIMEOUT, 408, True)
        except httpx.HTTPError as e:
            logger.error("%s network error: %s", name, e)
            raise CurrencyError(f"{name} network error", ErrorType.NETWORK, 503, True)

    async def _from_exchangerate_api(self, from_currency: str, to_currency: str, amount: float) -> RateQuote:
        name = "ExchangeRate API"
        response = await self._get(
            name,
            f"{self.settings.exchangerate_api_url}/{from_currency}",
            self.settings.exchangerate_api_timeout_seconds,
        )

        if response.status_code == 404:
            raise CurrencyError(
                f"Currency pair {from_currency}/{to_currency} not supported by {name}",
                ErrorType.RATE_NOT_FOUND, 404, False,
            )
        if not response.is_success:
            raise CurrencyError(
                f"{name} unavailable (HTTP {response.status_code})",
                ErrorType.API_UNAVAILABLE, response.status_code, response.status_code >= 500,
            )

        try:
            raw_rate = response.json()["rates"].get(to_currency)
            rate = float(raw_rate) if raw_rate is not None else None
        except (ValueError, KeyError, TypeError, AttributeError):
            raise CurrencyError(f"{name} returned a malformed body", ErrorType.NETWORK, 503, True)

        if not rate:
            raise CurrencyError(
                f"Exchange rate not available for {from_currency} to {to_currency}",
                ErrorType.RATE_NOT_FOUND, 404, False,
            )

        quote = build_quote(from_currency, to_currency, amount, rate, "exchangerate-api.com")
        logger.info(
            "Converted %s %s to %.2f %s via %s", amount, from_currency, quote.response, to_currency, name
        )
        return quote

    async def _from_moneymorph(self, from_currency: str, to_currency: str, amount: float) -> RateQuote:
        name = "MoneyMorph API"
        response = await self._get(
            name,
            f"{self.settings.moneymorph_api_url}/convert/{_format_amount(amount)}/{from_currency}/{to_currency}",
            self.settings.moneymorph_api_timeout_seconds,
        )

        if response.status_code == 400:
            raise CurrencyError(
                f"Invalid currency pair {from_currency}/{to_currency} for {name}",
                ErrorType.VALIDATION, 400, False,
            )
        if response.status_code == 404:
            raise CurrencyError(
                f"Currency pair {from_currency}/{to_currency} not found in {name}",
                ErrorType.RATE_NOT_FOUND, 404, False,
            )
        if not response.is_success:
            raise CurrencyError(
                f"{name} unavailable (HTTP {response.status_code})",
                ErrorType.API_UNAVAILABLE, response.status_code, response.status_code >= 500,
            )

        try:
            quote = RateQuote.model_validate(response.json())
        except (ValueError, ValidationError):
            raise CurrencyError(f"{name} returned a malformed body", ErrorType.API_UNAVAILABLE, 502, False)

        quote = quote.model_copy(update={"meta": quote.meta.model_copy(update={"source": "moneymorph.dev"})})
        logger.info(
            "Converted %s %s to %.2f %s via %s", amount, from_currency, quote.response, to_currency, name
        )
        return quote

    async def _from_fallback_rates(self, from_currency: str, to_currency: str, amount: float) -> RateQuote:
        rate = fallback_rate(from_currency, to_currency)
        if rate is None:
            raise CurrencyError(
                f"Conversion not supported: {from_currency} to {to_currency}",
                ErrorType.RATE_NOT_FOUND, 404, False,
            )
        quote = build_quote(from_currency, to_currency, amount, rate, FALLBACK_SOURCE, FALLBACK_WARNING)
        logger.info(
            "Using fallback rate to convert %s %s to %.2f %s (rate: %s)",
            amount, from_currency, quote.response, to_currency, rate,
        )
        return quote

    async def list_currencies(self) -> tuple[dict[str, str], bool]:
        """Return (code -> name, served_from_fallback)."""
        try:
            response = await self.http_client.get(
                f"{self.settings.moneymorph_api_url}/currencies",
                headers={"Content-Type": "application/json"},
                timeout=self.settings.moneymorph_api_timeout_seconds,
            )
            response.raise_for_status()
            data = response.json()
            if not isinstance(data, dict) or not data:
                raise ValueError("unexpected currency list shape")
            return {str(code): str(name) for code, name in data.items()}, False
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Error fetching currencies: %s", e)
            return dict(FALLBACK_CURRENCY_NAMES), True
