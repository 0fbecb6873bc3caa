"""
Client side of currency conversion.

CurrencyConverter talks to ``/currency/convert`` and ``/currency/currencies``
and keeps a short-lived rate cache per currency pair. ConverterSession is the
state machine behind one on-screen price:

    IDLE -> CONVERTING -> RESOLVED | DEGRADED

Every currency change starts a new conversion; an answer that arrives after a
newer request was started is dropped.
"""

import logging
import time
from enum import Enum
from typing import Callable, NamedTuple, Optional

import httpx
from pydantic import ValidationError

from src.core.config import Settings, settings as default_settings
from src.currency.errors import ConversionFailedError
from src.currency.formatting import format_price
from src.currency.models import ConversionResult, RateQuote
from src.location.context import LocationContext

logger = logging.getLogger(__name__)


FALLBACK_CURRENCIES: dict[str, str] = {
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
}

SOURCE_LABELS: dict[str, str] = {
    "exchangerate-api.com": "ExchangeRate-API",
    "moneymorph.dev": "MoneyMorph",
    "fallback-rates": "Cached Rates",
}


class CachedRate(NamedTuple):
    rate: float
    source: Optional[str]
    warning: Optional[str]
    fetched_at: float


class CurrencyConverter:
    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        cfg = settings or default_settings
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(base_url=cfg.api_base_url)
        self.cache_ttl = cfg.conversion_cache_seconds
        self.clock = clock
        self._rates: dict[tuple[str, str], CachedRate] = {}

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    def clear_cache(self) -> None:
        self._rates.clear()

    def _cached(self, pair: tuple[str, str], amount: float) -> Optional[ConversionResult]:
        entry = self._rates.get(pair)
        if entry is None or self.clock() - entry.fetched_at > self.cache_ttl:
            return None
        return ConversionResult(
            rate=entry.rate,
            converted_amount=amount * entry.rate,
            source=entry.source,
            warning=entry.warning,
        )

    async def convert(self, amount: float, from_currency: str, to_currency: str) -> ConversionResult:
        """Convert ``amount`` between currencies.

        Raises:
            ConversionFailedError: the endpoint was unreachable, answered with
                an error status, or sent a malformed body.
        """
        base, target = from_currency.upper(), to_currency.upper()
        if base == target:
            return ConversionResult(rate=1, converted_amount=amount, source=None)

        pair = (base, target)
        cached = self._cached(pair, amount)
        if cached is not None:
            return cached

        try:
            response = await self.http_client.get(
                "/currency/convert", params={"amount": amount, "from": base, "to": target}
            )
        except httpx.HTTPError as e:
            logger.error("Currency conversion request failed: %s", e)
            raise ConversionFailedError("Conversion failed")

        if not response.is_success:
            try:
                message = response.json().get("message") or "Failed to convert currency"
            except (ValueError, AttributeError):
                message = "Failed to convert currency"
            logger.error("Currency conversion failed (HTTP %s): %s", response.status_code, message)
            raise ConversionFailedError(message, response.status_code)

        try:
            quote = RateQuote.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error("Malformed conversion response: %s", e)
            raise ConversionFailedError("Conversion failed")

        result = ConversionResult.from_quote(quote)
        if result.warning:
            logger.warning("Conversion %s -> %s: %s", base, target, result.warning)
        if not result.is_degraded:
            self._rates[pair] = CachedRate(result.rate, result.source, result.warning, self.clock())
        return result

    async def list_currencies(self) -> dict[str, str]:
        try:
            response = await self.http_client.get("/currency/currencies")
            response.raise_for_status()
            data = response.json()
            if not isinstance(data, dict) or not data:
                raise ValueError("unexpected currency list shape")
            return {str(code): str(name) for code, name in data.items()}
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to fetch currencies: %s", e)
            return dict(FALLBACK_CURRENCIES)


class ConversionStatus(str, Enum):
    IDLE = "idle"
    CONVERTING = "converting"
    RESOLVED = "resolved"
    DEGRADED = "degraded"


class ConverterSession:
    """Converted price for one product, following the selected currency."""

    def __init__(self, converter: CurrencyConverter, base_price: float, base_currency: str = "USD"):
        self.converter = converter
        self.base_price = base_price
        self.base_currency = base_currency.upper()
        self.selected_currency = self.base_currency
        self.status = ConversionStatus.IDLE
        self.converted_price = base_price
        self.source: Optional[str] = None
        self.warning: Optional[str] = None
        self.error: Optional[str] = None
        self.has_auto_detected = False
        self._request_id = 0

    async def apply_detected_currency(self, context: LocationContext) -> None:
        """Switch to the visitor's local currency the first time it is known."""
        if self.has_auto_detected or context.state.is_loading:
            return
        self.has_auto_detected = True
        await self.select_currency(context.currency())

    async def select_currency(self, currency_code: str) -> None:
        code = currency_code.upper()
        self.selected_currency = code
        self._request_id += 1
        request_id = self._request_id

        self.source = None
        self.warning = None
        self.error = None
        if code == self.base_currency:
            self.converted_price = self.base_price
            self.status = ConversionStatus.RESOLVED
            return

        self.status = ConversionStatus.CONVERTING
        try:
            result = await self.converter.convert(self.base_price, self.base_currency, code)
        except ConversionFailedError as e:
            if request_id != self._request_id:
                return
            logger.error("Currency conversion failed: %s", e.message)
            self.status = ConversionStatus.DEGRADED
            self.error = "Conversion failed"
            self.converted_price = self.base_price
            return

        if request_id != self._request_id:
            logger.debug("Dropping conversion to %s, a newer request is in flight", code)
            return
        self.status = ConversionStatus.RESOLVED
        self.converted_price = result.converted_amount
        self.source = result.source
        self.warning = result.warning

    async def refresh(self) -> None:
        if self.selected_currency != self.base_currency:
            await self.select_currency(self.selected_currency)

    @property
    def display_currency(self) -> str:
        # A failed conversion falls back to the original price and currency
        if self.status == ConversionStatus.DEGRADED:
            return self.base_currency
        return self.selected_currency

    def display_price(self) -> str:
        return format_price(self.converted_price, self.display_currency)

    def original_price(self) -> str:
        return format_price(self.base_price, self.base_currency)

    def exchange_rate_text(self) -> Optional[str]:
        if self.status != ConversionStatus.RESOLVED or self.selected_currency == self.base_currency:
            return None
        if not self.base_price:
            return None
        rate = self.converted_price / self.base_price
        return f"1 {self.base_currency} = {rate:.4f} {self.selected_currency}"

    def source_label(self) -> str:
        return SOURCE_LABELS.get(self.source, "Multiple sources")

    def error_banner(self) -> Optional[str]:
        if self.error:
            return f"{self.error}. Showing original price."
        return None
