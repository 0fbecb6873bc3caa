from typing import NamedTuple

from babel.numbers import format_currency, is_currency


class PopularCurrency(NamedTuple):
    code: str
    symbol: str


POPULAR_CURRENCIES: list[PopularCurrency] = [
    PopularCurrency("USD", "$"),
    PopularCurrency("EUR", "€"),
    PopularCurrency("GBP", "£"),
    PopularCurrency("JPY", "¥"),
    PopularCurrency("CAD", "C$"),
    PopularCurrency("AUD", "A$"),
    PopularCurrency("CHF", "CHF"),
    PopularCurrency("CNY", "¥"),
    PopularCurrency("EGP", "E£"),
    PopularCurrency("SAR", "﷼"),
    PopularCurrency("AED", "د.إ"),
]

CURRENCY_SYMBOLS: dict[str, str] = {c.code: c.symbol for c in POPULAR_CURRENCIES}


def currency_symbol(code: str) -> str:
    return CURRENCY_SYMBOLS.get(code.upper(), code.upper())


def format_price(amount: float, currency_code: str, locale: str = "en_US") -> str:
    """Render ``amount`` with two decimals in ``currency_code``.

    Codes Babel doesn't know are shown as ``"{symbol} {amount}"``.
    """
    code = currency_code.upper()
    if is_currency(code, locale):
        return format_currency(amount, code, locale=locale, currency_digits=False)
    return f"{currency_symbol(code)} {amount:.2f}"
