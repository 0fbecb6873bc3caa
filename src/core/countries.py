"""
Static country reference tables shared by the location client and the
geolocation providers.
"""

from typing import NamedTuple


# Country code -> ISO 4217 currency code
COUNTRY_CURRENCY_MAP: dict[str, str] = {
    # North America
    "US": "USD", "CA": "CAD", "MX": "MXN",
    # Europe
    "GB": "GBP", "DE": "EUR", "FR": "EUR", "IT": "EUR", "ES": "EUR",
    "NL": "EUR", "BE": "EUR", "AT": "EUR", "PT": "EUR", "IE": "EUR",
    "FI": "EUR", "CH": "CHF", "NO": "NOK", "SE": "SEK", "DK": "DKK",
    "PL": "PLN", "CZ": "CZK", "HU": "HUF",
    # Asia Pacific
    "JP": "JPY", "CN": "CNY", "KR": "KRW", "IN": "INR", "AU": "AUD",
    "NZ": "NZD", "SG": "SGD", "HK": "HKD", "TH": "THB", "MY": "MYR",
    "PH": "PHP", "ID": "IDR", "VN": "VND",
    # Middle East & Africa
    "AE": "AED", "SA": "SAR", "QA": "QAR", "KW": "KWD", "BH": "BHD",
    "EG": "EGP", "ZA": "ZAR", "IL": "ILS", "TR": "TRY",
    # South America
    "BR": "BRL", "AR": "ARS", "CL": "CLP", "CO": "COP", "PE": "PEN",
}

COUNTRY_NAMES: dict[str, str] = {
    "US": "United States", "CA": "Canada", "GB": "United Kingdom",
    "DE": "Germany", "FR": "France", "IT": "Italy", "ES": "Spain",
    "JP": "Japan", "CN": "China", "AU": "Australia", "BR": "Brazil",
    "IN": "India", "MX": "Mexico", "NL": "Netherlands", "CH": "Switzerland",
    "SE": "Sweden", "NO": "Norway", "DK": "Denmark", "KR": "South Korea",
    "SG": "Singapore", "HK": "Hong Kong", "AE": "United Arab Emirates",
    "SA": "Saudi Arabia", "EG": "Egypt", "ZA": "South Africa",
    "AR": "Argentina", "CL": "Chile", "CO": "Colombia", "NZ": "New Zealand",
    "TH": "Thailand", "MY": "Malaysia", "PH": "Philippines", "ID": "Indonesia",
    "VN": "Vietnam", "TR": "Turkey", "IL": "Israel", "PL": "Poland",
    "CZ": "Czech Republic", "HU": "Hungary", "AT": "Austria", "BE": "Belgium",
    "PT": "Portugal", "IE": "Ireland", "QA": "Qatar", "KW": "Kuwait",
    "BH": "Bahrain", "PE": "Peru", "FI": "Finland",
}

# Simplified: one representative zone per country
COUNTRY_TIMEZONE_MAP: dict[str, str] = {
    "US": "America/New_York", "CA": "America/Toronto", "GB": "Europe/London",
    "DE": "Europe/Berlin", "FR": "Europe/Paris", "IT": "Europe/Rome",
    "ES": "Europe/Madrid", "JP": "Asia/Tokyo", "CN": "Asia/Shanghai",
    "AU": "Australia/Sydney", "BR": "America/Sao_Paulo", "IN": "Asia/Kolkata",
    "MX": "America/Mexico_City", "NL": "Europe/Amsterdam", "CH": "Europe/Zurich",
    "SE": "Europe/Stockholm", "NO": "Europe/Oslo", "DK": "Europe/Copenhagen",
    "KR": "Asia/Seoul", "SG": "Asia/Singapore", "HK": "Asia/Hong_Kong",
    "AE": "Asia/Dubai", "SA": "Asia/Riyadh", "EG": "Africa/Cairo",
    "ZA": "Africa/Johannesburg", "AR": "America/Argentina/Buenos_Aires",
    "CL": "America/Santiago", "CO": "America/Bogota", "NZ": "Pacific/Auckland",
    "TH": "Asia/Bangkok", "MY": "Asia/Kuala_Lumpur", "PH": "Asia/Manila",
    "ID": "Asia/Jakarta", "VN": "Asia/Ho_Chi_Minh", "TR": "Europe/Istanbul",
    "IL": "Asia/Jerusalem", "PL": "Europe/Warsaw", "CZ": "Europe/Prague",
    "HU": "Europe/Budapest", "AT": "Europe/Vienna", "BE": "Europe/Brussels",
    "PT": "Europe/Lisbon", "IE": "Europe/Dublin", "QA": "Asia/Qatar",
    "KW": "Asia/Kuwait", "BH": "Asia/Bahrain", "PE": "America/Lima",
    "FI": "Europe/Helsinki",
}


class CountryOption(NamedTuple):
    """A country a shopper can pick as their shipping destination."""

    name: str
    code: str
    currency: str
    flag: str


POPULAR_COUNTRIES: list[CountryOption] = [
    CountryOption("United States", "US", "USD", "🇺🇸"),
    CountryOption("Canada", "CA", "CAD", "🇨🇦"),
    CountryOption("United Kingdom", "GB", "GBP", "🇬🇧"),
    CountryOption("Germany", "DE", "EUR", "🇩🇪"),
    CountryOption("France", "FR", "EUR", "🇫🇷"),
    CountryOption("Japan", "JP", "JPY", "🇯🇵"),
    CountryOption("Australia", "AU", "AUD", "🇦🇺"),
    CountryOption("Brazil", "BR", "BRL", "🇧🇷"),
    CountryOption("India", "IN", "INR", "🇮🇳"),
    CountryOption("China", "CN", "CNY", "🇨🇳"),
    CountryOption("Mexico", "MX", "MXN", "🇲🇽"),
    CountryOption("Egypt", "EG", "EGP", "🇪🇬"),
]


def _flag(code: str) -> str:
    # Regional indicator symbols spell the flag emoji
    return "".join(chr(0x1F1E6 + ord(ch) - ord("A")) for ch in code)


COUNTRY_OPTIONS: list[CountryOption] = POPULAR_COUNTRIES + sorted(
    (
        CountryOption(name, code, COUNTRY_CURRENCY_MAP[code], _flag(code))
        for code, name in COUNTRY_NAMES.items()
        if code not in {c.code for c in POPULAR_COUNTRIES}
    ),
    key=lambda option: option.name,
)
