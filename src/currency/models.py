"""
Conversion payloads shared by the conversion endpoint and its client.
"""

from typing import Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


ConversionSource = Literal["exchangerate-api.com", "moneymorph.dev", "fallback-rates"]
KNOWN_SOURCES = frozenset(get_args(ConversionSource))
FALLBACK_SOURCE = "fallback-rates"


class QuoteMeta(BaseModel):
    timestamp: int
    rate: float
    source: Optional[str] = None
    warning: Optional[str] = None


class QuoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    to: str
    query: str = ""
    from_: str = Field(alias="from")
    amount: float


class RateQuote(BaseModel):
    """Wire shape of a conversion answer."""

    model_config = ConfigDict(extra="ignore")

    meta: QuoteMeta
    request: QuoteRequest
    response: float

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ConversionResult(BaseModel):
    """A converted amount plus the tier that produced its rate."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    rate: float
    converted_amount: float
    source: Optional[ConversionSource] = None
    warning: Optional[str] = None

    @property
    def is_degraded(self) -> bool:
        return self.source == FALLBACK_SOURCE

    @classmethod
    def from_quote(cls, quote: RateQuote) -> "ConversionResult":
        source = quote.meta.source if quote.meta.source in KNOWN_SOURCES else None
        return cls(
            rate=quote.meta.rate,
            converted_amount=quote.response,
            source=source,
            warning=quote.meta.warning,
        )
