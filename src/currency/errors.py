"""
Currency conversion exceptions.
"""

from enum import Enum
from typing import Optional


class ErrorType(str, Enum):
    VALIDATION = "VALIDATION"
    API_UNAVAILABLE = "API_UNAVAILABLE"
    RATE_NOT_FOUND = "RATE_NOT_FOUND"
    TIMEOUT = "TIMEOUT"
    NETWORK = "NETWORK"


class CurrencyError(Exception):
    """
    Failure of one exchange rate tier.

    Attributes:
        message: Human-readable error message.
        type: Failure category.
        status_code: HTTP status code to answer with if this is the final error.
        retryable: Whether the same tier may succeed on another attempt.
    """

    def __init__(
        self,
        message: str,
        type: ErrorType,
        status_code: int = 500,
        retryable: bool = False,
    ):
        self.message = message
        self.type = type
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class ConversionFailedError(Exception):
    """Raised by the client when no converted price could be obtained."""

    def __init__(self, message: str = "Conversion failed", status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)
