"""Pydantic and dataclass models for the exchange rate service."""

from .quote import ErrorResponse, ProviderQuotePayload, Quote, QuoteResponse

__all__ = [
    "ErrorResponse",
    "ProviderQuotePayload",
    "Quote",
    "QuoteResponse",
]
