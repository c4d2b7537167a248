"""Exchange rate services package."""

from src.services.exchange.rate_service import (
    CURRENCY_SYMBOLS,
    ExchangeRateService,
    RateCache,
    UpstreamError,
    format_currency_amount,
)

__all__ = [
    "CURRENCY_SYMBOLS",
    "ExchangeRateService",
    "RateCache",
    "UpstreamError",
    "format_currency_amount",
]
