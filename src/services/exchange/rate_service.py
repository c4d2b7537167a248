"""
Exchange Rate Service

Provides the PEN per USD rate used when a transaction is entered in
dollars.

The rate lives in a single-slot `RateCache`. A cached value younger than
the freshness window is returned as is. Otherwise the upstream provider is
asked once (with a bounded retry on transient connection errors) and the
result is cached for the whole window.

IMPORTANT: `get_rate()` never raises. Any upstream failure, whether a bad
status, malformed JSON, a missing or non-numeric rate or a network error,
falls back to the configured default rate. The default is cached like a
real rate so a dead upstream is asked at most once per window.

There is no locking. Two cold readers may both fetch; the last write
replaces the slot as a whole value.
"""

import math
import time
from typing import Callable, Optional, Union

import requests
import structlog
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.config import ExchangeRateSettings, get_settings
from src.models.audit import AuditEventBuilder
from src.models.budget import Currency, ExchangeRate


class UpstreamError(Exception):
    """The rate provider returned nothing usable."""
    pass


class RateCache:
    """
    Holds at most one ExchangeRate.

    One instance is shared by the process; tests build their own.
    """

    def __init__(self):
        self._entry: Optional[ExchangeRate] = None

    def get(self) -> Optional[ExchangeRate]:
        return self._entry

    def set(self, entry: ExchangeRate) -> None:
        self._entry = entry

    def clear(self) -> None:
        self._entry = None


CURRENCY_SYMBOLS = {
    Currency.USD: "$",
    Currency.PEN: "S/.",
}


def format_currency_amount(amount: float, currency: Union[Currency, str]) -> str:
    """Format with the currency symbol, thousands separator and two decimals."""
    currency = Currency(currency)
    return f"{CURRENCY_SYMBOLS[currency]}{amount:,.2f}"


class ExchangeRateService:
    """
    Cached USD to PEN rate and conversions between the two.
    """

    def __init__(
        self,
        cache: Optional[RateCache] = None,
        settings: Optional[ExchangeRateSettings] = None,
        http: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            cache: Slot holding the rate. A private one is created if None.
            settings: Provider settings. Loaded from the environment if None.
            http: Object with a requests-compatible `get`.
            clock: Seconds source used to age the cached rate.
        """
        self._cache = cache if cache is not None else RateCache()
        self._settings = settings or get_settings().exchange_rate
        self._http = http or requests.Session()
        self._clock = clock
        self._logger = structlog.get_logger(__name__)

    @property
    def cache(self) -> RateCache:
        return self._cache

    def _request_rate(self) -> float:
        response = self._http.get(
            self._settings.api_url,
            timeout=self._settings.request_timeout_seconds,
        )
        if response.status_code != 200:
            raise UpstreamError(f"API request failed: {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError(f"Malformed response: {e}")

        rates = payload.get("rates") if isinstance(payload, dict) else None
        rate = rates.get(self._settings.target_currency) if isinstance(rates, dict) else None

        if isinstance(rate, bool) or not isinstance(rate, (int, float)):
            raise UpstreamError("Invalid rate data received")
        try:
            rate = float(rate)
        except OverflowError:
            raise UpstreamError("Invalid rate data received")
        if not math.isfinite(rate) or rate <= 0:
            raise UpstreamError("Invalid rate data received")

        return rate

    def fetch_rate(self) -> float:
        """
        Ask the upstream for the current rate.

        Connection errors and timeouts are retried; everything else fails
        on the first attempt.

        Raises:
            UpstreamError: If no usable rate could be obtained
        """
        retrying = Retrying(
            stop=stop_after_attempt(self._settings.fetch_attempts),
            wait=wait_exponential(
                multiplier=self._settings.retry_wait_seconds,
                max=10,
            ),
            retry=retry_if_exception_type(
                (requests.ConnectionError, requests.Timeout)
            ),
            reraise=True,
        )
        try:
            return retrying(self._request_rate)
        except requests.RequestException as e:
            raise UpstreamError(f"Network error: {e}") from e

    def get_rate(self) -> float:
        """
        PEN per one USD. Never raises.
        """
        now = self._clock()
        cached = self._cache.get()
        if cached is not None and now - cached.timestamp < self._settings.cache_ttl_seconds:
            return cached.rate

        try:
            rate = self.fetch_rate()
            self._logger.info("exchange_rate_fetched", rate=rate)
        except UpstreamError as e:
            rate = self._settings.default_rate
            event = AuditEventBuilder.exchange_rate_fallback(
                error_message=str(e),
                default_rate=rate,
            )
            self._logger.warning("audit_event", **event.to_log_dict())

        self._cache.set(ExchangeRate(rate=rate, timestamp=now))
        return rate

    def pen_to_usd(self, amount: float) -> float:
        return amount / self.get_rate()

    def usd_to_pen(self, amount: float) -> float:
        return amount * self.get_rate()

    def convert(
        self,
        amount: float,
        from_currency: Union[Currency, str],
        to_currency: Union[Currency, str],
    ) -> float:
        """
        Convert between PEN and USD.

        Same currency returns the amount unchanged without touching the
        rate.

        Raises:
            ValueError: If either currency is not PEN or USD
        """
        source = Currency(from_currency)
        target = Currency(to_currency)

        if source == target:
            return amount
        if source == Currency.PEN:
            return self.pen_to_usd(amount)
        return self.usd_to_pen(amount)
