"""
Shared fixtures.

Every test gets its own in-memory SQLite database. The upstream rate
provider is replaced by `FakeHttp`; no test touches the network.
"""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from src.audit import AuditLogger
from src.config import (
    DatabaseSettings,
    ExchangeRateSettings,
    Settings,
)
from src.models.budget import AuthenticatedUser
from src.services.exchange import ExchangeRateService, RateCache
from src.services.storage import Database, SqlAuditStorage, SqlBudgetStore


class TickingClock:
    """Datetime source that moves one second forward on every call."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    """Seconds source moved by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, body_error: bool = False):
        self.status_code = status_code
        self._payload = payload
        self._body_error = body_error

    def json(self):
        if self._body_error:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


class FakeHttp:
    """
    Replays queued responses or exceptions, then repeats the last one.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes) or [FakeResponse(payload={"rates": {"PEN": 3.8}})]
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def database():
    db = Database(url="sqlite://", settings=DatabaseSettings())
    db.connect()
    yield db
    db.close()


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def store(database, clock):
    return SqlBudgetStore(database, clock=clock)


@pytest.fixture
def audit_storage(database):
    return SqlAuditStorage(database)


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def user_a():
    return AuthenticatedUser(id=uuid4(), email="ana@example.com")


@pytest.fixture
def user_b():
    return AuthenticatedUser(id=uuid4(), email="bruno@example.com")


@pytest.fixture
def exchange_settings():
    return ExchangeRateSettings(
        cache_ttl_seconds=3600,
        default_rate=3.75,
        fetch_attempts=2,
        retry_wait_seconds=0,
    )


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def make_rate_service(exchange_settings, monotonic):
    def _make(*outcomes, cache=None):
        http = FakeHttp(*outcomes)
        service = ExchangeRateService(
            cache=cache if cache is not None else RateCache(),
            settings=exchange_settings,
            http=http,
            clock=monotonic,
        )
        return service, http
    return _make


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def respond():
    """Builds upstream responses: `respond(3.8)`, `respond(status=500)`."""
    def _respond(rate=None, status=200, body_error=False, payload=None):
        if payload is None and rate is not None:
            payload = {"base": "USD", "rates": {"PEN": rate, "EUR": 0.92}}
        return FakeResponse(status_code=status, payload=payload, body_error=body_error)
    return _respond
