"""
Shared test fixtures for FloatPay.

Provides a controllable clock, an in-memory quote store, collaborator
doubles (oracle, scorer, bank, audit, liquidation), the quote engine and
settlement coordinator wired to them, and an async HTTP test client.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from httpx import ASGITransport, AsyncClient

from floatpay.api.deps import get_quote_engine, get_settlement_coordinator
from floatpay.core.security import configure_fernet
from floatpay.services.quote_engine import QuoteEngine
from floatpay.services.quote_store import InMemoryQuoteStore
from floatpay.services.settlement_service import SettlementCoordinator


# --- Fernet Key Fixture ---


@pytest.fixture(scope="session")
def test_fernet_key():
    """Generate a Fernet key for tests."""
    return Fernet.generate_key()


@pytest.fixture(autouse=True)
def setup_fernet(test_fernet_key):
    """Encrypt recipient keys with the test Fernet key."""
    configure_fernet(test_fernet_key)


# --- Clock ---


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


# --- Mock Redis ---


@pytest.fixture
def mock_redis():
    """AsyncMock Redis client with common methods."""
    redis = AsyncMock()
    redis.setex = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.delete = AsyncMock()
    redis.smembers = AsyncMock(return_value=set())
    redis.srem = AsyncMock()
    redis.zadd = AsyncMock()
    redis.zremrangebyscore = AsyncMock()
    redis.zrange = AsyncMock(return_value=[])
    return redis


# --- Store and collaborators ---


@pytest.fixture
def store():
    return InMemoryQuoteStore()


@pytest.fixture
def rate_oracle():
    """Oracle double quoting USDC/BRL at 5.0."""
    oracle = MagicMock()
    oracle.get_exchange_rate = AsyncMock(return_value=Decimal("5.0"))
    return oracle


@pytest.fixture
def risk_scorer():
    """Scorer double returning a calm 0.2."""
    scorer = MagicMock()
    scorer.get_risk_score = AsyncMock(return_value=Decimal("0.2"))
    return scorer


@pytest.fixture
def payout_gateway():
    gateway = MagicMock()
    gateway.send_payout = AsyncMock(return_value="E1767355200000RANDOM42")
    return gateway


@pytest.fixture
def audit_log():
    log = MagicMock()
    log.record = AsyncMock()
    return log


@pytest.fixture
def liquidation_dispatcher():
    dispatcher = MagicMock()
    dispatcher.dispatch = MagicMock(return_value=True)
    return dispatcher


@pytest.fixture
def quote_engine(store, rate_oracle, risk_scorer, clock):
    return QuoteEngine(store, rate_oracle, risk_scorer, clock=clock)


@pytest.fixture
def coordinator(store, payout_gateway, audit_log, liquidation_dispatcher, clock):
    return SettlementCoordinator(
        store,
        payout_gateway=payout_gateway,
        audit_log=audit_log,
        liquidation_dispatcher=liquidation_dispatcher,
        clock=clock,
        tolerance_percent=Decimal("0.5"),
    )


# --- Dependency Override Helpers ---


@pytest_asyncio.fixture
async def client(quote_engine, coordinator):
    """
    Async HTTP test client with the quote engine and settlement
    coordinator overridden to use the test doubles.
    """
    from floatpay.main import app

    app.dependency_overrides[get_quote_engine] = lambda: quote_engine
    app.dependency_overrides[get_settlement_coordinator] = lambda: coordinator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# --- Sample Data ---


@pytest.fixture
def make_event():
    """Factory for chain watcher webhook bodies."""

    def _make(value, asset="USDC", tx_hash="0xabc123", **overrides):
        body = {
            "hash": tx_hash,
            "from": "0x1111111111111111111111111111111111111111",
            "to": "0x742d35Cc6634C0532925a3b844Bc454e4438f44e",
            "value": str(value),
            "asset": asset,
        }
        body.update(overrides)
        return body

    return _make
