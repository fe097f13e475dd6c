"""
Pricing collaborators — exchange rate oracle and volatility risk scorer.

Supports ETH/BRL and USDC/BRL style pairs. Uses CoinGecko (free tier) or
mock data for development/testing. Every upstream call is bounded by
UPSTREAM_TIMEOUT_SECONDS; failures surface as UpstreamUnavailable and a
stale rate is never substituted.
"""

import asyncio
import logging
import random
import time
from decimal import Decimal, InvalidOperation
from typing import Protocol

import httpx
from redis.exceptions import RedisError

from floatpay.config import settings
from floatpay.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Mock rates: (base, max jitter) in fiat per unit of crypto
MOCK_RATES = {
    "ETH": (Decimal("15000"), Decimal("100")),
    "USDC": (Decimal("5.0"), Decimal("0.05")),
}
MOCK_FALLBACK_RATE = Decimal("1.0")

# CoinGecko coin ids
COINGECKO_IDS = {
    "ETH": "ethereum",
    "USDC": "usd-coin",
}

# Redis keys
RATE_HISTORY_KEY_PREFIX = "rate_history:"


def split_pair(pair: str) -> tuple[str, str]:
    """'ETH/BRL' -> ('ETH', 'BRL'). A bare asset gets the configured fiat."""
    if "/" in pair:
        base, quote = pair.split("/", 1)
        return base.upper(), quote.upper()
    return pair.upper(), settings.FIAT_CURRENCY


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class RateOracle(Protocol):
    async def get_exchange_rate(self, pair: str) -> Decimal:
        """Return fiat per 1 unit of crypto for *pair* (e.g. ``ETH/BRL``)."""
        ...


class RiskScorer(Protocol):
    async def get_risk_score(self, currency: str) -> Decimal:
        """Return a volatility score in [0, 1]; higher is riskier."""
        ...


# ---------------------------------------------------------------------------
# Rate oracles
# ---------------------------------------------------------------------------


class MockRateOracle:
    """Rates around fixed anchors with small random jitter, for dev."""

    async def get_exchange_rate(self, pair: str) -> Decimal:
        base, _ = split_pair(pair)
        if base not in MOCK_RATES:
            return MOCK_FALLBACK_RATE
        anchor, jitter = MOCK_RATES[base]
        noise = Decimal(str(round(random.random(), 6))) * jitter
        return anchor + noise


class CoinGeckoRateOracle:
    """Fetch live prices from the CoinGecko simple-price endpoint."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.COINGECKO_BASE_URL
        self.api_key = settings.COINGECKO_API_KEY if api_key is None else api_key
        self.transport = transport

    def _build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.api_key:
            headers["X-CG-Demo-API-Key"] = self.api_key
        return headers

    async def get_exchange_rate(self, pair: str) -> Decimal:
        base, fiat = split_pair(pair)
        coin_id = COINGECKO_IDS.get(base)
        if coin_id is None:
            raise ValueError(f"Unsupported asset: {base}")

        vs_currency = fiat.lower()
        async with httpx.AsyncClient(
            timeout=settings.UPSTREAM_TIMEOUT_SECONDS, transport=self.transport,
        ) as client:
            resp = await client.get(
                f"{self.base_url}/simple/price",
                params={"ids": coin_id, "vs_currencies": vs_currency},
                headers=self._build_headers(),
            )
            resp.raise_for_status()
            data = resp.json()

        try:
            return Decimal(str(data[coin_id][vs_currency]))
        except (KeyError, TypeError, InvalidOperation) as exc:
            raise RuntimeError(f"Rate API returned no price for {pair}: {data}") from exc


class CachedRateOracle:
    """
    Memoise rates per pair for the lifetime of one instance.

    Built once per request so the volatility scorer's sample and the
    quoted rate come from the same oracle tick.
    """

    def __init__(self, oracle: RateOracle):
        self.oracle = oracle
        self._rates: dict[str, Decimal] = {}

    async def get_exchange_rate(self, pair: str) -> Decimal:
        key = pair.upper()
        if key not in self._rates:
            self._rates[key] = await self.oracle.get_exchange_rate(pair)
        return self._rates[key]


# ---------------------------------------------------------------------------
# Risk scorers
# ---------------------------------------------------------------------------


class MockRiskScorer:
    """Random volatility score, for dev."""

    async def get_risk_score(self, currency: str) -> Decimal:
        score = Decimal(str(round(random.random(), 4)))
        logger.info("Analyzing volatility for %s: %.2f", currency, score)
        return score


class VolatilityRiskScorer:
    """
    Score volatility from rate movement over a rolling window.

    Each call samples the oracle, appends the rate to a Redis sorted set
    ``rate_history:{currency}`` scored by timestamp, trims entries older than
    RISK_WINDOW_SECONDS and maps (max - min) / min onto [0, 1], where
    RISK_FULL_SCALE_PERCENT movement is a score of 1.0.
    """

    def __init__(self, redis, rate_oracle: RateOracle):
        self.redis = redis
        self.rate_oracle = rate_oracle

    async def get_risk_score(self, currency: str) -> Decimal:
        rate = await self.rate_oracle.get_exchange_rate(
            f"{currency}/{settings.FIAT_CURRENCY}"
        )
        key = f"{RATE_HISTORY_KEY_PREFIX}{currency}"
        now = time.time()

        # Member carries the timestamp so identical rates are kept apart
        await self.redis.zadd(key, {f"{now}:{rate}": now})
        await self.redis.zremrangebyscore(key, "-inf", now - settings.RISK_WINDOW_SECONDS)
        entries = await self.redis.zrange(key, 0, -1)

        rates = [Decimal(member.split(":", 1)[1]) for member in entries]
        if len(rates) < 2:
            return Decimal("0")

        low, high = min(rates), max(rates)
        if low <= 0:
            return Decimal("0")

        movement = (high - low) / low * Decimal("100")
        score = movement / Decimal(str(settings.RISK_FULL_SCALE_PERCENT))
        score = min(score, Decimal("1")).quantize(Decimal("0.0001"))
        logger.info(
            "Volatility for %s: %.2f%% over %d samples -> risk %s",
            currency, movement, len(rates), score,
        )
        return score


# ---------------------------------------------------------------------------
# Provider selection (module-level overrides for tests)
# ---------------------------------------------------------------------------

_rate_oracle: RateOracle | None = None
_risk_scorer: RiskScorer | None = None


def get_rate_oracle() -> RateOracle:
    """Return the configured rate oracle."""
    if _rate_oracle is not None:
        return _rate_oracle
    if settings.RATE_ORACLE_MOCK:
        return MockRateOracle()
    return CoinGeckoRateOracle()


def set_rate_oracle(oracle: RateOracle | None) -> None:
    """Override the rate oracle (for testing)."""
    global _rate_oracle
    _rate_oracle = oracle


def get_risk_scorer(redis=None, rate_oracle: RateOracle | None = None) -> RiskScorer:
    """
    Return the configured risk scorer.

    The volatility scorer samples *rate_oracle* when given, so callers can
    share one oracle between scoring and pricing.
    """
    if _risk_scorer is not None:
        return _risk_scorer
    if settings.RISK_SCORER == "volatility":
        if redis is None:
            from floatpay.redis_client import redis as _default
            redis = _default
        return VolatilityRiskScorer(redis, rate_oracle or get_rate_oracle())
    return MockRiskScorer()


def set_risk_scorer(scorer: RiskScorer | None) -> None:
    """Override the risk scorer (for testing)."""
    global _risk_scorer
    _risk_scorer = scorer


# ---------------------------------------------------------------------------
# Bounded calls
# ---------------------------------------------------------------------------

# Errors a collaborator may raise that mean "no usable answer right now"
_UPSTREAM_ERRORS = (httpx.HTTPError, RedisError, RuntimeError, ValueError, ArithmeticError)


def _as_decimal(value) -> Decimal | None:
    """Decimal for *value*, or None when it is not a finite number."""
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return None
    return result if result.is_finite() else None


async def fetch_exchange_rate(
    oracle: RateOracle, pair: str, timeout: float | None = None,
) -> Decimal:
    """Call the oracle with a timeout; any failure is UpstreamUnavailable."""
    timeout = settings.UPSTREAM_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        raw = await asyncio.wait_for(oracle.get_exchange_rate(pair), timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("Rate oracle timed out after %.1fs for %s", timeout, pair)
        raise UpstreamUnavailable(f"Rate oracle timed out for {pair}") from exc
    except UpstreamUnavailable:
        raise
    except _UPSTREAM_ERRORS as exc:
        logger.warning("Rate oracle failed for %s: %s", pair, exc)
        raise UpstreamUnavailable(f"Rate oracle unavailable for {pair}") from exc

    rate = _as_decimal(raw)
    if rate is None or rate <= 0:
        logger.warning("Rate oracle returned invalid rate %r for %s", raw, pair)
        raise UpstreamUnavailable(f"Rate oracle returned invalid rate {raw} for {pair}")
    return rate


async def fetch_risk_score(
    scorer: RiskScorer, currency: str, timeout: float | None = None,
) -> Decimal:
    """Call the risk scorer with a timeout; any failure is UpstreamUnavailable."""
    timeout = settings.UPSTREAM_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        raw = await asyncio.wait_for(scorer.get_risk_score(currency), timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("Risk scorer timed out after %.1fs for %s", timeout, currency)
        raise UpstreamUnavailable(f"Risk scorer timed out for {currency}") from exc
    except UpstreamUnavailable:
        raise
    except _UPSTREAM_ERRORS as exc:
        logger.warning("Risk scorer failed for %s: %s", currency, exc)
        raise UpstreamUnavailable(f"Risk scorer unavailable for {currency}") from exc

    score = _as_decimal(raw)
    if score is None or not Decimal("0") <= score <= Decimal("1"):
        logger.warning("Risk scorer returned invalid score %r for %s", raw, currency)
        raise UpstreamUnavailable(f"Risk scorer returned out-of-range score {raw}")
    return score
